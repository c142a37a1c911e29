"""
Catalogue of every operation reachable through the gateway.

`build_registry()` is called once at start-up; the result is handed to the
dispatcher and never changes afterwards. Each entry names its handler, the
parameters it accepts (anything else in a request is dropped), whether it
mutates, and any cross-field guards.
"""

from __future__ import annotations

import os
from typing import Dict, Optional, Tuple

from ..audit import services as audit_services
from ..compliance import services as compliance
from ..compliance.models import (
    CertificateStatus,
    CertificateType,
    CredentialStatus,
    IntervalType,
    PmFrequencyType,
    PmFrequencyUnit,
)
from ..compliance.scheduler import ASSET_CLASSES
from ..equipment import services as equipment
from ..equipment.models import ScheduleStatus
from . import validators as v
from .guards import guard_any_of, guard_not_before
from .registry import Operation, OperationRegistry, Param

DOCUMENTS_ROOT = os.getenv("EQUIPDB_DOCUMENTS_ROOT", "/var/lib/equipdb/documents")

# Actions each domain must provide. A gap is a configuration defect and
# stops start-up.
REQUIRED_ACTIONS: Dict[str, Tuple[str, ...]] = {
    "equipment": ("getAll", "getById", "create", "update", "delete"),
    "inspections": ("getAll", "getByEquipmentId", "create", "getOverdue"),
    "scheduledInspections": (
        "getAll",
        "getUpcoming",
        "getTodayAndLater",
        "create",
        "update",
        "updateStatus",
        "delete",
    ),
    "loadTests": ("getByEquipmentId", "create", "getDue", "getOverdue"),
    "calibrations": ("getByEquipmentId", "create", "getDue", "getOverdue"),
    "credentials": ("getAll", "create", "getExpiring"),
    "certificates": ("getByEquipmentId", "create", "getExpiring"),
    "auditLog": ("create", "getByEntity"),
    "pmTemplates": ("getAll", "create"),
    "pmSchedules": ("getByEquipmentId", "create", "getDue", "getOverdue", "getTotal"),
    "documents": ("getByEquipmentId", "create"),
    "compliance": ("getStatus", "getNotifications"),
    "standards": ("getAll", "create", "delete", "getAssigned", "assign", "unassign", "getReport"),
}


def _req(name: str, validator) -> Param:
    return Param(name, validator)


def _opt(name: str, validator) -> Param:
    return Param(name, validator, required=False)


def _enum(enum_cls):
    return v.choice(*(member.value for member in enum_cls))


_code = v.free_text(64)
_short = v.free_text(128)
_text = v.validate_free_text
_notes = v.validate_notes
_id = v.validate_identifier
_date = v.validate_date
_amount = v.number(minimum=0)
_count = v.number(minimum=0, integer=True)

_EQUIPMENT_FIELDS = (
    ("type", _short),
    ("manufacturer", _short),
    ("model", _short),
    ("serialNumber", _short),
    ("capacity", _amount),
    ("installationDate", _date),
    ("location", _text),
    ("status", v.free_text(32)),
    ("active", v.validate_flag),
    ("qrCodeData", _notes),
)


def _equipment_operations():
    optional_fields = tuple(_opt(name, validator) for name, validator in _EQUIPMENT_FIELDS)
    return [
        Operation("equipment", "getAll", equipment.list_equipment),
        Operation("equipment", "getById", equipment.get_equipment, (_req("id", _id),)),
        Operation(
            "equipment",
            "getByEquipmentId",
            equipment.get_equipment_by_code,
            (_req("equipmentId", _code),),
        ),
        Operation("equipment", "getDistinctTypes", equipment.list_equipment_types),
        Operation("equipment", "getStatusCounts", equipment.count_equipment_by_status),
        Operation(
            "equipment",
            "getCount",
            equipment.count_equipment,
            (_opt("activeOnly", v.validate_flag),),
        ),
        Operation(
            "equipment",
            "getByAssetClass",
            equipment.list_equipment_for_asset_class,
            (_req("assetClass", v.choice("load_test", "calibration")),),
        ),
        Operation(
            "equipment",
            "create",
            equipment.create_equipment,
            (_req("equipmentId", _code),) + optional_fields,
            mutating=True,
        ),
        Operation(
            "equipment",
            "update",
            equipment.update_equipment,
            (_req("id", _id), _opt("equipmentId", _code)) + optional_fields,
            mutating=True,
            checks=(guard_any_of("equipmentId", *(name for name, _ in _EQUIPMENT_FIELDS)),),
        ),
        Operation(
            "equipment", "delete", equipment.delete_equipment, (_req("id", _id),), mutating=True
        ),
    ]


def _inspection_operations():
    return [
        Operation("inspections", "getAll", equipment.list_inspections),
        Operation(
            "inspections",
            "getByEquipmentId",
            equipment.list_inspections_for_equipment,
            (_req("equipmentId", _id),),
        ),
        Operation("inspections", "getOverdue", equipment.list_overdue_inspections),
        Operation("inspections", "getCount", equipment.count_inspections),
        Operation(
            "inspections",
            "create",
            equipment.create_inspection,
            (
                _req("equipmentId", _id),
                _req("inspector", _text),
                _req("inspectionDate", _date),
                _opt("findings", _notes),
                _opt("correctiveActions", _notes),
                _opt("summaryComments", _notes),
            ),
            mutating=True,
        ),
    ]


def _scheduled_inspection_operations():
    schedule_fields = (
        _req("equipmentId", _id),
        _req("scheduledDate", _date),
        _req("assignedInspector", _text),
    )
    return [
        Operation("scheduledInspections", "getAll", equipment.list_scheduled_inspections),
        Operation(
            "scheduledInspections",
            "getUpcoming",
            equipment.list_upcoming_scheduled_inspections,
            (_opt("fromDate", _date),),
        ),
        Operation(
            "scheduledInspections",
            "getTodayAndLater",
            equipment.list_scheduled_inspections_from_today,
        ),
        Operation(
            "scheduledInspections", "getOverdue", equipment.list_overdue_scheduled_inspections
        ),
        Operation(
            "scheduledInspections",
            "create",
            equipment.create_scheduled_inspection,
            schedule_fields + (_opt("status", _enum(ScheduleStatus)),),
            mutating=True,
        ),
        Operation(
            "scheduledInspections",
            "update",
            equipment.update_scheduled_inspection,
            (_req("id", _id),) + schedule_fields,
            mutating=True,
        ),
        Operation(
            "scheduledInspections",
            "updateStatus",
            equipment.update_scheduled_inspection_status,
            (_req("id", _id), _req("status", _enum(ScheduleStatus))),
            mutating=True,
        ),
        Operation(
            "scheduledInspections",
            "delete",
            equipment.delete_scheduled_inspection,
            (_req("id", _id),),
            mutating=True,
        ),
    ]


def _load_test_operations():
    return [
        Operation(
            "loadTests",
            "getByEquipmentId",
            compliance.list_load_tests_for_equipment,
            (_req("equipmentId", _id),),
        ),
        Operation(
            "loadTests",
            "getLastByEquipment",
            compliance.get_last_load_test,
            (_req("equipmentId", _id),),
        ),
        Operation("loadTests", "getTotal", compliance.count_load_tests),
        Operation(
            "loadTests", "getDue", compliance.list_due_load_tests, (_opt("dueDate", _date),)
        ),
        Operation("loadTests", "getOverdue", compliance.list_overdue_load_tests),
        Operation(
            "loadTests",
            "create",
            compliance.create_load_test,
            (
                _req("equipmentId", _id),
                _req("testDate", _date),
                _req("testType", _enum(IntervalType)),
                _req("inspector", _text),
                _req("testResults", v.choice("pass", "fail")),
                _opt("testLoadPercentage", v.number(minimum=1)),
                _opt("ratedCapacity", _amount),
                _opt("testLoad", _amount),
                _opt("testDuration", _count),
                _opt("deficienciesFound", _notes),
                _opt("correctiveActions", _notes),
                _opt("nextTestDue", _date),
                _opt("notes", _notes),
            ),
            mutating=True,
            checks=(guard_not_before("nextTestDue", "testDate"),),
        ),
    ]


def _calibration_operations():
    return [
        Operation(
            "calibrations",
            "getByEquipmentId",
            compliance.list_calibrations_for_equipment,
            (_req("equipmentId", _id),),
        ),
        Operation("calibrations", "getTotal", compliance.count_calibrations),
        Operation(
            "calibrations", "getDue", compliance.list_due_calibrations, (_opt("dueDate", _date),)
        ),
        Operation("calibrations", "getOverdue", compliance.list_overdue_calibrations),
        Operation(
            "calibrations",
            "create",
            compliance.create_calibration,
            (
                _req("equipmentId", _id),
                _req("instrumentType", _short),
                _req("calibrationDate", _date),
                _opt("intervalType", _enum(IntervalType)),
                _opt("calibrationDueDate", _date),
                _req("calibratedBy", _text),
                _opt("calibrationAgency", _text),
                _req("calibrationResults", v.choice("pass", "fail", "limited")),
                _opt("accuracyTolerance", _code),
                _opt("actualAccuracy", _code),
                _opt("adjustmentsMade", _notes),
                _opt("notes", _notes),
            ),
            mutating=True,
            checks=(guard_not_before("calibrationDueDate", "calibrationDate"),),
        ),
    ]


def _credential_operations():
    return [
        Operation("credentials", "getAll", compliance.list_credentials),
        Operation(
            "credentials",
            "getByPerson",
            compliance.list_credentials_for_person,
            (_req("personName", _text),),
        ),
        Operation("credentials", "getTotal", compliance.count_credentials),
        Operation(
            "credentials",
            "getExpiring",
            compliance.list_expiring_credentials,
            (_opt("expirationDate", _date),),
        ),
        Operation(
            "credentials",
            "checkQualification",
            compliance.check_qualification,
            (
                _req("personName", _text),
                _req("equipmentType", _short),
                _opt("workType", _code),
                _opt("priority", _code),
                _opt("title", _text),
            ),
        ),
        Operation(
            "credentials",
            "create",
            compliance.create_credential,
            (
                _req("personName", _text),
                _req("credentialType", _short),
                _req("issueDate", _date),
                _opt("expirationDate", _date),
                _opt("equipmentTypes", v.text_list(128)),
                _opt("certificationBody", _text),
                _opt("certificateNumber", _code),
                _opt("renewalRequired", v.validate_flag),
                _opt("status", _enum(CredentialStatus)),
                _opt("notes", _notes),
            ),
            mutating=True,
            checks=(guard_not_before("expirationDate", "issueDate"),),
        ),
        Operation(
            "credentials",
            "updateStatus",
            compliance.update_credential_status,
            (_req("id", _id), _req("status", _enum(CredentialStatus))),
            mutating=True,
        ),
    ]


def _certificate_operations():
    return [
        Operation(
            "certificates",
            "getByEquipmentId",
            compliance.list_certificates_for_equipment,
            (_req("equipmentId", _id),),
        ),
        Operation(
            "certificates",
            "getByCertificateNumber",
            compliance.get_certificate_by_number,
            (_req("certificateNumber", _code),),
        ),
        Operation(
            "certificates",
            "getExpiring",
            compliance.list_expiring_certificates,
            (_opt("expirationDate", _date),),
        ),
        Operation(
            "certificates",
            "create",
            compliance.create_certificate,
            (
                _req("certificateNumber", _code),
                _req("certificateType", _enum(CertificateType)),
                _req("equipmentId", _id),
                _req("entityId", _id),
                _req("issueDate", _date),
                _opt("expirationDate", _date),
                _req("issuedBy", _text),
                _opt("qrCodeData", _notes),
                _opt("certificateHash", _short),
            ),
            mutating=True,
            checks=(guard_not_before("expirationDate", "issueDate"),),
        ),
        Operation(
            "certificates",
            "updateStatus",
            compliance.update_certificate_status,
            (_req("id", _id), _req("status", _enum(CertificateStatus))),
            mutating=True,
        ),
    ]


def _pm_operations():
    return [
        Operation(
            "pmTemplates",
            "getAll",
            compliance.list_pm_templates,
            (_opt("equipmentType", _short),),
        ),
        Operation(
            "pmTemplates",
            "create",
            compliance.create_pm_template,
            (
                _req("name", _text),
                _req("equipmentType", _short),
                _req("frequencyType", _enum(PmFrequencyType)),
                _req("frequencyValue", v.number(minimum=1, integer=True)),
                _opt("frequencyUnit", _enum(PmFrequencyUnit)),
                _opt("description", _notes),
                _opt("estimatedDuration", _amount),
                _opt("instructions", _notes),
                _opt("safetyNotes", _notes),
            ),
            mutating=True,
        ),
        Operation(
            "pmSchedules",
            "getByEquipmentId",
            compliance.list_pm_schedules_for_equipment,
            (_req("equipmentId", _id),),
        ),
        Operation("pmSchedules", "getTotal", compliance.count_pm_schedules),
        Operation(
            "pmSchedules", "getDue", compliance.list_due_pm_schedules, (_opt("dueDate", _date),)
        ),
        Operation("pmSchedules", "getOverdue", compliance.list_overdue_pm_schedules),
        Operation(
            "pmSchedules",
            "create",
            compliance.create_pm_schedule,
            (
                _req("equipmentId", _id),
                _req("pmTemplateId", _id),
                _opt("nextDueDate", _date),
                _opt("nextDueUsage", _amount),
            ),
            mutating=True,
        ),
        Operation(
            "pmSchedules",
            "complete",
            compliance.complete_pm_schedule,
            (_req("id", _id), _req("completedDate", _date), _opt("completedUsage", _amount)),
            mutating=True,
        ),
    ]


def _document_operations(documents_root: str):
    return [
        Operation(
            "documents",
            "getByEquipmentId",
            equipment.list_documents_for_equipment,
            (_req("equipmentId", _id),),
        ),
        Operation(
            "documents",
            "create",
            equipment.create_document,
            (
                _req("equipmentId", _id),
                _req("fileName", _text),
                _req("filePath", v.file_path(documents_root)),
                _opt("hash", _short),
                _opt("size", _count),
            ),
            mutating=True,
        ),
    ]


def _audit_operations():
    return [
        Operation(
            "auditLog",
            "create",
            audit_services.append_entry,
            (
                _req("action", _code),
                _req("entityType", _code),
                _req("entityId", _id),
                _opt("oldValues", v.validate_mapping),
                _opt("newValues", v.validate_mapping),
            ),
            internal=True,
        ),
        Operation(
            "auditLog",
            "getByEntity",
            audit_services.entries_for_entity,
            (_req("entityType", _code), _req("entityId", _id)),
        ),
        Operation(
            "auditLog",
            "getRecent",
            audit_services.recent_entries,
            (_opt("limit", v.number(minimum=1, integer=True)),),
        ),
    ]


def _compliance_operations():
    return [
        Operation(
            "compliance",
            "getStatus",
            compliance.get_compliance_status,
            (_opt("assetClass", v.choice(*ASSET_CLASSES)),),
        ),
        Operation("compliance", "getNotifications", compliance.get_notifications),
        Operation("compliance", "getSummary", compliance.get_compliance_summary),
    ]


def _standard_operations():
    assignment = (_req("equipmentType", _short), _req("standardId", _id))
    return [
        Operation("standards", "getAll", compliance.list_standards),
        Operation(
            "standards",
            "create",
            compliance.create_standard,
            (
                _req("name", _short),
                _req("description", _notes),
                _req("authority", _text),
            ),
            mutating=True,
        ),
        Operation(
            "standards", "delete", compliance.delete_standard, (_req("id", _id),), mutating=True
        ),
        Operation(
            "standards",
            "getAssigned",
            compliance.list_assigned_standards,
            (_req("equipmentType", _short),),
        ),
        Operation("standards", "assign", compliance.assign_standard, assignment, mutating=True),
        Operation("standards", "unassign", compliance.unassign_standard, assignment, mutating=True),
        Operation("standards", "getReport", compliance.get_standards_report),
    ]


def build_registry(documents_root: Optional[str] = None) -> OperationRegistry:
    registry = OperationRegistry(
        _equipment_operations()
        + _inspection_operations()
        + _scheduled_inspection_operations()
        + _load_test_operations()
        + _calibration_operations()
        + _credential_operations()
        + _certificate_operations()
        + _pm_operations()
        + _document_operations(documents_root or DOCUMENTS_ROOT)
        + _audit_operations()
        + _compliance_operations()
        + _standard_operations()
    )
    missing = registry.missing_actions(REQUIRED_ACTIONS)
    if missing:
        raise RuntimeError(f"Operation catalogue is missing required actions: {', '.join(missing)}")
    return registry
