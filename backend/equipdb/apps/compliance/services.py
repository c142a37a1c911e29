# backend/equipdb/apps/compliance/services.py
#
# Gateway handlers for the compliance-tracked domains:
# - loadTests, calibrations : compliance events with computed next-due and
#                             certificate issuance on a pass.
# - credentials             : personnel credentials keyed by expiration.
# - certificates            : issued certificates, keyed by expiration.
# - pmTemplates, pmSchedules: preventive maintenance.
# - standards               : compliance standards and the equipment types
#                             they apply to.
# - compliance              : bucket status, notifications and summary across
#                             every asset class.
#
# Due / overdue queries only look at the current event for each equipment
# (highest id); older events are superseded, never edited.

from __future__ import annotations

import logging
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from equipdb.utils import serialization

from ..equipment.models import (
    CALIBRATION_TYPE_KEYWORDS,
    LOAD_TEST_TYPE_KEYWORDS,
    Equipment,
    Inspection,
)
from ..equipment.services import (
    get_equipment_or_violation,
    latest_inspections,
    open_scheduled_inspections,
)
from ..gateway.errors import ConstraintViolation
from ..gateway.registry import Mutation, OperationContext
from . import scheduler
from .models import (
    Calibration,
    Certificate,
    CertificateStatus,
    CertificateType,
    ComplianceStandard,
    Credential,
    CredentialStatus,
    EquipmentTypeStandard,
    EventOutcome,
    LoadTest,
    PmFrequencyType,
    PmSchedule,
    PmTemplate,
)
from .schemas import ComplianceSummaryRead, NotificationRead, dump

logger = logging.getLogger(__name__)

# Renewal period (years) when a credential is created without an expiry.
CREDENTIAL_RENEWAL_YEARS = {
    "crane operator": 3,
    "rigger": 3,
    "inspector": 2,
}
DEFAULT_RENEWAL_YEARS = 1

# Asset classes that raise notifications. Certificates expire together with
# the event that issued them, so they are reported in status only.
NOTIFICATION_CLASSES = (
    scheduler.LOAD_TEST,
    scheduler.CALIBRATION,
    scheduler.INSPECTION,
    scheduler.PM_SCHEDULE,
    scheduler.SCHEDULED_INSPECTION,
    scheduler.CREDENTIAL,
)


# ---------------------------------------------------------------------------
# Query helpers
# ---------------------------------------------------------------------------


def _latest_ids(model, *group_by, where: Sequence = ()):
    return (
        select(func.max(model.id))
        .where(*where)
        .group_by(*group_by)
    )


def _equipment_rows(db: Session, model, *filters, order_by=None) -> List[dict]:
    """Rows of `model` with the owning equipment's code and type attached."""
    stmt = (
        select(
            model,
            Equipment.equipment_id.label("equipment_identifier"),
            Equipment.type.label("equipment_type"),
        )
        .join(Equipment, Equipment.id == model.equipment_id)
        .where(*filters)
    )
    if order_by is not None:
        stmt = stmt.order_by(*order_by)
    rows = []
    for record, code, equipment_type in db.execute(stmt).all():
        row = serialization.row_to_dict(record)
        row["equipment_identifier"] = code
        row["equipment_type"] = equipment_type
        rows.append(row)
    return rows


def _threshold(ctx: OperationContext, params: dict, name: str) -> date:
    return params.get(name) or scheduler.lookahead(ctx.today)


def _check_eligible(equipment: Equipment, keywords, asset_label: str) -> None:
    if not equipment.matches_any(keywords):
        raise ConstraintViolation(
            message=f"{asset_label} does not apply to equipment type '{equipment.type or ''}'",
            relationship="equipment.type",
        )


def _count(db: Session, column, *filters) -> int:
    return db.execute(select(func.count(column)).where(*filters)).scalar_one()


def _issue_certificate(
    db: Session,
    *,
    prefix: str,
    certificate_type: CertificateType,
    equipment: Equipment,
    entity_id: int,
    issue_date: date,
    expiration_date: Optional[date],
    issued_by: str,
) -> Certificate:
    certificate = Certificate(
        certificate_number=f"{prefix}-{equipment.equipment_id}-{issue_date.year}-{entity_id:04d}",
        certificate_type=certificate_type.value,
        equipment_id=equipment.id,
        entity_id=entity_id,
        issue_date=issue_date,
        expiration_date=expiration_date,
        issued_by=issued_by,
        status=CertificateStatus.ACTIVE.value,
    )
    db.add(certificate)
    db.flush()
    return certificate


# ---------------------------------------------------------------------------
# Load tests
# ---------------------------------------------------------------------------


def _current_load_tests(db: Session, *filters) -> List[dict]:
    # A failed test leaves the equipment out of service, so the schedule runs
    # from the latest passing test.
    latest = _latest_ids(
        LoadTest,
        LoadTest.equipment_id,
        where=(LoadTest.test_results == EventOutcome.PASS.value,),
    )
    return _equipment_rows(
        db,
        LoadTest,
        LoadTest.id.in_(latest),
        *filters,
        order_by=(LoadTest.next_test_due.asc(), LoadTest.id.asc()),
    )


def list_load_tests_for_equipment(ctx: OperationContext, params: dict) -> List[dict]:
    return _equipment_rows(
        ctx.db,
        LoadTest,
        LoadTest.equipment_id == params["equipmentId"],
        order_by=(LoadTest.test_date.desc(), LoadTest.id.desc()),
    )


def get_last_load_test(ctx: OperationContext, params: dict) -> Optional[dict]:
    latest = _latest_ids(
        LoadTest,
        LoadTest.equipment_id,
        where=(LoadTest.equipment_id == params["equipmentId"],),
    )
    rows = _equipment_rows(ctx.db, LoadTest, LoadTest.id == latest.scalar_subquery())
    return rows[0] if rows else None


def count_load_tests(ctx: OperationContext, params: dict) -> int:
    return _count(ctx.db, LoadTest.id)


def list_due_load_tests(ctx: OperationContext, params: dict) -> List[dict]:
    threshold = _threshold(ctx, params, "dueDate")
    return _current_load_tests(
        ctx.db,
        LoadTest.next_test_due >= ctx.today,
        LoadTest.next_test_due <= threshold,
    )


def list_overdue_load_tests(ctx: OperationContext, params: dict) -> List[dict]:
    return _current_load_tests(ctx.db, LoadTest.next_test_due < ctx.today)


def create_load_test(ctx: OperationContext, params: dict) -> Mutation:
    equipment = get_equipment_or_violation(ctx.db, params["equipmentId"])
    _check_eligible(equipment, LOAD_TEST_TYPE_KEYWORDS, "Load testing")

    test_date: date = params["testDate"]
    rated_capacity = params.get("ratedCapacity", equipment.capacity)
    percentage = params.get("testLoadPercentage")
    test_load = params.get("testLoad")
    if test_load is None and rated_capacity is not None and percentage is not None:
        test_load = rated_capacity * percentage / 100

    load_test = LoadTest(
        equipment_id=equipment.id,
        test_date=test_date,
        test_type=params["testType"],
        test_load_percentage=percentage,
        rated_capacity=rated_capacity,
        test_load=test_load,
        test_duration=params.get("testDuration"),
        inspector=params["inspector"],
        test_results=params["testResults"],
        deficiencies_found=params.get("deficienciesFound"),
        corrective_actions=params.get("correctiveActions"),
        next_test_due=scheduler.compute_next_due(
            test_date, params["testType"], params.get("nextTestDue")
        ),
        notes=params.get("notes"),
    )
    ctx.db.add(load_test)
    ctx.db.flush()

    certificate = None
    if load_test.test_results == EventOutcome.PASS.value:
        certificate = _issue_certificate(
            ctx.db,
            prefix="LT",
            certificate_type=CertificateType.LOAD_TEST,
            equipment=equipment,
            entity_id=load_test.id,
            issue_date=test_date,
            expiration_date=load_test.next_test_due,
            issued_by=load_test.inspector,
        )
        load_test.certificate_id = certificate.id
        load_test.certificate_number = certificate.certificate_number
        ctx.db.flush()

    after = serialization.row_to_dict(load_test)
    return Mutation(
        action="create",
        entity_type="load_test",
        entity_id=load_test.id,
        after=after,
        value={**after, "certificate": serialization.row_to_dict(certificate)},
    )


# ---------------------------------------------------------------------------
# Calibrations
# ---------------------------------------------------------------------------


def _current_calibrations(db: Session, *filters) -> List[dict]:
    latest = _latest_ids(Calibration, Calibration.equipment_id)
    return _equipment_rows(
        db,
        Calibration,
        Calibration.id.in_(latest),
        *filters,
        order_by=(Calibration.calibration_due_date.asc(), Calibration.id.asc()),
    )


def list_calibrations_for_equipment(ctx: OperationContext, params: dict) -> List[dict]:
    return _equipment_rows(
        ctx.db,
        Calibration,
        Calibration.equipment_id == params["equipmentId"],
        order_by=(Calibration.calibration_date.desc(), Calibration.id.desc()),
    )


def count_calibrations(ctx: OperationContext, params: dict) -> int:
    return _count(ctx.db, Calibration.id)


def list_due_calibrations(ctx: OperationContext, params: dict) -> List[dict]:
    threshold = _threshold(ctx, params, "dueDate")
    return _current_calibrations(
        ctx.db,
        Calibration.calibration_due_date >= ctx.today,
        Calibration.calibration_due_date <= threshold,
    )


def list_overdue_calibrations(ctx: OperationContext, params: dict) -> List[dict]:
    return _current_calibrations(ctx.db, Calibration.calibration_due_date < ctx.today)


def create_calibration(ctx: OperationContext, params: dict) -> Mutation:
    equipment = get_equipment_or_violation(ctx.db, params["equipmentId"])
    _check_eligible(equipment, CALIBRATION_TYPE_KEYWORDS, "Calibration")

    calibration_date: date = params["calibrationDate"]
    interval_type = params.get("intervalType", "annual")
    calibration = Calibration(
        equipment_id=equipment.id,
        instrument_type=params["instrumentType"],
        calibration_date=calibration_date,
        interval_type=interval_type,
        calibration_due_date=scheduler.compute_next_due(
            calibration_date, interval_type, params.get("calibrationDueDate")
        ),
        calibrated_by=params["calibratedBy"],
        calibration_agency=params.get("calibrationAgency"),
        calibration_results=params["calibrationResults"],
        accuracy_tolerance=params.get("accuracyTolerance"),
        actual_accuracy=params.get("actualAccuracy"),
        adjustments_made=params.get("adjustmentsMade"),
        notes=params.get("notes"),
    )
    ctx.db.add(calibration)
    ctx.db.flush()

    certificate = None
    if calibration.calibration_results == EventOutcome.PASS.value:
        certificate = _issue_certificate(
            ctx.db,
            prefix="CAL",
            certificate_type=CertificateType.CALIBRATION,
            equipment=equipment,
            entity_id=calibration.id,
            issue_date=calibration_date,
            expiration_date=calibration.calibration_due_date,
            issued_by=calibration.calibration_agency or calibration.calibrated_by,
        )
        calibration.certificate_id = certificate.id
        calibration.certificate_number = certificate.certificate_number
        ctx.db.flush()

    after = serialization.row_to_dict(calibration)
    return Mutation(
        action="create",
        entity_type="calibration",
        entity_id=calibration.id,
        after=after,
        value={**after, "certificate": serialization.row_to_dict(certificate)},
    )


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


def default_expiration(credential_type: str, issue_date: date) -> date:
    years = CREDENTIAL_RENEWAL_YEARS.get(credential_type.strip().lower(), DEFAULT_RENEWAL_YEARS)
    return scheduler.add_years(issue_date, years)


def _credential_row(credential: Credential) -> dict:
    row = serialization.row_to_dict(credential)
    row["equipment_types"] = serialization.loads(credential.equipment_types)
    return row


def _credentials(db: Session, *filters) -> List[dict]:
    stmt = (
        select(Credential)
        .where(*filters)
        .order_by(Credential.person_name, Credential.credential_type, Credential.id.desc())
    )
    return [_credential_row(row) for row in db.execute(stmt).scalars().all()]


def _current_credentials(db: Session, *filters) -> List[dict]:
    latest = _latest_ids(Credential, Credential.person_name, Credential.credential_type)
    return _credentials(
        db,
        Credential.id.in_(latest),
        Credential.status == CredentialStatus.ACTIVE.value,
        *filters,
    )


def list_credentials(ctx: OperationContext, params: dict) -> List[dict]:
    return _credentials(ctx.db)


def list_credentials_for_person(ctx: OperationContext, params: dict) -> List[dict]:
    return _credentials(ctx.db, Credential.person_name == params["personName"])


def count_credentials(ctx: OperationContext, params: dict) -> int:
    return _count(ctx.db, Credential.id, Credential.status == CredentialStatus.ACTIVE.value)


def list_expiring_credentials(ctx: OperationContext, params: dict) -> List[dict]:
    """Active credentials expiring on or before the threshold, expired ones included."""
    threshold = _threshold(ctx, params, "expirationDate")
    return _current_credentials(
        ctx.db,
        Credential.expiration_date.is_not(None),
        Credential.expiration_date <= threshold,
    )


def create_credential(ctx: OperationContext, params: dict) -> Mutation:
    issue_date: date = params["issueDate"]
    credential = Credential(
        person_name=params["personName"],
        credential_type=params["credentialType"],
        equipment_types=serialization.dumps(params.get("equipmentTypes")),
        certification_body=params.get("certificationBody"),
        certificate_number=params.get("certificateNumber"),
        issue_date=issue_date,
        expiration_date=params.get("expirationDate")
        or default_expiration(params["credentialType"], issue_date),
        renewal_required=params.get("renewalRequired", True),
        status=params.get("status", CredentialStatus.ACTIVE.value),
        notes=params.get("notes"),
    )
    ctx.db.add(credential)
    ctx.db.flush()
    return Mutation(
        action="create",
        entity_type="credential",
        entity_id=credential.id,
        after=serialization.row_to_dict(credential),
        value=_credential_row(credential),
    )


def update_credential_status(ctx: OperationContext, params: dict) -> Mutation:
    credential = ctx.db.get(Credential, params["id"])
    if credential is None:
        raise ConstraintViolation(
            message=f"Credential {params['id']} does not exist",
            relationship="credentials.id",
        )
    before = serialization.row_to_dict(credential)
    credential.status = params["status"]
    ctx.db.flush()
    return Mutation(
        action="update_status",
        entity_type="credential",
        entity_id=credential.id,
        before=before,
        after=serialization.row_to_dict(credential),
        value=_credential_row(credential),
    )


def required_credential_types(
    equipment_type: str,
    *,
    work_type: Optional[str] = None,
    priority: Optional[str] = None,
    title: Optional[str] = None,
) -> List[str]:
    """Credential types a person needs to work on equipment of this type."""
    required: List[str] = []
    value = (equipment_type or "").lower()
    if "crane" in value:
        required.extend(["Crane Operator", "Rigger", "Signal Person"])
    elif "hoist" in value:
        required.append("Crane Operator")
    if (work_type or "").lower() in ("corrective", "emergency"):
        required.append("Maintenance Technician")
    if (priority or "").lower() == "critical":
        required.append("Supervisor")
    if "inspect" in (title or "").lower():
        required.append("Inspector")
    return required


def _covers(credential: dict, equipment_type: str) -> bool:
    covered = credential.get("equipment_types")
    if not covered:
        return True
    value = equipment_type.lower()
    return any(str(item).lower() in value for item in covered)


def check_qualification(ctx: OperationContext, params: dict) -> dict:
    equipment_type = params["equipmentType"]
    required = required_credential_types(
        equipment_type,
        work_type=params.get("workType"),
        priority=params.get("priority"),
        title=params.get("title"),
    )
    held = {
        row["credential_type"].lower(): row
        for row in _current_credentials(ctx.db, Credential.person_name == params["personName"])
    }

    checks = []
    for credential_type in required:
        credential = held.get(credential_type.lower())
        status = scheduler.classify_due(
            ctx.today, credential["expiration_date"] if credential else None
        )
        valid = (
            credential is not None
            and status is not scheduler.DueStatus.OVERDUE
            and _covers(credential, equipment_type)
        )
        checks.append(
            {
                "credentialType": credential_type,
                "credentialId": credential["id"] if credential else None,
                "expirationDate": credential["expiration_date"] if credential else None,
                "status": status.value if credential else "missing",
                "valid": valid,
            }
        )
    return {
        "personName": params["personName"],
        "equipmentType": equipment_type,
        "qualified": all(item["valid"] for item in checks),
        "requirements": checks,
    }


# ---------------------------------------------------------------------------
# Certificates
# ---------------------------------------------------------------------------


def list_certificates_for_equipment(ctx: OperationContext, params: dict) -> List[dict]:
    return _equipment_rows(
        ctx.db,
        Certificate,
        Certificate.equipment_id == params["equipmentId"],
        order_by=(Certificate.issue_date.desc(), Certificate.id.desc()),
    )


def get_certificate_by_number(ctx: OperationContext, params: dict) -> Optional[dict]:
    rows = _equipment_rows(
        ctx.db, Certificate, Certificate.certificate_number == params["certificateNumber"]
    )
    return rows[0] if rows else None


# Event table a certificate of each type points into via entity_id.
_CERTIFIED_EVENTS = {
    CertificateType.INSPECTION.value: Inspection,
    CertificateType.LOAD_TEST.value: LoadTest,
    CertificateType.CALIBRATION.value: Calibration,
}


def _active_certificates(db: Session, *filters) -> List[dict]:
    return _equipment_rows(
        db,
        Certificate,
        Certificate.status == CertificateStatus.ACTIVE.value,
        *filters,
        order_by=(Certificate.expiration_date.asc(), Certificate.id.asc()),
    )


def list_expiring_certificates(ctx: OperationContext, params: dict) -> List[dict]:
    threshold = _threshold(ctx, params, "expirationDate")
    return _active_certificates(
        ctx.db,
        Certificate.expiration_date.is_not(None),
        Certificate.expiration_date <= threshold,
    )


def _check_certified_event(
    db: Session, certificate_type: str, equipment_id: int, entity_id: int
) -> None:
    model = _CERTIFIED_EVENTS[certificate_type]
    event = db.get(model, entity_id)
    if event is None or event.equipment_id != equipment_id:
        raise ConstraintViolation(
            message=(
                f"{certificate_type} {entity_id} does not exist for equipment {equipment_id}"
            ),
            relationship=f"{model.__tablename__}.id",
        )


def create_certificate(ctx: OperationContext, params: dict) -> Mutation:
    get_equipment_or_violation(ctx.db, params["equipmentId"])
    _check_certified_event(
        ctx.db, params["certificateType"], params["equipmentId"], params["entityId"]
    )
    certificate = Certificate(
        certificate_number=params["certificateNumber"],
        certificate_type=params["certificateType"],
        equipment_id=params["equipmentId"],
        entity_id=params["entityId"],
        issue_date=params["issueDate"],
        expiration_date=params.get("expirationDate"),
        issued_by=params["issuedBy"],
        qr_code_data=params.get("qrCodeData"),
        certificate_hash=params.get("certificateHash"),
        status=CertificateStatus.ACTIVE.value,
    )
    ctx.db.add(certificate)
    ctx.db.flush()
    return Mutation(
        action="create",
        entity_type="certificate",
        entity_id=certificate.id,
        after=serialization.row_to_dict(certificate),
    )


def update_certificate_status(ctx: OperationContext, params: dict) -> Mutation:
    certificate = ctx.db.get(Certificate, params["id"])
    if certificate is None:
        raise ConstraintViolation(
            message=f"Certificate {params['id']} does not exist",
            relationship="certificates.id",
        )
    before = serialization.row_to_dict(certificate)
    certificate.status = params["status"]
    ctx.db.flush()
    return Mutation(
        action="update_status",
        entity_type="certificate",
        entity_id=certificate.id,
        before=before,
        after=serialization.row_to_dict(certificate),
    )


# ---------------------------------------------------------------------------
# Preventive maintenance
# ---------------------------------------------------------------------------


def list_pm_templates(ctx: OperationContext, params: dict) -> List[dict]:
    stmt = select(PmTemplate).where(PmTemplate.active.is_(True))
    if params.get("equipmentType"):
        stmt = stmt.where(PmTemplate.equipment_type == params["equipmentType"])
    stmt = stmt.order_by(PmTemplate.equipment_type, PmTemplate.name)
    return serialization.rows_to_dicts(ctx.db.execute(stmt).scalars().all())


def create_pm_template(ctx: OperationContext, params: dict) -> Mutation:
    template = PmTemplate(
        name=params["name"],
        equipment_type=params["equipmentType"],
        description=params.get("description"),
        frequency_type=params["frequencyType"],
        frequency_value=params["frequencyValue"],
        frequency_unit=params.get("frequencyUnit", "months"),
        estimated_duration=params.get("estimatedDuration"),
        instructions=params.get("instructions"),
        safety_notes=params.get("safetyNotes"),
    )
    ctx.db.add(template)
    ctx.db.flush()
    return Mutation(
        action="create",
        entity_type="pm_template",
        entity_id=template.id,
        after=serialization.row_to_dict(template),
    )


def _pm_rows(db: Session, *filters) -> List[dict]:
    stmt = (
        select(
            PmSchedule,
            PmTemplate.name,
            Equipment.equipment_id.label("equipment_identifier"),
        )
        .join(PmTemplate, PmTemplate.id == PmSchedule.pm_template_id)
        .join(Equipment, Equipment.id == PmSchedule.equipment_id)
        .where(*filters)
        .order_by(PmSchedule.next_due_date.asc(), PmSchedule.id.asc())
    )
    rows = []
    for schedule, template_name, code in db.execute(stmt).all():
        row = serialization.row_to_dict(schedule)
        row["template_name"] = template_name
        row["equipment_identifier"] = code
        rows.append(row)
    return rows


def _active_pm_rows(db: Session, *filters) -> List[dict]:
    return _pm_rows(db, PmSchedule.active.is_(True), *filters)


def list_pm_schedules_for_equipment(ctx: OperationContext, params: dict) -> List[dict]:
    return _pm_rows(ctx.db, PmSchedule.equipment_id == params["equipmentId"])


def count_pm_schedules(ctx: OperationContext, params: dict) -> int:
    return _count(ctx.db, PmSchedule.id, PmSchedule.active.is_(True))


def list_due_pm_schedules(ctx: OperationContext, params: dict) -> List[dict]:
    threshold = _threshold(ctx, params, "dueDate")
    return _active_pm_rows(
        ctx.db,
        PmSchedule.next_due_date >= ctx.today,
        PmSchedule.next_due_date <= threshold,
    )


def list_overdue_pm_schedules(ctx: OperationContext, params: dict) -> List[dict]:
    return _active_pm_rows(ctx.db, PmSchedule.next_due_date < ctx.today)


def _get_template_or_violation(db: Session, template_id: int) -> PmTemplate:
    template = db.get(PmTemplate, template_id)
    if template is None:
        raise ConstraintViolation(
            message=f"PM template {template_id} does not exist",
            relationship="pm_templates.id",
        )
    return template


def _next_pm_due(template: PmTemplate, anchor: date) -> Optional[date]:
    if template.frequency_type != PmFrequencyType.CALENDAR.value:
        return None
    return scheduler.advance(anchor, template.frequency_value, template.frequency_unit)


def create_pm_schedule(ctx: OperationContext, params: dict) -> Mutation:
    get_equipment_or_violation(ctx.db, params["equipmentId"])
    template = _get_template_or_violation(ctx.db, params["pmTemplateId"])
    schedule = PmSchedule(
        equipment_id=params["equipmentId"],
        pm_template_id=template.id,
        next_due_date=params.get("nextDueDate") or _next_pm_due(template, ctx.today),
        next_due_usage=params.get("nextDueUsage"),
    )
    ctx.db.add(schedule)
    ctx.db.flush()
    return Mutation(
        action="create",
        entity_type="pm_schedule",
        entity_id=schedule.id,
        after=serialization.row_to_dict(schedule),
    )


def complete_pm_schedule(ctx: OperationContext, params: dict) -> Mutation:
    schedule = ctx.db.get(PmSchedule, params["id"])
    if schedule is None:
        raise ConstraintViolation(
            message=f"PM schedule {params['id']} does not exist",
            relationship="pm_schedules.id",
        )
    template = _get_template_or_violation(ctx.db, schedule.pm_template_id)
    before = serialization.row_to_dict(schedule)

    completed: date = params["completedDate"]
    schedule.last_completed_date = completed
    if "completedUsage" in params:
        schedule.last_completed_usage = params["completedUsage"]
    schedule.next_due_date = _next_pm_due(template, completed) or schedule.next_due_date
    ctx.db.flush()
    return Mutation(
        action="complete",
        entity_type="pm_schedule",
        entity_id=schedule.id,
        before=before,
        after=serialization.row_to_dict(schedule),
    )


# ---------------------------------------------------------------------------
# Compliance standards
# ---------------------------------------------------------------------------


def _get_standard_or_violation(db: Session, standard_id: int) -> ComplianceStandard:
    standard = db.get(ComplianceStandard, standard_id)
    if standard is None:
        raise ConstraintViolation(
            message=f"Compliance standard {standard_id} does not exist",
            relationship="compliance_standards.id",
        )
    return standard


def list_standards(ctx: OperationContext, params: dict) -> List[dict]:
    stmt = select(ComplianceStandard).order_by(ComplianceStandard.name)
    return serialization.rows_to_dicts(ctx.db.execute(stmt).scalars().all())


def create_standard(ctx: OperationContext, params: dict) -> Mutation:
    standard = ComplianceStandard(
        name=params["name"],
        description=params["description"],
        authority=params["authority"],
    )
    ctx.db.add(standard)
    ctx.db.flush()
    return Mutation(
        action="create",
        entity_type="standard",
        entity_id=standard.id,
        after=serialization.row_to_dict(standard),
    )


def delete_standard(ctx: OperationContext, params: dict) -> Mutation:
    standard = _get_standard_or_violation(ctx.db, params["id"])
    assigned = _count(
        ctx.db, EquipmentTypeStandard.standard_id, EquipmentTypeStandard.standard_id == standard.id
    )
    if assigned:
        raise ConstraintViolation(
            message=f"Standard {standard.name} is still assigned to {assigned} equipment type(s)",
            relationship="equipment_type_compliance.standard_id",
        )
    before = serialization.row_to_dict(standard)
    ctx.db.delete(standard)
    ctx.db.flush()
    return Mutation(
        action="delete",
        entity_type="standard",
        entity_id=before["id"],
        before=before,
        after=None,
        value={"id": before["id"], "deleted": True},
    )


def list_assigned_standards(ctx: OperationContext, params: dict) -> List[dict]:
    stmt = (
        select(ComplianceStandard.id, ComplianceStandard.name)
        .join(EquipmentTypeStandard, EquipmentTypeStandard.standard_id == ComplianceStandard.id)
        .where(EquipmentTypeStandard.equipment_type == params["equipmentType"])
        .order_by(ComplianceStandard.name)
    )
    return [{"id": standard_id, "name": name} for standard_id, name in ctx.db.execute(stmt).all()]


def assign_standard(ctx: OperationContext, params: dict) -> Mutation:
    """Apply a standard to an equipment type; assigning twice is a no-op."""
    standard = _get_standard_or_violation(ctx.db, params["standardId"])
    key = (params["equipmentType"], standard.id)
    assignment = ctx.db.get(EquipmentTypeStandard, key)
    before = serialization.row_to_dict(assignment)
    if assignment is None:
        assignment = EquipmentTypeStandard(equipment_type=key[0], standard_id=key[1])
        ctx.db.add(assignment)
        ctx.db.flush()
    return Mutation(
        action="assign",
        entity_type="standard",
        entity_id=standard.id,
        before=before,
        after=serialization.row_to_dict(assignment),
    )


def unassign_standard(ctx: OperationContext, params: dict) -> Mutation:
    key = (params["equipmentType"], params["standardId"])
    assignment = ctx.db.get(EquipmentTypeStandard, key)
    if assignment is None:
        raise ConstraintViolation(
            message=f"Standard {key[1]} is not assigned to {key[0]}",
            relationship="equipment_type_compliance.standard_id",
        )
    before = serialization.row_to_dict(assignment)
    ctx.db.delete(assignment)
    ctx.db.flush()
    return Mutation(
        action="unassign",
        entity_type="standard",
        entity_id=key[1],
        before=before,
        after=None,
        value={"equipmentType": key[0], "standardId": key[1], "assigned": False},
    )


def get_standards_report(ctx: OperationContext, params: dict) -> List[dict]:
    """Every (equipment type, standard) pairing, grouped by type."""
    stmt = (
        select(
            EquipmentTypeStandard.equipment_type,
            ComplianceStandard.name,
            ComplianceStandard.id,
        )
        .join(ComplianceStandard, ComplianceStandard.id == EquipmentTypeStandard.standard_id)
        .order_by(EquipmentTypeStandard.equipment_type, ComplianceStandard.name)
    )
    return [
        {"equipment_type": equipment_type, "standard_name": name, "standard_id": standard_id}
        for equipment_type, name, standard_id in ctx.db.execute(stmt).all()
    ]


# ---------------------------------------------------------------------------
# Cross-asset compliance status
# ---------------------------------------------------------------------------


def collect_records(db: Session, asset_class: scheduler.AssetClass) -> List[dict]:
    """Current records of one asset class, as plain rows."""
    if asset_class is scheduler.LOAD_TEST:
        return _current_load_tests(db)
    if asset_class is scheduler.CALIBRATION:
        return _current_calibrations(db)
    if asset_class is scheduler.INSPECTION:
        return latest_inspections(db)
    if asset_class is scheduler.PM_SCHEDULE:
        return _active_pm_rows(db)
    if asset_class is scheduler.SCHEDULED_INSPECTION:
        return open_scheduled_inspections(db)
    if asset_class is scheduler.CERTIFICATE:
        return _active_certificates(db)
    if asset_class is scheduler.CREDENTIAL:
        return _current_credentials(db)
    raise ValueError(f"Unsupported asset class {asset_class.key}")


def build_notification_list(db: Session, today: date) -> List[NotificationRead]:
    notifications: List[NotificationRead] = []
    for asset_class in NOTIFICATION_CLASSES:
        notifications.extend(
            scheduler.build_notifications(today, collect_records(db, asset_class), asset_class)
        )
    return notifications


def check_compliance(db: Session, today: date) -> ComplianceSummaryRead:
    """Bucket counts per asset class plus every notification due today."""
    counts: Dict[str, Dict[str, int]] = {}
    for key, asset_class in scheduler.ASSET_CLASSES.items():
        bucket_counts = {status.value: 0 for status in scheduler.DueStatus}
        for item in scheduler.classify_batch(today, collect_records(db, asset_class), asset_class):
            bucket_counts[item.status] += 1
        counts[key] = bucket_counts
    notifications = build_notification_list(db, today)
    logger.debug(
        "Compliance check computed",
        extra={
            "as_of": today.isoformat(),
            "overdue": sum(bucket["overdue"] for bucket in counts.values()),
            "notifications": len(notifications),
        },
    )
    return ComplianceSummaryRead(as_of=today, counts=counts, notifications=notifications)


def _selected_classes(params: dict) -> Iterable[scheduler.AssetClass]:
    if params.get("assetClass"):
        return [scheduler.ASSET_CLASSES[params["assetClass"]]]
    return list(scheduler.ASSET_CLASSES.values())


def get_compliance_status(ctx: OperationContext, params: dict) -> List[dict]:
    results = []
    for asset_class in _selected_classes(params):
        results.extend(
            scheduler.classify_batch(ctx.today, collect_records(ctx.db, asset_class), asset_class)
        )
    return dump(results)


def get_notifications(ctx: OperationContext, params: dict) -> List[dict]:
    return dump(build_notification_list(ctx.db, ctx.today))


def get_compliance_summary(ctx: OperationContext, params: dict) -> dict:
    return check_compliance(ctx.db, ctx.today).model_dump(mode="json", by_alias=True)
