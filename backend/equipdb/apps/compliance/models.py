# backend/equipdb/apps/compliance/models.py
#
# ORM models for compliance tracking:
# - LoadTest     : proof-load test of lifting equipment.
# - Calibration  : instrument calibration.
# - Credential   : personnel credential (operator, rigger, inspector, ...).
# - Certificate  : certificate issued for a passing test / calibration.
# - PmTemplate   : preventive-maintenance task definition per equipment type.
# - PmSchedule   : per-equipment PM schedule with next-due tracking.
# - ComplianceStandard    : a regulation or code (e.g. ASME B30.2).
# - EquipmentTypeStandard : which standards apply to an equipment type.
#
# Compliance events (load tests, calibrations) are append-only by convention:
# next-due is fixed at creation and a newer event for the same equipment
# supersedes the older one. Check constraints keep next-due >= event date.

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)

from ...database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enums (stored as plain strings; the gateway validates the values)
# ---------------------------------------------------------------------------


class IntervalType(str, Enum):
    ANNUAL = "annual"
    PERIODIC = "periodic"
    INITIAL = "initial"
    AFTER_REPAIR = "after_repair"


class EventOutcome(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    LIMITED = "limited"  # calibrations only


class CredentialStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    SUSPENDED = "suspended"
    REVOKED = "revoked"


class CertificateType(str, Enum):
    INSPECTION = "inspection"
    LOAD_TEST = "load_test"
    CALIBRATION = "calibration"


class CertificateStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"


class PmFrequencyType(str, Enum):
    CALENDAR = "calendar"
    USAGE = "usage"
    CONDITION = "condition"


class PmFrequencyUnit(str, Enum):
    DAYS = "days"
    WEEKS = "weeks"
    MONTHS = "months"
    YEARS = "years"


def _values(enum_cls) -> str:
    return ", ".join(f"'{member.value}'" for member in enum_cls)


# ---------------------------------------------------------------------------
# Certificates
# ---------------------------------------------------------------------------


class Certificate(Base):
    __tablename__ = "certificates"
    __table_args__ = (
        Index("ix_certificates_equipment_issue", "equipment_id", "issue_date"),
        Index("ix_certificates_status_expiry", "status", "expiration_date"),
        CheckConstraint(f"certificate_type IN ({_values(CertificateType)})", name="ck_certificates_type"),
        CheckConstraint(f"status IN ({_values(CertificateStatus)})", name="ck_certificates_status"),
        CheckConstraint(
            "expiration_date IS NULL OR expiration_date >= issue_date",
            name="ck_certificates_expiry_after_issue",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    certificate_number = Column(String(64), nullable=False, unique=True, index=True)
    certificate_type = Column(String(32), nullable=False)
    equipment_id = Column(Integer, ForeignKey("equipment.id"), nullable=False, index=True)
    # id of the load test / calibration / inspection the certificate was issued for
    entity_id = Column(Integer, nullable=False)
    issue_date = Column(Date, nullable=False)
    expiration_date = Column(Date, nullable=True)
    issued_by = Column(String(255), nullable=False)
    qr_code_data = Column(Text, nullable=True)
    certificate_hash = Column(String(128), nullable=True)
    status = Column(String(16), nullable=False, default=CertificateStatus.ACTIVE.value)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<Certificate {self.certificate_number} type={self.certificate_type} status={self.status}>"


# ---------------------------------------------------------------------------
# Compliance events
# ---------------------------------------------------------------------------


class LoadTest(Base):
    __tablename__ = "load_tests"
    __table_args__ = (
        Index("ix_load_tests_equipment_date", "equipment_id", "test_date"),
        Index("ix_load_tests_next_due", "next_test_due"),
        CheckConstraint(f"test_type IN ({_values(IntervalType)})", name="ck_load_tests_type"),
        CheckConstraint("test_results IN ('pass', 'fail')", name="ck_load_tests_results"),
        CheckConstraint(
            "next_test_due IS NULL OR next_test_due >= test_date",
            name="ck_load_tests_next_due_after_test",
        ),
        CheckConstraint(
            "test_load_percentage IS NULL OR test_load_percentage > 0",
            name="ck_load_tests_percentage_pos",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    equipment_id = Column(Integer, ForeignKey("equipment.id"), nullable=False, index=True)
    test_date = Column(Date, nullable=False)
    test_type = Column(String(16), nullable=False)
    test_load_percentage = Column(Float, nullable=True)
    rated_capacity = Column(Float, nullable=True)
    test_load = Column(Float, nullable=True)
    test_duration = Column(Integer, nullable=True)  # minutes
    inspector = Column(String(255), nullable=False)
    test_results = Column(String(8), nullable=False)
    deficiencies_found = Column(Text, nullable=True)
    corrective_actions = Column(Text, nullable=True)
    next_test_due = Column(Date, nullable=True)
    certificate_number = Column(String(64), nullable=True)
    certificate_id = Column(Integer, ForeignKey("certificates.id"), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<LoadTest id={self.id} equipment={self.equipment_id} next_due={self.next_test_due}>"


class Calibration(Base):
    __tablename__ = "calibrations"
    __table_args__ = (
        Index("ix_calibrations_equipment_date", "equipment_id", "calibration_date"),
        Index("ix_calibrations_due", "calibration_due_date"),
        CheckConstraint(
            "calibration_results IN ('pass', 'fail', 'limited')",
            name="ck_calibrations_results",
        ),
        CheckConstraint(
            "calibration_due_date IS NULL OR calibration_due_date >= calibration_date",
            name="ck_calibrations_due_after_calibration",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    equipment_id = Column(Integer, ForeignKey("equipment.id"), nullable=False, index=True)
    instrument_type = Column(String(128), nullable=False)
    calibration_date = Column(Date, nullable=False)
    interval_type = Column(String(16), nullable=False, default=IntervalType.ANNUAL.value)
    calibration_due_date = Column(Date, nullable=True)
    calibrated_by = Column(String(255), nullable=False)
    calibration_agency = Column(String(255), nullable=True)
    certificate_number = Column(String(64), nullable=True)
    certificate_id = Column(Integer, ForeignKey("certificates.id"), nullable=True)
    calibration_results = Column(String(8), nullable=False)
    accuracy_tolerance = Column(String(64), nullable=True)
    actual_accuracy = Column(String(64), nullable=True)
    adjustments_made = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<Calibration id={self.id} equipment={self.equipment_id} due={self.calibration_due_date}>"


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


class Credential(Base):
    __tablename__ = "credentials"
    __table_args__ = (
        Index("ix_credentials_person_type", "person_name", "credential_type"),
        Index("ix_credentials_status_expiry", "status", "expiration_date"),
        CheckConstraint(f"status IN ({_values(CredentialStatus)})", name="ck_credentials_status"),
        CheckConstraint(
            "expiration_date IS NULL OR expiration_date >= issue_date",
            name="ck_credentials_expiry_after_issue",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    person_name = Column(String(255), nullable=False)
    credential_type = Column(String(128), nullable=False)
    # JSON-encoded list of equipment types the credential covers (null = all)
    equipment_types = Column(Text, nullable=True)
    certification_body = Column(String(255), nullable=True)
    certificate_number = Column(String(64), nullable=True)
    issue_date = Column(Date, nullable=False)
    expiration_date = Column(Date, nullable=True)
    renewal_required = Column(Boolean, nullable=False, default=True)
    status = Column(String(16), nullable=False, default=CredentialStatus.ACTIVE.value)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def __repr__(self) -> str:
        return f"<Credential id={self.id} person={self.person_name} type={self.credential_type}>"


# ---------------------------------------------------------------------------
# Preventive maintenance
# ---------------------------------------------------------------------------


class PmTemplate(Base):
    __tablename__ = "pm_templates"
    __table_args__ = (
        CheckConstraint(f"frequency_type IN ({_values(PmFrequencyType)})", name="ck_pm_templates_freq_type"),
        CheckConstraint("frequency_value > 0", name="ck_pm_templates_freq_value_pos"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    equipment_type = Column(String(128), nullable=False, index=True)
    description = Column(Text, nullable=True)
    frequency_type = Column(String(16), nullable=False)
    frequency_value = Column(Integer, nullable=False)
    frequency_unit = Column(String(16), nullable=False, default=PmFrequencyUnit.MONTHS.value)
    estimated_duration = Column(Float, nullable=True)  # hours
    instructions = Column(Text, nullable=True)
    safety_notes = Column(Text, nullable=True)
    active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<PmTemplate id={self.id} name={self.name}>"


class PmSchedule(Base):
    __tablename__ = "pm_schedules"
    __table_args__ = (
        Index("ix_pm_schedules_equipment_active", "equipment_id", "active"),
        Index("ix_pm_schedules_next_due", "next_due_date"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    equipment_id = Column(Integer, ForeignKey("equipment.id"), nullable=False, index=True)
    pm_template_id = Column(Integer, ForeignKey("pm_templates.id"), nullable=False, index=True)
    next_due_date = Column(Date, nullable=True)
    next_due_usage = Column(Float, nullable=True)
    last_completed_date = Column(Date, nullable=True)
    last_completed_usage = Column(Float, nullable=True)
    active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<PmSchedule id={self.id} equipment={self.equipment_id} next_due={self.next_due_date}>"


# ---------------------------------------------------------------------------
# Compliance standards
# ---------------------------------------------------------------------------


class ComplianceStandard(Base):
    __tablename__ = "compliance_standards"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(128), nullable=False, unique=True)
    description = Column(Text, nullable=False)
    authority = Column(String(255), nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<ComplianceStandard id={self.id} name={self.name}>"


class EquipmentTypeStandard(Base):
    # equipment_type is the free-form Equipment.type value, matched exactly
    __tablename__ = "equipment_type_compliance"

    equipment_type = Column(String(128), primary_key=True)
    standard_id = Column(Integer, ForeignKey("compliance_standards.id"), primary_key=True, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<EquipmentTypeStandard type={self.equipment_type} standard={self.standard_id}>"
