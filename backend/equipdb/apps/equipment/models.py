"""
Equipment master data and the records hanging directly off it.

Scope of this app:
- Equipment master (cranes, hoists, lifts, pressure vessels, instruments).
- Periodic inspections recorded against a piece of equipment.
- Scheduled (planned) inspections assigned to an inspector.
- Managed document references (files stored under the documents root).

Load tests, calibrations, credentials, certificates and PM schedules live in
`apps.compliance`; they reference equipment but never own it.
"""

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


# Type substrings that decide which asset classes apply to an equipment type.
LOAD_TEST_TYPE_KEYWORDS = ("crane", "hoist", "lift")
CALIBRATION_TYPE_KEYWORDS = ("crane", "hoist", "scale", "gauge", "meter", "load", "test")


class Equipment(Base):
    """
    Master record for each regulated piece of equipment.

    - equipment_id:
        Stable external code painted on the asset / encoded in its QR tag
        (e.g. "CR-004"). Unique.

    - type:
        Free-form category ("Overhead Crane", "Chain Hoist", "Pressure Gauge").
        Asset-class eligibility is decided by substring match on this value.

    - capacity:
        Rated capacity / rated value in the unit the site uses.
    """

    __tablename__ = "equipment"
    __table_args__ = (
        Index("ix_equipment_type", "type"),
        Index("ix_equipment_status_active", "status", "active"),
        CheckConstraint("capacity IS NULL OR capacity >= 0", name="ck_equipment_capacity_nonneg"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    equipment_id = Column(String(64), nullable=False, unique=True, index=True)
    type = Column(String(128), nullable=True)
    manufacturer = Column(String(128), nullable=True)
    model = Column(String(128), nullable=True)
    serial_number = Column(String(128), nullable=True)
    capacity = Column(Float, nullable=True)
    installation_date = Column(Date, nullable=True)
    location = Column(String(255), nullable=True)
    status = Column(String(32), nullable=True, default="active")
    active = Column(Boolean, nullable=False, default=True)
    qr_code_data = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def matches_any(self, keywords) -> bool:
        value = (self.type or "").lower()
        return any(keyword in value for keyword in keywords)

    def __repr__(self) -> str:
        return f"<Equipment id={self.id} code={self.equipment_id} type={self.type}>"


class Inspection(Base):
    """Periodic (frequent / annual) inspection of a piece of equipment."""

    __tablename__ = "inspections"
    __table_args__ = (
        Index("ix_inspections_equipment_date", "equipment_id", "inspection_date"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    equipment_id = Column(Integer, ForeignKey("equipment.id"), nullable=False, index=True)
    inspector = Column(String(255), nullable=False)
    inspection_date = Column(Date, nullable=False, index=True)
    findings = Column(Text, nullable=True)
    corrective_actions = Column(Text, nullable=True)
    summary_comments = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<Inspection id={self.id} equipment={self.equipment_id} date={self.inspection_date}>"


class ScheduleStatus(str, Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class ScheduledInspection(Base):
    """
    A planned inspection. Open (not completed) schedules are tracked against
    their scheduled date like any other due date; completing one does not
    record an inspection, that is a separate `inspections.create`.
    """

    __tablename__ = "scheduled_inspections"
    __table_args__ = (
        Index("ix_scheduled_inspections_status_date", "status", "scheduled_date"),
        CheckConstraint(
            "status IN ('scheduled', 'in_progress', 'completed')",
            name="ck_scheduled_inspections_status",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    equipment_id = Column(Integer, ForeignKey("equipment.id"), nullable=False, index=True)
    scheduled_date = Column(Date, nullable=False)
    assigned_inspector = Column(String(255), nullable=False)
    status = Column(String(16), nullable=False, default=ScheduleStatus.SCHEDULED.value)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<ScheduledInspection id={self.id} equipment={self.equipment_id} date={self.scheduled_date} status={self.status}>"


class Document(Base):
    __tablename__ = "documents"
    __table_args__ = (
        Index("ix_documents_equipment_file", "equipment_id", "file_name", unique=True),
        CheckConstraint("size IS NULL OR size >= 0", name="ck_documents_size_nonneg"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    equipment_id = Column(Integer, ForeignKey("equipment.id"), nullable=False, index=True)
    file_name = Column(String(255), nullable=False)
    file_path = Column(Text, nullable=False)
    hash = Column(String(128), nullable=True)
    size = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<Document id={self.id} equipment={self.equipment_id} file={self.file_name}>"
