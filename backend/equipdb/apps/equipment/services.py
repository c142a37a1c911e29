# backend/equipdb/apps/equipment/services.py
#
# Gateway handlers for the equipment, inspections, scheduledInspections and
# documents domains.
#
# Every handler takes (ctx, params): `ctx.db` is the dispatcher's session and
# `params` holds already-validated values keyed by their envelope names.
# Mutating handlers flush (never commit) and return a `Mutation`; the
# dispatcher writes the audit entry and owns the transaction.

from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from equipdb.utils import serialization

from ..compliance import scheduler
from ..compliance.models import Calibration, Certificate, LoadTest, PmSchedule
from ..gateway.errors import ConstraintViolation
from ..gateway.registry import Mutation, OperationContext
from .models import (
    CALIBRATION_TYPE_KEYWORDS,
    LOAD_TEST_TYPE_KEYWORDS,
    Document,
    Equipment,
    Inspection,
    ScheduledInspection,
    ScheduleStatus,
)

ASSET_CLASS_KEYWORDS = {
    "load_test": LOAD_TEST_TYPE_KEYWORDS,
    "calibration": CALIBRATION_TYPE_KEYWORDS,
}

# envelope name -> column
EQUIPMENT_FIELDS = {
    "equipmentId": "equipment_id",
    "type": "type",
    "manufacturer": "manufacturer",
    "model": "model",
    "serialNumber": "serial_number",
    "capacity": "capacity",
    "installationDate": "installation_date",
    "location": "location",
    "status": "status",
    "active": "active",
    "qrCodeData": "qr_code_data",
}

# Records that pin an equipment row; delete is refused while any exist.
_DEPENDENTS = (
    ("inspections", Inspection),
    ("load_tests", LoadTest),
    ("calibrations", Calibration),
    ("certificates", Certificate),
    ("pm_schedules", PmSchedule),
    ("scheduled_inspections", ScheduledInspection),
    ("documents", Document),
)


def _pick(params: Dict[str, Any], mapping: Dict[str, str]) -> Dict[str, Any]:
    return {column: params[name] for name, column in mapping.items() if name in params}


# ---------------------------------------------------------------------------
# Equipment
# ---------------------------------------------------------------------------


def get_equipment_or_violation(db: Session, equipment_pk: int) -> Equipment:
    """Referenced equipment row, or ConstraintViolation naming the link."""
    equipment = db.get(Equipment, equipment_pk)
    if equipment is None:
        raise ConstraintViolation(
            message=f"Equipment {equipment_pk} does not exist",
            relationship="equipment.id",
        )
    return equipment


def list_equipment(ctx: OperationContext, params: dict) -> List[dict]:
    stmt = select(Equipment).order_by(Equipment.equipment_id)
    return serialization.rows_to_dicts(ctx.db.execute(stmt).scalars().all())


def get_equipment(ctx: OperationContext, params: dict) -> Optional[dict]:
    return serialization.row_to_dict(ctx.db.get(Equipment, params["id"]))


def get_equipment_by_code(ctx: OperationContext, params: dict) -> Optional[dict]:
    stmt = select(Equipment).where(Equipment.equipment_id == params["equipmentId"])
    return serialization.row_to_dict(ctx.db.execute(stmt).scalar_one_or_none())


def list_equipment_types(ctx: OperationContext, params: dict) -> List[str]:
    stmt = (
        select(Equipment.type)
        .where(Equipment.type.is_not(None))
        .distinct()
        .order_by(Equipment.type)
    )
    return [value for value in ctx.db.execute(stmt).scalars().all()]


def count_equipment_by_status(ctx: OperationContext, params: dict) -> Dict[str, int]:
    stmt = select(Equipment.status, func.count(Equipment.id)).group_by(Equipment.status)
    return {status or "unknown": count for status, count in ctx.db.execute(stmt).all()}


def count_equipment(ctx: OperationContext, params: dict) -> int:
    stmt = select(func.count(Equipment.id))
    if params.get("activeOnly"):
        stmt = stmt.where(Equipment.active.is_(True))
    return ctx.db.execute(stmt).scalar_one()


def list_equipment_for_asset_class(ctx: OperationContext, params: dict) -> List[dict]:
    """Active equipment eligible for load testing or calibration."""
    keywords = ASSET_CLASS_KEYWORDS[params["assetClass"]]
    stmt = select(Equipment).where(Equipment.active.is_(True)).order_by(Equipment.equipment_id)
    rows = [row for row in ctx.db.execute(stmt).scalars().all() if row.matches_any(keywords)]
    return serialization.rows_to_dicts(rows)


def create_equipment(ctx: OperationContext, params: dict) -> Mutation:
    equipment = Equipment(**_pick(params, EQUIPMENT_FIELDS))
    ctx.db.add(equipment)
    ctx.db.flush()
    return Mutation(
        action="create",
        entity_type="equipment",
        entity_id=equipment.id,
        after=serialization.row_to_dict(equipment),
    )


def update_equipment(ctx: OperationContext, params: dict) -> Mutation:
    equipment = get_equipment_or_violation(ctx.db, params["id"])
    before = serialization.row_to_dict(equipment)
    for column, value in _pick(params, EQUIPMENT_FIELDS).items():
        setattr(equipment, column, value)
    ctx.db.flush()
    return Mutation(
        action="update",
        entity_type="equipment",
        entity_id=equipment.id,
        before=before,
        after=serialization.row_to_dict(equipment),
    )


def delete_equipment(ctx: OperationContext, params: dict) -> Mutation:
    equipment = get_equipment_or_violation(ctx.db, params["id"])
    for relationship, model in _DEPENDENTS:
        in_use = ctx.db.execute(
            select(func.count(model.id)).where(model.equipment_id == equipment.id)
        ).scalar_one()
        if in_use:
            raise ConstraintViolation(
                message=f"Equipment {equipment.equipment_id} is still referenced by {relationship}",
                relationship=f"{relationship}.equipment_id",
            )
    before = serialization.row_to_dict(equipment)
    ctx.db.delete(equipment)
    ctx.db.flush()
    return Mutation(
        action="delete",
        entity_type="equipment",
        entity_id=before["id"],
        before=before,
        after=None,
        value={"id": before["id"], "deleted": True},
    )


# ---------------------------------------------------------------------------
# Inspections
# ---------------------------------------------------------------------------


def _inspection_rows(db: Session, *stmt_filters) -> List[dict]:
    stmt = (
        select(Inspection, Equipment.equipment_id.label("equipment_identifier"), Equipment.type)
        .join(Equipment, Equipment.id == Inspection.equipment_id)
        .where(*stmt_filters)
        .order_by(Inspection.inspection_date.desc(), Inspection.id.desc())
    )
    rows = []
    for inspection, code, equipment_type in db.execute(stmt).all():
        row = serialization.row_to_dict(inspection)
        row["equipment_identifier"] = code
        row["equipment_type"] = equipment_type
        row["next_due_date"] = scheduler.add_years(inspection.inspection_date, 1).isoformat()
        rows.append(row)
    return rows


def latest_inspections(db: Session) -> List[dict]:
    """Most recent inspection per equipment; older ones are superseded."""
    latest = (
        select(func.max(Inspection.id))
        .group_by(Inspection.equipment_id)
    )
    return _inspection_rows(db, Inspection.id.in_(latest))


def list_inspections(ctx: OperationContext, params: dict) -> List[dict]:
    return _inspection_rows(ctx.db)


def list_inspections_for_equipment(ctx: OperationContext, params: dict) -> List[dict]:
    return _inspection_rows(ctx.db, Inspection.equipment_id == params["equipmentId"])


def list_overdue_inspections(ctx: OperationContext, params: dict) -> List[dict]:
    """Equipment whose latest inspection is more than a year old."""
    return [
        row
        for row in latest_inspections(ctx.db)
        if scheduler.classify_due(ctx.today, row["next_due_date"]) is scheduler.DueStatus.OVERDUE
    ]


def count_inspections(ctx: OperationContext, params: dict) -> int:
    return ctx.db.execute(select(func.count(Inspection.id))).scalar_one()


def create_inspection(ctx: OperationContext, params: dict) -> Mutation:
    get_equipment_or_violation(ctx.db, params["equipmentId"])
    inspection = Inspection(
        equipment_id=params["equipmentId"],
        inspector=params["inspector"],
        inspection_date=params["inspectionDate"],
        findings=params.get("findings"),
        corrective_actions=params.get("correctiveActions"),
        summary_comments=params.get("summaryComments"),
    )
    ctx.db.add(inspection)
    ctx.db.flush()
    return Mutation(
        action="create",
        entity_type="inspection",
        entity_id=inspection.id,
        after=serialization.row_to_dict(inspection),
    )


# ---------------------------------------------------------------------------
# Scheduled inspections
# ---------------------------------------------------------------------------

# Upcoming list shown on the dashboard.
UPCOMING_SCHEDULE_LIMIT = 10


def _schedule_rows(db: Session, *stmt_filters, limit: Optional[int] = None) -> List[dict]:
    stmt = (
        select(ScheduledInspection, Equipment.equipment_id.label("equipment_identifier"))
        .join(Equipment, Equipment.id == ScheduledInspection.equipment_id)
        .where(*stmt_filters)
        .order_by(ScheduledInspection.scheduled_date.asc(), ScheduledInspection.id.asc())
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    rows = []
    for schedule, code in db.execute(stmt).all():
        row = serialization.row_to_dict(schedule)
        row["equipment_identifier"] = code
        rows.append(row)
    return rows


def open_scheduled_inspections(db: Session, *stmt_filters, limit: Optional[int] = None) -> List[dict]:
    """Schedules not yet completed, earliest first."""
    return _schedule_rows(
        db,
        ScheduledInspection.status != ScheduleStatus.COMPLETED.value,
        *stmt_filters,
        limit=limit,
    )


def _get_schedule_or_violation(db: Session, schedule_id: int) -> ScheduledInspection:
    schedule = db.get(ScheduledInspection, schedule_id)
    if schedule is None:
        raise ConstraintViolation(
            message=f"Scheduled inspection {schedule_id} does not exist",
            relationship="scheduled_inspections.id",
        )
    return schedule


def list_scheduled_inspections(ctx: OperationContext, params: dict) -> List[dict]:
    return _schedule_rows(ctx.db)


def list_upcoming_scheduled_inspections(ctx: OperationContext, params: dict) -> List[dict]:
    """Next open schedules from `fromDate` (default today), with their due status."""
    from_date = params.get("fromDate") or ctx.today
    rows = open_scheduled_inspections(
        ctx.db,
        ScheduledInspection.scheduled_date >= from_date,
        limit=UPCOMING_SCHEDULE_LIMIT,
    )
    for row in rows:
        row["due_status"] = scheduler.classify_due(ctx.today, row["scheduled_date"]).value
    return rows


def list_scheduled_inspections_from_today(ctx: OperationContext, params: dict) -> List[dict]:
    return _schedule_rows(ctx.db, ScheduledInspection.scheduled_date >= ctx.today)


def list_overdue_scheduled_inspections(ctx: OperationContext, params: dict) -> List[dict]:
    return [
        row
        for row in open_scheduled_inspections(ctx.db)
        if scheduler.classify_due(ctx.today, row["scheduled_date"]) is scheduler.DueStatus.OVERDUE
    ]


def create_scheduled_inspection(ctx: OperationContext, params: dict) -> Mutation:
    get_equipment_or_violation(ctx.db, params["equipmentId"])
    schedule = ScheduledInspection(
        equipment_id=params["equipmentId"],
        scheduled_date=params["scheduledDate"],
        assigned_inspector=params["assignedInspector"],
        status=params.get("status") or ScheduleStatus.SCHEDULED.value,
    )
    ctx.db.add(schedule)
    ctx.db.flush()
    return Mutation(
        action="create",
        entity_type="scheduled_inspection",
        entity_id=schedule.id,
        after=serialization.row_to_dict(schedule),
    )


def update_scheduled_inspection(ctx: OperationContext, params: dict) -> Mutation:
    schedule = _get_schedule_or_violation(ctx.db, params["id"])
    get_equipment_or_violation(ctx.db, params["equipmentId"])
    before = serialization.row_to_dict(schedule)
    schedule.equipment_id = params["equipmentId"]
    schedule.scheduled_date = params["scheduledDate"]
    schedule.assigned_inspector = params["assignedInspector"]
    ctx.db.flush()
    return Mutation(
        action="update",
        entity_type="scheduled_inspection",
        entity_id=schedule.id,
        before=before,
        after=serialization.row_to_dict(schedule),
    )


def update_scheduled_inspection_status(ctx: OperationContext, params: dict) -> Mutation:
    schedule = _get_schedule_or_violation(ctx.db, params["id"])
    before = serialization.row_to_dict(schedule)
    schedule.status = params["status"]
    ctx.db.flush()
    return Mutation(
        action="update_status",
        entity_type="scheduled_inspection",
        entity_id=schedule.id,
        before=before,
        after=serialization.row_to_dict(schedule),
    )


def delete_scheduled_inspection(ctx: OperationContext, params: dict) -> Mutation:
    schedule = _get_schedule_or_violation(ctx.db, params["id"])
    before = serialization.row_to_dict(schedule)
    ctx.db.delete(schedule)
    ctx.db.flush()
    return Mutation(
        action="delete",
        entity_type="scheduled_inspection",
        entity_id=before["id"],
        before=before,
        after=None,
        value={"id": before["id"], "deleted": True},
    )


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


def list_documents_for_equipment(ctx: OperationContext, params: dict) -> List[dict]:
    stmt = (
        select(Document)
        .where(Document.equipment_id == params["equipmentId"])
        .order_by(Document.created_at.desc(), Document.id.desc())
    )
    return serialization.rows_to_dicts(ctx.db.execute(stmt).scalars().all())


def create_document(ctx: OperationContext, params: dict) -> Mutation:
    get_equipment_or_violation(ctx.db, params["equipmentId"])
    document = Document(
        equipment_id=params["equipmentId"],
        file_name=params["fileName"],
        file_path=params["filePath"],
        hash=params.get("hash"),
        size=params.get("size"),
    )
    ctx.db.add(document)
    ctx.db.flush()
    return Mutation(
        action="create",
        entity_type="document",
        entity_id=document.id,
        after=serialization.row_to_dict(document),
    )
