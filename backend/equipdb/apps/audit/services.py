from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from equipdb.utils import serialization

from . import models, schemas

logger = logging.getLogger(__name__)

SYSTEM_USERNAME = "system"


def create_audit_entry(db: Session, *, data: schemas.AuditLogCreate) -> models.AuditLogEntry:
    entry = models.AuditLogEntry(
        user_id=data.user_id,
        username=data.username,
        action=data.action,
        entity_type=data.entity_type,
        entity_id=data.entity_id,
        old_values=data.old_values,
        new_values=data.new_values,
        ip_address=data.ip_address,
        user_agent=data.user_agent,
        correlation_id=data.correlation_id,
    )
    db.add(entry)
    db.flush()
    return entry


def record_mutation(
    db: Session,
    *,
    actor,
    client,
    mutation,
    correlation_id: Optional[str] = None,
) -> models.AuditLogEntry:
    """
    Write the audit entry for one successful mutation.

    Runs inside the caller's transaction and raises on failure; the caller
    decides what a failed audit means (the dispatcher rolls the mutation
    back).
    """
    entry = create_audit_entry(
        db,
        data=schemas.AuditLogCreate(
            user_id=actor.id if actor else None,
            username=(actor.username if actor and actor.username else SYSTEM_USERNAME),
            action=mutation.action,
            entity_type=mutation.entity_type,
            entity_id=mutation.entity_id,
            old_values=serialization.dumps(mutation.before),
            new_values=serialization.dumps(mutation.after),
            ip_address=client.ip_address if client else None,
            user_agent=client.user_agent if client else None,
            correlation_id=correlation_id,
        ),
    )
    logger.debug(
        "Audit entry written",
        extra={
            "audit_id": entry.id,
            "entity_type": entry.entity_type,
            "entity_id": entry.entity_id,
            "action": entry.action,
        },
    )
    return entry


def list_by_entity(db: Session, *, entity_type: str, entity_id: int) -> List[models.AuditLogEntry]:
    stmt = (
        select(models.AuditLogEntry)
        .where(
            models.AuditLogEntry.entity_type == entity_type,
            models.AuditLogEntry.entity_id == entity_id,
        )
        .order_by(models.AuditLogEntry.timestamp.desc(), models.AuditLogEntry.id.desc())
    )
    return list(db.execute(stmt).scalars().all())


def list_recent(db: Session, *, limit: int) -> List[models.AuditLogEntry]:
    stmt = (
        select(models.AuditLogEntry)
        .order_by(models.AuditLogEntry.timestamp.desc(), models.AuditLogEntry.id.desc())
        .limit(limit)
    )
    return list(db.execute(stmt).scalars().all())


def to_read(entries) -> List[dict]:
    return [
        schemas.AuditLogRead.model_validate(entry).model_dump(mode="json", by_alias=True)
        for entry in entries
    ]


# ---------------------------------------------------------------------------
# Gateway handlers
# ---------------------------------------------------------------------------

RECENT_LIMIT_MAX = 500


def append_entry(ctx, params: dict) -> dict:
    """
    Trusted in-process writer for entries not produced by a mutation.

    Registered as an internal operation; external dispatch never reaches it.
    """
    entry = create_audit_entry(
        ctx.db,
        data=schemas.AuditLogCreate(
            user_id=ctx.actor.id,
            username=ctx.actor.username or SYSTEM_USERNAME,
            action=params["action"],
            entity_type=params["entityType"],
            entity_id=params["entityId"],
            old_values=serialization.dumps(params.get("oldValues")),
            new_values=serialization.dumps(params.get("newValues")),
            ip_address=ctx.client.ip_address,
            user_agent=ctx.client.user_agent,
        ),
    )
    return to_read([entry])[0]


def entries_for_entity(ctx, params: dict) -> List[dict]:
    return to_read(
        list_by_entity(ctx.db, entity_type=params["entityType"], entity_id=params["entityId"])
    )


def recent_entries(ctx, params: dict) -> List[dict]:
    limit = min(params.get("limit", 50), RECENT_LIMIT_MAX)
    return to_read(list_recent(ctx.db, limit=limit))
