from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Index, Integer, String, Text, desc, event

from ...database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditLogEntry(Base):
    """
    Append-only audit trail for every mutation that crosses the gateway.

    `old_values` / `new_values` hold JSON text snapshots of the record before
    and after the change. Rows are never updated or deleted.
    """

    __tablename__ = "audit_log"
    __table_args__ = (
        Index("ix_audit_log_entity", "entity_type", "entity_id"),
        Index("ix_audit_log_action", "action"),
        Index("ix_audit_log_time_desc", desc("timestamp")),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=True, index=True)
    username = Column(String(255), nullable=False)
    action = Column(String(64), nullable=False)
    entity_type = Column(String(64), nullable=False)
    entity_id = Column(Integer, nullable=False)
    old_values = Column(Text, nullable=True)
    new_values = Column(Text, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    correlation_id = Column(String(64), nullable=True, index=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)

    def __repr__(self) -> str:
        return f"<AuditLogEntry id={self.id} entity={self.entity_type}:{self.entity_id} action={self.action}>"


class AuditLogImmutableError(RuntimeError):
    pass


@event.listens_for(AuditLogEntry, "before_update")
def _block_update(mapper, connection, target):  # noqa: ARG001
    raise AuditLogImmutableError("audit_log rows are append-only")


@event.listens_for(AuditLogEntry, "before_delete")
def _block_delete(mapper, connection, target):  # noqa: ARG001
    raise AuditLogImmutableError("audit_log rows are append-only")
