from __future__ import annotations

import pytest
from sqlalchemy import select

from equipdb.apps.audit import services
from equipdb.apps.audit.models import AuditLogEntry, AuditLogImmutableError
from equipdb.apps.gateway.registry import Actor, ClientInfo, Mutation
from equipdb.utils import serialization


def _write(db_session, *, entity_id=1, action="create", before=None, after=None, actor=None):
    entry = services.record_mutation(
        db_session,
        actor=actor or Actor(id="7", username="m.wanjiru"),
        client=ClientInfo(ip_address="10.0.0.5", user_agent="pytest"),
        mutation=Mutation(
            action=action,
            entity_type="equipment",
            entity_id=entity_id,
            before=before,
            after=after,
        ),
        correlation_id="corr-1",
    )
    db_session.commit()
    return entry


def test_entries_cannot_be_updated(db_session):
    entry = _write(db_session, after={"id": 1, "location": "Bay 1"})

    entry.username = "someone-else"
    with pytest.raises(AuditLogImmutableError):
        db_session.flush()
    db_session.rollback()


def test_entries_cannot_be_deleted(db_session):
    entry = _write(db_session, after={"id": 1})

    db_session.delete(entry)
    with pytest.raises(AuditLogImmutableError):
        db_session.flush()
    db_session.rollback()

    assert db_session.execute(select(AuditLogEntry)).scalars().all() != []


def test_deletion_entry_keeps_prior_state_only(db_session):
    entry = _write(db_session, action="delete", before={"id": 1, "equipment_id": "CR-001"}, after=None)

    assert entry.new_values is None
    assert serialization.loads(entry.old_values) == {"id": 1, "equipment_id": "CR-001"}
    assert entry.ip_address == "10.0.0.5"
    assert entry.correlation_id == "corr-1"


def test_missing_username_is_recorded_as_system(db_session):
    entry = _write(db_session, after={"id": 2}, actor=Actor())
    assert entry.username == services.SYSTEM_USERNAME
    assert entry.user_id is None


def test_get_by_entity_and_recent_through_the_gateway(dispatcher, db_session):
    _write(db_session, entity_id=1, after={"id": 1})
    _write(db_session, entity_id=1, action="update", before={"id": 1}, after={"id": 1, "status": "retired"})
    _write(db_session, entity_id=2, after={"id": 2})

    by_entity = dispatcher.dispatch("auditLog", "getByEntity", {"entityType": "equipment", "entityId": 1})
    assert by_entity.ok
    assert [item["action"] for item in by_entity.value] == ["update", "create"]
    assert by_entity.value[0]["entityType"] == "equipment"
    assert serialization.loads(by_entity.value[0]["newValues"])["status"] == "retired"

    recent = dispatcher.dispatch("auditLog", "getRecent", {"limit": 2})
    assert [item["entityId"] for item in recent.value] == [2, 1]

    too_small = dispatcher.dispatch("auditLog", "getRecent", {"limit": 0})
    assert too_small.error.error_kind == "ValidationFailed"


def test_internal_writer_uses_the_calling_actor(dispatcher, db_session):
    result = dispatcher.dispatch_internal(
        "auditLog",
        "create",
        {"action": "export", "entityType": "equipment", "entityId": 4, "newValues": {"format": "csv"}},
        Actor(id="3", username="ops"),
    )

    assert result.ok, result.to_envelope()
    assert result.value["username"] == "ops"
    stored = db_session.execute(select(AuditLogEntry)).scalar_one()
    assert stored.action == "export"
    assert serialization.loads(stored.new_values) == {"format": "csv"}
