"""
Secure dispatcher: the single call path from the untrusted presentation
layer into the operation registry.

For every request it looks the operation up, validates each declared
parameter (collecting every failure), runs the handler inside one
transaction, writes exactly one audit entry for a mutation, commits, and
maps storage failures onto the public error taxonomy. Any failure leaves
the store untouched.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from sqlalchemy.exc import DisconnectionError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..audit import services as audit_services
from ..compliance import scheduler
from .errors import (
    AuditWriteFailed,
    BackendUnavailable,
    ConstraintViolation,
    GatewayError,
    UnknownOperation,
    ValidationFailed,
)
from .registry import Actor, ClientInfo, Mutation, Operation, OperationContext, OperationRegistry
from .validators import ValidationError, free_text, is_blank

logger = logging.getLogger(__name__)

AuditWriter = Callable[..., Any]
ActorLike = Union[Actor, Mapping[str, Any], None]

# Column widths of audit_log.user_id and audit_log.username.
_validate_user_id = free_text(64)
_validate_username = free_text(255)


@dataclass
class DispatchResult:
    ok: bool
    value: Any = None
    error: Optional[GatewayError] = None

    def to_envelope(self) -> dict:
        if self.ok:
            return {"ok": True, "value": self.value}
        return self.error.to_envelope()


def _validate_params(operation: Operation, params: Mapping[str, Any]) -> Dict[str, Any]:
    """Validated, normalised values for the declared params; undeclared keys are dropped."""
    clean: Dict[str, Any] = {}
    problems: List[Dict[str, str]] = []
    for param in operation.params:
        raw = params.get(param.name)
        if is_blank(raw):
            if param.required:
                problems.append(
                    {"field": param.name, "reason": "Required", "message": f"{param.name} is required"}
                )
            continue
        try:
            clean[param.name] = param.validator(raw)
        except ValidationError as exc:
            problems.append(exc.as_detail(param.name))
    if not problems:
        for check in operation.checks:
            problems.extend(check(clean))
    if problems:
        raise ValidationFailed.from_details(problems)
    return clean


def _validate_actor(actor: ActorLike) -> Actor:
    """Acting user from the caller; a malformed actor fails like a bad parameter."""
    if actor is None:
        return Actor()
    if isinstance(actor, Actor):
        raw_id, raw_username = actor.id, actor.username
    elif isinstance(actor, Mapping):
        raw_id, raw_username = actor.get("id"), actor.get("username")
    else:
        raise ValidationFailed.from_details(
            [{"field": "actor", "reason": "InvalidPayload", "message": "actor must be an object"}]
        )

    problems: List[Dict[str, str]] = []
    values: Dict[str, Optional[str]] = {"id": None, "username": None}
    for part, raw, validator in (
        ("id", raw_id, _validate_user_id),
        ("username", raw_username, _validate_username),
    ):
        if is_blank(raw):
            continue
        if part == "id" and isinstance(raw, int) and not isinstance(raw, bool):
            raw = str(raw)
        try:
            values[part] = validator(raw)
        except ValidationError as exc:
            problems.append(
                {"field": "actor", "reason": exc.reason, "message": f"actor {part}: {exc.message}"}
            )
    if problems:
        raise ValidationFailed.from_details(problems)
    return Actor(id=values["id"], username=values["username"])


def _relationship(exc: IntegrityError) -> str:
    text = str(getattr(exc, "orig", exc)).lower()
    if "foreign key" in text:
        return "foreign_key"
    if "unique" in text or "duplicate" in text:
        return "unique"
    if "check" in text:
        return "check"
    if "not null" in text:
        return "not_null"
    return "integrity"


class SecureDispatcher:
    """
    Holds the registry and a session factory; no per-request state.

    `audit_writer(db, *, actor, client, mutation, correlation_id)` must write
    one entry in the given session and raise on failure.
    """

    def __init__(
        self,
        registry: OperationRegistry,
        session_factory: Callable[[], Session],
        *,
        audit_writer: AuditWriter = audit_services.record_mutation,
        clock: Callable[[], date] = scheduler.current_date,
    ) -> None:
        self.registry = registry
        self.session_factory = session_factory
        self.audit_writer = audit_writer
        self.clock = clock

    def dispatch(
        self,
        domain: str,
        action: str,
        params: Optional[Mapping[str, Any]] = None,
        actor: ActorLike = None,
        *,
        client: Optional[ClientInfo] = None,
        today: Optional[date] = None,
    ) -> DispatchResult:
        return self._run(domain, action, params, actor, client=client, today=today, internal=False)

    def dispatch_internal(
        self,
        domain: str,
        action: str,
        params: Optional[Mapping[str, Any]] = None,
        actor: ActorLike = None,
        *,
        today: Optional[date] = None,
    ) -> DispatchResult:
        """Trusted in-process entry point; also reaches internal operations."""
        return self._run(domain, action, params, actor, client=None, today=today, internal=True)

    def _run(
        self,
        domain: str,
        action: str,
        params: Optional[Mapping[str, Any]],
        actor: ActorLike,
        *,
        client: Optional[ClientInfo],
        today: Optional[date],
        internal: bool,
    ) -> DispatchResult:
        correlation_id = str(uuid.uuid4())
        log_extra = {"domain": domain, "action": action, "correlation_id": correlation_id}
        try:
            operation = self.registry.lookup(domain, action)
            if operation.internal and not internal:
                raise UnknownOperation(
                    message=f"Unknown operation {domain}.{action}", domain=domain, action=action
                )
            ctx_actor = _validate_actor(actor)
            if params is not None and not isinstance(params, Mapping):
                raise ValidationFailed.from_details(
                    [{"field": "params", "reason": "InvalidPayload", "message": "params must be an object"}]
                )
            clean = _validate_params(operation, params or {})
        except UnknownOperation as exc:
            logger.warning("Rejected unknown operation", extra=log_extra)
            return DispatchResult(ok=False, error=exc)
        except ValidationFailed as exc:
            logger.info("Rejected invalid parameters", extra={**log_extra, "fields": exc.fields})
            return DispatchResult(ok=False, error=exc)

        ctx_client = client or ClientInfo()
        db = self.session_factory()
        try:
            ctx = OperationContext(
                db=db,
                today=today or self.clock(),
                actor=ctx_actor,
                client=ctx_client,
            )
            value = operation.handler(ctx, clean)
            if operation.mutating:
                value = self._audit(db, operation, value, ctx_actor, ctx_client, correlation_id)
            db.commit()
        except GatewayError as exc:
            db.rollback()
            logger.warning(
                "Operation failed",
                extra={**log_extra, "error_kind": exc.error_kind},
            )
            return DispatchResult(ok=False, error=exc)
        except IntegrityError as exc:
            db.rollback()
            logger.warning("Constraint violated", extra=log_extra, exc_info=True)
            return DispatchResult(
                ok=False,
                error=ConstraintViolation(
                    message="The request conflicts with existing records",
                    relationship=_relationship(exc),
                ),
            )
        except (DisconnectionError, SQLAlchemyError):
            db.rollback()
            logger.exception("Storage backend failure", extra=log_extra)
            return DispatchResult(
                ok=False,
                error=BackendUnavailable(message="Storage backend is unavailable; retry later"),
            )
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        logger.debug("Operation succeeded", extra=log_extra)
        return DispatchResult(ok=True, value=value)

    def _audit(
        self,
        db: Session,
        operation: Operation,
        mutation: Any,
        actor: Actor,
        client: ClientInfo,
        correlation_id: str,
    ) -> Any:
        if not isinstance(mutation, Mutation):
            raise TypeError(
                f"Mutating handler for {operation.domain}.{operation.action} must return a Mutation"
            )
        try:
            self.audit_writer(
                db,
                actor=actor,
                client=client,
                mutation=mutation,
                correlation_id=correlation_id,
            )
        except Exception as exc:
            logger.exception(
                "Audit write failed; rolling back mutation",
                extra={
                    "domain": operation.domain,
                    "action": operation.action,
                    "correlation_id": correlation_id,
                },
            )
            raise AuditWriteFailed(message="Audit entry could not be written; change discarded") from exc
        return mutation.result_value()

    def dispatch_envelope(
        self,
        envelope: Mapping[str, Any],
        *,
        client: Optional[ClientInfo] = None,
        today: Optional[date] = None,
    ) -> dict:
        """Request envelope in, response envelope out."""
        result = self.dispatch(
            str(envelope.get("domain") or ""),
            str(envelope.get("action") or ""),
            envelope.get("params"),
            envelope.get("actor"),
            client=client,
            today=today,
        )
        return result.to_envelope()
