"""
Public error taxonomy of the gateway.

Every failure that leaves `SecureDispatcher.dispatch` is one of these, each
with a stable `error_kind` the presentation layer can branch on. Storage
errors never cross the boundary; the dispatcher maps them here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar, Dict, List, Optional


@dataclass(eq=False)
class GatewayError(Exception):
    message: str

    error_kind: ClassVar[str] = "GatewayError"

    def __post_init__(self) -> None:
        super().__init__(self.message)

    @property
    def fields(self) -> Optional[List[str]]:
        return None

    def to_envelope(self) -> dict:
        envelope = {"ok": False, "errorKind": self.error_kind, "message": self.message}
        if self.fields is not None:
            envelope["fields"] = list(self.fields)
        return envelope


@dataclass(eq=False)
class UnknownOperation(GatewayError):
    domain: str = ""
    action: str = ""

    error_kind: ClassVar[str] = "UnknownOperation"


@dataclass(eq=False)
class ValidationFailed(GatewayError):
    details: List[Dict[str, str]] = field(default_factory=list)

    error_kind: ClassVar[str] = "ValidationFailed"

    @property
    def fields(self) -> List[str]:
        seen: List[str] = []
        for item in self.details:
            if item["field"] not in seen:
                seen.append(item["field"])
        return seen

    @classmethod
    def from_details(cls, details: List[Dict[str, str]]) -> "ValidationFailed":
        names = ", ".join(item["field"] for item in details)
        return cls(message=f"Invalid parameters: {names}", details=list(details))

    def to_envelope(self) -> dict:
        envelope = super().to_envelope()
        envelope["details"] = [dict(item) for item in self.details]
        return envelope


@dataclass(eq=False)
class BackendUnavailable(GatewayError):
    error_kind: ClassVar[str] = "BackendUnavailable"


@dataclass(eq=False)
class ConstraintViolation(GatewayError):
    relationship: Optional[str] = None

    error_kind: ClassVar[str] = "ConstraintViolation"

    def to_envelope(self) -> dict:
        envelope = super().to_envelope()
        if self.relationship:
            envelope["relationship"] = self.relationship
        return envelope


@dataclass(eq=False)
class AuditWriteFailed(GatewayError):
    error_kind: ClassVar[str] = "AuditWriteFailed"
