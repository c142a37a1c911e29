from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from sqlalchemy.orm import Session

from .errors import UnknownOperation
from .validators import Validator

# Cross-field guard: receives the validated params, returns [{"field", "reason"}].
CheckResult = List[Dict[str, str]]
Check = Callable[[Dict[str, Any]], CheckResult]


@dataclass(frozen=True)
class Actor:
    id: Optional[str] = None
    username: Optional[str] = None


@dataclass(frozen=True)
class ClientInfo:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass(frozen=True)
class Param:
    name: str
    validator: Validator
    required: bool = True


@dataclass
class OperationContext:
    """Everything a handler may use for the lifetime of one dispatch."""

    db: Session
    today: date
    actor: Actor = field(default_factory=Actor)
    client: ClientInfo = field(default_factory=ClientInfo)


@dataclass
class Mutation:
    """
    What a mutating handler hands back to the dispatcher.

    `before` / `after` are plain-dict snapshots of the record; `value` is what
    the caller receives (defaults to `after`).
    """

    action: str
    entity_type: str
    entity_id: int
    before: Optional[dict] = None
    after: Optional[dict] = None
    value: Any = None

    def result_value(self) -> Any:
        if self.value is not None:
            return self.value
        if self.after is not None:
            return self.after
        return {"id": self.entity_id}


Handler = Callable[[OperationContext, Dict[str, Any]], Any]


@dataclass(frozen=True)
class Operation:
    domain: str
    action: str
    handler: Handler
    params: Tuple[Param, ...] = ()
    mutating: bool = False
    checks: Tuple[Check, ...] = ()
    # Present in the catalogue but never reachable from external dispatch.
    internal: bool = False

    @property
    def key(self) -> Tuple[str, str]:
        return (self.domain, self.action)


class OperationRegistry:
    """
    Closed catalogue of gateway operations keyed by (domain, action).

    Built once at start-up and read-only afterwards.
    """

    def __init__(self, operations: Iterable[Operation]) -> None:
        table: Dict[Tuple[str, str], Operation] = {}
        for operation in operations:
            if operation.key in table:
                raise ValueError(f"Duplicate operation {operation.domain}.{operation.action}")
            table[operation.key] = operation
        self._operations: Mapping[Tuple[str, str], Operation] = MappingProxyType(table)

    def lookup(self, domain: str, action: str) -> Operation:
        operation = self._operations.get((domain, action))
        if operation is None:
            raise UnknownOperation(
                message=f"Unknown operation {domain}.{action}",
                domain=domain,
                action=action,
            )
        return operation

    def __contains__(self, key: Tuple[str, str]) -> bool:
        return key in self._operations

    def __iter__(self) -> Iterator[Operation]:
        return iter(self._operations.values())

    def __len__(self) -> int:
        return len(self._operations)

    def domains(self) -> List[str]:
        return sorted({domain for domain, _ in self._operations})

    def actions(self, domain: str) -> List[str]:
        return sorted(action for dom, action in self._operations if dom == domain)

    def missing_actions(self, required: Mapping[str, Iterable[str]]) -> List[str]:
        missing: List[str] = []
        for domain, actions in required.items():
            for action in actions:
                if (domain, action) not in self._operations:
                    missing.append(f"{domain}.{action}")
        return missing
