"""
Cross-field guards for gateway operations.

A guard receives the already-validated params of one request and returns a
list of `{"field", "reason", "message"}` problems; an empty list means the
request may proceed. Guards run only once every field validated.
"""

from __future__ import annotations

from typing import Any, Dict, List

from .registry import Check

GuardResult = List[Dict[str, str]]


def guard_not_before(later: str, earlier: str) -> Check:
    """`later` must not fall before `earlier` when both are present."""

    def guard(params: Dict[str, Any]) -> GuardResult:
        first = params.get(earlier)
        second = params.get(later)
        if first is None or second is None or second >= first:
            return []
        return [
            {
                "field": later,
                "reason": "InvalidDate",
                "message": f"{later} must not be before {earlier}",
            }
        ]

    return guard


def guard_any_of(*names: str) -> Check:
    """At least one of `names` must be supplied."""

    def guard(params: Dict[str, Any]) -> GuardResult:
        if any(params.get(name) is not None for name in names):
            return []
        return [
            {
                "field": name,
                "reason": "Required",
                "message": f"one of {', '.join(names)} is required",
            }
            for name in names
        ]

    return guard
