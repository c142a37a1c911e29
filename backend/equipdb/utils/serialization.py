"""Row and payload serialisation shared by the gateway and the audit log."""

from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from sqlalchemy import inspect as sa_inspect


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return value


def _json_default(value: Any) -> Any:
    converted = _jsonable(value)
    return str(value) if converted is value else converted


def row_to_dict(obj: Any) -> Optional[dict]:
    """
    Column-by-column snapshot of an ORM instance as plain JSON types.

    Keys are column attribute names, so the result matches what a later
    SELECT of the same row would return.
    """
    if obj is None:
        return None
    mapper = sa_inspect(obj).mapper
    return {attr.key: _jsonable(getattr(obj, attr.key)) for attr in mapper.column_attrs}


def rows_to_dicts(rows) -> list:
    return [row_to_dict(row) for row in rows]


def dumps(payload: Any) -> Optional[str]:
    """Stable JSON text for persistence; None stays None."""
    if payload is None:
        return None
    return json.dumps(payload, sort_keys=True, default=_json_default)


def loads(text: Optional[str]) -> Any:
    if text is None:
        return None
    return json.loads(text)
