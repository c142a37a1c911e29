"""
Parameter validators for gateway operations.

Each validator takes one raw value from the untrusted request and returns the
normalised value, or raises `ValidationError` with a stable reason code. The
dispatcher attaches the parameter name. Validators never touch the database
or the filesystem.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import PurePosixPath
from typing import Any, Callable, List, Optional, Sequence

FREE_TEXT_MAX_LENGTH = int(os.getenv("FREE_TEXT_MAX_LENGTH", "255"))
NOTES_MAX_LENGTH = int(os.getenv("NOTES_MAX_LENGTH", "4000"))

MIN_DATE = date(1900, 1, 1)
MAX_DATE = date(2199, 12, 31)

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DIGITS_RE = re.compile(r"^[0-9]+$")
# C0, DEL, C1 and the bidirectional embedding / override / isolate marks.
_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f-\x9f\u061c\u200e\u200f\u202a-\u202e\u2066-\u2069]")
_CONTROL_MULTILINE_RE = re.compile(
    r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f\u061c\u200e\u200f\u202a-\u202e\u2066-\u2069]"
)

# Largest value a signed 64-bit INTEGER column holds.
MAX_INTEGER = 2**63 - 1

Validator = Callable[[Any], Any]


@dataclass(eq=False)
class ValidationError(Exception):
    reason: str
    message: str
    field: Optional[str] = None

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def as_detail(self, field_name: Optional[str] = None) -> dict:
        return {
            "field": field_name or self.field or "params",
            "reason": self.reason,
            "message": self.message,
        }


# ---------------------------------------------------------------------------
# Identifiers and dates
# ---------------------------------------------------------------------------


def validate_identifier(value: Any) -> int:
    """Positive integer, as an int or a string of digits."""
    if isinstance(value, bool):
        raise ValidationError("InvalidId", "identifier must be a positive integer")
    if isinstance(value, int):
        number = value
    elif isinstance(value, str) and _DIGITS_RE.match(value.strip()):
        digits = value.strip().lstrip("0") or "0"
        if len(digits) > len(str(MAX_INTEGER)):
            raise ValidationError("InvalidId", "identifier is out of range")
        number = int(digits)
    else:
        raise ValidationError("InvalidId", "identifier must be a positive integer")
    if number <= 0:
        raise ValidationError("InvalidId", "identifier must be a positive integer")
    if number > MAX_INTEGER:
        raise ValidationError("InvalidId", "identifier is out of range")
    return number


def validate_date(value: Any) -> date:
    """Calendar date as YYYY-MM-DD; no time component."""
    if isinstance(value, datetime):
        raise ValidationError("InvalidDate", "date must not carry a time component")
    if isinstance(value, date):
        parsed = value
    elif isinstance(value, str) and _DATE_RE.match(value):
        try:
            parsed = date.fromisoformat(value)
        except ValueError:
            raise ValidationError("InvalidDate", f"'{value}' is not a calendar date") from None
    else:
        raise ValidationError("InvalidDate", "date must be formatted YYYY-MM-DD")
    if not MIN_DATE <= parsed <= MAX_DATE:
        raise ValidationError(
            "InvalidDate",
            f"date must fall between {MIN_DATE.isoformat()} and {MAX_DATE.isoformat()}",
        )
    return parsed


# ---------------------------------------------------------------------------
# File paths
# ---------------------------------------------------------------------------


def _normalise_root(root: str) -> PurePosixPath:
    path = PurePosixPath(root.replace("\\", "/"))
    if not path.is_absolute():
        raise ValueError(f"documents root must be absolute, got {root!r}")
    return path


def file_path(root: str) -> Validator:
    """
    Path of a managed document, confined to `root`.

    Relative paths are anchored at `root`. Absolute paths must already sit
    under it. Anything with a parent segment, a home shortcut or a NUL byte
    is rejected outright; nothing is rewritten to make it "safe".
    """
    base = _normalise_root(root)

    def validate_file_path(value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValidationError("PathTraversal", "file path must be a non-empty string")
        raw = value.strip().replace("\\", "/")
        if "\x00" in raw or "~" in raw:
            raise ValidationError("PathTraversal", "file path contains a forbidden character")
        candidate = PurePosixPath(raw)
        if ".." in candidate.parts:
            raise ValidationError("PathTraversal", "file path must not contain '..' segments")
        if re.match(r"^[A-Za-z]:", raw):
            raise ValidationError("PathTraversal", "file path escapes the documents directory")
        resolved = candidate if candidate.is_absolute() else base / candidate
        if resolved != base and base not in resolved.parents:
            raise ValidationError("PathTraversal", "file path escapes the documents directory")
        if resolved == base:
            raise ValidationError("PathTraversal", "file path must name a file")
        return str(resolved)

    return validate_file_path


# ---------------------------------------------------------------------------
# Free text
# ---------------------------------------------------------------------------


def free_text(max_length: int = FREE_TEXT_MAX_LENGTH, *, multiline: bool = False) -> Validator:
    pattern = _CONTROL_MULTILINE_RE if multiline else _CONTROL_RE

    def validate_free_text(value: Any) -> str:
        if not isinstance(value, str):
            raise ValidationError("InvalidText", "value must be text")
        text = value.strip()
        if not text:
            raise ValidationError("InvalidText", "value must not be blank")
        if len(text) > max_length:
            raise ValidationError("InvalidText", f"value exceeds {max_length} characters")
        if pattern.search(text):
            raise ValidationError("InvalidText", "value contains control characters")
        return text

    return validate_free_text


validate_free_text = free_text()
validate_notes = free_text(NOTES_MAX_LENGTH, multiline=True)


# ---------------------------------------------------------------------------
# Supplementary scalar validators
# ---------------------------------------------------------------------------


def choice(*allowed: str) -> Validator:
    options = tuple(allowed)

    def validate_choice(value: Any) -> str:
        if not isinstance(value, str) or value not in options:
            raise ValidationError("InvalidChoice", f"value must be one of: {', '.join(options)}")
        return value

    return validate_choice


def number(*, minimum: Optional[float] = None, integer: bool = False) -> Validator:
    def validate_number(value: Any) -> float:
        if isinstance(value, bool):
            raise ValidationError("InvalidNumber", "value must be a number")
        if isinstance(value, (int, float)):
            parsed = value
        elif isinstance(value, str):
            try:
                parsed = int(value.strip()) if integer else float(value.strip())
            except ValueError:
                raise ValidationError("InvalidNumber", "value must be a number") from None
        else:
            raise ValidationError("InvalidNumber", "value must be a number")
        if integer and (isinstance(parsed, float) and not parsed.is_integer()):
            raise ValidationError("InvalidNumber", "value must be a whole number")
        if parsed != parsed or parsed in (float("inf"), float("-inf")):
            raise ValidationError("InvalidNumber", "value must be a finite number")
        if minimum is not None and parsed < minimum:
            raise ValidationError("InvalidNumber", f"value must be at least {minimum}")
        if integer and abs(parsed) > MAX_INTEGER:
            raise ValidationError("InvalidNumber", "value is out of range")
        return int(parsed) if integer else parsed

    return validate_number


def validate_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str) and value.strip().lower() in {"1", "true", "yes", "on", "0", "false", "no", "off"}:
        return value.strip().lower() in {"1", "true", "yes", "on"}
    raise ValidationError("InvalidFlag", "value must be true or false")


def text_list(max_length: int = FREE_TEXT_MAX_LENGTH) -> Validator:
    item_validator = free_text(max_length)

    def validate_text_list(value: Any) -> List[str]:
        if isinstance(value, str):
            items: Sequence[Any] = [part for part in value.split(",") if part.strip()]
        elif isinstance(value, (list, tuple)):
            items = value
        else:
            raise ValidationError("InvalidText", "value must be a list of text values")
        return [item_validator(item) for item in items]

    return validate_text_list


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate_mapping(value: Any) -> dict:
    """JSON object payload (audit snapshots)."""
    if not isinstance(value, dict):
        raise ValidationError("InvalidPayload", "value must be an object")
    return dict(value)
