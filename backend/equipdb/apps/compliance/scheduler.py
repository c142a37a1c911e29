# backend/equipdb/apps/compliance/scheduler.py
#
# Compliance scheduling rules, kept free of I/O:
# - next-due computation for a new compliance event,
# - due-date bucket classification relative to an explicit "today",
# - notification generation for proactive alerts.
#
# Every function takes `today` as an argument. `current_date()` is the one
# place that reads the wall clock, in COMPLIANCE_TIMEZONE.

from __future__ import annotations

import calendar
import logging
import os
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Iterable, List, Optional
from zoneinfo import ZoneInfo

from .models import IntervalType
from .schemas import ComplianceStatusRead, NotificationRead

logger = logging.getLogger(__name__)

COMPLIANCE_TIMEZONE = os.getenv("COMPLIANCE_TIMEZONE", "UTC")

# Display buckets.
DUE_SOON_DAYS = 30
UPCOMING_DAYS = 90

# Notification severity: warning at or below this many days, info above.
WARNING_DAYS = 7

# Default look-ahead for getDue / getExpiring queries.
DEFAULT_LOOKAHEAD_DAYS = 30


class DueStatus(str, Enum):
    OVERDUE = "overdue"
    DUE_SOON = "due-soon"
    UPCOMING = "upcoming"
    CURRENT = "current"
    NO_DATE = "no-date"


class Severity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


@dataclass(frozen=True)
class AssetClass:
    """
    How to read one kind of compliance record.

    `due_field` holds the date the buckets are computed from; `subject_field`
    names what the notification is about (an equipment code, a person).
    """

    key: str
    label: str
    due_field: str
    subject_field: str
    equipment_field: Optional[str] = "equipment_id"


LOAD_TEST = AssetClass("load_test", "Load test", "next_test_due", "equipment_identifier")
CALIBRATION = AssetClass("calibration", "Calibration", "calibration_due_date", "equipment_identifier")
INSPECTION = AssetClass("inspection", "Inspection", "next_due_date", "equipment_identifier")
PM_SCHEDULE = AssetClass("pm_schedule", "Preventive maintenance", "next_due_date", "equipment_identifier")
SCHEDULED_INSPECTION = AssetClass(
    "scheduled_inspection", "Scheduled inspection", "scheduled_date", "equipment_identifier"
)
CERTIFICATE = AssetClass("certificate", "Certificate", "expiration_date", "certificate_number")
CREDENTIAL = AssetClass(
    "credential", "Credential", "expiration_date", "person_name", equipment_field=None
)

ASSET_CLASSES = {
    cls.key: cls
    for cls in (
        LOAD_TEST,
        CALIBRATION,
        INSPECTION,
        PM_SCHEDULE,
        SCHEDULED_INSPECTION,
        CERTIFICATE,
        CREDENTIAL,
    )
}


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


def current_date(tz_name: Optional[str] = None) -> date:
    """Today's date in the configured compliance time zone."""
    return datetime.now(ZoneInfo(tz_name or COMPLIANCE_TIMEZONE)).date()


# ---------------------------------------------------------------------------
# Date arithmetic
# ---------------------------------------------------------------------------


def add_months(value: date, months: int) -> date:
    """Calendar-month addition; the day is clamped to the target month's end."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def add_years(value: date, years: int) -> date:
    return add_months(value, 12 * years)


def compute_next_due(
    event_date: date,
    interval_type: Optional[str],
    explicit: Optional[date] = None,
) -> date:
    """
    Next-due date of a new compliance event.

    annual -> +1 year, periodic -> +6 months, anything else -> +1 year.
    A caller-supplied date wins.
    """
    if explicit is not None:
        return explicit
    if interval_type == IntervalType.PERIODIC.value:
        return add_months(event_date, 6)
    return add_years(event_date, 1)


def advance(value: date, frequency_value: int, frequency_unit: str) -> date:
    """Move a date forward by a PM template frequency."""
    if frequency_unit == "days":
        return value + timedelta(days=frequency_value)
    if frequency_unit == "weeks":
        return value + timedelta(weeks=frequency_value)
    if frequency_unit == "years":
        return add_years(value, frequency_value)
    return add_months(value, frequency_value)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def coerce_date(value: Any) -> Optional[date]:
    """Date from a column value; None for missing or malformed input."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        # Whole string: a date, or a datetime whose date part is taken.
        text = value.strip()
        try:
            return datetime.fromisoformat(text).date()
        except ValueError:
            return None
    return None


def days_until(today: date, due: date) -> int:
    return (due - today).days


def classify_days(diff_days: Optional[int]) -> DueStatus:
    if diff_days is None:
        return DueStatus.NO_DATE
    if diff_days < 0:
        return DueStatus.OVERDUE
    if diff_days <= DUE_SOON_DAYS:
        return DueStatus.DUE_SOON
    if diff_days <= UPCOMING_DAYS:
        return DueStatus.UPCOMING
    return DueStatus.CURRENT


def classify_due(today: date, due_value: Any) -> DueStatus:
    due = coerce_date(due_value)
    return classify_days(None if due is None else days_until(today, due))


def _get_value(record: Any, key: Optional[str]) -> Any:
    if record is None or key is None:
        return None
    if isinstance(record, dict):
        return record.get(key)
    return getattr(record, key, None)


def classify_record(today: date, record: Any, asset_class: AssetClass) -> ComplianceStatusRead:
    due = coerce_date(_get_value(record, asset_class.due_field))
    diff = None if due is None else days_until(today, due)
    return ComplianceStatusRead(
        asset_class=asset_class.key,
        entity_id=_get_value(record, "id"),
        equipment_id=_get_value(record, asset_class.equipment_field),
        subject=_subject(record, asset_class),
        due_date=due,
        days_until_due=diff,
        status=classify_days(diff).value,
    )


def classify_batch(today: date, records: Iterable[Any], asset_class: AssetClass) -> List[ComplianceStatusRead]:
    """
    Classify every record; a record that cannot be read is reported as
    `no-date` and the batch carries on. Failure to iterate `records` itself
    propagates.
    """
    results: List[ComplianceStatusRead] = []
    for record in records:
        try:
            results.append(classify_record(today, record, asset_class))
        except Exception:
            logger.warning(
                "Unreadable compliance record classified as no-date",
                extra={"asset_class": asset_class.key},
                exc_info=True,
            )
            results.append(
                ComplianceStatusRead(
                    asset_class=asset_class.key,
                    entity_id=_safe_id(record),
                    status=DueStatus.NO_DATE.value,
                )
            )
    return results


def _safe_id(record: Any) -> Optional[int]:
    try:
        value = _get_value(record, "id")
    except Exception:
        return None
    return value if isinstance(value, int) else None


def _subject(record: Any, asset_class: AssetClass) -> str:
    subject = _get_value(record, asset_class.subject_field)
    if asset_class is CREDENTIAL:
        credential_type = _get_value(record, "credential_type")
        if credential_type:
            return f"{subject} ({credential_type})"
    if subject:
        return str(subject)
    equipment_id = _get_value(record, asset_class.equipment_field)
    return f"equipment #{equipment_id}" if equipment_id is not None else "unknown"


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


def notification_for(today: date, record: Any, asset_class: AssetClass) -> Optional[NotificationRead]:
    due = coerce_date(_get_value(record, asset_class.due_field))
    if due is None:
        return None
    diff = days_until(today, due)
    subject = _subject(record, asset_class)
    if diff < 0:
        severity = Severity.CRITICAL
        message = f"{asset_class.label} for {subject} is overdue (due: {due.isoformat()})"
    elif diff <= DUE_SOON_DAYS:
        severity = Severity.WARNING if diff <= WARNING_DAYS else Severity.INFO
        message = f"{asset_class.label} for {subject} due in {diff} days ({due.isoformat()})"
    else:
        return None
    return NotificationRead(
        type=severity.value,
        message=message,
        equipment_id=_get_value(record, asset_class.equipment_field),
        event_id=_get_value(record, "id"),
        due_date=due,
        asset_class=asset_class.key,
    )


def build_notifications(today: date, records: Iterable[Any], asset_class: AssetClass) -> List[NotificationRead]:
    notifications: List[NotificationRead] = []
    for record in records:
        try:
            notification = notification_for(today, record, asset_class)
        except Exception:
            logger.warning(
                "Skipping unreadable compliance record",
                extra={"asset_class": asset_class.key},
                exc_info=True,
            )
            continue
        if notification is not None:
            notifications.append(notification)
    return notifications


def lookahead(today: date, days: int = DEFAULT_LOOKAHEAD_DAYS) -> date:
    return today + timedelta(days=days)
