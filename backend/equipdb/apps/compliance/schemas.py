# backend/equipdb/apps/compliance/schemas.py
#
# Read models handed to the presentation layer by the compliance app:
# - NotificationRead     : proactive alert derived from a due date.
# - ComplianceStatusRead : bucket classification of one record.
# - ComplianceSummaryRead: per-asset-class bucket counts.
#
# All of them are derived values; none is persisted.

from __future__ import annotations

from datetime import date
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class NotificationRead(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str
    message: str
    equipment_id: Optional[int] = Field(default=None, alias="equipmentId")
    event_id: Optional[int] = Field(default=None, alias="eventId")
    due_date: Optional[date] = Field(default=None, alias="dueDate")
    asset_class: Optional[str] = Field(default=None, alias="assetClass")


class ComplianceStatusRead(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    asset_class: str = Field(alias="assetClass")
    entity_id: Optional[int] = Field(default=None, alias="entityId")
    equipment_id: Optional[int] = Field(default=None, alias="equipmentId")
    subject: Optional[str] = None
    due_date: Optional[date] = Field(default=None, alias="dueDate")
    days_until_due: Optional[int] = Field(default=None, alias="daysUntilDue")
    status: str


class ComplianceSummaryRead(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    as_of: date = Field(alias="asOf")
    counts: Dict[str, Dict[str, int]] = Field(default_factory=dict)
    notifications: List[NotificationRead] = Field(default_factory=list)


def dump(models) -> List[dict]:
    return [item.model_dump(mode="json", by_alias=True) for item in models]
