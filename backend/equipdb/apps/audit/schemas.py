from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class AuditLogCreate(BaseModel):
    user_id: Optional[str] = None
    username: str
    action: str
    entity_type: str
    entity_id: int = Field(gt=0)
    old_values: Optional[str] = None
    new_values: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    correlation_id: Optional[str] = None


class AuditLogRead(BaseModel):
    """Persisted audit record as handed to the presentation layer."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int
    user_id: Optional[str] = Field(default=None, alias="userId")
    username: str
    action: str
    entity_type: str = Field(alias="entityType")
    entity_id: int = Field(alias="entityId")
    old_values: Optional[str] = Field(default=None, alias="oldValues")
    new_values: Optional[str] = Field(default=None, alias="newValues")
    ip_address: Optional[str] = Field(default=None, alias="ipAddress")
    user_agent: Optional[str] = Field(default=None, alias="userAgent")
    correlation_id: Optional[str] = Field(default=None, alias="correlationId")
    timestamp: datetime
