from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ActivityEvent(BaseModel):
    """An audit entry to be written alongside a consent change."""

    action: str
    description: str
    submission_id: int | None = None
    user_id: int | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime | None = None


class ActivityLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    action: str
    user_id: int | None
    submission_id: int | None
    timestamp: datetime
    description: str
    details: dict[str, Any] | None = None
