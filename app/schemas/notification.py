from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class NotificationType(StrEnum):
    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"


class Notification(BaseModel):
    id: str
    type: NotificationType
    title: str
    message: str | None = None
    recipient_user_id: str | None = None
    duration_seconds: int
    created_at: datetime
    expires_at: datetime


class NotificationListResponse(BaseModel):
    items: list[Notification] = Field(default_factory=list)
