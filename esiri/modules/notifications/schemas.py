# esiri/modules/notifications/schemas.py

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from esiri.models.models import ServiceType


class NotificationResponse(BaseModel):
    id: UUID
    title: str
    message: str
    type: str
    is_read: bool
    data: Optional[Dict[str, Any]] = None
    created_at: datetime


class NotificationsListResponse(BaseModel):
    notifications: List[NotificationResponse]
    unread_count: int


class MarkReadRequest(BaseModel):
    notification_ids: List[UUID] = Field(min_length=1, max_length=100)


class MarkReadResponse(BaseModel):
    marked_count: int


class SendNotificationRequest(BaseModel):
    """Manual notification; set exactly one of user_id, session_id or service_type."""
    title: str = Field(min_length=1, max_length=200)
    message: str = Field(min_length=1, max_length=2000)
    type: str = Field(default="general", max_length=50)
    data: Optional[Dict[str, Any]] = None
    user_id: Optional[UUID] = None
    session_id: Optional[UUID] = None
    service_type: Optional[ServiceType] = None

    @model_validator(mode="after")
    def one_target(self):
        targets = [self.user_id, self.session_id, self.service_type]
        if sum(t is not None for t in targets) != 1:
            raise ValueError("Provide exactly one of user_id, session_id or service_type")
        return self


class SendNotificationResponse(BaseModel):
    recipients: int
