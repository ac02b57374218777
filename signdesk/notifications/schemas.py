# signdesk/notifications/schemas.py

from datetime import datetime
from enum import Enum as PyEnum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class NotificationKind(str, PyEnum):
    """Kinds of notifications fanned out on transitions"""
    INVITATION = "invitation"
    SIGNED = "signed"
    COMPLETED = "completed"
    REJECTED = "rejected"
    REMINDER = "reminder"


class NotificationResponse(BaseModel):
    """Notification shown to a user"""
    model_config = ConfigDict(from_attributes=True)

    id: int
    kind: NotificationKind
    title: str
    message: Optional[str] = None
    envelope_id: Optional[int] = None
    envelope_slug: Optional[str] = None
    sender_email: Optional[str] = None
    sender_name: Optional[str] = None
    is_read: bool
    created_on: Optional[datetime] = None


class NotificationListResponse(BaseModel):
    """Notifications of the current user"""
    items: List[NotificationResponse]
    unread: int
