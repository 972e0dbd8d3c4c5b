"""Notification schemas."""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from contracts.schemas.enums import (
    NotificationActionType,
    NotificationCategory,
    NotificationPriority,
)


class NotificationMetadata(BaseModel):
    report_id: Optional[str] = None
    appointment_id: Optional[str] = None
    analysis_id: Optional[str] = None
    deep_link_path: Optional[str] = None
    expires_at: Optional[datetime] = None


class Notification(BaseModel):
    id: str
    user_id: str
    title: str
    subtitle: str = ""
    message: str
    category: NotificationCategory
    priority: NotificationPriority = NotificationPriority.NORMAL
    timestamp: datetime
    is_read: bool = False
    action_type: Optional[NotificationActionType] = None
    metadata: Optional[NotificationMetadata] = None


class NotificationListData(BaseModel):
    notifications: List[Notification]
    unread_count: int


class ReadAllData(BaseModel):
    updated: int
