from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import Optional, List, Dict, Any

from app.modules.notifications.models import NotificationType, NotificationChannel, NotificationStatus


class NotificationResponse(BaseModel):
    """Response schema for notification"""
    id: int
    user_id: int
    type: NotificationType
    channel: NotificationChannel
    title: str
    message: str
    status: NotificationStatus
    related_entity_type: Optional[str] = None
    related_entity_id: Optional[int] = None
    extra_data: Optional[Dict[str, Any]] = None
    sent_at: Optional[datetime] = None
    read_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class NotificationListResponse(BaseModel):
    """Paginated notification list"""
    notifications: List[NotificationResponse]
    total: int
    unread_count: int
    page: int
    limit: int
