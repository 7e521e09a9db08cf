# Notifications module
from app.modules.notifications.models import (
    Notification, NotificationType, NotificationChannel, NotificationStatus
)
from app.modules.notifications.services import NotificationService, EscrowNotifications

__all__ = [
    "Notification", "NotificationType", "NotificationChannel", "NotificationStatus",
    "NotificationService", "EscrowNotifications"
]
