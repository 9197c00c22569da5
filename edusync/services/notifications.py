"""
Notification Service — dispatch and read-state for user notifications.

Behavioral Contract:
- dispatch() requires user_id, title, message and a known type
- The inserted row reaches subscribers through the store's change feed
- Only the recipient may change a notification's read flag
- Notifications are never deleted
"""

from typing import List, Optional

import structlog

from edusync.errors import NotFoundError, ValidationError
from edusync.models.notification import NotificationRecord, NotificationType
from edusync.store.notifications import NotificationStore

logger = structlog.get_logger(__name__)


class NotificationService:
    def __init__(self, store: NotificationStore):
        self.store = store

    def dispatch(
        self,
        user_id: Optional[str],
        title: Optional[str],
        message: Optional[str],
        type: Optional[str],
        link: Optional[str] = None,
    ) -> NotificationRecord:
        """Validate and insert a notification for one user."""
        if not user_id or not title or not message or not type:
            raise ValidationError("Missing required fields")
        try:
            kind = NotificationType(type)
        except ValueError:
            raise ValidationError(f"Unknown notification type: {type}")

        record = self.store.insert(
            user_id=user_id,
            title=title,
            message=message,
            type=kind,
            link=link or None,
        )
        logger.info(
            "notification_dispatched",
            notification_id=record.id, user_id=user_id, type=kind.value,
        )
        return record

    def list_for_user(self, user_id: str, limit: int = 50) -> List[NotificationRecord]:
        return self.store.list_for_user(user_id, limit=limit)

    def unread_count(self, user_id: str) -> int:
        return self.store.unread_count(user_id)

    def mark_read(self, notification_id: str, user_id: str) -> NotificationRecord:
        record = self.store.mark_read(notification_id, user_id)
        if record is None:
            raise NotFoundError("Notification not found")
        return record

    def mark_all_read(self, user_id: str) -> int:
        return self.store.mark_all_read(user_id)
