# sessionhub/services/notification_service.py
"""
Notification sink.

Decides nothing: callers pass the recipient and content, this service
persists one row per notification. Real-time push is out of scope.
"""

from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..models.notification import Notification, NotificationType
from .base import BaseService

OPERATOR_INBOX = "operations"


class NotificationService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)

    def notify(
        self,
        user_id: str,
        type: NotificationType,
        title: str,
        message: str,
        action_url: Optional[str] = None,
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            type=type.value,
            title=title,
            message=message,
            action_url=action_url,
        )
        self.db.add(notification)
        self.db.flush()
        self.logger.info(
            "Notification %s (%s) queued for user %s", notification.id, type.value, user_id
        )
        return notification

    def alert_operator(
        self, title: str, message: str, details: Optional[Dict[str, Any]] = None
    ) -> Notification:
        """Flag a failure that needs a human (e.g. a paid session without a meeting)."""
        self.logger.error("[OPERATOR ALERT] %s: %s %s", title, message, details or {})
        return self.notify(OPERATOR_INBOX, NotificationType.OPERATOR_ALERT, title, message)
