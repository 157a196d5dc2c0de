"""In-app notifications written by the notification sink."""

from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, String, Text
from sqlalchemy.sql import func
import ulid

from ..database import Base


class NotificationType(str, Enum):
    SESSION_REMINDER = "SessionReminder"
    SESSION_CONFIRMED = "SessionConfirmed"
    SESSION_CANCELLED = "SessionCancelled"
    SESSION_RESCHEDULE = "SessionReschedule"
    SESSION_COMPLETED = "SessionCompleted"
    DISPUTE_UPDATE = "DisputeUpdate"
    OPERATOR_ALERT = "OperatorAlert"


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    user_id = Column(String(26), nullable=False, index=True)
    type = Column(String(40), nullable=False)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    action_url = Column(String(1024), nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
