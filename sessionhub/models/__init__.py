"""
Database models for the session marketplace.

Importing this package registers every table on ``Base.metadata``.
"""

from .mentor_balance import MentorBalance, Payout, PayoutStatus
from .notification import Notification, NotificationType
from .payment import Payment, PaymentStatus, ProcessedWebhookEvent, RefundStatus
from .session import ACTIVE_STATUSES, MentorshipSession, SessionStatus
from .session_dispute import DisputeResolution, DisputeStatus, SessionDispute
from .session_records import CancelRecord, CancelRefundStatus, RescheduleRecord, RescheduleStatus
from .time_slot import TimeSlot

__all__ = [
    "ACTIVE_STATUSES",
    "CancelRecord",
    "CancelRefundStatus",
    "DisputeResolution",
    "DisputeStatus",
    "MentorBalance",
    "MentorshipSession",
    "Notification",
    "NotificationType",
    "Payment",
    "PaymentStatus",
    "Payout",
    "PayoutStatus",
    "ProcessedWebhookEvent",
    "RefundStatus",
    "RescheduleRecord",
    "RescheduleStatus",
    "SessionDispute",
    "SessionStatus",
    "TimeSlot",
]
