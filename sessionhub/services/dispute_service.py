# sessionhub/services/dispute_service.py
"""
Session disputes.

A mentee may dispute a completed session within the dispute window. While
the dispute is open the session is DISPUTED and its payment is held back
from the mentor. An admin resolves it either with a refund, which goes
through the payment refund path and takes back the mentor's share, or
without one; both return the session to COMPLETED.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import (
    BusinessRuleException,
    ConflictException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from ..core.principal import Actor
from ..core.time_utils import ensure_utc, utc_now
from ..models.notification import NotificationType
from ..models.payment import PaymentStatus
from ..models.session import SessionStatus
from ..models.session_dispute import DisputeResolution, DisputeStatus, SessionDispute
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .notification_service import NotificationService
from .payment_service import PaymentService

OPEN_STATUSES = frozenset({DisputeStatus.OPEN.value, DisputeStatus.UNDER_REVIEW.value})


class DisputeService(BaseService):
    def __init__(
        self,
        db: Session,
        payments: Optional[PaymentService] = None,
        notifications: Optional[NotificationService] = None,
    ):
        super().__init__(db)
        self.notifications = notifications or NotificationService(db)
        self.payments = payments or PaymentService(db, notifications=self.notifications)
        self.dispute_repository = RepositoryFactory.create_dispute_repository(db)
        self.session_repository = RepositoryFactory.create_session_repository(db)

    @BaseService.measure_operation("open_dispute")
    def open_dispute(
        self,
        session_id: str,
        actor: Actor,
        reason: str,
        description: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> SessionDispute:
        now = now or utc_now()
        session = self.session_repository.get_by_id(session_id)
        if session is None:
            raise NotFoundException(f"Session {session_id} not found")
        if session.mentee_id != actor.user_id:
            raise ForbiddenException("You can only dispute your own sessions")
        if session.status != SessionStatus.COMPLETED.value:
            raise BusinessRuleException("Can only dispute completed sessions")
        window = timedelta(days=settings.dispute_window_days)
        if session.completed_at is not None and now > ensure_utc(session.completed_at) + window:
            raise BusinessRuleException(
                f"Dispute window has expired ({settings.dispute_window_days} days after "
                "session completion)",
                code="DISPUTE_WINDOW_EXPIRED",
            )
        if self.dispute_repository.get_by_session_id(session_id) is not None:
            raise ConflictException("A dispute already exists for this session")

        with self.transaction():
            dispute = self.dispute_repository.create(
                session_id=session.id,
                mentee_id=actor.user_id,
                reason=reason,
                description=description,
                status=DisputeStatus.OPEN.value,
            )
            session.status = SessionStatus.DISPUTED.value
            self.notifications.notify(
                session.mentor_id,
                NotificationType.DISPUTE_UPDATE,
                "Session Disputed",
                "Your mentee opened a dispute for a completed session.",
                f"mentor/sessions/{session.id}",
            )
        self.logger.info("Dispute %s created for session %s", dispute.id, session.id)
        return dispute

    @BaseService.measure_operation("resolve_dispute")
    def resolve_dispute(
        self,
        dispute_id: str,
        actor: Actor,
        resolution: DisputeResolution,
        refund_amount: Optional[Decimal] = None,
        admin_notes: Optional[str] = None,
    ) -> SessionDispute:
        """
        Close a dispute. ``refund_amount`` is in session-price units and is
        capped at the session price.
        """
        if not actor.is_admin:
            raise ForbiddenException("Only admins can resolve disputes")
        dispute = self.dispute_repository.get_by_id(dispute_id)
        if dispute is None:
            raise NotFoundException(f"Dispute {dispute_id} not found")
        if dispute.status not in OPEN_STATUSES:
            raise ConflictException(f"Dispute is already {dispute.status}")

        session = self.session_repository.get_by_id(dispute.session_id)
        refund = Decimal("0")
        if resolution == DisputeResolution.FULL_REFUND:
            refund = Decimal(session.price)
        elif resolution == DisputeResolution.PARTIAL_REFUND:
            if refund_amount is None or Decimal(str(refund_amount)) <= 0:
                raise ValidationException("A partial refund needs a positive refund amount")
            refund = min(Decimal(str(refund_amount)), Decimal(session.price))

        payment = session.payment
        if refund > 0:
            if payment is None or payment.status != PaymentStatus.CAPTURED.value:
                raise BusinessRuleException(
                    "Session has no captured payment to refund", code="REFUND_NOT_CAPTURED"
                )
            percentage = (refund / Decimal(session.price) * 100).quantize(Decimal("0.01"))
            if self.payments.refund_payment(payment, refund, percentage) is None:
                raise BusinessRuleException(
                    "Refund could not be issued; the dispute stays open",
                    code="DISPUTE_REFUND_FAILED",
                )

        with self.transaction():
            dispute.resolution = resolution.value
            dispute.refund_amount = refund if refund > 0 else None
            dispute.admin_notes = admin_notes
            dispute.resolved_by_id = actor.user_id
            dispute.resolved_at = utc_now()
            dispute.status = (
                DisputeStatus.REJECTED.value
                if resolution == DisputeResolution.NO_REFUND
                else DisputeStatus.RESOLVED.value
            )
            if session.status == SessionStatus.DISPUTED.value:
                session.status = SessionStatus.COMPLETED.value
            self.notifications.notify(
                dispute.mentee_id,
                NotificationType.DISPUTE_UPDATE,
                "Dispute Resolved",
                f"Your dispute was closed: {resolution.value.replace('_', ' ').lower()}.",
                f"user/sessions/{session.id}",
            )
        self.logger.info(
            "Dispute %s resolved with %s (refund %s)", dispute.id, resolution.value, refund
        )
        return dispute
