# sessionhub/repositories/payment_repository.py
"""Data access for payments and provider-callback dedupe keys."""

from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.payment import Payment, PaymentStatus, ProcessedWebhookEvent
from ..models.session import MentorshipSession, SessionStatus
from .base_repository import BaseRepository


class PaymentRepository(BaseRepository[Payment]):
    def __init__(self, db: Session):
        super().__init__(db, Payment)

    def get_by_intent_id(self, intent_id: str, provider: Optional[str] = None) -> Optional[Payment]:
        criteria = {"intent_id": intent_id}
        if provider:
            criteria["provider"] = provider
        return self.find_one_by(**criteria)

    def get_by_session_id(self, session_id: str) -> Optional[Payment]:
        return self.find_one_by(session_id=session_id)

    def get_matured_unreleased(self, now: datetime, limit: int = 200) -> List[Payment]:
        """Credited payments past their hold date that were never released to the mentor."""
        try:
            return (
                self.db.query(Payment)
                .join(MentorshipSession, MentorshipSession.id == Payment.session_id)
                .filter(
                    Payment.status.in_(
                        (PaymentStatus.CAPTURED.value, PaymentStatus.REFUNDED.value)
                    ),
                    Payment.payment_release_date.isnot(None),
                    Payment.payment_release_date <= now,
                    Payment.balance_credited_at.isnot(None),
                    Payment.released_at.is_(None),
                    MentorshipSession.status != SessionStatus.DISPUTED.value,
                )
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error loading matured payments: %s", e)
            raise RepositoryException(f"Failed to load matured payments: {e}") from e

    def record_event_once(self, provider: str, event_key: str) -> bool:
        """
        Insert a dedupe key inside a savepoint.

        Returns False when the key already exists, i.e. the callback was
        applied before.
        """
        if self.db.query(ProcessedWebhookEvent.id).filter_by(
            provider=provider, event_key=event_key
        ).first():
            return False
        try:
            with self.db.begin_nested():
                self.db.add(ProcessedWebhookEvent(provider=provider, event_key=event_key))
            return True
        except IntegrityError:
            self.logger.info("Duplicate callback %s/%s ignored", provider, event_key)
            return False
