# sessionhub/repositories/factory.py
"""
Repository Factory

Provides centralized creation of repository instances,
ensuring consistent initialization and dependency injection.
"""

from sqlalchemy.orm import Session

from .dispute_repository import DisputeRepository
from .mentor_balance_repository import MentorBalanceRepository, PayoutRepository
from .payment_repository import PaymentRepository
from .session_repository import SessionRepository
from .time_slot_repository import TimeSlotRepository


class RepositoryFactory:
    """Factory class for creating repository instances."""

    @staticmethod
    def create_session_repository(db: Session) -> SessionRepository:
        return SessionRepository(db)

    @staticmethod
    def create_payment_repository(db: Session) -> PaymentRepository:
        return PaymentRepository(db)

    @staticmethod
    def create_time_slot_repository(db: Session) -> TimeSlotRepository:
        return TimeSlotRepository(db)

    @staticmethod
    def create_mentor_balance_repository(db: Session) -> MentorBalanceRepository:
        return MentorBalanceRepository(db)

    @staticmethod
    def create_payout_repository(db: Session) -> PayoutRepository:
        return PayoutRepository(db)

    @staticmethod
    def create_dispute_repository(db: Session) -> DisputeRepository:
        return DisputeRepository(db)
