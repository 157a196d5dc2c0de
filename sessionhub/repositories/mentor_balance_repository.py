"""Data access for mentor balances and payouts."""

from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from ..models.mentor_balance import MentorBalance, Payout
from .base_repository import BaseRepository


class MentorBalanceRepository(BaseRepository[MentorBalance]):
    def __init__(self, db: Session):
        super().__init__(db, MentorBalance)

    def get_by_mentor_id(self, mentor_id: str) -> Optional[MentorBalance]:
        return self.find_one_by(mentor_id=mentor_id)

    def get_or_create(self, mentor_id: str) -> MentorBalance:
        balance = self.get_by_mentor_id(mentor_id)
        if balance is None:
            balance = self.create(
                mentor_id=mentor_id,
                available_balance=Decimal("0"),
                pending_balance=Decimal("0"),
                total_earnings=Decimal("0"),
            )
        return balance


class PayoutRepository(BaseRepository[Payout]):
    def __init__(self, db: Session):
        super().__init__(db, Payout)
