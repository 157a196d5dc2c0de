# sessionhub/services/payout_service.py
"""
Mentor payouts.

A payout reserves money from the available balance when requested. Funds
leave the platform outside this system; an operator records the outcome,
and a failed or cancelled payout returns the reserved amount.
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import (
    BusinessRuleException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from ..core.principal import Actor, ActorRole
from ..core.time_utils import utc_now
from ..models.mentor_balance import Payout, PayoutStatus
from ..repositories.factory import RepositoryFactory
from .base import BaseService


class PayoutService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)
        self.payout_repository = RepositoryFactory.create_payout_repository(db)
        self.balance_repository = RepositoryFactory.create_mentor_balance_repository(db)

    def _get_payout(self, payout_id: str) -> Payout:
        payout = self.payout_repository.get_by_id(payout_id)
        if payout is None:
            raise NotFoundException(f"Payout {payout_id} not found")
        return payout

    def _require_status(self, payout: Payout, required: PayoutStatus) -> None:
        if payout.status != required.value:
            raise BusinessRuleException(
                f"Cannot perform operation on payout {payout.id}. "
                f"Current status: {payout.status}, Required status: {required.value}",
                code="PAYOUT_INVALID_STATUS",
            )

    def _return_to_available(self, payout: Payout) -> None:
        balance = self.balance_repository.get_or_create(payout.mentor_id)
        balance.available_balance = Decimal(balance.available_balance) + Decimal(payout.amount)

    @BaseService.measure_operation("request_payout")
    def request_payout(self, actor: Actor, amount: Decimal) -> Payout:
        if actor.role != ActorRole.MENTOR:
            raise ForbiddenException("Only mentors can request payouts")
        amount = Decimal(str(amount))
        minimum = Decimal(str(settings.payout_min_amount))
        maximum = Decimal(str(settings.payout_max_amount))
        if amount < minimum or amount > maximum:
            raise ValidationException(f"Payout amount must be between {minimum} and {maximum}")

        with self.transaction():
            balance = self.balance_repository.get_or_create(actor.user_id)
            available = Decimal(balance.available_balance)
            if amount > available:
                raise BusinessRuleException(
                    f"Insufficient balance. Requested: {amount}, Available: {available}",
                    code="INSUFFICIENT_BALANCE",
                )
            balance.available_balance = available - amount
            payout = self.payout_repository.create(
                mentor_id=actor.user_id, amount=amount, status=PayoutStatus.REQUESTED.value
            )
        self.logger.info("Payout %s of %s requested by mentor %s", payout.id, amount, actor.user_id)
        return payout

    @BaseService.measure_operation("process_payout")
    def process_payout(
        self,
        payout_id: str,
        actor: Actor,
        succeeded: bool = True,
        failure_reason: Optional[str] = None,
    ) -> Payout:
        """
        Record the transfer of a requested payout.

        The payout passes through PROCESSING (committed on its own) before
        its outcome is written. A failure returns the amount to available.
        """
        if not actor.is_admin:
            raise ForbiddenException("Only admins can process payouts")
        payout = self._get_payout(payout_id)
        self._require_status(payout, PayoutStatus.REQUESTED)

        with self.transaction():
            payout.status = PayoutStatus.PROCESSING.value
            payout.processed_at = utc_now()
        self.logger.info("Payout %s status updated to PROCESSING", payout.id)

        with self.transaction():
            if succeeded:
                payout.status = PayoutStatus.COMPLETED.value
                payout.completed_at = utc_now()
            else:
                payout.status = PayoutStatus.FAILED.value
                payout.failure_reason = failure_reason or "Transfer failed"
                self._return_to_available(payout)

        if succeeded:
            self.logger.info("Payout %s completed", payout.id)
        else:
            self.logger.warning("Payout %s failed: %s", payout.id, payout.failure_reason)
        return payout

    def cancel_payout(self, payout_id: str, actor: Actor) -> Payout:
        payout = self._get_payout(payout_id)
        if not actor.is_admin and actor.user_id != payout.mentor_id:
            raise ForbiddenException("Access denied to this payout")
        self._require_status(payout, PayoutStatus.REQUESTED)
        with self.transaction():
            payout.status = PayoutStatus.CANCELLED.value
            payout.cancelled_at = utc_now()
            self._return_to_available(payout)
        self.logger.info("Payout %s cancelled; %s returned to available", payout.id, payout.amount)
        return payout
