# sessionhub/services/mentor_balance_service.py
"""
Mentor earnings ledger.

A captured payment first credits the mentor's pending balance (net of the
platform commission). Once its release date passes and no dispute is open,
the hourly sweep moves what is left of that share (after any refund) from
pending to available.
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, TypedDict

from sqlalchemy.orm import Session

from ..core.time_utils import utc_now
from ..models.mentor_balance import MentorBalance
from ..models.payment import Payment, PaymentStatus
from ..repositories.factory import RepositoryFactory
from .base import BaseService

CENT = Decimal("0.01")


class ReleaseResults(TypedDict):
    released: int
    failed: int
    amount: str


def _cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def mentor_share(payment: Payment, price: Decimal) -> Decimal:
    """Mentor's cut of a session price after platform commission."""
    rate = Decimal(str(payment.platform_commission_rate))
    return _cents(Decimal(price) * (Decimal("1") - rate))


def refunded_share(payment: Payment, price: Decimal) -> Decimal:
    """Part of the mentor's cut that went back to the mentee."""
    if not payment.refund_amount or not payment.amount:
        return Decimal("0")
    fraction = Decimal(payment.refund_amount) / Decimal(payment.amount)
    return _cents(mentor_share(payment, price) * min(fraction, Decimal("1")))


class MentorBalanceService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)
        self.balance_repository = RepositoryFactory.create_mentor_balance_repository(db)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)

    def get_balance(self, mentor_id: str) -> MentorBalance:
        return self.balance_repository.get_or_create(mentor_id)

    def credit_pending(
        self, payment: Payment, mentor_id: str, price: Decimal
    ) -> Optional[Decimal]:
        """
        Add the mentor's share of a captured payment to pending earnings.

        Idempotent per payment; returns the credited amount or None when
        nothing was credited. The caller commits.
        """
        if payment.status != PaymentStatus.CAPTURED.value:
            self.logger.info("Payment %s not captured; no balance credit", payment.id)
            return None
        if payment.balance_credited_at is not None:
            return None

        share = mentor_share(payment, price)
        balance = self.balance_repository.get_or_create(mentor_id)
        balance.pending_balance = Decimal(balance.pending_balance) + share
        balance.total_earnings = Decimal(balance.total_earnings) + share
        payment.balance_credited_at = utc_now()
        self.logger.info(
            "Credited %s to pending balance of mentor %s for payment %s",
            share,
            mentor_id,
            payment.id,
        )
        return share

    def reverse_refunded_share(
        self, payment: Payment, mentor_id: str, price: Decimal
    ) -> Decimal:
        """
        Take back the mentor's part of a refund already recorded on ``payment``.

        Draws from pending while the payment is unreleased, from available
        afterwards. No-op for payments that were never credited. The caller
        commits.
        """
        if payment.balance_credited_at is None:
            return Decimal("0")
        amount = refunded_share(payment, price)
        if amount <= 0:
            return Decimal("0")
        balance = self.balance_repository.get_or_create(mentor_id)
        if payment.released_at is None:
            balance.pending_balance = Decimal(balance.pending_balance) - amount
        else:
            balance.available_balance = Decimal(balance.available_balance) - amount
        balance.total_earnings = Decimal(balance.total_earnings) - amount
        self.logger.info("Reversed %s from mentor %s for payment %s", amount, mentor_id, payment.id)
        return amount

    @BaseService.measure_operation("release_matured_payments")
    def release_matured_payments(self, now: Optional[datetime] = None) -> ReleaseResults:
        """Move matured, undisputed payments from pending to available."""
        now = now or utc_now()
        results: ReleaseResults = {"released": 0, "failed": 0, "amount": "0.00"}
        total = Decimal("0")

        for payment in self.payment_repository.get_matured_unreleased(now):
            try:
                with self.transaction():
                    session = payment.session
                    remaining = mentor_share(payment, session.price) - refunded_share(
                        payment, session.price
                    )
                    balance = self.balance_repository.get_or_create(session.mentor_id)
                    balance.pending_balance = Decimal(balance.pending_balance) - remaining
                    balance.available_balance = Decimal(balance.available_balance) + remaining
                    payment.released_at = now
                results["released"] += 1
                total += remaining
            except Exception as exc:
                results["failed"] += 1
                self.logger.error(
                    "Failed to release payment %s: %s", payment.id, exc, exc_info=True
                )

        results["amount"] = str(_cents(total))
        if results["released"] or results["failed"]:
            self.logger.info(
                "Released %s matured payments (%s), %s failed",
                results["released"],
                results["amount"],
                results["failed"],
            )
        return results
