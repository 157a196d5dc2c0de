# sessionhub/services/payment_service.py
"""
Payment Service

Provider-facing side of the session lifecycle:
- creating payment intents for booked sessions
- applying verified provider callbacks exactly once
- client-side confirmation when the webhook is late
- refunds and expiry of unpaid intents

Provider calls are always made outside a database transaction. State
transitions on the session itself are delegated to the SessionOrchestrator.
"""

from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Optional

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
from ..core.time_utils import utc_now
from ..integrations.payments.base import (
    CallbackOutcome,
    PayerInfo,
    PaymentProviderId,
    RefundOutcome,
)
from ..integrations.payments.registry import (
    PaymentProviderRegistry,
    get_payment_provider_registry,
)
from ..models.notification import NotificationType
from ..models.payment import Payment, PaymentStatus, RefundStatus
from ..models.session import MentorshipSession, SessionStatus
from ..repositories.factory import RepositoryFactory
from ..tasks.names import CHECK_PAYMENT_EXPIRY
from ..tasks.scheduler import JobScheduler, get_job_scheduler
from .base import BaseService
from .mentor_balance_service import MentorBalanceService
from .notification_service import NotificationService

if TYPE_CHECKING:
    from .session_orchestrator import SessionOrchestrator

CENT = Decimal("0.01")

PROVIDER_CURRENCIES = {
    PaymentProviderId.STRIPE: "USD",
    PaymentProviderId.PAYMOB: "EGP",
}


def charge_amount(price: Decimal, provider_id: PaymentProviderId) -> Decimal:
    """Session price expressed in the provider's charge currency."""
    price = Decimal(price)
    if provider_id == PaymentProviderId.STRIPE:
        price = price / Decimal(str(settings.stripe_currency_divisor))
    return price.quantize(CENT, rounding=ROUND_HALF_UP)


class PaymentService(BaseService):
    def __init__(
        self,
        db: Session,
        registry: Optional[PaymentProviderRegistry] = None,
        scheduler: Optional[JobScheduler] = None,
        notifications: Optional[NotificationService] = None,
        orchestrator: Optional["SessionOrchestrator"] = None,
    ):
        super().__init__(db)
        self.registry = registry or get_payment_provider_registry()
        self.scheduler = scheduler or get_job_scheduler()
        self.notifications = notifications or NotificationService(db)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)
        self.session_repository = RepositoryFactory.create_session_repository(db)
        self.balances = MentorBalanceService(db)
        self._orchestrator = orchestrator

    @property
    def orchestrator(self) -> "SessionOrchestrator":
        if self._orchestrator is None:
            from .session_orchestrator import SessionOrchestrator

            self._orchestrator = SessionOrchestrator(
                self.db,
                scheduler=self.scheduler,
                notifications=self.notifications,
                payments=self,
            )
        return self._orchestrator

    # ── Intents ─────────────────────────────────────────────────────────

    @BaseService.measure_operation("create_payment_intent")
    def create_payment_intent(
        self,
        session_id: str,
        actor: Actor,
        provider_id: str,
        payment_method: Optional[str] = None,
    ) -> Payment:
        """
        Create the provider intent for a booked session and store it as PENDING.

        Raises:
            NotFoundException: unknown session
            ForbiddenException: caller is not the session's mentee
            BusinessRuleException: session is not awaiting payment
            ConflictException: the session already has a payment
        """
        provider = self.registry.get(provider_id)

        session = self.session_repository.get_by_id(session_id)
        if session is None:
            raise NotFoundException("Session not found")
        if actor.user_id != session.mentee_id:
            raise ForbiddenException("Only the mentee can pay for this session")
        if session.status != SessionStatus.PENDING.value:
            raise BusinessRuleException(
                f"Session cannot be paid - current status: {session.status}",
                code="SESSION_NOT_PAYABLE",
            )
        if self.payment_repository.get_by_session_id(session.id) is not None:
            raise ConflictException(
                "A payment already exists for this session", code="PAYMENT_EXISTS"
            )
        if payment_method and payment_method not in ("card", "wallet"):
            raise ValidationException(f"Unsupported payment method: {payment_method}")

        currency = PROVIDER_CURRENCIES[provider.provider_id]
        amount = charge_amount(session.price, provider.provider_id)
        payer = PayerInfo(
            session_id=session.id,
            email=session.mentee_email,
            first_name=session.mentee_name,
            payment_method=payment_method,
        )
        intent = provider.create_intent(amount, currency, payer).unwrap()

        with self.transaction():
            payment = self.payment_repository.create(
                session_id=session.id,
                mentee_id=session.mentee_id,
                provider=provider.provider_id.value,
                payment_method=payment_method,
                intent_id=intent.intent_id,
                client_secret=intent.client_secret,
                amount=intent.amount,
                currency=intent.currency,
                platform_commission_rate=Decimal(str(settings.platform_commission_rate)),
                status=PaymentStatus.PENDING.value,
            )

        expires_at = utc_now() + timedelta(minutes=settings.payment_expiration_minutes)
        self.scheduler.schedule(CHECK_PAYMENT_EXPIRY, expires_at, args=(payment.id,))
        self.logger.info(
            "Payment %s (%s %s %s) created for session %s",
            payment.id,
            payment.provider,
            payment.amount,
            payment.currency,
            session.id,
        )
        return payment

    # ── Callbacks ───────────────────────────────────────────────────────

    @BaseService.measure_operation("handle_provider_callback")
    def handle_provider_callback(
        self, provider_id: str, payload: bytes, signature: Optional[str] = None
    ) -> CallbackOutcome:
        """
        Verify a provider callback and apply it once.

        Verification failures raise (AuthenticationException for a bad
        signature, ValidationException for a malformed payload). A
        re-delivered event is acknowledged without touching state.
        """
        provider = self.registry.get(provider_id)
        outcome = provider.handle_callback(payload, signature).unwrap()
        if outcome.ignored:
            return outcome

        payment = self.payment_repository.get_by_intent_id(
            outcome.intent_id, provider.provider_id.value
        )
        if payment is None:
            self.logger.warning(
                "[AUDIT] %s callback for unknown intent %s acknowledged",
                provider.provider_id.value,
                outcome.intent_id,
            )
            return outcome
        if outcome.session_id and outcome.session_id != payment.session_id:
            raise BusinessRuleException(
                "Payment confirmation does not belong to this session",
                code="FOREIGN_SESSION_PAYMENT",
                details={"intent_id": outcome.intent_id},
            )

        newly_captured = False
        with self.transaction():
            if not self.payment_repository.record_event_once(
                provider.provider_id.value, outcome.dedupe_key
            ):
                self.logger.info(
                    "[AUDIT] Duplicate %s callback %s ignored",
                    provider.provider_id.value,
                    outcome.dedupe_key,
                )
                return outcome

            if outcome.status == PaymentStatus.CAPTURED:
                newly_captured = self.orchestrator.confirm_capture(
                    payment, outcome.intent_id, outcome.transaction_id
                )
            elif outcome.status == PaymentStatus.FAILED:
                self._mark_failed(payment, outcome.error_message)
            elif outcome.status == PaymentStatus.CANCELED:
                self._mark_canceled(payment)

            self.logger.info(
                "[AUDIT] Applied %s callback: payment=%s intent=%s status=%s txn=%s",
                provider.provider_id.value,
                payment.id,
                outcome.intent_id,
                outcome.status.value,
                outcome.transaction_id,
            )

        if newly_captured:
            self.orchestrator.after_capture(payment.session)
        return outcome

    def _mark_failed(self, payment: Payment, reason: Optional[str]) -> None:
        if payment.status != PaymentStatus.PENDING.value:
            self.logger.info(
                "Ignoring failure for payment %s in status %s", payment.id, payment.status
            )
            return
        payment.status = PaymentStatus.FAILED.value
        self.notifications.notify(
            payment.mentee_id,
            NotificationType.SESSION_CANCELLED,
            "Payment Failed",
            f"Your payment could not be completed: {reason or 'declined'}. "
            "You can try again before the booking expires.",
            f"user/sessions/{payment.session_id}",
        )

    def _mark_canceled(self, payment: Payment) -> None:
        if payment.status not in (PaymentStatus.PENDING.value, PaymentStatus.FAILED.value):
            self.logger.info(
                "Ignoring cancel for payment %s in status %s", payment.id, payment.status
            )
            return
        payment.status = PaymentStatus.CANCELED.value
        payment.cancelled_at = utc_now()
        session = payment.session
        if session is not None and session.status == SessionStatus.PENDING.value:
            self.orchestrator.cancel_unpaid(session, "Payment was cancelled")

    # ── Client-side confirmation ────────────────────────────────────────

    @BaseService.measure_operation("confirm_payment")
    def confirm_payment(self, session_id: str, actor: Actor) -> Payment:
        """Ask the provider directly when the client reports completion first."""
        payment = self.payment_repository.get_by_session_id(session_id)
        if payment is None:
            raise NotFoundException("Payment not found for this session")
        if actor.user_id != payment.mentee_id and not actor.is_admin:
            raise ForbiddenException("Only the mentee can confirm this payment")
        if payment.status == PaymentStatus.CAPTURED.value:
            return payment

        provider = self.registry.get(payment.provider)
        snapshot = provider.get_status(payment.intent_id).unwrap()
        if snapshot.status != PaymentStatus.CAPTURED:
            self.logger.info(
                "Payment %s not captured yet (provider status %s)",
                payment.id,
                snapshot.status.value,
            )
            return payment

        self._capture_from_status(payment, snapshot.transaction_id)
        return payment

    def _capture_from_status(self, payment: Payment, transaction_id: Optional[str]) -> bool:
        newly_captured = False
        with self.transaction():
            dedupe_key = f"{payment.intent_id}:{PaymentStatus.CAPTURED.value}"
            if self.payment_repository.record_event_once(payment.provider, dedupe_key):
                newly_captured = self.orchestrator.confirm_capture(
                    payment, payment.intent_id, transaction_id
                )
        if newly_captured:
            self.orchestrator.after_capture(payment.session)
        return newly_captured

    # ── Refunds ─────────────────────────────────────────────────────────

    def provider_amount(self, payment: Payment, price_amount: Decimal) -> Decimal:
        """Convert an amount in session-price units into the payment's currency."""
        price = Decimal(payment.session.price)
        if price <= 0:
            return Decimal("0")
        ratio = Decimal(price_amount) / price
        return (Decimal(payment.amount) * ratio).quantize(CENT, rounding=ROUND_HALF_UP)

    @BaseService.measure_operation("refund_payment")
    def refund_payment(
        self,
        payment: Payment,
        price_amount: Decimal,
        percentage: Optional[Decimal] = None,
    ) -> Optional[RefundOutcome]:
        """
        Refund ``price_amount`` (session-price units) of a captured payment.

        The provider call runs outside any transaction; the result is then
        persisted, the mentor's share reversed where it was credited and the
        mentee notified. A provider failure marks the refund FAILED and alerts
        an operator instead of raising, because the action that triggered
        the refund has already been committed.

        Raises:
            BusinessRuleException: the payment was never captured
            ConflictException: the payment was already refunded
        """
        if payment.status == PaymentStatus.REFUNDED.value:
            raise ConflictException("Payment has already been refunded", code="ALREADY_REFUNDED")
        if payment.status != PaymentStatus.CAPTURED.value:
            raise BusinessRuleException(
                "Cannot refund a payment that was not captured", code="REFUND_NOT_CAPTURED"
            )

        amount = min(self.provider_amount(payment, price_amount), Decimal(payment.amount))
        if amount <= 0:
            return None

        provider = self.registry.get(payment.provider)
        result = provider.refund(payment.intent_id, amount, payment.provider_transaction_id)

        if result.error is not None:
            with self.transaction():
                payment.refund_status = RefundStatus.FAILED.value
                self.notifications.alert_operator(
                    "Refund failed",
                    f"Refund of {amount} {payment.currency} for payment {payment.id} failed: "
                    f"{result.error.message}",
                    {"payment_id": payment.id, "kind": result.error.kind.value},
                )
            return None

        refund = result.unwrap()
        session = payment.session
        with self.transaction():
            payment.status = PaymentStatus.REFUNDED.value
            payment.refund_amount = amount
            payment.refund_percentage = percentage
            payment.refund_status = RefundStatus.COMPLETED.value
            payment.refunded_at = utc_now()
            self.balances.reverse_refunded_share(payment, session.mentor_id, session.price)
            self.notifications.notify(
                payment.mentee_id,
                NotificationType.SESSION_CANCELLED,
                "Refund Issued",
                f"A refund of {amount} {payment.currency} has been issued for your session.",
                f"user/sessions/{payment.session_id}",
            )
        self.logger.info(
            "[AUDIT] Refunded %s %s for payment %s (provider txn %s)",
            amount,
            payment.currency,
            payment.id,
            refund.transaction_id,
        )
        return refund

    def void_intent(self, payment: Payment) -> bool:
        """Cancel the provider intent of an abandoned payment. Failures are logged only."""
        cancelled = self.registry.get(payment.provider).cancel_intent(payment.intent_id)
        if cancelled.error is not None:
            self.logger.warning(
                "Failed to cancel intent %s: %s", payment.intent_id, cancelled.error.message
            )
            return False
        return True

    # ── Expiry ──────────────────────────────────────────────────────────

    @BaseService.measure_operation("check_and_cancel_payment")
    def check_and_cancel_payment(self, payment_id: str, now: Optional[datetime] = None) -> str:
        """
        Expiry job body. Returns what happened: "missing", "settled",
        "captured" (a missed capture was recovered) or "expired".
        """
        payment = self.payment_repository.get_by_id(payment_id)
        if payment is None:
            self.logger.warning("Expiry check for unknown payment %s", payment_id)
            return "missing"
        if payment.status not in (PaymentStatus.PENDING.value, PaymentStatus.FAILED.value):
            return "settled"

        provider = self.registry.get(payment.provider)
        status = provider.get_status(payment.intent_id)
        if status.is_ok and status.unwrap().status == PaymentStatus.CAPTURED:
            self.logger.info("Recovered missed capture for payment %s", payment.id)
            self._capture_from_status(payment, status.unwrap().transaction_id)
            return "captured"
        if status.error is not None:
            self.logger.warning(
                "Status check for payment %s failed: %s", payment.id, status.error.message
            )

        self.void_intent(payment)

        with self.transaction():
            payment.status = PaymentStatus.CANCELED.value
            payment.cancelled_at = now or utc_now()
            session: Optional[MentorshipSession] = payment.session
            if session is not None and session.status == SessionStatus.PENDING.value:
                self.orchestrator.cancel_unpaid(session, "Payment window expired")
        self.logger.info("Payment %s expired and was cancelled", payment.id)
        return "expired"
