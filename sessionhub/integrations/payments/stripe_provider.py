"""Card-network payment provider backed by the Stripe SDK."""

from __future__ import annotations

from decimal import Decimal
import logging
from typing import Any, Dict, Optional

from pydantic import SecretStr
import stripe

from ...models.payment import PaymentStatus
from ..results import ProviderErrorKind, ProviderResult
from .base import (
    CallbackOutcome,
    PayerInfo,
    PaymentIntent,
    PaymentProviderId,
    PaymentStatusSnapshot,
    RefundOutcome,
    to_minor_units,
    validate_amount,
    validate_charge,
)

logger = logging.getLogger(__name__)

_STATUS_MAP: Dict[str, PaymentStatus] = {
    "succeeded": PaymentStatus.CAPTURED,
    "requires_payment_method": PaymentStatus.FAILED,
    "canceled": PaymentStatus.CANCELED,
}

_CALLBACK_EVENTS: Dict[str, PaymentStatus] = {
    "payment_intent.succeeded": PaymentStatus.CAPTURED,
    "payment_intent.payment_failed": PaymentStatus.FAILED,
    "payment_intent.canceled": PaymentStatus.CANCELED,
}


def _secret(value: str | SecretStr) -> str:
    return value.get_secret_value() if isinstance(value, SecretStr) else value


def _from_minor(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    return (Decimal(int(value)) / 100).quantize(Decimal("0.01"))


class StripePaymentProvider:
    provider_id = PaymentProviderId.STRIPE

    def __init__(self, *, secret_key: str | SecretStr, webhook_secret: str | SecretStr) -> None:
        self._secret_key = _secret(secret_key)
        self._webhook_secret = _secret(webhook_secret)
        if self._secret_key:
            stripe.api_key = self._secret_key

    def _fail(self, kind: ProviderErrorKind, message: str, **kwargs: Any) -> ProviderResult[Any]:
        return ProviderResult.fail(kind, message, provider=self.provider_id.value, **kwargs)

    def _map_error(self, exc: stripe.StripeError, operation: str) -> ProviderResult[Any]:
        if isinstance(exc, stripe.CardError):
            kind = ProviderErrorKind.PAYMENT_DECLINED
        elif isinstance(exc, stripe.InvalidRequestError):
            kind = ProviderErrorKind.VALIDATION
        elif isinstance(exc, stripe.AuthenticationError):
            kind = ProviderErrorKind.AUTHENTICATION
        elif isinstance(exc, (stripe.RateLimitError, stripe.APIConnectionError, stripe.APIError)):
            kind = ProviderErrorKind.TRANSIENT
        else:
            kind = ProviderErrorKind.PROVIDER
        logger.error("Stripe %s failed (%s): %s", operation, kind.value, exc)
        return self._fail(
            kind,
            getattr(exc, "user_message", None) or str(exc) or "Stripe request failed",
            status_code=getattr(exc, "http_status", None),
            details={"operation": operation, "stripe_code": getattr(exc, "code", None)},
        )

    def _require_key(self) -> Optional[ProviderResult[Any]]:
        if not self._secret_key:
            return self._fail(
                ProviderErrorKind.CONFIGURATION, "Stripe secret key is not configured"
            )
        return None

    # ── Capability interface ────────────────────────────────────────────

    def create_intent(
        self, amount: Decimal, currency: str, payer: PayerInfo
    ) -> ProviderResult[PaymentIntent]:
        invalid = validate_charge(amount, currency, self.provider_id) or self._require_key()
        if invalid is not None:
            return invalid

        try:
            intent = stripe.PaymentIntent.create(
                amount=to_minor_units(amount),
                currency=currency.lower(),
                metadata={"session_id": payer.session_id},
                receipt_email=payer.email,
                automatic_payment_methods={"enabled": True},
            )
        except stripe.StripeError as exc:
            return self._map_error(exc, "create_intent")

        logger.info("Stripe intent %s created for session %s", intent["id"], payer.session_id)
        return ProviderResult.ok(
            PaymentIntent(
                intent_id=intent["id"],
                client_secret=intent["client_secret"],
                amount=Decimal(str(amount)),
                currency=currency.upper(),
            )
        )

    def cancel_intent(self, intent_id: str) -> ProviderResult[bool]:
        missing = self._require_key()
        if missing is not None:
            return missing
        try:
            stripe.PaymentIntent.cancel(intent_id)
        except stripe.StripeError as exc:
            return self._map_error(exc, "cancel_intent")
        return ProviderResult.ok(True)

    def refund(
        self, intent_id: str, amount: Decimal, transaction_id: Optional[str] = None
    ) -> ProviderResult[RefundOutcome]:
        invalid = validate_amount(amount, self.provider_id) or self._require_key()
        if invalid is not None:
            return invalid
        try:
            refund = stripe.Refund.create(payment_intent=intent_id, amount=to_minor_units(amount))
        except stripe.StripeError as exc:
            return self._map_error(exc, "refund")
        return ProviderResult.ok(
            RefundOutcome(
                transaction_id=refund["id"],
                refunded_amount=_from_minor(refund["amount"]) or Decimal("0"),
            )
        )

    def get_status(self, intent_id: str) -> ProviderResult[PaymentStatusSnapshot]:
        missing = self._require_key()
        if missing is not None:
            return missing
        try:
            intent = stripe.PaymentIntent.retrieve(intent_id)
        except stripe.StripeError as exc:
            return self._map_error(exc, "get_status")
        status = _STATUS_MAP.get(intent["status"], PaymentStatus.PENDING)
        return ProviderResult.ok(
            PaymentStatusSnapshot(status=status, transaction_id=intent.get("latest_charge"))
        )

    def handle_callback(
        self, payload: bytes, signature: Optional[str] = None
    ) -> ProviderResult[CallbackOutcome]:
        if not signature:
            return self._fail(ProviderErrorKind.VALIDATION, "Missing Stripe-Signature header")
        if not self._webhook_secret:
            return self._fail(
                ProviderErrorKind.CONFIGURATION, "Stripe webhook secret is not configured"
            )

        try:
            event = stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except stripe.SignatureVerificationError as exc:
            logger.warning("Invalid Stripe webhook signature: %s", exc)
            return self._fail(ProviderErrorKind.AUTHENTICATION, "Invalid webhook signature")
        except ValueError as exc:
            return self._fail(ProviderErrorKind.MALFORMED_PAYLOAD, f"Invalid payload: {exc}")

        event_type = event["type"]
        data = event.get("data") or {}
        intent = data.get("object") or {}
        intent_id = intent.get("id")
        if not intent_id:
            return self._fail(ProviderErrorKind.MALFORMED_PAYLOAD, "Event has no payment intent id")

        status = _CALLBACK_EVENTS.get(event_type)
        if status is None:
            logger.info("Ignoring Stripe event %s for intent %s", event_type, intent_id)
            return ProviderResult.ok(
                CallbackOutcome(
                    success=False,
                    intent_id=intent_id,
                    status=PaymentStatus.PENDING,
                    event_type=event_type,
                    ignored=True,
                )
            )

        last_error = intent.get("last_payment_error") or {}
        metadata = intent.get("metadata") or {}
        return ProviderResult.ok(
            CallbackOutcome(
                success=status == PaymentStatus.CAPTURED,
                intent_id=intent_id,
                status=status,
                transaction_id=intent.get("latest_charge"),
                order_id=intent_id,
                session_id=metadata.get("session_id"),
                amount=_from_minor(intent.get("amount_received") or intent.get("amount")),
                currency=(intent.get("currency") or "").upper() or None,
                error_message=last_error.get("message"),
                event_type=event_type,
                raw=dict(intent),
            )
        )
