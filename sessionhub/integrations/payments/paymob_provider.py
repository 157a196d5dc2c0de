"""Regional payment gateway (Paymob Accept) over its REST API."""

from __future__ import annotations

from decimal import Decimal
import hashlib
import hmac
import json
import logging
from typing import Any, Dict, Optional, cast
import uuid

import httpx
from pydantic import SecretStr

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

# Order in which the gateway concatenates transaction fields before signing.
HMAC_FIELDS = (
    "amount_cents",
    "created_at",
    "currency",
    "error_occured",
    "has_parent_transaction",
    "id",
    "integration_id",
    "is_3d_secure",
    "is_auth",
    "is_capture",
    "is_refunded",
    "is_standalone_payment",
    "is_voided",
    "order.id",
    "owner",
    "pending",
    "source_data.pan",
    "source_data.sub_type",
    "source_data.type",
    "success",
)

_BILLING_PLACEHOLDER = "NA"


class PaymobError(RuntimeError):
    """Raised internally when a gateway call fails; converted to a ProviderResult."""

    def __init__(
        self,
        message: str,
        kind: ProviderErrorKind,
        status_code: int | None = None,
        *,
        details: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.status_code = status_code
        self.details = details


def _lookup(obj: Dict[str, Any], dotted: str) -> Any:
    value: Any = obj
    for part in dotted.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _hmac_field(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def compute_callback_hmac(transaction: Dict[str, Any], secret: str) -> str:
    """Hex HMAC-SHA512 of the gateway's ordered transaction fields."""
    message = "".join(_hmac_field(_lookup(transaction, name)) for name in HMAC_FIELDS)
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha512).hexdigest()


def _session_from_merchant_order(order: Dict[str, Any]) -> Optional[str]:
    # merchant_order_id is "{session_id}_{uuid}"
    merchant_order_id = order.get("merchant_order_id")
    if not merchant_order_id or "_" not in str(merchant_order_id):
        return None
    return str(merchant_order_id).rsplit("_", 1)[0]


def _status_kind(status_code: int) -> ProviderErrorKind:
    if status_code in (401, 403):
        return ProviderErrorKind.AUTHENTICATION
    if status_code == 404:
        return ProviderErrorKind.NOT_FOUND
    if status_code in (400, 422):
        return ProviderErrorKind.VALIDATION
    if status_code == 429 or status_code >= 500:
        return ProviderErrorKind.TRANSIENT
    return ProviderErrorKind.PROVIDER


class PaymobPaymentProvider:
    provider_id = PaymentProviderId.PAYMOB

    def __init__(
        self,
        *,
        api_key: str | SecretStr,
        hmac_secret: str | SecretStr,
        card_integration_id: int = 0,
        wallet_integration_id: int = 0,
        base_url: str = "https://accept.paymob.com/api/",
        expiration_minutes: int = 60,
        allow_unsigned_callbacks: bool = False,
        timeout: float = 30.0,
    ) -> None:
        self._api_key = api_key.get_secret_value() if isinstance(api_key, SecretStr) else api_key
        self._hmac_secret = (
            hmac_secret.get_secret_value() if isinstance(hmac_secret, SecretStr) else hmac_secret
        )
        self._card_integration_id = card_integration_id
        self._wallet_integration_id = wallet_integration_id
        self._base_url = base_url.rstrip("/")
        self._expiration_seconds = expiration_minutes * 60
        self._allow_unsigned_callbacks = allow_unsigned_callbacks
        self._timeout = timeout

    def _fail(self, kind: ProviderErrorKind, message: str, **kwargs: Any) -> ProviderResult[Any]:
        return ProviderResult.fail(kind, message, provider=self.provider_id.value, **kwargs)

    def _from_error(self, exc: PaymobError) -> ProviderResult[Any]:
        return self._fail(
            exc.kind,
            exc.message,
            status_code=exc.status_code,
            details={"response": exc.details} if exc.details else None,
        )

    def _require_key(self) -> Optional[ProviderResult[Any]]:
        if not self._api_key:
            return self._fail(ProviderErrorKind.CONFIGURATION, "Paymob API key is not configured")
        return None

    def _request(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """POST a JSON body to the gateway and return the decoded response."""
        url = f"{self._base_url}/{path.lstrip('/')}"
        try:
            with httpx.Client(timeout=self._timeout) as client:
                response = client.request("POST", url, json=body)
        except httpx.TransportError as exc:
            logger.error("Paymob API unreachable for %s: %s", path, exc)
            raise PaymobError(
                f"Paymob API unreachable: {exc}", ProviderErrorKind.TRANSIENT
            ) from exc

        if response.status_code >= 400:
            logger.error(
                "Paymob API error %s for %s: %s",
                response.status_code,
                path,
                response.text[:500],
            )
            raise PaymobError(
                f"Paymob request to {path} failed with status {response.status_code}",
                _status_kind(response.status_code),
                response.status_code,
                details=response.text[:500],
            )

        try:
            parsed = response.json()
        except ValueError as exc:
            raise PaymobError(
                f"Paymob returned a non-JSON response for {path}",
                ProviderErrorKind.MALFORMED_PAYLOAD,
                response.status_code,
            ) from exc
        if not isinstance(parsed, dict):
            raise PaymobError(
                f"Paymob returned an unexpected response for {path}",
                ProviderErrorKind.MALFORMED_PAYLOAD,
                response.status_code,
            )
        return cast(Dict[str, Any], parsed)

    # ── Gateway steps ───────────────────────────────────────────────────

    def _auth_token(self) -> str:
        data = self._request("auth/tokens", {"api_key": self._api_key})
        token = data.get("token")
        if not token:
            raise PaymobError("Invalid authentication response", ProviderErrorKind.AUTHENTICATION)
        return str(token)

    def _create_order(self, token: str, amount_cents: int, currency: str, session_id: str) -> int:
        data = self._request(
            "ecommerce/orders",
            {
                "auth_token": token,
                "delivery_needed": False,
                "amount_cents": amount_cents,
                "currency": currency,
                "merchant_order_id": f"{session_id}_{uuid.uuid4()}",
            },
        )
        order_id = data.get("id")
        if not order_id:
            raise PaymobError("Invalid order response", ProviderErrorKind.MALFORMED_PAYLOAD)
        return int(order_id)

    def _integration_id(self, payment_method: Optional[str]) -> int:
        if (payment_method or "").lower() == "wallet":
            return self._wallet_integration_id
        return self._card_integration_id

    def _payment_key(
        self, token: str, order_id: int, amount_cents: int, currency: str, payer: PayerInfo
    ) -> str:
        integration_id = self._integration_id(payer.payment_method)
        if not integration_id:
            raise PaymobError(
                f"Paymob integration id not configured for payment method "
                f"{payer.payment_method or 'card'}",
                ProviderErrorKind.CONFIGURATION,
            )
        billing = {
            name: _BILLING_PLACEHOLDER
            for name in (
                "apartment",
                "floor",
                "street",
                "building",
                "shipping_method",
                "postal_code",
                "city",
                "country",
                "state",
            )
        }
        billing.update(
            email=payer.email or _BILLING_PLACEHOLDER,
            first_name=payer.first_name or _BILLING_PLACEHOLDER,
            last_name=payer.last_name or _BILLING_PLACEHOLDER,
            phone_number=payer.phone or _BILLING_PLACEHOLDER,
        )
        data = self._request(
            "acceptance/payment_keys",
            {
                "auth_token": token,
                "amount_cents": amount_cents,
                "expiration": self._expiration_seconds,
                "order_id": order_id,
                "billing_data": billing,
                "currency": currency,
                "integration_id": integration_id,
            },
        )
        key = data.get("token")
        if not key:
            raise PaymobError("Invalid payment key response", ProviderErrorKind.MALFORMED_PAYLOAD)
        return str(key)

    # ── Capability interface ────────────────────────────────────────────

    def create_intent(
        self, amount: Decimal, currency: str, payer: PayerInfo
    ) -> ProviderResult[PaymentIntent]:
        invalid = validate_charge(amount, currency, self.provider_id) or self._require_key()
        if invalid is not None:
            return invalid

        amount_cents = to_minor_units(amount)
        currency = currency.upper()
        try:
            token = self._auth_token()
            order_id = self._create_order(token, amount_cents, currency, payer.session_id)
            payment_key = self._payment_key(token, order_id, amount_cents, currency, payer)
        except PaymobError as exc:
            return self._from_error(exc)

        logger.info("Paymob order %s created for session %s", order_id, payer.session_id)
        return ProviderResult.ok(
            PaymentIntent(
                intent_id=str(order_id),
                client_secret=payment_key,
                amount=Decimal(str(amount)),
                currency=currency,
            )
        )

    def cancel_intent(self, intent_id: str) -> ProviderResult[bool]:
        # Unpaid orders lapse with their payment key; nothing to call.
        logger.info("Paymob order %s left to expire with its payment key", intent_id)
        return ProviderResult.ok(True)

    def refund(
        self, intent_id: str, amount: Decimal, transaction_id: Optional[str] = None
    ) -> ProviderResult[RefundOutcome]:
        if not transaction_id:
            return self._fail(
                ProviderErrorKind.VALIDATION,
                "Transaction id is required for a Paymob refund",
                details={"intent_id": intent_id},
            )
        invalid = validate_amount(amount, self.provider_id) or self._require_key()
        if invalid is not None:
            return invalid

        try:
            token = self._auth_token()
            data = self._request(
                "acceptance/void_refund/refund",
                {
                    "auth_token": token,
                    "transaction_id": transaction_id,
                    "amount_cents": to_minor_units(amount),
                },
            )
        except PaymobError as exc:
            return self._from_error(exc)

        if not data.get("success"):
            logger.error("Paymob refund for transaction %s was not successful", transaction_id)
            return self._fail(
                ProviderErrorKind.PROVIDER,
                "Paymob refund request was not successful",
                details={"transaction_id": transaction_id},
            )
        return ProviderResult.ok(
            RefundOutcome(
                transaction_id=str(data.get("id")),
                refunded_amount=Decimal(int(data.get("amount_cents") or 0)) / 100,
            )
        )

    def get_status(self, intent_id: str) -> ProviderResult[PaymentStatusSnapshot]:
        missing = self._require_key()
        if missing is not None:
            return missing
        try:
            token = self._auth_token()
            data = self._request(
                "ecommerce/orders/transaction_inquiry",
                {"auth_token": token, "order_id": intent_id},
            )
        except PaymobError as exc:
            return self._from_error(exc)

        if data.get("is_refunded"):
            status = PaymentStatus.REFUNDED
        elif data.get("is_voided"):
            status = PaymentStatus.CANCELED
        elif data.get("pending"):
            status = PaymentStatus.PENDING
        elif data.get("success"):
            status = PaymentStatus.CAPTURED
        else:
            status = PaymentStatus.FAILED
        txn = data.get("id")
        return ProviderResult.ok(
            PaymentStatusSnapshot(status=status, transaction_id=str(txn) if txn else None)
        )

    def handle_callback(
        self, payload: bytes, signature: Optional[str] = None
    ) -> ProviderResult[CallbackOutcome]:
        if not payload:
            return self._fail(ProviderErrorKind.VALIDATION, "Callback payload cannot be empty")
        try:
            body = json.loads(payload)
        except ValueError as exc:
            logger.error("Failed to decode Paymob callback payload: %s", exc)
            return self._fail(ProviderErrorKind.MALFORMED_PAYLOAD, "Invalid callback payload")

        transaction = body.get("obj") if isinstance(body, dict) else None
        if not isinstance(transaction, dict):
            return self._fail(ProviderErrorKind.MALFORMED_PAYLOAD, "Callback has no transaction")
        order = transaction.get("order")
        order_id = order.get("id") if isinstance(order, dict) else None
        if order_id is None or transaction.get("id") is None:
            return self._fail(
                ProviderErrorKind.MALFORMED_PAYLOAD, "Callback transaction is missing ids"
            )

        if signature:
            if not self._hmac_secret:
                return self._fail(
                    ProviderErrorKind.CONFIGURATION, "Paymob HMAC secret is not configured"
                )
            expected = compute_callback_hmac(transaction, self._hmac_secret)
            if not hmac.compare_digest(expected, signature.strip().lower()):
                logger.warning(
                    "Invalid HMAC signature for Paymob callback, transaction %s",
                    transaction.get("id"),
                )
                return self._fail(ProviderErrorKind.AUTHENTICATION, "Invalid callback signature")
        elif self._allow_unsigned_callbacks:
            logger.warning(
                "Accepting unsigned Paymob callback for order %s (unsigned callbacks enabled)",
                order_id,
            )
        else:
            return self._fail(ProviderErrorKind.AUTHENTICATION, "Missing callback signature")

        success = bool(transaction.get("success"))
        event_type = str(body.get("type") or "TRANSACTION")
        if not success and transaction.get("pending"):
            logger.info("Paymob transaction %s still pending", transaction.get("id"))
            return ProviderResult.ok(
                CallbackOutcome(
                    success=False,
                    intent_id=str(order_id),
                    status=PaymentStatus.PENDING,
                    transaction_id=str(transaction["id"]),
                    order_id=str(order_id),
                    event_type=event_type,
                    ignored=True,
                )
            )

        amount_cents = transaction.get("amount_cents")
        return ProviderResult.ok(
            CallbackOutcome(
                success=success,
                intent_id=str(order_id),
                status=PaymentStatus.CAPTURED if success else PaymentStatus.FAILED,
                transaction_id=str(transaction["id"]),
                order_id=str(order_id),
                session_id=_session_from_merchant_order(order),
                amount=Decimal(int(amount_cents)) / 100 if amount_cents is not None else None,
                currency=transaction.get("currency"),
                error_message=None if success else "Payment failed",
                event_type=event_type,
                raw=transaction,
            )
        )
