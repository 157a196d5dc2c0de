"""Capability interface shared by every payment provider variant."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from ...models.payment import PaymentStatus
from ..results import ProviderErrorKind, ProviderResult

SUPPORTED_CURRENCIES = frozenset({"USD", "EGP", "EUR"})


class PaymentProviderId(str, Enum):
    STRIPE = "stripe"
    PAYMOB = "paymob"


@dataclass(frozen=True)
class PayerInfo:
    session_id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    payment_method: Optional[str] = None  # card | wallet for the regional gateway


@dataclass(frozen=True)
class PaymentIntent:
    intent_id: str
    client_secret: str
    amount: Decimal
    currency: str


@dataclass(frozen=True)
class RefundOutcome:
    transaction_id: str
    refunded_amount: Decimal


@dataclass(frozen=True)
class PaymentStatusSnapshot:
    status: PaymentStatus
    transaction_id: Optional[str] = None


@dataclass(frozen=True)
class CallbackOutcome:
    """Normalized, verified provider callback."""

    success: bool
    intent_id: str
    status: PaymentStatus
    transaction_id: Optional[str] = None
    order_id: Optional[str] = None
    session_id: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    error_message: Optional[str] = None
    event_type: Optional[str] = None
    ignored: bool = False  # verified, but not an event this system acts on
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def dedupe_key(self) -> str:
        return f"{self.intent_id}:{self.status.value}"


@runtime_checkable
class PaymentProvider(Protocol):
    """One variant per provider; callers select it by ``PaymentProviderId``."""

    provider_id: PaymentProviderId

    def create_intent(
        self, amount: Decimal, currency: str, payer: PayerInfo
    ) -> ProviderResult[PaymentIntent]:
        ...

    def cancel_intent(self, intent_id: str) -> ProviderResult[bool]:
        ...

    def refund(
        self, intent_id: str, amount: Decimal, transaction_id: Optional[str] = None
    ) -> ProviderResult[RefundOutcome]:
        ...

    def get_status(self, intent_id: str) -> ProviderResult[PaymentStatusSnapshot]:
        ...

    def handle_callback(
        self, payload: bytes, signature: Optional[str] = None
    ) -> ProviderResult[CallbackOutcome]:
        ...


def to_minor_units(amount: Decimal) -> int:
    """Convert a major-unit amount to integer cents/piasters."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def validate_amount(amount: Any, provider: PaymentProviderId) -> Optional[ProviderResult[Any]]:
    """Reject zero, negative and non-numeric amounts. Returns None when valid."""
    try:
        value = Decimal(str(amount))
    except (ArithmeticError, ValueError):
        return ProviderResult.fail(
            ProviderErrorKind.VALIDATION, "Amount is not a number", provider=provider.value
        )
    if not value.is_finite() or value <= 0:
        return ProviderResult.fail(
            ProviderErrorKind.VALIDATION,
            "Amount must be greater than zero",
            provider=provider.value,
            details={"amount": str(amount)},
        )
    return None


def validate_charge(
    amount: Any, currency: Optional[str], provider: PaymentProviderId
) -> Optional[ProviderResult[Any]]:
    """Reject bad input before any network call. Returns None when valid."""
    invalid = validate_amount(amount, provider)
    if invalid is not None:
        return invalid
    if not currency or currency.upper() not in SUPPORTED_CURRENCIES:
        return ProviderResult.fail(
            ProviderErrorKind.VALIDATION,
            f"Unsupported currency: {currency!r}",
            provider=provider.value,
        )
    return None
