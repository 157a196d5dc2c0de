from .base import (
    CallbackOutcome,
    PayerInfo,
    PaymentIntent,
    PaymentProvider,
    PaymentProviderId,
    PaymentStatusSnapshot,
    RefundOutcome,
)
from .paymob_provider import PaymobPaymentProvider
from .registry import PaymentProviderRegistry, get_payment_provider_registry
from .stripe_provider import StripePaymentProvider

__all__ = [
    "CallbackOutcome",
    "PayerInfo",
    "PaymentIntent",
    "PaymentProvider",
    "PaymentProviderId",
    "PaymentProviderRegistry",
    "PaymentStatusSnapshot",
    "PaymobPaymentProvider",
    "RefundOutcome",
    "StripePaymentProvider",
    "get_payment_provider_registry",
]
