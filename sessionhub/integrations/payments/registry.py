"""Selects the payment provider variant for a request."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional, Union

from ...core.config import Settings, settings as default_settings
from ...core.exceptions import ValidationException
from .base import PaymentProvider, PaymentProviderId
from .paymob_provider import PaymobPaymentProvider
from .stripe_provider import StripePaymentProvider

logger = logging.getLogger(__name__)


class PaymentProviderRegistry:
    def __init__(self, providers: Iterable[PaymentProvider]) -> None:
        self._providers: Dict[PaymentProviderId, PaymentProvider] = {
            provider.provider_id: provider for provider in providers
        }

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "PaymentProviderRegistry":
        config = config or default_settings
        allow_unsigned = config.allow_unsigned_payment_callbacks and not config.is_production
        if config.allow_unsigned_payment_callbacks and config.is_production:
            logger.warning("allow_unsigned_payment_callbacks is ignored in production")
        return cls(
            [
                StripePaymentProvider(
                    secret_key=config.stripe_secret_key,
                    webhook_secret=config.stripe_webhook_secret,
                ),
                PaymobPaymentProvider(
                    api_key=config.paymob_api_key,
                    hmac_secret=config.paymob_hmac_secret,
                    card_integration_id=config.paymob_card_integration_id,
                    wallet_integration_id=config.paymob_wallet_integration_id,
                    base_url=config.paymob_base_url,
                    expiration_minutes=config.payment_expiration_minutes,
                    allow_unsigned_callbacks=allow_unsigned,
                ),
            ]
        )

    def get(self, provider_id: Union[PaymentProviderId, str]) -> PaymentProvider:
        if isinstance(provider_id, PaymentProviderId):
            provider_id = provider_id.value
        try:
            key = PaymentProviderId(str(provider_id).lower())
        except ValueError:
            raise ValidationException(
                f"Unknown payment provider: {provider_id}",
                code="UNKNOWN_PAYMENT_PROVIDER",
            )
        provider = self._providers.get(key)
        if provider is None:
            raise ValidationException(
                f"Payment provider {key.value} is not enabled",
                code="UNKNOWN_PAYMENT_PROVIDER",
            )
        return provider


_registry: Optional[PaymentProviderRegistry] = None


def get_payment_provider_registry() -> PaymentProviderRegistry:
    """Process-wide registry built lazily from settings."""
    global _registry
    if _registry is None:
        _registry = PaymentProviderRegistry.from_settings()
    return _registry
