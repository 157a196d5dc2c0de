"""
Payment provider callbacks.

Mounted under /webhooks/payments. The raw body is handed to the provider
adapter untouched so signatures verify against the exact bytes received.
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request

from ..schemas.payment_schemas import WebhookResponse
from ..services.payment_service import PaymentService
from .dependencies import get_payment_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks/payments", tags=["payment-webhooks"])


def _signature_for(provider: str, request: Request) -> Optional[str]:
    if provider == "stripe":
        return request.headers.get("stripe-signature")
    if provider == "paymob":
        return request.headers.get("x-paymob-signature") or request.query_params.get("hmac")
    return None


@router.post("/{provider}", response_model=WebhookResponse)
async def handle_payment_callback(
    provider: str,
    request: Request,
    payment_service: PaymentService = Depends(get_payment_service),
) -> WebhookResponse:
    """
    Verify and apply a provider callback.

    A bad signature answers 401, a malformed body 400. Re-delivered and
    unhandled events are acknowledged as ``ignored``.
    """
    provider = provider.strip().lower()
    payload = await request.body()
    signature = _signature_for(provider, request)

    outcome = await asyncio.to_thread(
        payment_service.handle_provider_callback, provider, payload, signature
    )
    if outcome.ignored:
        logger.info("%s callback %s acknowledged without changes", provider, outcome.event_type)
        return WebhookResponse(status="ignored", event_type=outcome.event_type)
    return WebhookResponse(status="success", event_type=outcome.event_type)
