"""
Operator endpoints.

Mounted under /api/v1/admin. Payout transfers happen outside the system;
the operator records their outcome here.
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, Path

from ..core.principal import Actor
from ..schemas.payment_schemas import PayoutResponse, ProcessPayoutRequest
from ..schemas.session_schemas import DisputeResponse, ResolveDisputeRequest
from ..services.dispute_service import DisputeService
from ..services.payout_service import PayoutService
from .dependencies import get_admin_actor, get_dispute_service, get_payout_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])

ULID_PATH_PATTERN = r"^[0-9A-HJKMNP-TV-Z]{26}$"


@router.post("/payouts/{payout_id}/process", response_model=PayoutResponse)
async def process_payout(
    request: ProcessPayoutRequest,
    payout_id: str = Path(..., description="Payout ULID", pattern=ULID_PATH_PATTERN),
    actor: Actor = Depends(get_admin_actor),
    payout_service: PayoutService = Depends(get_payout_service),
) -> PayoutResponse:
    payout = await asyncio.to_thread(
        payout_service.process_payout, payout_id, actor, request.succeeded, request.failure_reason
    )
    logger.info("[AUDIT] Payout %s processed by %s: %s", payout_id, actor.user_id, payout.status)
    return PayoutResponse.model_validate(payout)


@router.post("/disputes/{dispute_id}/resolve", response_model=DisputeResponse)
async def resolve_dispute(
    request: ResolveDisputeRequest,
    dispute_id: str = Path(..., description="Dispute ULID", pattern=ULID_PATH_PATTERN),
    actor: Actor = Depends(get_admin_actor),
    dispute_service: DisputeService = Depends(get_dispute_service),
) -> DisputeResponse:
    dispute = await asyncio.to_thread(
        dispute_service.resolve_dispute,
        dispute_id,
        actor,
        request.resolution,
        request.refund_amount,
        request.admin_notes,
    )
    return DisputeResponse.model_validate(dispute)
