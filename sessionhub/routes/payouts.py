"""Mentor earnings and withdrawals, mounted under /api/v1/mentors/me."""

import asyncio

from fastapi import APIRouter, Depends, HTTPException, Path, status

from ..core.principal import Actor, ActorRole
from ..schemas.payment_schemas import MentorBalanceResponse, PayoutRequest, PayoutResponse
from ..services.mentor_balance_service import MentorBalanceService
from ..services.payout_service import PayoutService
from .dependencies import get_balance_service, get_current_actor, get_payout_service

router = APIRouter(prefix="/api/v1/mentors/me", tags=["payouts"])

ULID_PATH_PATTERN = r"^[0-9A-HJKMNP-TV-Z]{26}$"


async def get_mentor_actor(actor: Actor = Depends(get_current_actor)) -> Actor:
    if actor.role != ActorRole.MENTOR:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Mentor access required")
    return actor


@router.get("/balance", response_model=MentorBalanceResponse)
async def get_balance(
    actor: Actor = Depends(get_mentor_actor),
    balance_service: MentorBalanceService = Depends(get_balance_service),
) -> MentorBalanceResponse:
    balance = await asyncio.to_thread(balance_service.get_balance, actor.user_id)
    return MentorBalanceResponse.model_validate(balance)


@router.post("/payouts", response_model=PayoutResponse, status_code=status.HTTP_201_CREATED)
async def request_payout(
    request: PayoutRequest,
    actor: Actor = Depends(get_mentor_actor),
    payout_service: PayoutService = Depends(get_payout_service),
) -> PayoutResponse:
    """Reserve part of the available balance for withdrawal."""
    payout = await asyncio.to_thread(payout_service.request_payout, actor, request.amount)
    return PayoutResponse.model_validate(payout)


@router.post("/payouts/{payout_id}/cancel", response_model=PayoutResponse)
async def cancel_payout(
    payout_id: str = Path(..., description="Payout ULID", pattern=ULID_PATH_PATTERN),
    actor: Actor = Depends(get_mentor_actor),
    payout_service: PayoutService = Depends(get_payout_service),
) -> PayoutResponse:
    payout = await asyncio.to_thread(payout_service.cancel_payout, payout_id, actor)
    return PayoutResponse.model_validate(payout)
