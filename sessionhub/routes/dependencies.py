"""Request-scoped dependencies: caller identity and service wiring."""

from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from ..core.principal import Actor, ActorRole
from ..database import get_db
from ..services.dispute_service import DisputeService
from ..services.mentor_balance_service import MentorBalanceService
from ..services.payment_service import PaymentService
from ..services.payout_service import PayoutService
from ..services.session_orchestrator import SessionOrchestrator
from ..services.transcript_service import TranscriptService
from ..tasks.scheduler import JobScheduler, get_job_scheduler


async def get_current_actor(
    x_actor_id: Optional[str] = Header(default=None),
    x_actor_role: Optional[str] = Header(default=None),
) -> Actor:
    """
    Caller identity forwarded by the API gateway.

    Authentication happens upstream; this only rejects requests that
    arrive without a usable identity.
    """
    if not x_actor_id or not x_actor_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing caller identity"
        )
    try:
        role = ActorRole(x_actor_role.strip().lower())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown caller role"
        )
    if role == ActorRole.SYSTEM:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="System identity is internal only"
        )
    return Actor(user_id=x_actor_id.strip(), role=role)


async def get_admin_actor(actor: Actor = Depends(get_current_actor)) -> Actor:
    if actor.role != ActorRole.ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return actor


def get_scheduler() -> JobScheduler:
    return get_job_scheduler()


def get_session_orchestrator(
    db: Session = Depends(get_db), scheduler: JobScheduler = Depends(get_scheduler)
) -> SessionOrchestrator:
    return SessionOrchestrator(db, scheduler=scheduler)


def get_payment_service(
    db: Session = Depends(get_db), scheduler: JobScheduler = Depends(get_scheduler)
) -> PaymentService:
    return PaymentService(db, scheduler=scheduler)


def get_transcript_service(
    db: Session = Depends(get_db),
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator),
) -> TranscriptService:
    return TranscriptService(
        db,
        scheduler=orchestrator.scheduler,
        notifications=orchestrator.notifications,
        orchestrator=orchestrator,
    )


def get_dispute_service(
    db: Session = Depends(get_db),
    payments: PaymentService = Depends(get_payment_service),
) -> DisputeService:
    return DisputeService(db, payments=payments, notifications=payments.notifications)


def get_payout_service(db: Session = Depends(get_db)) -> PayoutService:
    return PayoutService(db)


def get_balance_service(db: Session = Depends(get_db)) -> MentorBalanceService:
    return MentorBalanceService(db)
