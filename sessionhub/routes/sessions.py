"""
Session lifecycle endpoints.

Mounted under /api/v1/sessions. Service calls are synchronous and run in a
worker thread so provider round trips never block the event loop.
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, Path, status

from ..core.principal import Actor
from ..schemas.payment_schemas import (
    CreatePaymentIntentRequest,
    PaymentIntentResponse,
    PaymentResponse,
)
from ..schemas.session_schemas import (
    BookSessionRequest,
    CancelRecordResponse,
    CancelSessionRequest,
    DisputeResponse,
    OpenDisputeRequest,
    RecordingAccessResponse,
    RescheduleRecordResponse,
    RescheduleSessionRequest,
    SessionResponse,
    TranscriptResponse,
)
from ..services.dispute_service import DisputeService
from ..services.payment_service import PaymentService
from ..services.session_orchestrator import SessionOrchestrator
from ..services.transcript_service import TranscriptService
from .dependencies import (
    get_current_actor,
    get_dispute_service,
    get_payment_service,
    get_session_orchestrator,
    get_transcript_service,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/sessions", tags=["sessions"])

ULID_PATH_PATTERN = r"^[0-9A-HJKMNP-TV-Z]{26}$"


@router.post("", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def book_session(
    request: BookSessionRequest,
    actor: Actor = Depends(get_current_actor),
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator),
) -> SessionResponse:
    """Reserve a slot. The session stays PENDING until payment is captured."""
    session = await asyncio.to_thread(
        orchestrator.book_session,
        actor,
        request.time_slot_id,
        topic=request.topic,
        mentee_name=request.mentee_name,
        mentee_email=request.mentee_email,
        mentor_name=request.mentor_name,
    )
    return SessionResponse.model_validate(session)


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(
    session_id: str = Path(..., description="Session ULID", pattern=ULID_PATH_PATTERN),
    actor: Actor = Depends(get_current_actor),
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator),
) -> SessionResponse:
    session = await asyncio.to_thread(orchestrator.get_session_for, session_id, actor)
    return SessionResponse.model_validate(session)


@router.get("/{session_id}/recording", response_model=RecordingAccessResponse)
async def get_recording(
    session_id: str = Path(..., description="Session ULID", pattern=ULID_PATH_PATTERN),
    actor: Actor = Depends(get_current_actor),
    transcripts: TranscriptService = Depends(get_transcript_service),
) -> RecordingAccessResponse:
    """Presigned link to the stored recording. The link expires; fetch a new one per view."""
    access = await asyncio.to_thread(transcripts.get_recording_access, session_id, actor)
    return RecordingAccessResponse(session_id=session_id, **access)


@router.get("/{session_id}/transcript", response_model=TranscriptResponse)
async def get_transcript(
    session_id: str = Path(..., description="Session ULID", pattern=ULID_PATH_PATTERN),
    actor: Actor = Depends(get_current_actor),
    transcripts: TranscriptService = Depends(get_transcript_service),
) -> TranscriptResponse:
    session = await asyncio.to_thread(transcripts.get_transcript, session_id, actor)
    return TranscriptResponse(session_id=session.id, transcript=session.transcript)


@router.post(
    "/{session_id}/payment-intent",
    response_model=PaymentIntentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_payment_intent(
    request: CreatePaymentIntentRequest,
    session_id: str = Path(..., description="Session ULID", pattern=ULID_PATH_PATTERN),
    actor: Actor = Depends(get_current_actor),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentIntentResponse:
    payment = await asyncio.to_thread(
        payment_service.create_payment_intent,
        session_id,
        actor,
        request.provider,
        request.payment_method,
    )
    return PaymentIntentResponse.model_validate(payment)


@router.post("/{session_id}/payment/confirm", response_model=PaymentResponse)
async def confirm_payment(
    session_id: str = Path(..., description="Session ULID", pattern=ULID_PATH_PATTERN),
    actor: Actor = Depends(get_current_actor),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentResponse:
    """Poll the provider when the client finishes checkout before the callback lands."""
    payment = await asyncio.to_thread(payment_service.confirm_payment, session_id, actor)
    return PaymentResponse.model_validate(payment)


@router.post("/{session_id}/cancel", response_model=CancelRecordResponse)
async def cancel_session(
    request: CancelSessionRequest,
    session_id: str = Path(..., description="Session ULID", pattern=ULID_PATH_PATTERN),
    actor: Actor = Depends(get_current_actor),
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator),
) -> CancelRecordResponse:
    record = await asyncio.to_thread(
        orchestrator.cancel_session, session_id, actor, request.reason
    )
    return CancelRecordResponse.model_validate(record)


@router.post(
    "/{session_id}/reschedule",
    response_model=RescheduleRecordResponse,
    status_code=status.HTTP_201_CREATED,
)
async def request_reschedule(
    request: RescheduleSessionRequest,
    session_id: str = Path(..., description="Session ULID", pattern=ULID_PATH_PATTERN),
    actor: Actor = Depends(get_current_actor),
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator),
) -> RescheduleRecordResponse:
    record = await asyncio.to_thread(
        orchestrator.request_reschedule, session_id, actor, request.new_slot_id, request.reason
    )
    return RescheduleRecordResponse.model_validate(record)


@router.post("/reschedule/{record_id}/approve", response_model=RescheduleRecordResponse)
async def approve_reschedule(
    record_id: str = Path(..., description="Reschedule request ULID", pattern=ULID_PATH_PATTERN),
    actor: Actor = Depends(get_current_actor),
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator),
) -> RescheduleRecordResponse:
    record = await asyncio.to_thread(orchestrator.approve_reschedule, record_id, actor)
    return RescheduleRecordResponse.model_validate(record)


@router.post("/reschedule/{record_id}/reject", response_model=RescheduleRecordResponse)
async def reject_reschedule(
    record_id: str = Path(..., description="Reschedule request ULID", pattern=ULID_PATH_PATTERN),
    actor: Actor = Depends(get_current_actor),
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator),
) -> RescheduleRecordResponse:
    record = await asyncio.to_thread(orchestrator.reject_reschedule, record_id, actor)
    return RescheduleRecordResponse.model_validate(record)


@router.post("/{session_id}/complete", response_model=SessionResponse)
async def complete_session(
    session_id: str = Path(..., description="Session ULID", pattern=ULID_PATH_PATTERN),
    actor: Actor = Depends(get_current_actor),
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator),
) -> SessionResponse:
    session = await asyncio.to_thread(orchestrator.complete_session, session_id, actor)
    return SessionResponse.model_validate(session)


@router.post("/{session_id}/end-meeting", status_code=status.HTTP_204_NO_CONTENT)
async def end_meeting(
    session_id: str = Path(..., description="Session ULID", pattern=ULID_PATH_PATTERN),
    actor: Actor = Depends(get_current_actor),
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator),
) -> None:
    await asyncio.to_thread(orchestrator.end_meeting, session_id, actor)


@router.post(
    "/{session_id}/dispute", response_model=DisputeResponse, status_code=status.HTTP_201_CREATED
)
async def open_dispute(
    request: OpenDisputeRequest,
    session_id: str = Path(..., description="Session ULID", pattern=ULID_PATH_PATTERN),
    actor: Actor = Depends(get_current_actor),
    dispute_service: DisputeService = Depends(get_dispute_service),
) -> DisputeResponse:
    dispute = await asyncio.to_thread(
        dispute_service.open_dispute, session_id, actor, request.reason, request.description
    )
    return DisputeResponse.model_validate(dispute)
