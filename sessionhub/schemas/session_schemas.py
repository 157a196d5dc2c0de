"""Session lifecycle request and response models."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import Field, model_validator

from ..models.session_dispute import DisputeResolution
from ._strict_base import StrictModel, StrictRequestModel

# ========== Request Models ==========


class BookSessionRequest(StrictRequestModel):
    time_slot_id: str = Field(..., min_length=26, max_length=26)
    topic: Optional[str] = Field(default=None, max_length=255)
    mentee_name: Optional[str] = Field(default=None, max_length=200)
    mentee_email: Optional[str] = Field(default=None, max_length=255)
    mentor_name: Optional[str] = Field(default=None, max_length=200)


class CancelSessionRequest(StrictRequestModel):
    reason: Optional[str] = Field(default=None, max_length=1000)


class RescheduleSessionRequest(StrictRequestModel):
    new_slot_id: str = Field(..., min_length=26, max_length=26)
    reason: Optional[str] = Field(default=None, max_length=1000)


class OpenDisputeRequest(StrictRequestModel):
    reason: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=2000)


class ResolveDisputeRequest(StrictRequestModel):
    resolution: DisputeResolution
    refund_amount: Optional[Decimal] = Field(default=None, gt=0)
    admin_notes: Optional[str] = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def _partial_needs_amount(self) -> "ResolveDisputeRequest":
        if self.resolution == DisputeResolution.PARTIAL_REFUND and self.refund_amount is None:
            raise ValueError("refund_amount is required for a partial refund")
        return self


# ========== Response Models ==========


class SessionResponse(StrictModel):
    """A session as seen by its participants."""

    id: str
    mentee_id: str
    mentor_id: str
    topic: Optional[str] = None
    scheduled_start_time: datetime
    scheduled_end_time: datetime
    duration_minutes: int
    price: Decimal
    status: str
    cancellation_reason: Optional[str] = None
    completed_at: Optional[datetime] = None
    meeting_id: Optional[str] = None
    join_url: Optional[str] = None
    meeting_password: Optional[str] = None
    recording_processed: bool = False
    recording_url: Optional[str] = None
    transcript_processed: bool = False


class CancelRecordResponse(StrictModel):
    id: str
    session_id: str
    actor_id: str
    actor_role: str
    reason: Optional[str] = None
    hours_before_start: Decimal
    refund_percentage: Decimal
    refund_amount: Decimal
    refund_status: str


class RescheduleRecordResponse(StrictModel):
    id: str
    session_id: str
    requested_by: str
    requester_role: str
    reason: Optional[str] = None
    new_slot_id: str
    original_start_time: datetime
    new_start_time: datetime
    status: str
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None


class DisputeResponse(StrictModel):
    id: str
    session_id: str
    mentee_id: str
    reason: str
    description: Optional[str] = None
    status: str
    resolution: Optional[str] = None
    refund_amount: Optional[Decimal] = None
    resolved_at: Optional[datetime] = None


class RecordingAccessResponse(StrictModel):
    session_id: str
    url: str
    expires_at: datetime


class TranscriptResponse(StrictModel):
    session_id: str
    transcript: str
