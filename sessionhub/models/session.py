# sessionhub/models/session.py
"""
Mentorship session model.

A session is one scheduled, paid meeting between a mentee and a mentor.
It carries the whole lifecycle: booking, payment confirmation, meeting
provisioning, recording retrieval and transcript reconciliation. Sessions
are never hard-deleted; they only move between statuses.
"""

from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..database import Base


class SessionStatus(str, Enum):
    """Session lifecycle statuses."""

    PENDING = "PENDING"  # Booked, waiting for payment capture
    PENDING_RESCHEDULE = "PENDING_RESCHEDULE"
    CONFIRMED = "CONFIRMED"  # Payment captured
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    DISPUTED = "DISPUTED"


ACTIVE_STATUSES = frozenset(
    {
        SessionStatus.PENDING.value,
        SessionStatus.PENDING_RESCHEDULE.value,
        SessionStatus.CONFIRMED.value,
        SessionStatus.IN_PROGRESS.value,
    }
)


class MentorshipSession(Base):
    __tablename__ = "mentorship_sessions"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))

    mentee_id = Column(String(26), nullable=False, index=True)
    mentor_id = Column(String(26), nullable=False, index=True)
    mentee_name = Column(String(200), nullable=True)
    mentor_name = Column(String(200), nullable=True)
    mentee_email = Column(String(255), nullable=True)
    time_slot_id = Column(String(26), ForeignKey("time_slots.id"), nullable=True)

    topic = Column(String(255), nullable=True)
    scheduled_start_time = Column(DateTime(timezone=True), nullable=False)
    scheduled_end_time = Column(DateTime(timezone=True), nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)

    status = Column(String(20), nullable=False, default=SessionStatus.PENDING.value)
    cancellation_reason = Column(Text, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # Video meeting
    meeting_id = Column(String(64), nullable=True, index=True)
    join_url = Column(String(1024), nullable=True)
    meeting_password = Column(String(64), nullable=True)
    meeting_provisioned_at = Column(DateTime(timezone=True), nullable=True)

    # Scheduled job handles
    reminder_job_id = Column(String(255), nullable=True)
    reminder_sent_at = Column(DateTime(timezone=True), nullable=True)

    # Recording
    recording_processed = Column(Boolean, nullable=False, default=False)
    recording_url = Column(String(1024), nullable=True)
    recording_available_at = Column(DateTime(timezone=True), nullable=True)
    video_storage_key = Column(String(512), nullable=True)

    # Transcript
    transcript = Column(Text, nullable=True)
    transcript_processed = Column(Boolean, nullable=False, default=False)
    transcript_retrieval_attempts = Column(Integer, nullable=False, default=0)
    last_transcript_retrieval_attempt = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    time_slot = relationship("TimeSlot", foreign_keys=[time_slot_id])
    payment = relationship("Payment", back_populates="session", uselist=False)
    cancel_records = relationship("CancelRecord", back_populates="session")
    reschedule_records = relationship("RescheduleRecord", back_populates="session")

    __table_args__ = (
        CheckConstraint(
            "NOT transcript_processed OR recording_processed",
            name="ck_transcript_after_recording",
        ),
        Index("ix_sessions_transcript_retry", "recording_processed", "transcript_processed"),
    )

    def __repr__(self) -> str:
        return f"<MentorshipSession {self.id} status={self.status}>"

    @property
    def has_meeting(self) -> bool:
        return bool(self.meeting_id)

    def is_participant(self, user_id: Optional[str]) -> bool:
        return user_id is not None and user_id in (self.mentee_id, self.mentor_id)

    def mark_transcribed(self, transcript: str) -> None:
        """Store a transcript; only legal once the recording is processed."""
        if not self.recording_processed:
            raise ValueError("transcript cannot be stored before the recording is processed")
        if not transcript or not transcript.strip():
            raise ValueError("transcript must be non-empty")
        self.transcript = transcript
        self.transcript_processed = True
