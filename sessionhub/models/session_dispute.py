"""Mentee disputes against completed sessions."""

from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy.sql import func
import ulid

from ..database import Base


class DisputeStatus(str, Enum):
    OPEN = "OPEN"
    UNDER_REVIEW = "UNDER_REVIEW"
    RESOLVED = "RESOLVED"
    REJECTED = "REJECTED"


class DisputeResolution(str, Enum):
    NO_REFUND = "NO_REFUND"
    PARTIAL_REFUND = "PARTIAL_REFUND"
    FULL_REFUND = "FULL_REFUND"


class SessionDispute(Base):
    __tablename__ = "session_disputes"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    session_id = Column(
        String(26), ForeignKey("mentorship_sessions.id"), nullable=False, unique=True
    )
    mentee_id = Column(String(26), nullable=False)
    reason = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=DisputeStatus.OPEN.value)

    resolution = Column(Text, nullable=True)
    refund_amount = Column(Numeric(10, 2), nullable=True)
    admin_notes = Column(Text, nullable=True)
    resolved_by_id = Column(String(26), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
