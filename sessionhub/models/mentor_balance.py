"""Mentor earnings balance and payout requests."""

from decimal import Decimal
from enum import Enum

from sqlalchemy import Column, DateTime, Numeric, String, Text
from sqlalchemy.sql import func
import ulid

from ..database import Base


class PayoutStatus(str, Enum):
    REQUESTED = "REQUESTED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class MentorBalance(Base):
    """One row per mentor aggregating pending and withdrawable earnings."""

    __tablename__ = "mentor_balances"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    mentor_id = Column(String(26), nullable=False, unique=True)
    available_balance = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    pending_balance = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    total_earnings = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )


class Payout(Base):
    __tablename__ = "payouts"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    mentor_id = Column(String(26), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(String(20), nullable=False, default=PayoutStatus.REQUESTED.value)
    failure_reason = Column(Text, nullable=True)
    requested_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    processed_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
