# sessionhub/models/payment.py
"""Payment records for mentorship sessions (one per session)."""

from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..database import Base


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    CAPTURED = "CAPTURED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"
    REFUNDED = "REFUNDED"


class RefundStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Payment(Base):
    __tablename__ = "payments"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    session_id = Column(
        String(26), ForeignKey("mentorship_sessions.id"), nullable=False, unique=True
    )
    mentee_id = Column(String(26), nullable=False, index=True)

    provider = Column(String(20), nullable=False)
    payment_method = Column(String(20), nullable=True)  # card | wallet (regional gateway)
    intent_id = Column(String(255), nullable=False, index=True)
    client_secret = Column(String(512), nullable=True)
    provider_transaction_id = Column(String(255), nullable=True)

    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    platform_commission_rate = Column(Numeric(5, 4), nullable=False)

    status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    refund_amount = Column(Numeric(10, 2), nullable=True)
    refund_percentage = Column(Numeric(5, 2), nullable=True)
    refund_status = Column(String(20), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)

    # Funds hold
    payment_release_date = Column(DateTime(timezone=True), nullable=True)
    balance_credited_at = Column(DateTime(timezone=True), nullable=True)
    released_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    session = relationship("MentorshipSession", back_populates="payment")

    def __repr__(self) -> str:
        return f"<Payment {self.id} {self.provider} status={self.status}>"


class ProcessedWebhookEvent(Base):
    """Durable dedupe key for provider callbacks (intent id + terminal status)."""

    __tablename__ = "processed_webhook_events"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    provider = Column(String(20), nullable=False)
    event_key = Column(String(300), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (UniqueConstraint("provider", "event_key", name="uq_webhook_event_key"),)
