"""
Payment-related Pydantic schemas.

Request and response models for payment intents, client-side confirmation,
provider webhooks, mentor balances and payouts.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import Field

from ._strict_base import StrictModel, StrictRequestModel

# ========== Request Models ==========


class CreatePaymentIntentRequest(StrictRequestModel):
    """Request to start paying for a booked session."""

    provider: Literal["stripe", "paymob"] = Field(..., description="Payment provider")
    payment_method: Optional[Literal["card", "wallet"]] = Field(
        default=None, description="Regional gateway payment method (defaults to card)"
    )


class PayoutRequest(StrictRequestModel):
    amount: Decimal = Field(..., gt=0, description="Amount to withdraw from available balance")


class ProcessPayoutRequest(StrictRequestModel):
    """Operator-recorded outcome of a payout transfer."""

    succeeded: bool = Field(default=True)
    failure_reason: Optional[str] = Field(default=None, max_length=500)


# ========== Response Models ==========


class PaymentIntentResponse(StrictModel):
    """Client-side handle for completing a payment."""

    id: str = Field(..., description="Payment ID")
    session_id: str
    provider: str
    intent_id: str = Field(..., description="Provider intent or order ID")
    client_secret: Optional[str] = Field(None, description="Opaque secret for the client SDK")
    amount: Decimal
    currency: str
    status: str


class PaymentResponse(StrictModel):
    id: str
    session_id: str
    provider: str
    amount: Decimal
    currency: str
    status: str
    paid_at: Optional[datetime] = None
    refund_amount: Optional[Decimal] = None
    refund_status: Optional[str] = None
    refunded_at: Optional[datetime] = None


class WebhookResponse(StrictModel):
    """Acknowledgement returned to webhook senders."""

    status: Literal["success", "ignored"] = Field(..., description="Whether the event was applied")
    event_type: Optional[str] = Field(None, description="Provider event name or status")


class MentorBalanceResponse(StrictModel):
    mentor_id: str
    available_balance: Decimal
    pending_balance: Decimal
    total_earnings: Decimal


class PayoutResponse(StrictModel):
    id: str
    mentor_id: str
    amount: Decimal
    status: str
    failure_reason: Optional[str] = None
    requested_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
