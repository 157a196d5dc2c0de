# sessionhub/models/session_records.py
"""
Append-only audit records for cancellations and reschedules.

A CancelRecord is written once; only a PENDING refund_status may be settled,
once, to COMPLETED or FAILED after the provider answers. A RescheduleRecord is
written once as a request; its decision fields (status, resolved_at,
resolved_by) may be filled exactly once, when the request leaves PENDING.
Both rules are enforced by a before_update listener.
"""

from enum import Enum
from typing import Any

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String, Text, event, inspect
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..database import Base


class CancelRefundStatus(str, Enum):
    NOT_APPLICABLE = "NOT_APPLICABLE"
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class RescheduleStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


class CancelRecord(Base):
    __tablename__ = "cancel_records"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    session_id = Column(String(26), ForeignKey("mentorship_sessions.id"), nullable=False)
    actor_id = Column(String(26), nullable=False)
    actor_role = Column(String(20), nullable=False)
    reason = Column(Text, nullable=True)
    hours_before_start = Column(Numeric(8, 2), nullable=False)
    refund_percentage = Column(Numeric(5, 2), nullable=False)
    refund_amount = Column(Numeric(10, 2), nullable=False)
    refund_status = Column(String(20), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    session = relationship("MentorshipSession", back_populates="cancel_records")


class RescheduleRecord(Base):
    __tablename__ = "reschedule_records"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    session_id = Column(String(26), ForeignKey("mentorship_sessions.id"), nullable=False)
    requested_by = Column(String(26), nullable=False)
    requester_role = Column(String(20), nullable=False)
    reason = Column(Text, nullable=True)
    original_slot_id = Column(String(26), nullable=True)
    new_slot_id = Column(String(26), nullable=False)
    original_start_time = Column(DateTime(timezone=True), nullable=False)
    new_start_time = Column(DateTime(timezone=True), nullable=False)
    hours_before_start = Column(Numeric(8, 2), nullable=False)
    refund_percentage = Column(Numeric(5, 2), nullable=False, default=0)
    approval_job_id = Column(String(255), nullable=True)

    status = Column(String(20), nullable=False, default=RescheduleStatus.PENDING.value)
    resolved_by = Column(String(26), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    session = relationship("MentorshipSession", back_populates="reschedule_records")


_RESCHEDULE_DECISION_FIELDS = frozenset({"status", "resolved_by", "resolved_at"})


def _changed_fields(target: Any) -> set[str]:
    state = inspect(target)
    return {attr.key for attr in state.attrs if attr.history.has_changes()}


@event.listens_for(CancelRecord, "before_update")
def _cancel_record_is_immutable(mapper: Any, connection: Any, target: CancelRecord) -> None:
    changed = _changed_fields(target)
    if not changed:
        return
    if changed != {"refund_status"}:
        raise ValueError("CancelRecord rows are append-only")
    previous = inspect(target).attrs.refund_status.history.deleted
    if not previous or previous[0] != CancelRefundStatus.PENDING.value:
        raise ValueError("CancelRecord refund outcome was already recorded")


@event.listens_for(RescheduleRecord, "before_update")
def _reschedule_record_decided_once(
    mapper: Any, connection: Any, target: RescheduleRecord
) -> None:
    changed = _changed_fields(target)
    if not changed:
        return
    if changed - _RESCHEDULE_DECISION_FIELDS:
        raise ValueError("RescheduleRecord request fields are immutable")
    previous = inspect(target).attrs.status.history.deleted
    if previous and previous[0] != RescheduleStatus.PENDING.value:
        raise ValueError("RescheduleRecord decision was already recorded")
