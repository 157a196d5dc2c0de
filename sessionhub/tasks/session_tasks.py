# sessionhub/tasks/session_tasks.py
"""
One-off delayed jobs of the session lifecycle.

Each job is scheduled through ``JobScheduler`` with the ids it needs and,
for time-bound jobs, the start/end time it was scheduled against. Jobs are
delivered at least once, so every body is idempotent and a job whose
session was moved since scheduling does nothing.
"""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Optional, TypedDict, cast

from sqlalchemy.orm import Session

from ..database import get_db
from ..services.payment_service import PaymentService
from ..services.reminder_service import ReminderService
from ..services.session_orchestrator import SessionOrchestrator
from .celery_app import typed_task
from .names import (
    AUTO_TERMINATE_MEETING,
    CHECK_PAYMENT_EXPIRY,
    EXPIRE_RESCHEDULE,
    PROVISION_MEETING,
    RELEASE_UNPAID_SESSION,
    SEND_SESSION_REMINDER,
    START_SESSION,
)

logger = logging.getLogger(__name__)


class JobResult(TypedDict):
    target_id: str
    applied: bool
    outcome: str
    processed_at: str


def _result(target_id: str, applied: bool, outcome: str = "") -> JobResult:
    return {
        "target_id": target_id,
        "applied": applied,
        "outcome": outcome or ("applied" if applied else "skipped"),
        "processed_at": datetime.now(timezone.utc).isoformat(),
    }


# ── Reminders and booking windows ────────────────────────────────────────


@typed_task(name=SEND_SESSION_REMINDER)
def send_session_reminder(session_id: str, expected_start: Optional[str] = None) -> JobResult:
    db: Optional[Session] = None
    try:
        db = cast(Session, next(get_db()))
        sent = ReminderService(db).send_reminder(session_id, expected_start)
        return _result(session_id, sent)
    finally:
        if db is not None:
            db.close()


@typed_task(name=RELEASE_UNPAID_SESSION)
def release_unpaid_session(session_id: str) -> JobResult:
    """Free the slot of a booking whose payment never started."""
    db: Optional[Session] = None
    try:
        db = cast(Session, next(get_db()))
        released = SessionOrchestrator(db).release_unpaid_session(session_id)
        return _result(session_id, released)
    finally:
        if db is not None:
            db.close()


@typed_task(name=CHECK_PAYMENT_EXPIRY)
def check_payment_expiry(payment_id: str) -> JobResult:
    """Cancel a payment that was never completed, recovering a missed capture first."""
    db: Optional[Session] = None
    try:
        db = cast(Session, next(get_db()))
        outcome = PaymentService(db).check_and_cancel_payment(payment_id)
        logger.info("Payment expiry check for %s: %s", payment_id, outcome)
        return _result(payment_id, outcome in ("captured", "expired"), outcome)
    finally:
        if db is not None:
            db.close()


# ── Meeting lifecycle ────────────────────────────────────────────────────


@typed_task(name=PROVISION_MEETING)
def provision_meeting(session_id: str) -> JobResult:
    db: Optional[Session] = None
    try:
        db = cast(Session, next(get_db()))
        session = SessionOrchestrator(db).provision_meeting(session_id)
        return _result(session_id, session.has_meeting)
    finally:
        if db is not None:
            db.close()


@typed_task(name=START_SESSION)
def start_session(session_id: str, expected_start: Optional[str] = None) -> JobResult:
    db: Optional[Session] = None
    try:
        db = cast(Session, next(get_db()))
        started = SessionOrchestrator(db).mark_in_progress(session_id, expected_start)
        return _result(session_id, started)
    finally:
        if db is not None:
            db.close()


@typed_task(name=AUTO_TERMINATE_MEETING)
def auto_terminate_meeting(session_id: str, expected_end: Optional[str] = None) -> JobResult:
    """End a meeting still running after its end time plus grace."""
    db: Optional[Session] = None
    try:
        db = cast(Session, next(get_db()))
        ended = SessionOrchestrator(db).auto_terminate(session_id, expected_end)
        return _result(session_id, ended)
    finally:
        if db is not None:
            db.close()


@typed_task(name=EXPIRE_RESCHEDULE)
def expire_reschedule(record_id: str) -> JobResult:
    db: Optional[Session] = None
    try:
        db = cast(Session, next(get_db()))
        expired = SessionOrchestrator(db).expire_reschedule(record_id)
        return _result(record_id, expired)
    finally:
        if db is not None:
            db.close()
