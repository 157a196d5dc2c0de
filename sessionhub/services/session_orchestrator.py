# sessionhub/services/session_orchestrator.py
"""
Session Orchestrator

Owns the session state machine:

    PENDING -> CONFIRMED (payment captured) -> [meeting provisioned]
            -> IN_PROGRESS -> COMPLETED -> DISPUTED
    PENDING | CONFIRMED | PENDING_RESCHEDULE | IN_PROGRESS -> CANCELLED
    CONFIRMED <-> PENDING_RESCHEDULE

Capture, meeting provisioning and transcription are independently committed
steps. Each step is idempotent so a retried job or a re-delivered webhook
resumes where the previous attempt stopped. Provider calls never run inside
a database transaction.
"""

from datetime import datetime, timedelta
from decimal import Decimal
import logging
from typing import List, Optional

from sqlalchemy.orm import Session
import ulid

from ..core.config import settings
from ..core.exceptions import (
    BusinessRuleException,
    ConflictException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from ..core.principal import Actor, ActorRole
from ..core.time_utils import ensure_utc, hours_until, utc_now
from ..integrations.zoom_client import ZoomClient
from ..models.notification import NotificationType
from ..models.payment import Payment, PaymentStatus
from ..models.session import MentorshipSession, SessionStatus
from ..models.session_records import (
    CancelRecord,
    CancelRefundStatus,
    RescheduleRecord,
    RescheduleStatus,
)
from ..models.time_slot import TimeSlot
from ..repositories.factory import RepositoryFactory
from ..tasks.names import (
    AUTO_TERMINATE_MEETING,
    EXPIRE_RESCHEDULE,
    PROVISION_MEETING,
    RELEASE_UNPAID_SESSION,
    START_SESSION,
)
from ..tasks.scheduler import JobScheduler, get_job_scheduler
from .base import BaseService
from .mentor_balance_service import MentorBalanceService
from .notification_service import NotificationService
from .payment_service import PaymentService
from .refund_policy import refund_amount, refund_percentage
from .reminder_service import ReminderService, format_start_time

logger = logging.getLogger(__name__)

CANCELLABLE_STATUSES = frozenset(
    {
        SessionStatus.PENDING.value,
        SessionStatus.CONFIRMED.value,
        SessionStatus.PENDING_RESCHEDULE.value,
        SessionStatus.IN_PROGRESS.value,
    }
)
COMPLETABLE_STATUSES = frozenset({SessionStatus.CONFIRMED.value, SessionStatus.IN_PROGRESS.value})


def _mentee_path(session_id: str) -> str:
    return f"user/sessions/{session_id}"


def _mentor_path(session_id: str) -> str:
    return f"mentor/sessions/{session_id}"


class SessionOrchestrator(BaseService):
    def __init__(
        self,
        db: Session,
        scheduler: Optional[JobScheduler] = None,
        notifications: Optional[NotificationService] = None,
        payments: Optional[PaymentService] = None,
        video: Optional[ZoomClient] = None,
        reminders: Optional[ReminderService] = None,
    ):
        super().__init__(db)
        self.scheduler = scheduler or get_job_scheduler()
        self.notifications = notifications or NotificationService(db)
        self.payments = payments or PaymentService(
            db, scheduler=self.scheduler, notifications=self.notifications, orchestrator=self
        )
        self._video = video
        self.reminders = reminders or ReminderService(
            db, scheduler=self.scheduler, notifications=self.notifications
        )
        self.session_repository = RepositoryFactory.create_session_repository(db)
        self.slot_repository = RepositoryFactory.create_time_slot_repository(db)
        self.balances = MentorBalanceService(db)

    @property
    def video(self) -> ZoomClient:
        if self._video is None:
            self._video = ZoomClient.from_settings()
        return self._video

    def _get_session(self, session_id: str) -> MentorshipSession:
        session = self.session_repository.get_by_id(session_id)
        if session is None:
            raise NotFoundException("Session not found")
        return session

    def get_session_for(self, session_id: str, actor: Actor) -> MentorshipSession:
        """A session visible to its participants and admins."""
        session = self._get_session(session_id)
        if actor.user_id not in (session.mentee_id, session.mentor_id) and not actor.is_admin:
            raise ForbiddenException("You do not have access to this session")
        return session

    def _notify_both(
        self, session: MentorshipSession, type: NotificationType, title: str, message: str
    ) -> None:
        self.notifications.notify(session.mentee_id, type, title, message, _mentee_path(session.id))
        self.notifications.notify(session.mentor_id, type, title, message, _mentor_path(session.id))

    def _release_slot(self, slot_id: Optional[str]) -> None:
        if not slot_id:
            return
        slot = self.slot_repository.get_for_update(slot_id)
        if slot is not None:
            slot.release()

    # ── Booking ─────────────────────────────────────────────────────────

    @BaseService.measure_operation("book_session")
    def book_session(
        self,
        actor: Actor,
        time_slot_id: str,
        *,
        topic: Optional[str] = None,
        mentee_name: Optional[str] = None,
        mentee_email: Optional[str] = None,
        mentor_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> MentorshipSession:
        """
        Reserve a mentor's slot for the calling mentee.

        The session starts PENDING; if no payment is started within the
        booking period a release job frees the slot again.

        Raises:
            NotFoundException: unknown slot
            ConflictException: slot taken or mentee double-booked
            BusinessRuleException: slot too close to start or own slot
        """
        now = now or utc_now()
        if actor.role != ActorRole.MENTEE:
            raise ForbiddenException("Only mentees can book sessions")

        with self.transaction():
            slot: Optional[TimeSlot] = self.slot_repository.get_for_update(time_slot_id)
            if slot is None:
                raise NotFoundException("Time slot not found")
            if slot.mentor_id == actor.user_id:
                raise BusinessRuleException("Mentors cannot book their own time slots")
            if slot.is_booked:
                raise ConflictException(
                    "The selected time slot is no longer available", code="SLOT_TAKEN"
                )
            start = ensure_utc(slot.start_time)
            end = ensure_utc(slot.end_time)
            if hours_until(start, now) < settings.booking_min_notice_hours:
                raise BusinessRuleException(
                    f"Sessions must be booked at least {settings.booking_min_notice_hours} "
                    "hours in advance",
                    code="BOOKING_TOO_LATE",
                )
            if self.session_repository.has_mentee_overlap(actor.user_id, start, end):
                raise ConflictException(
                    "You already have a session at this time", code="MENTEE_OVERLAP"
                )

            session = self.session_repository.create(
                mentee_id=actor.user_id,
                mentor_id=slot.mentor_id,
                mentee_name=mentee_name,
                mentee_email=mentee_email,
                mentor_name=mentor_name,
                time_slot_id=slot.id,
                topic=topic,
                scheduled_start_time=start,
                scheduled_end_time=end,
                duration_minutes=slot.duration_minutes,
                price=Decimal(slot.price),
                status=SessionStatus.PENDING.value,
            )
            slot.book(session.id)

        release_at = now + timedelta(minutes=settings.booking_period_minutes)
        self.scheduler.schedule(RELEASE_UNPAID_SESSION, release_at, args=(session.id,))
        self.logger.info(
            "Session %s booked by mentee %s on slot %s", session.id, actor.user_id, slot.id
        )
        return session

    def cancel_unpaid(self, session: MentorshipSession, reason: str) -> None:
        """Cancel a session that never got paid and free its slot. Caller commits."""
        slot_id = session.time_slot_id
        session.status = SessionStatus.CANCELLED.value
        session.cancellation_reason = reason
        session.time_slot_id = None
        self._release_slot(slot_id)
        self.logger.info("Session %s released: %s", session.id, reason)

    @BaseService.measure_operation("release_unpaid_session")
    def release_unpaid_session(self, session_id: str) -> bool:
        """Job body: free the slot of a booking whose payment was never started."""
        session = self.session_repository.get_by_id(session_id)
        if session is None:
            self.logger.warning("Session %s not found for release check", session_id)
            return False
        if session.status != SessionStatus.PENDING.value or session.payment is not None:
            self.logger.info(
                "Session %s not released (status=%s, has_payment=%s)",
                session_id,
                session.status,
                session.payment is not None,
            )
            return False
        with self.transaction():
            self.cancel_unpaid(session, "Payment not initiated within booking period")
        return True

    # ── Capture and provisioning ────────────────────────────────────────

    def confirm_capture(
        self, payment: Payment, intent_id: str, transaction_id: Optional[str]
    ) -> bool:
        """
        Apply a capture confirmation to the payment and its session.

        Returns True only when this call moved the session to CONFIRMED,
        i.e. when a meeting should now be provisioned. A repeated capture is
        a no-op. The caller owns the transaction and must commit before
        provisioning.

        Raises:
            BusinessRuleException: the confirmation is for another intent,
                or the session was already confirmed by a different payment
        """
        if intent_id != payment.intent_id:
            raise BusinessRuleException(
                "Payment confirmation does not match this session's payment",
                code="FOREIGN_SESSION_PAYMENT",
            )
        if payment.status in (PaymentStatus.CAPTURED.value, PaymentStatus.REFUNDED.value):
            self.logger.info("Payment %s already %s; capture ignored", payment.id, payment.status)
            return False

        session: MentorshipSession = payment.session
        if session.status not in (SessionStatus.PENDING.value, SessionStatus.CANCELLED.value):
            raise BusinessRuleException(
                f"Session {session.id} is already {session.status}",
                code="SESSION_ALREADY_CONFIRMED",
            )

        now = utc_now()
        payment.status = PaymentStatus.CAPTURED.value
        payment.paid_at = now
        payment.provider_transaction_id = transaction_id or payment.provider_transaction_id
        payment.payment_release_date = now + timedelta(hours=settings.payment_release_hours)

        if session.status == SessionStatus.CANCELLED.value:
            self.notifications.alert_operator(
                "Payment captured for cancelled session",
                f"Payment {payment.id} was captured after session {session.id} was cancelled; "
                "refund manually.",
                {"payment_id": payment.id, "session_id": session.id},
            )
            return False

        session.status = SessionStatus.CONFIRMED.value
        when = format_start_time(ensure_utc(session.scheduled_start_time))
        self._notify_both(
            session,
            NotificationType.SESSION_CONFIRMED,
            "Session Confirmed",
            f"Your session on {when} is confirmed.",
        )
        self.logger.info("[AUDIT] Session %s confirmed by payment %s", session.id, payment.id)
        return True

    def after_capture(self, session: MentorshipSession) -> None:
        """Hand provisioning to a worker once the capture is durable."""
        try:
            self.scheduler.enqueue(PROVISION_MEETING, args=(session.id,))
        except Exception as exc:
            self.logger.error("Failed to enqueue provisioning for session %s: %s", session.id, exc)
            with self.transaction():
                self.notifications.alert_operator(
                    "Meeting provisioning not started",
                    f"Session {session.id} is paid but provisioning could not be queued: {exc}",
                    {"session_id": session.id},
                )

    @BaseService.measure_operation("provision_meeting")
    def provision_meeting(self, session_id: str) -> MentorshipSession:
        """
        Create the video meeting for a confirmed session.

        No-op when a meeting already exists. A provider failure is reported
        to operators and leaves the session confirmed without a meeting so a
        retry can pick it up; the payment is never touched.
        """
        session = self._get_session(session_id)
        if session.has_meeting:
            self.logger.info("Session %s already has meeting %s", session.id, session.meeting_id)
            return session
        if session.status != SessionStatus.CONFIRMED.value:
            self.logger.info(
                "Session %s is %s; meeting not provisioned", session.id, session.status
            )
            return session

        start = ensure_utc(session.scheduled_start_time)
        result = self.video.create_meeting(
            topic=session.topic or f"Mentorship Session - {session.id}",
            start_time=start,
            duration_minutes=session.duration_minutes,
            timezone="UTC",
            session_id=session.id,
        )
        if result.error is not None:
            self.logger.error(
                "Meeting provisioning failed for session %s (%s): %s",
                session.id,
                result.error.kind.value,
                result.error.message,
            )
            with self.transaction():
                self.notifications.alert_operator(
                    "Meeting provisioning failed",
                    f"Session {session.id} is paid but has no meeting: {result.error.message}",
                    {"session_id": session.id, "kind": result.error.kind.value},
                )
            return session

        meeting = result.unwrap()
        with self.transaction():
            session.meeting_id = meeting.id
            session.join_url = meeting.join_url
            session.meeting_password = meeting.password
            session.meeting_provisioned_at = utc_now()
            self.reminders.schedule_reminder(session)
            self._schedule_meeting_jobs(session)
        self.logger.info("[AUDIT] Meeting %s provisioned for session %s", meeting.id, session.id)
        return session

    def _schedule_meeting_jobs(self, session: MentorshipSession) -> None:
        start = ensure_utc(session.scheduled_start_time)
        end = ensure_utc(session.scheduled_end_time)
        self.scheduler.schedule(START_SESSION, start, args=(session.id, start.isoformat()))
        terminate_at = end + timedelta(minutes=settings.meeting_termination_grace_minutes)
        self.scheduler.schedule(
            AUTO_TERMINATE_MEETING, terminate_at, args=(session.id, end.isoformat())
        )

    # ── Meeting lifecycle ───────────────────────────────────────────────

    def _start(self, session: MentorshipSession) -> bool:
        if session.status != SessionStatus.CONFIRMED.value:
            self.logger.info(
                "Session %s status is %s, not updating to IN_PROGRESS", session.id, session.status
            )
            return False
        with self.transaction():
            session.status = SessionStatus.IN_PROGRESS.value
        self.logger.info("Session %s marked IN_PROGRESS", session.id)
        return True

    def mark_in_progress(self, session_id: str, expected_start: Optional[str] = None) -> bool:
        """Job body scheduled at the session start time."""
        session = self.session_repository.get_by_id(session_id)
        if session is None:
            self.logger.warning("Session %s not found", session_id)
            return False
        if expected_start and ensure_utc(session.scheduled_start_time) != ensure_utc(
            datetime.fromisoformat(expected_start)
        ):
            self.logger.info("Stale start job for rescheduled session %s skipped", session_id)
            return False
        return self._start(session)

    def mark_in_progress_by_meeting(self, meeting_id: str) -> bool:
        """``meeting.started`` webhook."""
        session = self.session_repository.get_by_meeting_id(meeting_id)
        if session is None:
            self.logger.warning("No session found for meeting %s", meeting_id)
            return False
        return self._start(session)

    def end_meeting(self, session_id: str, actor: Actor) -> bool:
        """End the live meeting on the mentor's request."""
        session = self._get_session(session_id)
        if actor.user_id != session.mentor_id:
            raise ForbiddenException("Only the assigned mentor can end the session")
        if not session.has_meeting:
            raise BusinessRuleException("No active meeting found for this session")
        self.video.end_meeting(session.meeting_id, session_id=session.id).unwrap()
        self.logger.info("Meeting %s ended by mentor %s", session.meeting_id, actor.user_id)
        return True

    @BaseService.measure_operation("auto_terminate")
    def auto_terminate(
        self,
        session_id: str,
        expected_end: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """Job body: end a meeting that ran past its end time and complete the session."""
        now = now or utc_now()
        session = self.session_repository.get_by_id(session_id)
        if session is None:
            self.logger.warning("Auto-termination skipped: session %s not found", session_id)
            return False
        end = ensure_utc(session.scheduled_end_time)
        if expected_end and end != ensure_utc(datetime.fromisoformat(expected_end)):
            self.logger.info("Stale auto-termination for rescheduled session %s", session_id)
            return False
        if session.status not in COMPLETABLE_STATUSES:
            self.logger.info(
                "Auto-termination skipped: session %s is %s", session_id, session.status
            )
            return False
        grace = timedelta(minutes=settings.meeting_termination_grace_minutes)
        if now < end + grace:
            self.logger.info("Auto-termination for session %s not due yet", session_id)
            return False
        if not session.has_meeting:
            self.logger.warning("Auto-termination skipped: session %s has no meeting", session_id)
            return False

        result = self.video.end_meeting(session.meeting_id, session_id=session.id)
        if result.error is not None:
            self.logger.warning(
                "Auto-termination: provider failed to end meeting for session %s: %s",
                session_id,
                result.error.message,
            )
            return False
        with self.transaction():
            self.mark_completed(session, now)
        self.logger.info("Session %s auto-terminated", session_id)
        return True

    def mark_completed(self, session: MentorshipSession, now: Optional[datetime] = None) -> None:
        """
        Move a session to COMPLETED, start the funds hold and credit the mentor.

        Idempotent. The caller commits.
        """
        if session.status == SessionStatus.COMPLETED.value:
            return
        now = now or utc_now()
        session.status = SessionStatus.COMPLETED.value
        session.completed_at = now
        payment = session.payment
        if payment is not None and payment.status == PaymentStatus.CAPTURED.value:
            payment.payment_release_date = now + timedelta(hours=settings.payment_release_hours)
            self.balances.credit_pending(payment, session.mentor_id, session.price)
        self.notifications.notify(
            session.mentee_id,
            NotificationType.SESSION_COMPLETED,
            "Session Completed",
            f"Your session with {session.mentor_name or 'your mentor'} is complete.",
            _mentee_path(session.id),
        )

    @BaseService.measure_operation("complete_session")
    def complete_session(self, session_id: str, actor: Actor) -> MentorshipSession:
        session = self._get_session(session_id)
        if actor.user_id != session.mentor_id and not actor.is_admin:
            raise ForbiddenException("Only the mentor or an admin can complete a session")
        if session.status == SessionStatus.COMPLETED.value:
            raise ConflictException("Session is already marked as completed")
        if session.status not in COMPLETABLE_STATUSES:
            raise BusinessRuleException(
                f"Session cannot be completed - current status: {session.status}"
            )
        with self.transaction():
            self.mark_completed(session)
        self.logger.info("Session %s completed by %s", session.id, actor.role.value)
        return session

    # ── Cancellation ────────────────────────────────────────────────────

    @BaseService.measure_operation("cancel_session")
    def cancel_session(
        self,
        session_id: str,
        actor: Actor,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CancelRecord:
        """
        Cancel a session with an hours-before-start refund.

        Phase 1 writes the audit record, cancels the session and frees the
        slot in one transaction. Phase 2 (no transaction) revokes the
        reminder, issues the refund and deletes the meeting; failures there
        are logged and never undo the cancellation.

        Raises:
            NotFoundException: unknown session
            ForbiddenException: caller is neither participant nor admin
            BusinessRuleException: session is no longer cancellable
        """
        now = now or utc_now()

        # ========== PHASE 1: validate and write ==========
        session = self._get_session(session_id)
        if not session.is_participant(actor.user_id) and not actor.is_admin:
            raise ForbiddenException("You don't have permission to cancel this session")
        if session.status not in CANCELLABLE_STATUSES:
            raise BusinessRuleException(
                f"Session cannot be cancelled - current status: {session.status}",
                code="SESSION_NOT_CANCELLABLE",
            )

        hours = hours_until(session.scheduled_start_time, now)
        percentage = refund_percentage(
            hours, settings.refund_tiers, settings.refund_late_percentage
        )
        payment: Optional[Payment] = session.payment
        refundable = payment is not None and payment.status == PaymentStatus.CAPTURED.value
        amount = refund_amount(session.price, percentage) if refundable else Decimal("0")

        with self.transaction():
            record = CancelRecord(
                session_id=session.id,
                actor_id=actor.user_id,
                actor_role=actor.role.value,
                reason=reason,
                hours_before_start=Decimal(str(round(hours, 2))),
                refund_percentage=percentage,
                refund_amount=amount,
                refund_status=(
                    CancelRefundStatus.PENDING.value
                    if amount > 0
                    else CancelRefundStatus.NOT_APPLICABLE.value
                ),
            )
            self.db.add(record)
            slot_id = session.time_slot_id
            reminder_job_id = session.reminder_job_id
            session.status = SessionStatus.CANCELLED.value
            session.cancellation_reason = reason
            session.time_slot_id = None
            session.reminder_job_id = None
            self._release_slot(slot_id)
            stale_jobs = self._lapse_pending_reschedules(session, now)
            void_intent = payment is not None and payment.status == PaymentStatus.PENDING.value
            if void_intent:
                payment.status = PaymentStatus.CANCELED.value
                payment.cancelled_at = now
            when = format_start_time(ensure_utc(session.scheduled_start_time))
            self._notify_both(
                session,
                NotificationType.SESSION_CANCELLED,
                "Session Cancelled",
                f"The session on {when} was cancelled. Refund: {percentage}% ({amount}).",
            )

        self.logger.info(
            "Session %s cancelled by %s. Refund: %s%% (%s)",
            session.id,
            actor.role.value,
            percentage,
            amount,
        )

        # ========== PHASE 2: side effects (NO transaction) ==========
        for handle in [reminder_job_id, *stale_jobs]:
            self.scheduler.cancel(handle)

        if void_intent:
            self.payments.void_intent(payment)
        elif amount > 0 and payment is not None:
            refund = self.payments.refund_payment(payment, amount, percentage)
            with self.transaction():
                record.refund_status = (
                    CancelRefundStatus.COMPLETED.value
                    if refund is not None
                    else CancelRefundStatus.FAILED.value
                )

        if session.has_meeting:
            deleted = self.video.delete_meeting(session.meeting_id, session_id=session.id)
            if deleted.error is not None:
                self.logger.error(
                    "Failed to delete meeting for cancelled session %s: %s",
                    session.id,
                    deleted.error.message,
                )
        return record

    def _lapse_pending_reschedules(self, session: MentorshipSession, now: datetime) -> List[str]:
        """Expire open requests of a cancelled session; returns their approval job handles."""
        handles = []
        for record in session.reschedule_records:
            if record.status != RescheduleStatus.PENDING.value:
                continue
            record.status = RescheduleStatus.EXPIRED.value
            record.resolved_at = now
            if record.approval_job_id:
                handles.append(record.approval_job_id)
        return handles

    # ── Reschedule ──────────────────────────────────────────────────────

    @BaseService.measure_operation("request_reschedule")
    def request_reschedule(
        self,
        session_id: str,
        actor: Actor,
        new_slot_id: str,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RescheduleRecord:
        """
        Ask the other participant to move a confirmed session to another slot.

        The request expires after ``reschedule_approval_hours``; until then
        the session is PENDING_RESCHEDULE on its original slot.
        """
        now = now or utc_now()
        session = self._get_session(session_id)
        if not session.is_participant(actor.user_id):
            raise ForbiddenException("Only session participants can request a reschedule")
        if session.status != SessionStatus.CONFIRMED.value:
            raise BusinessRuleException(
                f"Session cannot be rescheduled - current status: {session.status}",
                code="SESSION_NOT_RESCHEDULABLE",
            )
        hours_before = hours_until(session.scheduled_start_time, now)
        if hours_before <= 0:
            raise ConflictException("Cannot reschedule a session that has already started")

        new_slot = self.slot_repository.get_by_id(new_slot_id)
        if new_slot is None:
            raise NotFoundException("Time slot not found")
        if new_slot.id == session.time_slot_id:
            raise ValidationException("The session is already scheduled in this slot")
        if new_slot.is_booked:
            raise ConflictException("The selected time slot is no longer available")
        if new_slot.mentor_id != session.mentor_id:
            raise BusinessRuleException(
                "The selected slot does not belong to this session's mentor"
            )
        new_start = ensure_utc(new_slot.start_time)
        if hours_until(new_start, now) < settings.booking_min_notice_hours:
            raise BusinessRuleException(
                f"The new time must be at least {settings.booking_min_notice_hours} hours ahead"
            )
        if self.session_repository.has_mentee_overlap(
            session.mentee_id,
            new_start,
            ensure_utc(new_slot.end_time),
            exclude_session_id=session.id,
        ):
            raise ConflictException("Mentee has another session at this time")

        record_id = str(ulid.ULID())
        expires_at = now + timedelta(hours=settings.reschedule_approval_hours)
        job_id = self.scheduler.schedule(EXPIRE_RESCHEDULE, expires_at, args=(record_id,))

        with self.transaction():
            record = RescheduleRecord(
                id=record_id,
                session_id=session.id,
                requested_by=actor.user_id,
                requester_role=actor.role.value,
                reason=reason,
                original_slot_id=session.time_slot_id,
                new_slot_id=new_slot.id,
                original_start_time=ensure_utc(session.scheduled_start_time),
                new_start_time=new_start,
                hours_before_start=Decimal(str(round(hours_before, 2))),
                refund_percentage=Decimal("0"),
                approval_job_id=job_id,
                status=RescheduleStatus.PENDING.value,
            )
            self.db.add(record)
            session.status = SessionStatus.PENDING_RESCHEDULE.value

            if actor.user_id == session.mentor_id:
                receiver_id, path = session.mentee_id, _mentee_path(session.id)
            else:
                receiver_id, path = session.mentor_id, _mentor_path(session.id)
            self.notifications.notify(
                receiver_id,
                NotificationType.SESSION_RESCHEDULE,
                "Reschedule Request",
                f"A reschedule of your session to {format_start_time(new_start)} was requested. "
                "Please review and respond.",
                path,
            )

        self.logger.info(
            "Reschedule request %s created for session %s. New time: %s",
            record.id,
            session.id,
            new_start,
        )
        return record

    def _get_pending_reschedule(self, record_id: str) -> RescheduleRecord:
        record = self.db.get(RescheduleRecord, record_id)
        if record is None:
            raise NotFoundException("Reschedule request not found")
        if record.status != RescheduleStatus.PENDING.value:
            raise ConflictException("Reschedule request has already been processed")
        return record

    @BaseService.measure_operation("approve_reschedule")
    def approve_reschedule(self, record_id: str, actor: Actor) -> RescheduleRecord:
        """Move the session to the requested slot. Only the other party or an admin may approve."""
        record = self._get_pending_reschedule(record_id)
        session = self._get_session(record.session_id)
        if not actor.is_admin:
            if not session.is_participant(actor.user_id):
                raise ForbiddenException("You don't have permission to approve this reschedule")
            if actor.user_id == record.requested_by:
                raise ForbiddenException("A reschedule must be approved by the other participant")
        if session.status != SessionStatus.PENDING_RESCHEDULE.value:
            raise BusinessRuleException(
                f"Session cannot be rescheduled - current status: {session.status}"
            )

        with self.transaction():
            new_slot = self.slot_repository.get_for_update(record.new_slot_id)
            if new_slot is None:
                raise NotFoundException("Time slot not found")
            if new_slot.is_booked:
                raise ConflictException("The requested time slot is no longer available")
            self._release_slot(session.time_slot_id)
            new_slot.book(session.id)
            session.time_slot_id = new_slot.id
            session.scheduled_start_time = ensure_utc(new_slot.start_time)
            session.scheduled_end_time = ensure_utc(new_slot.end_time)
            session.duration_minutes = new_slot.duration_minutes
            session.status = SessionStatus.CONFIRMED.value
            record.status = RescheduleStatus.APPROVED.value
            record.resolved_by = actor.user_id
            record.resolved_at = utc_now()

        self.scheduler.cancel(record.approval_job_id)

        if session.has_meeting:
            updated = self.video.update_meeting(
                session.meeting_id,
                start_time=ensure_utc(session.scheduled_start_time),
                duration_minutes=session.duration_minutes,
                session_id=session.id,
            )
            if updated.error is not None:
                self.logger.error(
                    "Failed to update meeting for rescheduled session %s: %s",
                    session.id,
                    updated.error.message,
                )

        with self.transaction():
            self.reminders.schedule_reminder(session)
            if session.has_meeting:
                self._schedule_meeting_jobs(session)
            self._notify_both(
                session,
                NotificationType.SESSION_RESCHEDULE,
                "Reschedule Approved",
                "Your session is now scheduled for "
                f"{format_start_time(ensure_utc(session.scheduled_start_time))}.",
            )
        self.logger.info("Reschedule %s approved for session %s", record.id, session.id)
        return record

    def _restore_confirmed(self, session: MentorshipSession) -> None:
        if session.status == SessionStatus.PENDING_RESCHEDULE.value:
            session.status = SessionStatus.CONFIRMED.value

    @BaseService.measure_operation("reject_reschedule")
    def reject_reschedule(self, record_id: str, actor: Actor) -> RescheduleRecord:
        record = self._get_pending_reschedule(record_id)
        session = self._get_session(record.session_id)
        if not session.is_participant(actor.user_id) and not actor.is_admin:
            raise ForbiddenException("You don't have permission to reject this reschedule")

        with self.transaction():
            record.status = RescheduleStatus.REJECTED.value
            record.resolved_by = actor.user_id
            record.resolved_at = utc_now()
            self._restore_confirmed(session)
            requester_path = (
                _mentor_path(session.id)
                if record.requested_by == session.mentor_id
                else _mentee_path(session.id)
            )
            self.notifications.notify(
                record.requested_by,
                NotificationType.SESSION_RESCHEDULE,
                "Reschedule Rejected",
                "Your reschedule request has been rejected. Your session remains scheduled for "
                f"{format_start_time(ensure_utc(session.scheduled_start_time))}.",
                requester_path,
            )
        self.scheduler.cancel(record.approval_job_id)
        self.logger.info("Reschedule %s rejected for session %s", record.id, session.id)
        return record

    def expire_reschedule(self, record_id: str) -> bool:
        """Job body: a request nobody answered in time lapses."""
        record = self.db.get(RescheduleRecord, record_id)
        if record is None or record.status != RescheduleStatus.PENDING.value:
            return False
        session = self._get_session(record.session_id)
        with self.transaction():
            record.status = RescheduleStatus.EXPIRED.value
            record.resolved_at = utc_now()
            self._restore_confirmed(session)
        self.logger.info("Reschedule %s expired; session %s kept its slot", record.id, session.id)
        return True
