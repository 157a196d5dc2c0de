"""
Unit tests for the session state machine.

Runs against an in-memory database with the scheduler, payment provider
and video client replaced by doubles.
"""

from datetime import timedelta
from decimal import Decimal
import logging
from unittest.mock import MagicMock, patch

import pytest

from sessionhub.core.config import settings
from sessionhub.core.exceptions import (
    BusinessRuleException,
    ConflictException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from sessionhub.core.principal import Actor, ActorRole
from sessionhub.integrations.results import ProviderErrorKind, ProviderResult
from sessionhub.integrations.zoom_client import ZoomClient
from sessionhub.models import (
    CancelRecord,
    CancelRefundStatus,
    Notification,
    PaymentStatus,
    RescheduleStatus,
    SessionStatus,
    TimeSlot,
)
from sessionhub.services.mentor_balance_service import MentorBalanceService
from sessionhub.services.notification_service import OPERATOR_INBOX
from sessionhub.services.session_orchestrator import SessionOrchestrator
from sessionhub.tasks.names import (
    AUTO_TERMINATE_MEETING,
    EXPIRE_RESCHEDULE,
    RELEASE_UNPAID_SESSION,
    SEND_SESSION_REMINDER,
    START_SESSION,
)
from tests.factories import (
    MENTEE_ID,
    MENTOR_ID,
    NOW,
    OTHER_ID,
    make_payment,
    make_session,
    make_slot,
)


def _scheduled_names(scheduler):
    return [c.args[0] for c in scheduler.schedule.call_args_list]


def _operator_alerts(db):
    return db.query(Notification).filter_by(user_id=OPERATOR_INBOX).all()


class TestBooking:
    def test_book_session_reserves_slot_and_schedules_release(
        self, db, orchestrator, scheduler, mentee
    ):
        slot = make_slot(db)

        session = orchestrator.book_session(mentee, slot.id, topic="Career chat", now=NOW)

        assert session.status == SessionStatus.PENDING.value
        assert session.mentor_id == MENTOR_ID
        assert session.price == Decimal("500.00")
        assert slot.is_booked and slot.session_id == session.id
        name, eta = scheduler.schedule.call_args.args[:2]
        assert name == RELEASE_UNPAID_SESSION
        assert eta == NOW + timedelta(minutes=settings.booking_period_minutes)
        assert scheduler.schedule.call_args.kwargs["args"] == (session.id,)

    def test_only_mentees_book(self, db, orchestrator, mentor):
        slot = make_slot(db, mentor_id=OTHER_ID)
        with pytest.raises(ForbiddenException):
            orchestrator.book_session(mentor, slot.id, now=NOW)

    def test_unknown_slot(self, orchestrator, mentee):
        with pytest.raises(NotFoundException):
            orchestrator.book_session(mentee, "01HNOSUCHSLOT0000000000000", now=NOW)

    def test_mentor_cannot_book_own_slot(self, db, orchestrator):
        slot = make_slot(db)
        actor = Actor(user_id=MENTOR_ID, role=ActorRole.MENTEE)
        with pytest.raises(BusinessRuleException):
            orchestrator.book_session(actor, slot.id, now=NOW)

    def test_booked_slot_is_a_conflict(self, db, orchestrator, mentee):
        slot = make_slot(db, booked_by="01HSOMEONEELSE000000000001")
        with pytest.raises(ConflictException) as exc_info:
            orchestrator.book_session(mentee, slot.id, now=NOW)
        assert exc_info.value.code == "SLOT_TAKEN"

    def test_minimum_notice(self, db, orchestrator, mentee):
        slot = make_slot(db, start=NOW + timedelta(hours=2))
        with pytest.raises(BusinessRuleException) as exc_info:
            orchestrator.book_session(mentee, slot.id, now=NOW)
        assert exc_info.value.code == "BOOKING_TOO_LATE"

    def test_mentee_cannot_double_book(self, db, orchestrator, mentee):
        make_session(db, start=NOW + timedelta(days=3))
        overlapping = make_slot(
            db, start=NOW + timedelta(days=3, minutes=30), mentor_id=OTHER_ID
        )
        with pytest.raises(ConflictException) as exc_info:
            orchestrator.book_session(mentee, overlapping.id, now=NOW)
        assert exc_info.value.code == "MENTEE_OVERLAP"

    def test_release_unpaid_session_frees_slot(self, db, orchestrator):
        session = make_session(db, status=SessionStatus.PENDING)
        slot = db.get(TimeSlot, session.time_slot_id)

        assert orchestrator.release_unpaid_session(session.id) is True

        assert session.status == SessionStatus.CANCELLED.value
        assert session.time_slot_id is None
        assert not slot.is_booked

    def test_release_skips_session_with_payment(self, db, orchestrator):
        session = make_session(db, status=SessionStatus.PENDING)
        make_payment(db, session, status=PaymentStatus.PENDING)

        assert orchestrator.release_unpaid_session(session.id) is False
        assert session.status == SessionStatus.PENDING.value


class TestAccess:
    def test_participants_and_admins_can_read(self, db, orchestrator, mentee, mentor, admin):
        session = make_session(db)
        for actor in (mentee, mentor, admin):
            assert orchestrator.get_session_for(session.id, actor) is session

    def test_stranger_cannot_read(self, db, orchestrator, stranger):
        session = make_session(db)
        with pytest.raises(ForbiddenException):
            orchestrator.get_session_for(session.id, stranger)


class TestProvisioning:
    def test_provision_creates_meeting_and_schedules_jobs(self, db, orchestrator, scheduler, zoom):
        session = make_session(db)
        start = session.scheduled_start_time
        end = session.scheduled_end_time

        orchestrator.provision_meeting(session.id)

        assert session.meeting_id
        assert session.join_url.startswith("https://zoom.example/j/")
        assert session.meeting_provisioned_at is not None
        assert _scheduled_names(scheduler) == [
            SEND_SESSION_REMINDER,
            START_SESSION,
            AUTO_TERMINATE_MEETING,
        ]
        calls = scheduler.schedule.call_args_list
        assert calls[0].args[1] == start - timedelta(minutes=settings.reminder_offset_minutes)
        assert calls[1].kwargs["args"] == (session.id, start.isoformat())
        grace = timedelta(minutes=settings.meeting_termination_grace_minutes)
        assert calls[2].args[1] == end + grace
        assert calls[2].kwargs["args"] == (session.id, end.isoformat())
        assert session.reminder_job_id == "job-1"

    def test_provision_is_idempotent(self, db, orchestrator, zoom, scheduler):
        session = make_session(db, meeting_id="m-1")

        orchestrator.provision_meeting(session.id)

        assert zoom._calls == []
        scheduler.schedule.assert_not_called()

    def test_provision_skips_unconfirmed_session(self, db, orchestrator, zoom):
        session = make_session(db, status=SessionStatus.CANCELLED)
        orchestrator.provision_meeting(session.id)
        assert zoom._calls == []

    def test_provider_failure_alerts_operator_and_keeps_session(self, db, orchestrator, zoom):
        zoom.set_error("create_meeting", ProviderErrorKind.TRANSIENT)
        session = make_session(db)

        orchestrator.provision_meeting(session.id)

        assert session.status == SessionStatus.CONFIRMED.value
        assert session.meeting_id is None
        assert [a.title for a in _operator_alerts(db)] == ["Meeting provisioning failed"]

    @patch("sessionhub.integrations.zoom_client.httpx.Client")
    def test_rate_limited_provisioning_backs_off_and_keeps_payment(
        self, mock_client_cls, db, scheduler, payments, caplog
    ):
        http = MagicMock()
        http.__enter__ = MagicMock(return_value=http)
        http.__exit__ = MagicMock(return_value=False)
        http.request.return_value = MagicMock(status_code=429, text="Too Many Requests")
        mock_client_cls.return_value = http
        tokens = MagicMock()
        tokens.get_token.return_value = "tok"
        sleep = MagicMock()
        video = ZoomClient(
            token_cache=tokens,
            base_url="https://api.zoom.test/v2/",
            base_delay_ms=1000,
            rate_limit_max_retries=5,
            sleep=sleep,
        )
        orchestrator = SessionOrchestrator(
            db,
            scheduler=scheduler,
            notifications=payments.notifications,
            payments=payments,
            video=video,
        )
        session = make_session(db)
        payment = make_payment(db, session)

        with caplog.at_level(logging.ERROR):
            orchestrator.provision_meeting(session.id)

        assert http.request.call_count == 6
        assert [c.args[0] for c in sleep.call_args_list] == [2.0, 4.0, 8.0, 16.0, 32.0]
        assert f"Meeting provisioning failed for session {session.id} (transient)" in caplog.text
        assert payment.status == PaymentStatus.CAPTURED.value
        assert session.status == SessionStatus.CONFIRMED.value
        assert session.meeting_id is None
        scheduler.schedule.assert_not_called()
        assert [a.title for a in _operator_alerts(db)] == ["Meeting provisioning failed"]

    def test_enqueue_failure_is_reported(self, db, orchestrator, scheduler):
        scheduler.enqueue.side_effect = ConnectionError("broker down")
        session = make_session(db)

        orchestrator.after_capture(session)

        assert [a.title for a in _operator_alerts(db)] == ["Meeting provisioning not started"]


class TestMeetingLifecycle:
    def test_start_job_moves_session_in_progress(self, db, orchestrator):
        session = make_session(db, meeting_id="m-1")
        expected = session.scheduled_start_time.isoformat()

        assert orchestrator.mark_in_progress(session.id, expected) is True
        assert session.status == SessionStatus.IN_PROGRESS.value

    def test_stale_start_job_is_ignored(self, db, orchestrator):
        session = make_session(db, meeting_id="m-1")
        stale = (session.scheduled_start_time - timedelta(days=1)).isoformat()

        assert orchestrator.mark_in_progress(session.id, stale) is False
        assert session.status == SessionStatus.CONFIRMED.value

    def test_meeting_started_webhook(self, db, orchestrator):
        session = make_session(db, meeting_id="m-9")
        assert orchestrator.mark_in_progress_by_meeting("m-9") is True
        assert session.status == SessionStatus.IN_PROGRESS.value
        assert orchestrator.mark_in_progress_by_meeting("unknown") is False

    def test_auto_terminate_completes_and_credits_mentor(self, db, orchestrator, zoom):
        session = make_session(db, status=SessionStatus.IN_PROGRESS, meeting_id="m-1")
        payment = make_payment(db, session)
        end = session.scheduled_end_time
        now = end + timedelta(minutes=3)

        assert orchestrator.auto_terminate(session.id, end.isoformat(), now=now) is True

        assert session.status == SessionStatus.COMPLETED.value
        assert session.completed_at == now
        assert [c["method"] for c in zoom._calls] == ["end_meeting"]
        assert payment.balance_credited_at is not None
        balance = MentorBalanceService(db).get_balance(MENTOR_ID)
        assert balance.pending_balance == Decimal("425.00")

    def test_auto_terminate_waits_for_grace(self, db, orchestrator, zoom):
        session = make_session(db, status=SessionStatus.IN_PROGRESS, meeting_id="m-1")
        now = session.scheduled_end_time + timedelta(minutes=1)

        assert orchestrator.auto_terminate(session.id, now=now) is False
        assert zoom._calls == []

    def test_auto_terminate_ignores_rescheduled_session(self, db, orchestrator):
        session = make_session(db, status=SessionStatus.IN_PROGRESS, meeting_id="m-1")
        stale_end = (session.scheduled_end_time - timedelta(days=1)).isoformat()
        now = session.scheduled_end_time + timedelta(hours=1)

        assert orchestrator.auto_terminate(session.id, stale_end, now=now) is False
        assert session.status == SessionStatus.IN_PROGRESS.value

    def test_auto_terminate_provider_failure_leaves_session(self, db, orchestrator, zoom):
        zoom.set_error("end_meeting", ProviderErrorKind.TRANSIENT)
        session = make_session(db, status=SessionStatus.IN_PROGRESS, meeting_id="m-1")
        now = session.scheduled_end_time + timedelta(minutes=5)

        assert orchestrator.auto_terminate(session.id, now=now) is False
        assert session.status == SessionStatus.IN_PROGRESS.value

    def test_end_meeting_is_mentor_only(self, db, orchestrator, mentee, mentor, zoom):
        session = make_session(db, meeting_id="m-1")
        with pytest.raises(ForbiddenException):
            orchestrator.end_meeting(session.id, mentee)

        assert orchestrator.end_meeting(session.id, mentor) is True
        assert zoom._calls[-1]["meeting_id"] == "m-1"

    def test_end_meeting_without_meeting(self, db, orchestrator, mentor):
        session = make_session(db)
        with pytest.raises(BusinessRuleException):
            orchestrator.end_meeting(session.id, mentor)

    def test_complete_session(self, db, orchestrator, mentor):
        session = make_session(db)

        orchestrator.complete_session(session.id, mentor)

        assert session.status == SessionStatus.COMPLETED.value
        with pytest.raises(ConflictException):
            orchestrator.complete_session(session.id, mentor)

    def test_complete_session_rules(self, db, orchestrator, stranger, admin):
        session = make_session(db, status=SessionStatus.CANCELLED)
        with pytest.raises(ForbiddenException):
            orchestrator.complete_session(session.id, stranger)
        with pytest.raises(BusinessRuleException):
            orchestrator.complete_session(session.id, admin)


class TestCancellation:
    def test_early_cancel_refunds_in_full(
        self, db, orchestrator, scheduler, payment_provider, zoom, mentee
    ):
        session = make_session(db, meeting_id="m-1", reminder_job_id="job-reminder")
        slot = db.get(TimeSlot, session.time_slot_id)
        payment = make_payment(db, session)

        record = orchestrator.cancel_session(session.id, mentee, "conflict", now=NOW)

        assert record.refund_percentage == Decimal("100")
        assert record.refund_amount == Decimal("500.00")
        assert record.refund_status == CancelRefundStatus.COMPLETED.value
        assert record.actor_role == "mentee"
        assert session.status == SessionStatus.CANCELLED.value
        assert session.cancellation_reason == "conflict"
        assert session.time_slot_id is None
        assert not slot.is_booked
        scheduler.cancel.assert_any_call("job-reminder")
        payment_provider.refund.assert_called_once_with("pi_test_123", Decimal("10.00"), None)
        assert payment.status == PaymentStatus.REFUNDED.value
        assert payment.refund_amount == Decimal("10.00")
        assert [c["method"] for c in zoom._calls] == ["delete_meeting"]

    def test_mid_window_cancel_refunds_half(self, db, orchestrator, payment_provider, mentor):
        session = make_session(db)
        make_payment(db, session)
        now = session.scheduled_start_time - timedelta(hours=30)

        record = orchestrator.cancel_session(session.id, mentor, now=now)

        assert record.refund_percentage == Decimal("50")
        assert record.refund_amount == Decimal("250.00")
        payment_provider.refund.assert_called_once_with("pi_test_123", Decimal("5.00"), None)

    def test_late_cancel_has_no_refund(self, db, orchestrator, payment_provider, mentee):
        session = make_session(db)
        payment = make_payment(db, session)
        now = session.scheduled_start_time - timedelta(hours=2)

        record = orchestrator.cancel_session(session.id, mentee, now=now)

        assert record.refund_amount == Decimal("0")
        assert record.refund_status == CancelRefundStatus.NOT_APPLICABLE.value
        payment_provider.refund.assert_not_called()
        assert payment.status == PaymentStatus.CAPTURED.value

    def test_cancel_voids_pending_intent(self, db, orchestrator, payment_provider, mentee):
        session = make_session(db, status=SessionStatus.PENDING)
        payment = make_payment(db, session, status=PaymentStatus.PENDING)

        orchestrator.cancel_session(session.id, mentee, now=NOW)

        assert payment.status == PaymentStatus.CANCELED.value
        payment_provider.cancel_intent.assert_called_once_with("pi_test_123")
        payment_provider.refund.assert_not_called()

    def test_refund_failure_does_not_undo_cancel(self, db, orchestrator, payment_provider, mentee):
        payment_provider.refund.side_effect = None
        payment_provider.refund.return_value = ProviderResult.fail(
            ProviderErrorKind.TRANSIENT, "gateway down"
        )
        session = make_session(db)
        payment = make_payment(db, session)

        record = orchestrator.cancel_session(session.id, mentee, now=NOW)

        assert session.status == SessionStatus.CANCELLED.value
        assert payment.status == PaymentStatus.CAPTURED.value
        assert payment.refund_status == "FAILED"
        db.expire(record)
        assert db.get(CancelRecord, record.id).refund_status == CancelRefundStatus.FAILED.value
        assert [a.title for a in _operator_alerts(db)] == ["Refund failed"]

    def test_settled_refund_outcome_is_final(self, db, orchestrator, mentee):
        session = make_session(db)
        make_payment(db, session)
        record = orchestrator.cancel_session(session.id, mentee, now=NOW)
        db.expire(record)
        assert record.refund_status == CancelRefundStatus.COMPLETED.value

        record.refund_status = CancelRefundStatus.FAILED.value
        with pytest.raises(ValueError):
            db.flush()
        db.rollback()

        record.reason = "edited"
        with pytest.raises(ValueError):
            db.flush()
        db.rollback()

    def test_meeting_delete_failure_is_logged_only(self, db, orchestrator, zoom, mentee):
        zoom.set_error("delete_meeting", ProviderErrorKind.PROVIDER)
        session = make_session(db, meeting_id="m-1")

        orchestrator.cancel_session(session.id, mentee, now=NOW)

        assert session.status == SessionStatus.CANCELLED.value

    def test_cancel_lapses_open_reschedule(self, db, orchestrator, scheduler, mentee, mentor):
        session = make_session(db)
        new_slot = make_slot(db, start=NOW + timedelta(days=5))
        request = orchestrator.request_reschedule(session.id, mentee, new_slot.id, now=NOW)

        orchestrator.cancel_session(session.id, mentor, now=NOW)

        assert request.status == RescheduleStatus.EXPIRED.value
        scheduler.cancel.assert_any_call(request.approval_job_id)

    def test_stranger_cannot_cancel(self, db, orchestrator, stranger):
        session = make_session(db)
        with pytest.raises(ForbiddenException):
            orchestrator.cancel_session(session.id, stranger, now=NOW)

    def test_admin_can_cancel(self, db, orchestrator, admin):
        session = make_session(db)
        record = orchestrator.cancel_session(session.id, admin, now=NOW)
        assert record.actor_role == "admin"

    def test_completed_session_is_not_cancellable(self, db, orchestrator, mentee):
        session = make_session(db, status=SessionStatus.COMPLETED)
        with pytest.raises(BusinessRuleException) as exc_info:
            orchestrator.cancel_session(session.id, mentee, now=NOW)
        assert exc_info.value.code == "SESSION_NOT_CANCELLABLE"


class TestReschedule:
    def _request(self, db, orchestrator, actor, **session_kwargs):
        session = make_session(db, **session_kwargs)
        new_slot = make_slot(db, start=NOW + timedelta(days=5), minutes=30)
        record = orchestrator.request_reschedule(
            session.id, actor, new_slot.id, "travel", now=NOW
        )
        return session, new_slot, record

    def test_request_parks_session_and_schedules_expiry(
        self, db, orchestrator, scheduler, mentee
    ):
        session, new_slot, record = self._request(db, orchestrator, mentee)

        assert record.status == RescheduleStatus.PENDING.value
        assert record.requested_by == MENTEE_ID
        assert record.new_slot_id == new_slot.id
        assert session.status == SessionStatus.PENDING_RESCHEDULE.value
        name, eta = scheduler.schedule.call_args.args[:2]
        assert name == EXPIRE_RESCHEDULE
        assert eta == NOW + timedelta(hours=settings.reschedule_approval_hours)
        assert record.approval_job_id == "job-1"
        notified = db.query(Notification).filter_by(user_id=MENTOR_ID).all()
        assert [n.title for n in notified] == ["Reschedule Request"]

    def test_approve_moves_session_to_new_slot(
        self, db, orchestrator, scheduler, zoom, mentee, mentor
    ):
        session, new_slot, record = self._request(db, orchestrator, mentee, meeting_id="m-1")
        old_slot = db.get(TimeSlot, session.time_slot_id)

        orchestrator.approve_reschedule(record.id, mentor)

        assert record.status == RescheduleStatus.APPROVED.value
        assert record.resolved_by == MENTOR_ID
        assert session.status == SessionStatus.CONFIRMED.value
        assert session.time_slot_id == new_slot.id
        assert session.scheduled_start_time == new_slot.start_time
        assert session.duration_minutes == 30
        assert new_slot.is_booked and not old_slot.is_booked
        scheduler.cancel.assert_any_call(record.approval_job_id)
        assert zoom._calls[-1]["method"] == "update_meeting"
        assert START_SESSION in _scheduled_names(scheduler)

    def test_requester_cannot_approve_own_request(self, db, orchestrator, mentee):
        _, _, record = self._request(db, orchestrator, mentee)
        with pytest.raises(ForbiddenException):
            orchestrator.approve_reschedule(record.id, mentee)

    def test_reject_restores_confirmed(self, db, orchestrator, scheduler, mentee, mentor):
        session, new_slot, record = self._request(db, orchestrator, mentee)

        orchestrator.reject_reschedule(record.id, mentor)

        assert record.status == RescheduleStatus.REJECTED.value
        assert session.status == SessionStatus.CONFIRMED.value
        assert not new_slot.is_booked
        scheduler.cancel.assert_any_call(record.approval_job_id)
        with pytest.raises(ConflictException):
            orchestrator.approve_reschedule(record.id, mentor)

    def test_expiry_keeps_original_slot(self, db, orchestrator, mentee):
        session, _, record = self._request(db, orchestrator, mentee)

        assert orchestrator.expire_reschedule(record.id) is True
        assert record.status == RescheduleStatus.EXPIRED.value
        assert session.status == SessionStatus.CONFIRMED.value
        assert orchestrator.expire_reschedule(record.id) is False

    def test_slot_of_another_mentor_is_rejected(self, db, orchestrator, mentee):
        session = make_session(db)
        foreign = make_slot(db, start=NOW + timedelta(days=5), mentor_id=OTHER_ID)
        with pytest.raises(BusinessRuleException):
            orchestrator.request_reschedule(session.id, mentee, foreign.id, now=NOW)

    def test_same_slot_is_rejected(self, db, orchestrator, mentee):
        session = make_session(db)
        with pytest.raises(ValidationException):
            orchestrator.request_reschedule(session.id, mentee, session.time_slot_id, now=NOW)

    def test_started_session_cannot_move(self, db, orchestrator, mentee):
        session = make_session(db)
        new_slot = make_slot(db, start=NOW + timedelta(days=5))
        later = session.scheduled_start_time + timedelta(minutes=1)
        with pytest.raises(ConflictException):
            orchestrator.request_reschedule(session.id, mentee, new_slot.id, now=later)

    def test_only_confirmed_sessions_move(self, db, orchestrator, mentee):
        session = make_session(db, status=SessionStatus.PENDING)
        new_slot = make_slot(db, start=NOW + timedelta(days=5))
        with pytest.raises(BusinessRuleException) as exc_info:
            orchestrator.request_reschedule(session.id, mentee, new_slot.id, now=NOW)
        assert exc_info.value.code == "SESSION_NOT_RESCHEDULABLE"
