from datetime import timedelta
from decimal import Decimal

import pytest

from sessionhub.core.exceptions import (
    BusinessRuleException,
    ConflictException,
    ForbiddenException,
    ValidationException,
)
from sessionhub.integrations.results import ProviderErrorKind, ProviderResult
from sessionhub.models import Notification, PaymentStatus, SessionStatus
from sessionhub.models.session_dispute import DisputeResolution, DisputeStatus
from sessionhub.services.dispute_service import DisputeService
from tests.factories import MENTOR_ID, NOW, make_payment, make_session


@pytest.fixture
def disputes(db, payments):
    return DisputeService(db, payments=payments, notifications=payments.notifications)


@pytest.fixture
def completed(db):
    session = make_session(db, status=SessionStatus.COMPLETED, completed_at=NOW - timedelta(days=1))
    payment = make_payment(db, session)
    return session, payment


@pytest.fixture
def dispute(disputes, completed, mentee):
    session, _ = completed
    return disputes.open_dispute(session.id, mentee, "no_show", "Mentor never joined", now=NOW)


class TestOpenDispute:
    def test_opens_and_holds_session(self, db, dispute, completed):
        session, _ = completed

        assert dispute.status == DisputeStatus.OPEN.value
        assert dispute.reason == "no_show"
        assert session.status == SessionStatus.DISPUTED.value
        notice = db.query(Notification).filter_by(user_id=MENTOR_ID).one()
        assert notice.title == "Session Disputed"

    def test_window_expired(self, db, disputes, mentee):
        session = make_session(
            db, status=SessionStatus.COMPLETED, completed_at=NOW - timedelta(days=4)
        )
        with pytest.raises(BusinessRuleException) as exc_info:
            disputes.open_dispute(session.id, mentee, "quality", now=NOW)
        assert exc_info.value.code == "DISPUTE_WINDOW_EXPIRED"

    def test_only_completed_sessions(self, db, disputes, mentee):
        session = make_session(db)
        with pytest.raises(BusinessRuleException):
            disputes.open_dispute(session.id, mentee, "quality", now=NOW)

    def test_only_the_mentee(self, disputes, completed, mentor):
        session, _ = completed
        with pytest.raises(ForbiddenException):
            disputes.open_dispute(session.id, mentor, "quality", now=NOW)

    def test_one_dispute_per_session(self, db, disputes, dispute, completed, mentee):
        session, _ = completed
        session.status = SessionStatus.COMPLETED.value
        db.commit()
        with pytest.raises(ConflictException):
            disputes.open_dispute(session.id, mentee, "quality", now=NOW)


class TestResolveDispute:
    def test_no_refund_rejects_and_restores_session(
        self, disputes, dispute, completed, admin, payment_provider
    ):
        session, payment = completed

        disputes.resolve_dispute(dispute.id, admin, DisputeResolution.NO_REFUND, admin_notes="ok")

        assert dispute.status == DisputeStatus.REJECTED.value
        assert dispute.resolution == "NO_REFUND"
        assert dispute.refund_amount is None
        assert dispute.resolved_by_id == admin.user_id
        assert session.status == SessionStatus.COMPLETED.value
        assert payment.status == PaymentStatus.CAPTURED.value
        payment_provider.refund.assert_not_called()

    def test_full_refund(self, disputes, dispute, completed, admin, payment_provider):
        session, payment = completed

        disputes.resolve_dispute(dispute.id, admin, DisputeResolution.FULL_REFUND)

        assert dispute.status == DisputeStatus.RESOLVED.value
        assert dispute.refund_amount == Decimal("500.00")
        assert payment.status == PaymentStatus.REFUNDED.value
        assert session.status == SessionStatus.COMPLETED.value
        payment_provider.refund.assert_called_once_with("pi_test_123", Decimal("10.00"), None)

    def test_partial_refund(self, disputes, dispute, completed, admin, payment_provider):
        _, payment = completed

        disputes.resolve_dispute(
            dispute.id, admin, DisputeResolution.PARTIAL_REFUND, refund_amount=Decimal("100")
        )

        assert dispute.refund_amount == Decimal("100")
        assert payment.refund_percentage == Decimal("20.00")
        payment_provider.refund.assert_called_once_with("pi_test_123", Decimal("2.00"), None)

    def test_partial_refund_needs_an_amount(self, disputes, dispute, admin):
        with pytest.raises(ValidationException):
            disputes.resolve_dispute(dispute.id, admin, DisputeResolution.PARTIAL_REFUND)

    def test_failed_refund_keeps_dispute_open(
        self, disputes, dispute, completed, admin, payment_provider
    ):
        session, _ = completed
        payment_provider.refund.side_effect = None
        payment_provider.refund.return_value = ProviderResult.fail(
            ProviderErrorKind.TRANSIENT, "gateway down"
        )

        with pytest.raises(BusinessRuleException) as exc_info:
            disputes.resolve_dispute(dispute.id, admin, DisputeResolution.FULL_REFUND)

        assert exc_info.value.code == "DISPUTE_REFUND_FAILED"
        assert dispute.status == DisputeStatus.OPEN.value
        assert session.status == SessionStatus.DISPUTED.value

    def test_admin_only_and_once(self, disputes, dispute, mentee, admin):
        with pytest.raises(ForbiddenException):
            disputes.resolve_dispute(dispute.id, mentee, DisputeResolution.NO_REFUND)

        disputes.resolve_dispute(dispute.id, admin, DisputeResolution.NO_REFUND)
        with pytest.raises(ConflictException):
            disputes.resolve_dispute(dispute.id, admin, DisputeResolution.FULL_REFUND)
