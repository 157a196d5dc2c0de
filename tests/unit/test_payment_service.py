from datetime import timedelta
from decimal import Decimal

import pytest

from sessionhub.core.config import settings
from sessionhub.core.exceptions import (
    AuthenticationException,
    BusinessRuleException,
    ConflictException,
    ForbiddenException,
    NotFoundException,
    TransientUnavailableException,
    ValidationException,
)
from sessionhub.integrations.payments.base import (
    CallbackOutcome,
    PayerInfo,
    PaymentIntent,
    PaymentProviderId,
    PaymentStatusSnapshot,
)
from sessionhub.integrations.results import ProviderErrorKind, ProviderResult
from sessionhub.models import (
    Notification,
    PaymentStatus,
    SessionStatus,
    TimeSlot,
)
from sessionhub.services.mentor_balance_service import MentorBalanceService
from sessionhub.services.notification_service import OPERATOR_INBOX
from sessionhub.services.payment_service import charge_amount
from sessionhub.tasks.names import CHECK_PAYMENT_EXPIRY, PROVISION_MEETING
from tests.factories import MENTEE_ID, MENTOR_ID, NOW, make_payment, make_session


def _callback(status=PaymentStatus.CAPTURED, intent_id="pi_test_123", **kwargs):
    return ProviderResult.ok(
        CallbackOutcome(
            success=status == PaymentStatus.CAPTURED,
            intent_id=intent_id,
            status=status,
            **kwargs,
        )
    )


@pytest.fixture
def pending(db):
    session = make_session(db, status=SessionStatus.PENDING)
    payment = make_payment(db, session, status=PaymentStatus.PENDING)
    return session, payment


class TestChargeAmount:
    def test_card_network_price_is_converted(self):
        assert charge_amount(Decimal("500"), PaymentProviderId.STRIPE) == Decimal("10.00")

    def test_regional_gateway_charges_price_as_is(self):
        assert charge_amount(Decimal("500"), PaymentProviderId.PAYMOB) == Decimal("500.00")


class TestCreatePaymentIntent:
    def test_creates_pending_payment_and_schedules_expiry(
        self, db, payments, payment_provider, scheduler, mentee
    ):
        session = make_session(db, status=SessionStatus.PENDING)
        payment_provider.create_intent.return_value = ProviderResult.ok(
            PaymentIntent("pi_new", "cs_secret", Decimal("10.00"), "USD")
        )

        payment = payments.create_payment_intent(session.id, mentee, "stripe", "card")

        assert payment.status == PaymentStatus.PENDING.value
        assert payment.intent_id == "pi_new"
        assert payment.client_secret == "cs_secret"
        assert payment.amount == Decimal("10.00")
        assert payment.platform_commission_rate == Decimal("0.15")
        payment_provider.create_intent.assert_called_once_with(
            Decimal("10.00"),
            "USD",
            PayerInfo(
                session_id=session.id,
                email="mona@example.com",
                first_name="Mona Mentee",
                payment_method="card",
            ),
        )
        name = scheduler.schedule.call_args.args[0]
        assert name == CHECK_PAYMENT_EXPIRY
        assert scheduler.schedule.call_args.kwargs["args"] == (payment.id,)

    def test_only_pending_sessions_are_payable(self, db, payments, mentee):
        session = make_session(db)
        with pytest.raises(BusinessRuleException) as exc_info:
            payments.create_payment_intent(session.id, mentee, "stripe")
        assert exc_info.value.code == "SESSION_NOT_PAYABLE"

    def test_one_payment_per_session(self, pending, payments, mentee):
        session, _ = pending
        with pytest.raises(ConflictException) as exc_info:
            payments.create_payment_intent(session.id, mentee, "stripe")
        assert exc_info.value.code == "PAYMENT_EXISTS"

    def test_only_the_mentee_pays(self, db, payments, stranger):
        session = make_session(db, status=SessionStatus.PENDING)
        with pytest.raises(ForbiddenException):
            payments.create_payment_intent(session.id, stranger, "stripe")

    def test_unknown_session(self, payments, mentee):
        with pytest.raises(NotFoundException):
            payments.create_payment_intent("01HNOSESSION00000000000000", mentee, "stripe")

    def test_unsupported_method(self, db, payments, mentee):
        session = make_session(db, status=SessionStatus.PENDING)
        with pytest.raises(ValidationException):
            payments.create_payment_intent(session.id, mentee, "stripe", "crypto")

    @pytest.mark.parametrize("provider_id", ["paypal", "paymob"])
    def test_unknown_or_disabled_provider(self, db, payments, mentee, provider_id):
        session = make_session(db, status=SessionStatus.PENDING)
        with pytest.raises(ValidationException) as exc_info:
            payments.create_payment_intent(session.id, mentee, provider_id)
        assert exc_info.value.code == "UNKNOWN_PAYMENT_PROVIDER"

    def test_provider_outage_creates_nothing(self, db, payments, payment_provider, mentee):
        session = make_session(db, status=SessionStatus.PENDING)
        payment_provider.create_intent.return_value = ProviderResult.fail(
            ProviderErrorKind.TRANSIENT, "timeout"
        )

        with pytest.raises(TransientUnavailableException):
            payments.create_payment_intent(session.id, mentee, "stripe")

        assert session.payment is None


class TestProviderCallback:
    def test_capture_confirms_session_and_queues_provisioning(
        self, pending, payments, payment_provider, scheduler
    ):
        session, payment = pending
        payment_provider.handle_callback.return_value = _callback(
            transaction_id="ch_1", session_id=session.id
        )

        payments.handle_provider_callback("stripe", b"{}", "sig")

        assert payment.status == PaymentStatus.CAPTURED.value
        assert payment.provider_transaction_id == "ch_1"
        assert payment.paid_at is not None
        assert payment.payment_release_date == payment.paid_at + timedelta(
            hours=settings.payment_release_hours
        )
        assert session.status == SessionStatus.CONFIRMED.value
        scheduler.enqueue.assert_called_once_with(PROVISION_MEETING, args=(session.id,))
        payment_provider.handle_callback.assert_called_once_with(b"{}", "sig")

    def test_redelivered_capture_is_applied_once(
        self, pending, payments, payment_provider, scheduler
    ):
        payment_provider.handle_callback.return_value = _callback()

        payments.handle_provider_callback("stripe", b"{}", "sig")
        payments.handle_provider_callback("stripe", b"{}", "sig")

        assert scheduler.enqueue.call_count == 1

    def test_capture_for_another_session_is_rejected(self, pending, payments, payment_provider):
        session, payment = pending
        payment_provider.handle_callback.return_value = _callback(session_id="01HOTHERSESSION")

        with pytest.raises(BusinessRuleException) as exc_info:
            payments.handle_provider_callback("stripe", b"{}", "sig")

        assert exc_info.value.code == "FOREIGN_SESSION_PAYMENT"
        assert payment.status == PaymentStatus.PENDING.value
        assert session.status == SessionStatus.PENDING.value

    def test_unknown_intent_is_acknowledged(self, pending, payments, payment_provider, scheduler):
        payment_provider.handle_callback.return_value = _callback(intent_id="pi_unknown")

        outcome = payments.handle_provider_callback("stripe", b"{}", "sig")

        assert outcome.intent_id == "pi_unknown"
        scheduler.enqueue.assert_not_called()

    def test_ignored_events_are_acknowledged(self, pending, payments, payment_provider):
        _, payment = pending
        payment_provider.handle_callback.return_value = _callback(ignored=True)

        assert payments.handle_provider_callback("stripe", b"{}", "sig").ignored
        assert payment.status == PaymentStatus.PENDING.value

    def test_failure_notifies_mentee(self, db, pending, payments, payment_provider):
        _, payment = pending
        payment_provider.handle_callback.return_value = _callback(
            PaymentStatus.FAILED, error_message="card declined"
        )

        payments.handle_provider_callback("stripe", b"{}", "sig")

        assert payment.status == PaymentStatus.FAILED.value
        notice = db.query(Notification).filter_by(user_id=MENTEE_ID).one()
        assert notice.title == "Payment Failed"
        assert "card declined" in notice.message

    def test_cancel_releases_the_booking(self, db, pending, payments, payment_provider):
        session, payment = pending
        slot = db.get(TimeSlot, session.time_slot_id)
        payment_provider.handle_callback.return_value = _callback(PaymentStatus.CANCELED)

        payments.handle_provider_callback("stripe", b"{}", "sig")

        assert payment.status == PaymentStatus.CANCELED.value
        assert session.status == SessionStatus.CANCELLED.value
        assert not slot.is_booked

    def test_capture_after_cancel_alerts_operator(self, db, payments, payment_provider, scheduler):
        session = make_session(db, status=SessionStatus.CANCELLED)
        payment = make_payment(db, session, status=PaymentStatus.CANCELED)
        payment_provider.handle_callback.return_value = _callback()

        payments.handle_provider_callback("stripe", b"{}", "sig")

        assert payment.status == PaymentStatus.CAPTURED.value
        assert session.status == SessionStatus.CANCELLED.value
        scheduler.enqueue.assert_not_called()
        alert = db.query(Notification).filter_by(user_id=OPERATOR_INBOX).one()
        assert alert.title == "Payment captured for cancelled session"

    def test_bad_signature_raises(self, pending, payments, payment_provider):
        payment_provider.handle_callback.return_value = ProviderResult.fail(
            ProviderErrorKind.AUTHENTICATION, "Invalid signature"
        )
        with pytest.raises(AuthenticationException):
            payments.handle_provider_callback("stripe", b"{}", "forged")


class TestConfirmPayment:
    def test_recovers_capture_from_provider_status(
        self, pending, payments, payment_provider, scheduler, mentee
    ):
        session, payment = pending
        payment_provider.get_status.return_value = ProviderResult.ok(
            PaymentStatusSnapshot(PaymentStatus.CAPTURED, "ch_9")
        )

        payments.confirm_payment(session.id, mentee)

        assert payment.status == PaymentStatus.CAPTURED.value
        assert session.status == SessionStatus.CONFIRMED.value
        scheduler.enqueue.assert_called_once_with(PROVISION_MEETING, args=(session.id,))

    def test_not_yet_captured(self, pending, payments, payment_provider, mentee):
        session, payment = pending
        payment_provider.get_status.return_value = ProviderResult.ok(
            PaymentStatusSnapshot(PaymentStatus.PENDING)
        )

        payments.confirm_payment(session.id, mentee)

        assert payment.status == PaymentStatus.PENDING.value

    def test_captured_payment_skips_provider(self, db, payments, payment_provider, mentee):
        session = make_session(db)
        make_payment(db, session)

        payments.confirm_payment(session.id, mentee)

        payment_provider.get_status.assert_not_called()

    def test_access_rules(self, pending, db, payments, stranger, mentee):
        session, _ = pending
        with pytest.raises(ForbiddenException):
            payments.confirm_payment(session.id, stranger)
        unpaid = make_session(db, status=SessionStatus.PENDING, start=NOW + timedelta(days=6))
        with pytest.raises(NotFoundException):
            payments.confirm_payment(unpaid.id, mentee)


class TestExpiry:
    def test_missing_and_settled(self, db, payments):
        assert payments.check_and_cancel_payment("01HNOPAYMENT000000000000000") == "missing"
        captured = make_payment(db, make_session(db))
        assert payments.check_and_cancel_payment(captured.id) == "settled"

    def test_recovers_missed_capture(self, pending, payments, payment_provider):
        session, payment = pending
        payment_provider.get_status.return_value = ProviderResult.ok(
            PaymentStatusSnapshot(PaymentStatus.CAPTURED, "ch_late")
        )

        assert payments.check_and_cancel_payment(payment.id) == "captured"
        assert session.status == SessionStatus.CONFIRMED.value

    @pytest.mark.parametrize(
        "status_result",
        [
            ProviderResult.ok(PaymentStatusSnapshot(PaymentStatus.PENDING)),
            ProviderResult.fail(ProviderErrorKind.TRANSIENT, "timeout"),
        ],
    )
    def test_expires_unpaid_intent(self, db, pending, payments, payment_provider, status_result):
        session, payment = pending
        slot = db.get(TimeSlot, session.time_slot_id)
        payment_provider.get_status.return_value = status_result

        assert payments.check_and_cancel_payment(payment.id, now=NOW) == "expired"

        assert payment.status == PaymentStatus.CANCELED.value
        assert payment.cancelled_at == NOW
        assert session.status == SessionStatus.CANCELLED.value
        assert not slot.is_booked
        payment_provider.cancel_intent.assert_called_once_with("pi_test_123")


class TestRefunds:
    def test_refund_reverses_mentor_share(self, db, payments, payment_provider):
        session = make_session(db, status=SessionStatus.COMPLETED)
        payment = make_payment(db, session)
        balances = MentorBalanceService(db)
        balances.credit_pending(payment, MENTOR_ID, session.price)
        db.commit()

        refund = payments.refund_payment(payment, Decimal("250.00"), Decimal("50"))

        assert refund.transaction_id == "re_test_1"
        payment_provider.refund.assert_called_once_with("pi_test_123", Decimal("5.00"), None)
        assert payment.status == PaymentStatus.REFUNDED.value
        assert payment.refund_percentage == Decimal("50")
        balance = balances.get_balance(MENTOR_ID)
        assert balance.pending_balance == Decimal("212.50")
        assert balance.total_earnings == Decimal("212.50")

    def test_refund_is_capped_at_charged_amount(self, db, payments, payment_provider):
        payment = make_payment(db, make_session(db))

        payments.refund_payment(payment, Decimal("900.00"))

        payment_provider.refund.assert_called_once_with("pi_test_123", Decimal("10.00"), None)

    def test_refund_rejections(self, db, payments):
        refunded = make_payment(db, make_session(db), status=PaymentStatus.REFUNDED)
        with pytest.raises(ConflictException):
            payments.refund_payment(refunded, Decimal("100"))

        pending = make_payment(
            db,
            make_session(db, status=SessionStatus.PENDING, start=NOW + timedelta(days=6)),
            status=PaymentStatus.PENDING,
            intent_id="pi_other",
        )
        with pytest.raises(BusinessRuleException) as exc_info:
            payments.refund_payment(pending, Decimal("100"))
        assert exc_info.value.code == "REFUND_NOT_CAPTURED"

    def test_void_failure_is_reported_not_raised(self, pending, payments, payment_provider):
        _, payment = pending
        payment_provider.cancel_intent.return_value = ProviderResult.fail(
            ProviderErrorKind.PROVIDER, "already captured"
        )
        assert payments.void_intent(payment) is False
