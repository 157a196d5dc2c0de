"""
HTTP surface tests: identity headers, problem responses and webhooks.

Services run against the in-memory database; providers and the job
scheduler are doubles.
"""

from decimal import Decimal
import json
from unittest.mock import MagicMock

from fastapi.testclient import TestClient
import pytest

from sessionhub.core.config import settings
from sessionhub.core.exceptions import AuthenticationException
from sessionhub.database import get_db
from sessionhub.integrations.deepgram_client import FakeDeepgramClient
from sessionhub.integrations.payments.base import CallbackOutcome
from sessionhub.integrations.r2_storage import FakeRecordingStorage
from sessionhub.integrations.results import ProviderErrorKind
from sessionhub.integrations.zoom_client import compute_webhook_signature
from sessionhub.main import app
from sessionhub.models import PaymentStatus, SessionStatus
from sessionhub.routes.dependencies import (
    get_payment_service,
    get_scheduler,
    get_session_orchestrator,
    get_transcript_service,
)
from sessionhub.services.mentor_balance_service import MentorBalanceService
from sessionhub.services.transcript_service import TranscriptService
from sessionhub.tasks.names import PROCESS_RECORDING
from tests.factories import ADMIN_ID, MENTEE_ID, MENTOR_ID, OTHER_ID, make_session, make_slot

ZOOM_SECRET = "zoom_webhook_secret"

MENTEE_HEADERS = {"X-Actor-Id": MENTEE_ID, "X-Actor-Role": "mentee"}
MENTOR_HEADERS = {"X-Actor-Id": MENTOR_ID, "X-Actor-Role": "mentor"}
STRANGER_HEADERS = {"X-Actor-Id": OTHER_ID, "X-Actor-Role": "mentee"}


@pytest.fixture
def recording_storage():
    return FakeRecordingStorage()


@pytest.fixture
def client(db, scheduler, orchestrator, payments, zoom, recording_storage):
    transcripts = TranscriptService(
        db,
        video=zoom,
        transcriber=FakeDeepgramClient(),
        storage=recording_storage,
        scheduler=scheduler,
        notifications=orchestrator.notifications,
        orchestrator=orchestrator,
    )
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_scheduler] = lambda: scheduler
    app.dependency_overrides[get_session_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_payment_service] = lambda: payments
    app.dependency_overrides[get_transcript_service] = lambda: transcripts
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _zoom_post(client, event, timestamp="1700000000", signature=None):
    body = json.dumps(event)
    headers = {
        "Content-Type": "application/json",
        "x-zm-request-timestamp": timestamp,
        "x-zm-signature": signature or compute_webhook_signature(ZOOM_SECRET, timestamp, body),
    }
    return client.post("/webhooks/zoom", content=body, headers=headers)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


class TestSessionRoutes:
    def test_identity_headers_are_required(self, client):
        response = client.post("/api/v1/sessions", json={"time_slot_id": "0" * 26})
        assert response.status_code == 401

    def test_system_role_is_rejected(self, client):
        headers = {"X-Actor-Id": "system", "X-Actor-Role": "system"}
        response = client.post("/api/v1/sessions", json={"time_slot_id": "0" * 26}, headers=headers)
        assert response.status_code == 403

    def test_book_session(self, client, db, scheduler):
        slot = make_slot(db)

        response = client.post(
            "/api/v1/sessions",
            json={"time_slot_id": slot.id, "topic": "Career chat"},
            headers=MENTEE_HEADERS,
        )

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == SessionStatus.PENDING.value
        assert body["mentor_id"] == MENTOR_ID
        assert body["topic"] == "Career chat"
        scheduler.schedule.assert_called_once()

    def test_unknown_fields_are_rejected(self, client, db):
        slot = make_slot(db)
        response = client.post(
            "/api/v1/sessions",
            json={"time_slot_id": slot.id, "price": "1"},
            headers=MENTEE_HEADERS,
        )
        assert response.status_code == 422

    def test_stranger_gets_problem_response(self, client, db):
        session = make_session(db)

        response = client.get(f"/api/v1/sessions/{session.id}", headers=STRANGER_HEADERS)

        assert response.status_code == 403
        problem = response.json()
        assert problem["status"] == 403
        assert problem["title"] == "Forbidden"
        assert problem["code"] == "ForbiddenException"
        assert problem["hint"] == "invalid_request"
        assert problem["instance"] == f"/api/v1/sessions/{session.id}"

    def test_malformed_session_id(self, client):
        response = client.get("/api/v1/sessions/not-a-ulid", headers=MENTEE_HEADERS)
        assert response.status_code == 422

    def test_cancel_session(self, client, db):
        session = make_session(db)

        response = client.post(
            f"/api/v1/sessions/{session.id}/cancel",
            json={"reason": "conflict"},
            headers=MENTOR_HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["actor_role"] == "mentor"
        assert session.status == SessionStatus.CANCELLED.value

    def test_complete_twice_is_a_conflict(self, client, db):
        session = make_session(db)
        url = f"/api/v1/sessions/{session.id}/complete"

        assert client.post(url, headers=MENTOR_HEADERS).status_code == 200
        response = client.post(url, headers=MENTOR_HEADERS)

        assert response.status_code == 409
        assert response.json()["title"] == "Conflict"


class TestRecordingRoutes:
    def _recorded(self, db, **extra):
        session = make_session(
            db, status=SessionStatus.COMPLETED, recording_processed=True, **extra
        )
        session.video_storage_key = f"recordings/{session.id}.mp4"
        db.commit()
        return session

    def test_participant_gets_presigned_link(self, client, db):
        session = self._recorded(db)

        response = client.get(f"/api/v1/sessions/{session.id}/recording", headers=MENTEE_HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["session_id"] == session.id
        ttl_seconds = settings.recording_url_ttl_minutes * 60
        assert body["url"] == (
            f"https://storage.example/recordings/{session.id}.mp4?ttl={ttl_seconds}"
        )
        assert body["expires_at"]

    def test_recording_is_participants_only(self, client, db):
        session = self._recorded(db)
        url = f"/api/v1/sessions/{session.id}/recording"
        admin_headers = {"X-Actor-Id": ADMIN_ID, "X-Actor-Role": "admin"}

        assert client.get(url, headers=STRANGER_HEADERS).status_code == 403
        assert client.get(url, headers=admin_headers).status_code == 403
        assert client.get(url, headers=MENTOR_HEADERS).status_code == 200

    def test_missing_recording_is_not_found(self, client, db):
        session = make_session(db)

        response = client.get(f"/api/v1/sessions/{session.id}/recording", headers=MENTOR_HEADERS)

        assert response.status_code == 404

    def test_storage_outage_is_unavailable(self, client, db, recording_storage):
        session = self._recorded(db)
        recording_storage.set_error(ProviderErrorKind.TRANSIENT)

        response = client.get(f"/api/v1/sessions/{session.id}/recording", headers=MENTEE_HEADERS)

        assert response.status_code == 503

    def test_transcript(self, client, db):
        session = self._recorded(
            db, transcript="[00:01] Speaker 0: welcome", transcript_processed=True
        )
        url = f"/api/v1/sessions/{session.id}/transcript"

        response = client.get(url, headers=MENTOR_HEADERS)

        assert response.status_code == 200
        assert response.json() == {
            "session_id": session.id,
            "transcript": "[00:01] Speaker 0: welcome",
        }
        assert client.get(url, headers=STRANGER_HEADERS).status_code == 403

    def test_transcript_not_ready(self, client, db):
        session = self._recorded(db)

        response = client.get(f"/api/v1/sessions/{session.id}/transcript", headers=MENTEE_HEADERS)

        assert response.status_code == 404


class TestPaymentWebhooks:
    @pytest.fixture
    def payment_service(self):
        service = MagicMock()
        app.dependency_overrides[get_payment_service] = lambda: service
        return service

    def test_passes_raw_body_and_signature(self, client, payment_service):
        payment_service.handle_provider_callback.return_value = CallbackOutcome(
            success=True,
            intent_id="pi_1",
            status=PaymentStatus.CAPTURED,
            event_type="payment_intent.succeeded",
        )

        response = client.post(
            "/webhooks/payments/stripe",
            content=b'{"id": "evt_1"}',
            headers={"stripe-signature": "t=1,v1=abc"},
        )

        assert response.status_code == 200
        assert response.json() == {"status": "success", "event_type": "payment_intent.succeeded"}
        payment_service.handle_provider_callback.assert_called_once_with(
            "stripe", b'{"id": "evt_1"}', "t=1,v1=abc"
        )

    def test_regional_gateway_signature_from_query(self, client, payment_service):
        payment_service.handle_provider_callback.return_value = CallbackOutcome(
            success=False, intent_id="1", status=PaymentStatus.PENDING, ignored=True
        )

        response = client.post("/webhooks/payments/paymob?hmac=deadbeef", content=b"{}")

        assert response.json()["status"] == "ignored"
        assert payment_service.handle_provider_callback.call_args.args[2] == "deadbeef"

    def test_bad_signature_is_unauthorized(self, client, payment_service):
        payment_service.handle_provider_callback.side_effect = AuthenticationException(
            "Invalid signature"
        )

        response = client.post("/webhooks/payments/stripe", content=b"{}")

        assert response.status_code == 401


class TestZoomWebhooks:
    def test_url_validation(self, client):
        response = _zoom_post(
            client, {"event": "endpoint.url_validation", "payload": {"plainToken": "abc"}}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["plainToken"] == "abc"
        assert len(body["encryptedToken"]) == 64

    def test_bad_signature(self, client):
        response = _zoom_post(
            client,
            {"event": "endpoint.url_validation", "payload": {"plainToken": "abc"}},
            signature="v0=forged",
        )
        assert response.status_code == 401
        assert response.json()["code"] == "INVALID_SIGNATURE"

    def test_recording_completed_is_queued(self, client, scheduler):
        event = {
            "event": "recording.completed",
            "download_token": "dl-token",
            "payload": {"object": {"id": 123456789, "topic": "Review"}},
        }

        response = _zoom_post(client, event)

        assert response.status_code == 200
        assert response.json() == {"status": "success", "event_type": "recording.completed"}
        scheduler.enqueue.assert_called_once_with(
            PROCESS_RECORDING, args=("123456789", "dl-token")
        )

    def test_meeting_started_moves_session(self, client, db):
        session = make_session(db, meeting_id="987")

        response = _zoom_post(
            client, {"event": "meeting.started", "payload": {"object": {"id": "987"}}}
        )

        assert response.status_code == 200
        db.refresh(session)
        assert session.status == SessionStatus.IN_PROGRESS.value

    def test_unhandled_event_is_ignored(self, client):
        response = _zoom_post(client, {"event": "meeting.participant_joined"})
        assert response.json()["status"] == "ignored"

    def test_missing_meeting_id(self, client):
        response = _zoom_post(client, {"event": "recording.completed", "payload": {}})
        assert response.status_code == 400


class TestMentorAndAdminRoutes:
    def test_mentor_balance(self, client, db):
        balances = MentorBalanceService(db)
        balances.get_balance(MENTOR_ID).available_balance = Decimal("300.00")
        db.commit()

        response = client.get("/api/v1/mentors/me/balance", headers=MENTOR_HEADERS)

        assert response.status_code == 200
        assert Decimal(response.json()["available_balance"]) == Decimal("300.00")

    def test_balance_is_mentor_only(self, client):
        response = client.get("/api/v1/mentors/me/balance", headers=MENTEE_HEADERS)
        assert response.status_code == 403

    def test_payout_request(self, client, db):
        MentorBalanceService(db).get_balance(MENTOR_ID).available_balance = Decimal("1000")
        db.commit()

        response = client.post(
            "/api/v1/mentors/me/payouts", json={"amount": "400"}, headers=MENTOR_HEADERS
        )

        assert response.status_code == 201
        assert response.json()["status"] == "REQUESTED"

    def test_admin_routes_require_admin(self, client):
        url = "/api/v1/admin/payouts/01HPAYVT000000000000000000/process"
        response = client.post(url, json={"succeeded": True}, headers=MENTOR_HEADERS)
        assert response.status_code == 403

        admin_headers = {"X-Actor-Id": ADMIN_ID, "X-Actor-Role": "admin"}
        response = client.post(url, json={"succeeded": True}, headers=admin_headers)
        assert response.status_code == 404
