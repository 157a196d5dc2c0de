"""
Shared fixtures.

The environment is pinned before any ``sessionhub`` import so settings never
read a developer .env and the module-level engine points at SQLite.
"""

import os
from typing import Iterator
from unittest.mock import MagicMock

os.environ["CI"] = "1"
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ZOOM_WEBHOOK_SECRET_TOKEN"] = "zoom_webhook_secret"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"
os.environ["PAYMOB_HMAC_SECRET"] = "paymob_hmac_secret"

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from sessionhub import models  # noqa: E402,F401
from sessionhub.core.principal import Actor, ActorRole  # noqa: E402
from sessionhub.database import Base  # noqa: E402
from sessionhub.integrations.payments.base import (  # noqa: E402
    PaymentProviderId,
    RefundOutcome,
)
from sessionhub.integrations.payments.registry import PaymentProviderRegistry  # noqa: E402
from sessionhub.integrations.results import ProviderResult  # noqa: E402
from sessionhub.integrations.zoom_client import FakeZoomClient  # noqa: E402
from sessionhub.services.notification_service import NotificationService  # noqa: E402
from sessionhub.services.payment_service import PaymentService  # noqa: E402
from sessionhub.services.session_orchestrator import SessionOrchestrator  # noqa: E402
from tests.factories import ADMIN_ID, MENTEE_ID, MENTOR_ID, OTHER_ID  # noqa: E402


@pytest.fixture
def db() -> Iterator[Session]:
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(
        autocommit=False, autoflush=False, bind=engine, expire_on_commit=False
    )
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def scheduler() -> MagicMock:
    """Job scheduler double; every handle is unique."""
    mock = MagicMock()
    counter = {"n": 0}

    def _handle(*args, **kwargs):
        counter["n"] += 1
        return f"job-{counter['n']}"

    mock.enqueue.side_effect = _handle
    mock.schedule.side_effect = _handle
    mock.cancel.return_value = True
    return mock


@pytest.fixture
def mentee() -> Actor:
    return Actor(user_id=MENTEE_ID, role=ActorRole.MENTEE)


@pytest.fixture
def mentor() -> Actor:
    return Actor(user_id=MENTOR_ID, role=ActorRole.MENTOR)


@pytest.fixture
def admin() -> Actor:
    return Actor(user_id=ADMIN_ID, role=ActorRole.ADMIN)


@pytest.fixture
def stranger() -> Actor:
    return Actor(user_id=OTHER_ID, role=ActorRole.MENTEE)


@pytest.fixture
def payment_provider() -> MagicMock:
    """Card-network provider double; every call succeeds unless a test says otherwise."""
    provider = MagicMock()
    provider.provider_id = PaymentProviderId.STRIPE
    provider.refund.side_effect = lambda intent_id, amount, transaction_id=None: (
        ProviderResult.ok(RefundOutcome(transaction_id="re_test_1", refunded_amount=amount))
    )
    provider.cancel_intent.return_value = ProviderResult.ok(True)
    return provider


@pytest.fixture
def zoom() -> FakeZoomClient:
    return FakeZoomClient()


@pytest.fixture
def payments(db: Session, scheduler: MagicMock, payment_provider: MagicMock) -> PaymentService:
    return PaymentService(
        db,
        registry=PaymentProviderRegistry([payment_provider]),
        scheduler=scheduler,
        notifications=NotificationService(db),
    )


@pytest.fixture
def orchestrator(
    db: Session, scheduler: MagicMock, payments: PaymentService, zoom: FakeZoomClient
) -> SessionOrchestrator:
    orchestrator = SessionOrchestrator(
        db,
        scheduler=scheduler,
        notifications=payments.notifications,
        payments=payments,
        video=zoom,
    )
    payments._orchestrator = orchestrator
    return orchestrator
