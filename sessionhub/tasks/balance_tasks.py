# sessionhub/tasks/balance_tasks.py
"""Mentor earnings maintenance."""

from __future__ import annotations

import logging
from typing import Optional, cast

from sqlalchemy.orm import Session

from ..database import get_db
from ..services.mentor_balance_service import MentorBalanceService, ReleaseResults
from .celery_app import typed_task
from .names import RELEASE_MATURED_PAYMENTS

logger = logging.getLogger(__name__)


@typed_task(name=RELEASE_MATURED_PAYMENTS, autoretry_for=())
def release_matured_payments() -> ReleaseResults:
    """Hourly: move payments past their hold date from pending to available."""
    db: Optional[Session] = None
    try:
        db = cast(Session, next(get_db()))
        return MentorBalanceService(db).release_matured_payments()
    finally:
        if db is not None:
            db.close()
