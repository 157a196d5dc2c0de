# sessionhub/tasks/beat_schedule.py
"""
Celery Beat schedule.

Periodic sweeps only; one-off delayed jobs (reminders, expiry checks,
meeting lifecycle) are scheduled individually through ``JobScheduler``.
"""

from datetime import timedelta
from typing import Any, Dict

from celery.schedules import crontab

from ..core.config import settings
from .names import RECONCILE_TRANSCRIPTS, RELEASE_MATURED_PAYMENTS


def get_beat_schedule() -> Dict[str, Dict[str, Any]]:
    return {
        "reconcile-transcripts": {
            "task": RECONCILE_TRANSCRIPTS,
            "schedule": timedelta(minutes=settings.transcript_retry_interval_minutes),
            "options": {"queue": "transcripts", "expires": 60 * 25},
        },
        "release-matured-payments": {
            "task": RELEASE_MATURED_PAYMENTS,
            "schedule": crontab(minute=5),
            "options": {"queue": "payments"},
        },
    }
