"""
Job scheduler facade over Celery.

Services depend on this interface instead of Celery directly: they hand
over a task name, arguments and an optional fire time, and keep the
returned handle (the Celery task id) if they may need to cancel it later.
Tasks are sent by name, so callers never import task modules.
"""

from __future__ import annotations

from datetime import datetime
import logging
from typing import Any, Dict, Optional, Tuple

from celery import Celery

from ..core.time_utils import ensure_utc

logger = logging.getLogger(__name__)


class JobScheduler:
    def __init__(self, app: Optional[Celery] = None) -> None:
        self._app = app

    @property
    def app(self) -> Celery:
        if self._app is None:
            from .celery_app import celery_app

            self._app = celery_app
        return self._app

    def enqueue(
        self,
        task_name: str,
        args: Tuple[Any, ...] = (),
        kwargs: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Run a task as soon as a worker is free. Returns its handle."""
        result = self.app.send_task(task_name, args=args, kwargs=kwargs or {})
        logger.debug("Enqueued %s as %s", task_name, result.id)
        return str(result.id)

    def schedule(
        self,
        task_name: str,
        eta: datetime,
        args: Tuple[Any, ...] = (),
        kwargs: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Run a task at ``eta`` (UTC). Returns its handle."""
        eta = ensure_utc(eta)
        result = self.app.send_task(task_name, args=args, kwargs=kwargs or {}, eta=eta)
        logger.info("Scheduled %s as %s for %s", task_name, result.id, eta.isoformat())
        return str(result.id)

    def cancel(self, handle: Optional[str]) -> bool:
        """
        Revoke a scheduled job. An empty handle is a no-op.

        Revoking a job that already ran is harmless; a broker failure is
        logged and reported as False rather than raised.
        """
        if not handle:
            return False
        try:
            self.app.control.revoke(handle)
        except Exception as exc:  # broker unreachable or control channel closed
            logger.warning("Failed to cancel job %s (may have already executed): %s", handle, exc)
            return False
        logger.info("Cancelled job %s", handle)
        return True


_default_scheduler: Optional[JobScheduler] = None


def get_job_scheduler() -> JobScheduler:
    global _default_scheduler
    if _default_scheduler is None:
        _default_scheduler = JobScheduler()
    return _default_scheduler
