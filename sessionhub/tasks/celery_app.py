# sessionhub/tasks/celery_app.py
"""
Celery application configuration.

Sets up the Celery app with Redis as broker and backend, the default task
base class, logging integration and the cooperative stop signal used by
long-running sweeps.
"""

import logging
import os
import threading
from typing import Any, Callable, ParamSpec, Protocol, Type, TypeVar, cast

from celery import Celery, Task
from celery.signals import setup_logging, worker_shutting_down

from ..core.config import settings

logger = logging.getLogger(__name__)

# Set when the worker begins a warm shutdown; sweeps check it between items.
shutdown_requested = threading.Event()


def create_celery_app() -> Celery:
    """
    Create and configure the Celery application.

    Returns:
        Celery: Configured Celery application instance
    """
    broker_url = os.getenv("CELERY_BROKER_URL") or settings.redis_url
    result_backend = os.getenv("CELERY_RESULT_BACKEND") or broker_url

    app = Celery("sessionhub", broker=broker_url, backend=result_backend)

    app.conf.update(
        {
            "task_serializer": "json",
            "accept_content": ["json"],
            "result_serializer": "json",
            "timezone": "UTC",
            "enable_utc": True,
            "worker_prefetch_multiplier": 1,
            "task_soft_time_limit": 1500,
            "task_time_limit": 1800,
            "task_acks_late": True,
            "task_reject_on_worker_lost": True,
            "task_default_retry_delay": 60,
            "task_max_retries": 3,
            "worker_hijack_root_logger": False,
            # Delayed jobs (reminders, expiry checks) can sit in the queue for days.
            "broker_transport_options": {"visibility_timeout": 7 * 24 * 3600},
        }
    )

    app.conf.imports = (
        "sessionhub.tasks.session_tasks",
        "sessionhub.tasks.transcript_tasks",
        "sessionhub.tasks.balance_tasks",
    )

    app.conf.task_routes = {
        "sessionhub.tasks.transcript_tasks.*": {"queue": "transcripts"},
        "sessionhub.tasks.balance_tasks.*": {"queue": "payments"},
    }

    from .beat_schedule import get_beat_schedule

    app.conf.beat_schedule = get_beat_schedule()
    return app


@setup_logging.connect  # type: ignore[misc]
def config_loggers(*args: Any, **kwargs: Any) -> None:
    """Configure logging to integrate with the application's logging setup."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@worker_shutting_down.connect  # type: ignore[misc]
def request_shutdown(*args: Any, **kwargs: Any) -> None:
    logger.info("Worker shutting down; asking running sweeps to stop")
    shutdown_requested.set()


celery_app = create_celery_app()


class BaseTask(Task):  # type: ignore[misc]
    """Base task with automatic retry and logging."""

    autoretry_for = (Exception,)
    retry_kwargs = {"max_retries": 3, "countdown": 60}
    retry_backoff = True
    retry_backoff_max = 600
    retry_jitter = True

    def on_failure(self, exc: Exception, task_id: str, args: Any, kwargs: Any, einfo: Any) -> None:
        logger.error(
            "Task %s[%s] failed with exception: %s",
            self.name,
            task_id,
            exc,
            exc_info=True,
            extra={"task_id": task_id, "task_name": self.name, "task_args": str(args)},
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_retry(self, exc: Exception, task_id: str, args: Any, kwargs: Any, einfo: Any) -> None:
        logger.warning(
            "Task %s[%s] retry %s due to: %s",
            self.name,
            task_id,
            self.request.retries,
            exc,
            extra={"task_id": task_id, "task_name": self.name},
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)


celery_app.Task = cast(Type[Task], BaseTask)


P = ParamSpec("P")
R = TypeVar("R", covariant=True)


class TaskWrapper(Protocol[P, R]):
    def __call__(self, *args: P.args, **kwargs: P.kwargs) -> R:
        ...

    def delay(self, *args: P.args, **kwargs: P.kwargs) -> Any:
        ...

    def apply_async(self, *args: Any, **kwargs: Any) -> Any:
        ...


def typed_task(
    *task_args: Any, **task_kwargs: Any
) -> Callable[[Callable[P, R]], TaskWrapper[P, R]]:
    """Return a typed Celery task decorator for mypy."""
    return cast(
        Callable[[Callable[P, R]], TaskWrapper[P, R]],
        celery_app.task(*task_args, **task_kwargs),
    )
