# sessionhub/services/reminder_service.py
"""
Session reminders.

A reminder fires ``reminder_offset_minutes`` before the session starts and
notifies both participants. The job handle lives on the session so a cancel
or reschedule can revoke it before a new one is scheduled.
"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.time_utils import ensure_utc, utc_now
from ..models.notification import NotificationType
from ..models.session import MentorshipSession, SessionStatus
from ..repositories.factory import RepositoryFactory
from ..tasks.names import SEND_SESSION_REMINDER
from ..tasks.scheduler import JobScheduler, get_job_scheduler
from .base import BaseService
from .notification_service import NotificationService

REMINDABLE_STATUSES = frozenset({SessionStatus.CONFIRMED.value})


def format_start_time(value: datetime) -> str:
    value = ensure_utc(value)
    hour = value.strftime("%I:%M %p").lstrip("0")
    return f"{value:%b %d, %Y} at {hour} UTC"


class ReminderService(BaseService):
    def __init__(
        self,
        db: Session,
        scheduler: Optional[JobScheduler] = None,
        notifications: Optional[NotificationService] = None,
    ):
        super().__init__(db)
        self.scheduler = scheduler or get_job_scheduler()
        self.notifications = notifications or NotificationService(db)
        self.session_repository = RepositoryFactory.create_session_repository(db)
        self.offset = timedelta(minutes=settings.reminder_offset_minutes)

    def schedule_reminder(
        self, session: MentorshipSession, now: Optional[datetime] = None
    ) -> Optional[str]:
        """
        Replace any pending reminder for ``session`` with one at start - offset.

        Returns the new handle, or None when the reminder time has already
        passed. The caller commits the session.
        """
        self.cancel_reminder(session)
        session.reminder_sent_at = None

        reminder_time = ensure_utc(session.scheduled_start_time) - self.offset
        if reminder_time <= (now or utc_now()):
            self.logger.info(
                "Session %s starts too soon for a reminder (starts at %s)",
                session.id,
                session.scheduled_start_time,
            )
            return None

        handle = self.scheduler.schedule(
            SEND_SESSION_REMINDER,
            reminder_time,
            args=(session.id, ensure_utc(session.scheduled_start_time).isoformat()),
        )
        session.reminder_job_id = handle
        self.logger.info(
            "Scheduled reminder job %s for session %s at %s", handle, session.id, reminder_time
        )
        return handle

    def cancel_reminder(self, session: MentorshipSession) -> None:
        handle = session.reminder_job_id
        if not handle:
            return
        if not self.scheduler.cancel(handle):
            self.logger.warning(
                "Failed to cancel reminder job %s (may have already executed)", handle
            )
        session.reminder_job_id = None

    @BaseService.measure_operation("send_reminder")
    def send_reminder(self, session_id: str, expected_start: Optional[str] = None) -> bool:
        """
        Job body: notify mentee and mentor. Safe to run more than once.

        Skips when the session is gone, no longer confirmed, already reminded,
        or was moved since the job was scheduled.
        """
        session = self.session_repository.get_by_id(session_id)
        if session is None:
            self.logger.warning("Reminder for unknown session %s skipped", session_id)
            return False
        if session.status not in REMINDABLE_STATUSES or session.reminder_sent_at is not None:
            self.logger.info(
                "Reminder for session %s skipped (status=%s)", session_id, session.status
            )
            return False
        start = ensure_utc(session.scheduled_start_time)
        if expected_start and start != ensure_utc(datetime.fromisoformat(expected_start)):
            self.logger.info("Stale reminder for rescheduled session %s skipped", session_id)
            return False

        when = format_start_time(start)
        minutes = int(self.offset.total_seconds() // 60)
        with self.transaction():
            self.notifications.notify(
                session.mentee_id,
                NotificationType.SESSION_REMINDER,
                "Session Starting Soon",
                f"Your session with {session.mentor_name or 'your mentor'} starts in "
                f"{minutes} minutes ({when}).",
                f"user/sessions/{session.id}",
            )
            self.notifications.notify(
                session.mentor_id,
                NotificationType.SESSION_REMINDER,
                "Session Starting Soon",
                f"Your session with {session.mentee_name or 'your mentee'} starts in "
                f"{minutes} minutes ({when}).",
                f"mentor/sessions/{session.id}",
            )
            session.reminder_sent_at = utc_now()
            session.reminder_job_id = None

        self.logger.info(
            "Sent reminder notifications for session %s starting at %s", session_id, start
        )
        return True
