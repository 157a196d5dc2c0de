# sessionhub/services/transcript_service.py
"""
Recording and transcript processing.

Two entry points share one transcription attempt:

- ``process_recording_completed`` runs when the video provider reports a
  finished recording: it stores the recording, completes the session and
  makes the first transcription attempt.
- ``reconcile`` is the periodic sweep that retries sessions left between
  "recording processed" and "transcript processed", one attempt per session
  per interval, until the attempt ceiling is reached.

Every attempt is counted and persisted before the provider is called, so a
crash mid-call still consumes the attempt.
"""

from datetime import datetime, timedelta
import tempfile
from typing import Callable, Optional, TypedDict

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import ForbiddenException, NotFoundException
from ..core.principal import Actor
from ..core.time_utils import utc_now
from ..integrations.deepgram_client import DeepgramClient
from ..integrations.r2_storage import R2RecordingStorage
from ..integrations.zoom_client import ZoomClient
from ..models.session import MentorshipSession
from ..repositories.factory import RepositoryFactory
from ..tasks.scheduler import JobScheduler, get_job_scheduler
from .base import BaseService
from .notification_service import NotificationService
from .session_orchestrator import COMPLETABLE_STATUSES, SessionOrchestrator

RECORDING_CONTENT_TYPE = "video/mp4"


class ReconcileResults(TypedDict):
    candidates: int
    transcribed: int
    failed: int
    exhausted: int
    stopped: bool


class RecordingAccess(TypedDict):
    url: str
    expires_at: datetime


def recording_key(session_id: str) -> str:
    return f"recordings/{session_id}.mp4"


class TranscriptService(BaseService):
    def __init__(
        self,
        db: Session,
        video: Optional[ZoomClient] = None,
        transcriber: Optional[DeepgramClient] = None,
        storage: Optional[R2RecordingStorage] = None,
        scheduler: Optional[JobScheduler] = None,
        notifications: Optional[NotificationService] = None,
        orchestrator: Optional[SessionOrchestrator] = None,
    ):
        super().__init__(db)
        self.video = video or ZoomClient.from_settings()
        self.transcriber = transcriber or DeepgramClient.from_settings()
        self.storage = storage or R2RecordingStorage.from_settings()
        self.scheduler = scheduler or get_job_scheduler()
        self.notifications = notifications or NotificationService(db)
        self.orchestrator = orchestrator or SessionOrchestrator(
            db, scheduler=self.scheduler, notifications=self.notifications, video=self.video
        )
        self.session_repository = RepositoryFactory.create_session_repository(db)
        self.retry_interval = timedelta(minutes=settings.transcript_retry_interval_minutes)
        self.max_attempts = settings.transcript_max_attempts

    # ── Recording completion ────────────────────────────────────────────

    @BaseService.measure_operation("process_recording_completed")
    def process_recording_completed(
        self,
        meeting_id: str,
        download_token: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[MentorshipSession]:
        """
        Store the recording of a finished meeting and try to transcribe it.

        Unknown meetings are logged and ignored. Re-delivery for a session
        whose recording is already stored is a no-op; a session whose copy
        failed stays unprocessed so the next delivery retries the copy.
        """
        now = now or utc_now()
        session = self.session_repository.get_by_meeting_id(meeting_id)
        if session is None:
            self.logger.warning("No session found for meeting %s", meeting_id)
            return None
        if session.recording_processed:
            self.logger.info("Recording for session %s already processed", session.id)
            return session

        recordings = self.video.get_recordings(meeting_id, session_id=session.id)
        if recordings.error is not None:
            self.logger.error(
                "Failed to fetch recordings for session %s: %s",
                session.id,
                recordings.error.message,
            )
            return session
        mp4 = recordings.unwrap().first_of("MP4")
        if mp4 is None:
            self.logger.warning("No MP4 recording found for meeting %s", meeting_id)
            return session

        storage_key = self._store_recording(session, mp4.download_url, download_token)

        with self.transaction():
            session.recording_url = mp4.play_url
            session.recording_available_at = now
            session.video_storage_key = storage_key
            session.recording_processed = storage_key is not None
            if session.status in COMPLETABLE_STATUSES:
                self.orchestrator.mark_completed(session, now)

        if storage_key is None:
            with self.transaction():
                self.notifications.alert_operator(
                    "Recording not stored",
                    f"Session {session.id} recording could not be copied to storage; "
                    "it will be retried when the recording webhook is redelivered.",
                    {"session_id": session.id, "meeting_id": meeting_id},
                )
            return session

        self.logger.info("Recording processed for session %s", session.id)
        self.attempt_transcription(session, now)
        return session

    def _store_recording(
        self, session: MentorshipSession, download_url: str, download_token: Optional[str]
    ) -> Optional[str]:
        key = recording_key(session.id)
        with tempfile.TemporaryFile() as buffer:
            downloaded = self.video.download_file(
                download_url, buffer, access_token=download_token
            )
            if downloaded.error is not None:
                self.logger.error(
                    "Recording download failed for session %s: %s",
                    session.id,
                    downloaded.error.message,
                )
                return None
            buffer.seek(0)
            uploaded = self.storage.upload_stream(
                key, buffer, RECORDING_CONTENT_TYPE, content_length=downloaded.unwrap()
            )
        if uploaded.error is not None:
            self.logger.error(
                "Recording upload failed for session %s: %s", session.id, uploaded.error.message
            )
            return None
        return key

    # ── Participant access ──────────────────────────────────────────────

    def get_recording_access(
        self, session_id: str, actor: Actor, now: Optional[datetime] = None
    ) -> RecordingAccess:
        """Short-lived download link for the stored recording; participants only."""
        session = self.orchestrator.get_session_for(session_id, actor)
        if not session.is_participant(actor.user_id):
            raise ForbiddenException("Only session participants can download the recording")
        if not session.video_storage_key:
            raise NotFoundException("Recording not available")
        ttl = timedelta(minutes=settings.recording_url_ttl_minutes)
        url = self.storage.get_access_url(session.video_storage_key, ttl).unwrap()
        self.logger.info("Issued recording link for session %s to %s", session.id, actor.user_id)
        return RecordingAccess(url=url, expires_at=(now or utc_now()) + ttl)

    def get_transcript(self, session_id: str, actor: Actor) -> MentorshipSession:
        session = self.orchestrator.get_session_for(session_id, actor)
        if not session.transcript_processed:
            raise NotFoundException("Transcript not available")
        return session

    # ── Transcription ───────────────────────────────────────────────────

    def attempt_transcription(self, session: MentorshipSession, now: datetime) -> bool:
        """One counted attempt: presign the stored recording, transcribe it by URL."""
        with self.transaction():
            session.transcript_retrieval_attempts = (session.transcript_retrieval_attempts or 0) + 1
            session.last_transcript_retrieval_attempt = now
        attempt = session.transcript_retrieval_attempts

        url = self.storage.get_access_url(
            session.video_storage_key, timedelta(minutes=settings.recording_url_ttl_minutes)
        )
        if url.error is not None:
            return self._attempt_failed(session, attempt, url.error.message)

        result = self.transcriber.transcribe_from_url(url.unwrap())
        if result.error is not None:
            return self._attempt_failed(session, attempt, result.error.message)
        transcript = result.unwrap()
        if not transcript or not transcript.strip():
            return self._attempt_failed(session, attempt, "empty transcript")

        with self.transaction():
            session.mark_transcribed(transcript)
        self.logger.info(
            "Transcript stored for session %s on attempt %s (%s chars)",
            session.id,
            attempt,
            len(transcript),
        )
        try:
            self.scheduler.enqueue(settings.summary_task_name, args=(session.id,))
        except Exception as exc:
            self.logger.error("Failed to enqueue summary for session %s: %s", session.id, exc)
        return True

    def _attempt_failed(self, session: MentorshipSession, attempt: int, reason: str) -> bool:
        if attempt >= self.max_attempts:
            self.logger.error(
                "Transcript retrieval for session %s gave up after %s attempts: %s",
                session.id,
                attempt,
                reason,
            )
            with self.transaction():
                self.notifications.alert_operator(
                    "Transcript retrieval exhausted",
                    f"Session {session.id} has no transcript after {attempt} attempts.",
                    {"session_id": session.id, "reason": reason},
                )
        else:
            self.logger.warning(
                "Transcript attempt %s/%s for session %s failed: %s",
                attempt,
                self.max_attempts,
                session.id,
                reason,
            )
        return False

    # ── Reconciliation sweep ────────────────────────────────────────────

    @BaseService.measure_operation("reconcile_transcripts")
    def reconcile(
        self,
        now: Optional[datetime] = None,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> ReconcileResults:
        """
        Retry transcription for stalled sessions.

        ``should_stop`` is consulted between sessions, never during a
        provider call.
        """
        now = now or utc_now()
        candidates = self.session_repository.get_transcript_retry_candidates(
            now=now, retry_interval=self.retry_interval, max_attempts=self.max_attempts
        )
        results: ReconcileResults = {
            "candidates": len(candidates),
            "transcribed": 0,
            "failed": 0,
            "exhausted": 0,
            "stopped": False,
        }
        if not candidates:
            return results
        self.logger.info("Found %s sessions needing transcript retrieval", len(candidates))

        for session in candidates:
            if should_stop is not None and should_stop():
                self.logger.info("Transcript sweep stopping early on shutdown")
                results["stopped"] = True
                break
            try:
                if self.attempt_transcription(session, now):
                    results["transcribed"] += 1
                    continue
            except Exception as exc:
                self.logger.error(
                    "Transcript retry for session %s raised: %s", session.id, exc, exc_info=True
                )
                self.db.rollback()
            results["failed"] += 1
            if (session.transcript_retrieval_attempts or 0) >= self.max_attempts:
                results["exhausted"] += 1

        self.logger.info(
            "Transcript sweep finished: %s transcribed, %s failed, %s exhausted",
            results["transcribed"],
            results["failed"],
            results["exhausted"],
        )
        return results
