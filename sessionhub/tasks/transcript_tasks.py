# sessionhub/tasks/transcript_tasks.py
"""Recording processing and the periodic transcript reconciliation sweep."""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Optional, TypedDict, cast

from sqlalchemy.orm import Session

from ..database import get_db
from ..services.transcript_service import ReconcileResults, TranscriptService
from .celery_app import shutdown_requested, typed_task
from .names import PROCESS_RECORDING, RECONCILE_TRANSCRIPTS

logger = logging.getLogger(__name__)


class RecordingJobResult(TypedDict):
    meeting_id: str
    session_id: Optional[str]
    recording_processed: bool
    transcript_processed: bool
    processed_at: str


@typed_task(name=PROCESS_RECORDING)
def process_recording(meeting_id: str, download_token: Optional[str] = None) -> RecordingJobResult:
    """
    Handle a ``recording.completed`` notification off the webhook path.

    Downloading and uploading a recording can take minutes, so the webhook
    only enqueues this job.
    """
    db: Optional[Session] = None
    try:
        db = cast(Session, next(get_db()))
        session = TranscriptService(db).process_recording_completed(meeting_id, download_token)
        return {
            "meeting_id": meeting_id,
            "session_id": session.id if session is not None else None,
            "recording_processed": bool(session and session.recording_processed),
            "transcript_processed": bool(session and session.transcript_processed),
            "processed_at": datetime.now(timezone.utc).isoformat(),
        }
    finally:
        if db is not None:
            db.close()


@typed_task(name=RECONCILE_TRANSCRIPTS, autoretry_for=())
def reconcile_transcripts() -> ReconcileResults:
    """
    Beat task: retry transcription for sessions stuck after recording.

    Not auto-retried; the next beat run is the retry. Stops between sessions
    once the worker begins shutting down.
    """
    db: Optional[Session] = None
    try:
        db = cast(Session, next(get_db()))
        return TranscriptService(db).reconcile(should_stop=shutdown_requested.is_set)
    finally:
        if db is not None:
            db.close()
