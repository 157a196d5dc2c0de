# sessionhub/repositories/session_repository.py
"""Data access for mentorship sessions."""

from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.session import ACTIVE_STATUSES, MentorshipSession
from .base_repository import BaseRepository


class SessionRepository(BaseRepository[MentorshipSession]):
    def __init__(self, db: Session):
        super().__init__(db, MentorshipSession)

    def get_by_meeting_id(self, meeting_id: str) -> Optional[MentorshipSession]:
        return self.find_one_by(meeting_id=str(meeting_id))

    def has_mentee_overlap(
        self,
        mentee_id: str,
        start_time: datetime,
        end_time: datetime,
        *,
        exclude_session_id: Optional[str] = None,
    ) -> bool:
        """True when the mentee already holds an active session overlapping the interval."""
        try:
            query = self.db.query(MentorshipSession.id).filter(
                MentorshipSession.mentee_id == mentee_id,
                MentorshipSession.status.in_(ACTIVE_STATUSES),
                MentorshipSession.scheduled_start_time < end_time,
                MentorshipSession.scheduled_end_time > start_time,
            )
            if exclude_session_id:
                query = query.filter(MentorshipSession.id != exclude_session_id)
            return query.first() is not None
        except SQLAlchemyError as e:
            self.logger.error("Error checking overlap for mentee %s: %s", mentee_id, e)
            raise RepositoryException(f"Failed to check session overlap: {e}") from e

    def get_transcript_retry_candidates(
        self,
        *,
        now: datetime,
        retry_interval: timedelta,
        max_attempts: int,
        limit: int = 100,
    ) -> List[MentorshipSession]:
        """
        Sessions stuck between recording processed and transcript processed.

        A session qualifies when it has a stored recording, has not used up
        its attempts, and was never attempted or last attempted at least one
        interval ago.
        """
        cutoff = now - retry_interval
        try:
            return (
                self.db.query(MentorshipSession)
                .filter(
                    MentorshipSession.recording_processed.is_(True),
                    MentorshipSession.transcript_processed.is_(False),
                    MentorshipSession.video_storage_key.isnot(None),
                    MentorshipSession.video_storage_key != "",
                    MentorshipSession.transcript_retrieval_attempts < max_attempts,
                    or_(
                        MentorshipSession.last_transcript_retrieval_attempt.is_(None),
                        MentorshipSession.last_transcript_retrieval_attempt <= cutoff,
                    ),
                )
                .order_by(MentorshipSession.last_transcript_retrieval_attempt.asc())
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error loading transcript retry candidates: %s", e)
            raise RepositoryException(f"Failed to load transcript candidates: {e}") from e

