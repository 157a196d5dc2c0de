"""Data access for session disputes."""

from typing import Optional

from sqlalchemy.orm import Session

from ..models.session_dispute import SessionDispute
from .base_repository import BaseRepository


class DisputeRepository(BaseRepository[SessionDispute]):
    def __init__(self, db: Session):
        super().__init__(db, SessionDispute)

    def get_by_session_id(self, session_id: str) -> Optional[SessionDispute]:
        return self.find_one_by(session_id=session_id)
