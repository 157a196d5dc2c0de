"""Data access for mentor time slots."""

from sqlalchemy.orm import Session

from ..models.time_slot import TimeSlot
from .base_repository import BaseRepository


class TimeSlotRepository(BaseRepository[TimeSlot]):
    def __init__(self, db: Session):
        super().__init__(db, TimeSlot)
