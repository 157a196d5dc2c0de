"""Mentor-owned bookable intervals."""

from sqlalchemy import Boolean, Column, DateTime, Integer, Numeric, String
from sqlalchemy.sql import func
import ulid

from ..database import Base


class TimeSlot(Base):
    __tablename__ = "time_slots"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    mentor_id = Column(String(26), nullable=False, index=True)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    duration_minutes = Column(Integer, nullable=False)  # 30 or 60
    price = Column(Numeric(10, 2), nullable=False)

    is_booked = Column(Boolean, nullable=False, default=False)
    session_id = Column(String(26), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def book(self, session_id: str) -> None:
        self.is_booked = True
        self.session_id = session_id

    def release(self) -> None:
        self.is_booked = False
        self.session_id = None

    def __repr__(self) -> str:
        return f"<TimeSlot {self.id} mentor={self.mentor_id} booked={self.is_booked}>"
