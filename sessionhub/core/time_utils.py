"""UTC helpers shared by services, tasks and repositories."""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from the database."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def hours_until(target: datetime, now: Optional[datetime] = None) -> float:
    current = now or utc_now()
    return (ensure_utc(target) - current).total_seconds() / 3600  # type: ignore[operator]
