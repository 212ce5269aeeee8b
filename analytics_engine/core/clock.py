"""Time source used by the engine. Everything is naive UTC."""

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    """Current UTC time without tzinfo, matching what the tables store."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC already."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class Clock:
    """Server clock."""

    def now(self) -> datetime:
        return utcnow()


class FrozenClock(Clock):
    """A clock that only moves when told to. Used by tests and the data seeder."""

    def __init__(self, now: datetime = None):
        self._now = to_naive_utc(now) if now else utcnow()

    def now(self) -> datetime:
        return self._now

    def set(self, now: datetime) -> None:
        self._now = to_naive_utc(now)

    def advance(self, **kwargs) -> datetime:
        self._now = self._now + timedelta(**kwargs)
        return self._now
