"""
Clock abstraction for cache expiry.
Lets tests pin "now" when checking TTL boundaries.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):

    @abstractmethod
    def now(self) -> datetime:
        """Current UTC datetime (timezone-aware)."""


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.now(tz=timezone.utc)


class FakeClock(Clock):
    """Manually driven clock for tests."""

    def __init__(self, initial: datetime | None = None):
        if initial is None:
            initial = datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)
        self._current = initial

    def now(self) -> datetime:
        return self._current

    def set(self, dt: datetime) -> None:
        self._current = as_utc(dt)

    def advance(self, **kwargs) -> None:
        self._current += timedelta(**kwargs)


def as_utc(dt: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything stored here is UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
