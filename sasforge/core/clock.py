"""
Clock abstraction.

All expiry and window decisions read time through a ``Clock`` so tests can
drive synthetic time without sleeping.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional


def to_utc(value: datetime) -> datetime:
    """Normalise an aware datetime to UTC with whole-second precision.

    Raises:
        ValueError: If ``value`` is naive
    """
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        raise ValueError(f"Timestamp must be timezone-aware: {value!r}")
    return value.astimezone(timezone.utc).replace(microsecond=0)


def format_timestamp(value: datetime) -> str:
    """Format a timestamp the way SAS parameters carry it (``YYYY-MM-DDTHH:MM:SSZ``)."""
    return to_utc(value).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_timestamp(value: str) -> datetime:
    """Parse a SAS timestamp back into an aware UTC datetime."""
    return datetime.fromisoformat(value.replace("Z", "+00:00")).astimezone(timezone.utc)


class Clock(ABC):
    """Source of the current time."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current time as an aware UTC datetime."""


class SystemClock(Clock):
    """Wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """Manually driven clock for tests and reproducible runs."""

    def __init__(self, start: Optional[datetime] = None):
        self._now = to_utc(start) if start else datetime(2026, 1, 1, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def set(self, value: datetime) -> None:
        self._now = to_utc(value)

    def advance(self, delta: timedelta) -> datetime:
        """Move the clock forward and return the new time."""
        self._now = self._now + delta
        return self._now
