"""
Clock abstraction.

Every component that reasons about "now" receives a Clock instead of calling
datetime.now() directly, so the notification state machine can be driven
by a virtual clock in tests and replayed from the worker CLI.
"""

from datetime import UTC, datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    """Source of the current instant (always timezone-aware)."""

    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class ManualClock:
    """
    Clock that only moves when told to.

    Args:
        start: Initial instant. Naive values are interpreted as UTC.
    """

    def __init__(self, start: datetime):
        self._now = as_utc(start)

    def now(self) -> datetime:
        return self._now

    def set(self, instant: datetime) -> None:
        self._now = as_utc(instant)

    def advance(self, delta: timedelta) -> datetime:
        self._now = self._now + delta
        return self._now


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def hours_between(start: datetime, end: datetime) -> float:
    """Signed number of hours from start to end."""
    return (as_utc(end) - as_utc(start)).total_seconds() / 3600
