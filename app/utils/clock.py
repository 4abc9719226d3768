"""Clock abstraction so scheduling math never reads the wall clock inline."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol


def to_utc_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; normalise aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Clock pinned to a settable instant. Used by tests and replays."""

    def __init__(self, instant: datetime):
        self._instant = to_utc_aware(instant)

    def now(self) -> datetime:
        return self._instant

    def set(self, instant: datetime) -> None:
        self._instant = to_utc_aware(instant)

    def advance(self, delta: timedelta) -> datetime:
        self._instant = self._instant + delta
        return self._instant
