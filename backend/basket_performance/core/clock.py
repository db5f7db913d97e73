"""Clock abstractions so "today" is injectable."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Protocol
from zoneinfo import ZoneInfo


class Clock(Protocol):
    def now(self) -> datetime:
        ...

    def today(self) -> date:
        ...


class SystemClock:
    """Wall clock in the configured business timezone."""

    def __init__(self, tz: str = "UTC") -> None:
        self.tz = ZoneInfo(tz)

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def today(self) -> date:
        return self.now().date()


class ManualClock:
    """Clock that only moves when told to; used by tests and backfills."""

    def __init__(self, start: datetime) -> None:
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        self._now = start

    def now(self) -> datetime:
        return self._now

    def today(self) -> date:
        return self._now.date()

    def advance(self, **delta: float) -> None:
        self._now = self._now + timedelta(**delta)

    def set(self, moment: datetime) -> None:
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=self._now.tzinfo)
        self._now = moment


__all__ = ["Clock", "SystemClock", "ManualClock"]
