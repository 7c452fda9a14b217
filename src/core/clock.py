"""Injectable wall clock for the pet's local calendar.

Every date- or threshold-sensitive computation asks a ``Clock`` for "now"
instead of sampling the system time itself, so rollover and overdue
behaviour can be driven deterministically.
"""

from __future__ import annotations

from datetime import date, datetime, time
from typing import Protocol
from zoneinfo import ZoneInfo


class Clock(Protocol):
    @property
    def tz(self) -> ZoneInfo: ...

    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock pinned to one IANA zone."""

    def __init__(self, tz: ZoneInfo) -> None:
        self._tz = tz

    @property
    def tz(self) -> ZoneInfo:
        return self._tz

    def now(self) -> datetime:
        return datetime.now(self._tz)


def date_key(moment: datetime | date) -> str:
    """Return the YYYY-MM-DD key used to scope daily data."""
    if isinstance(moment, datetime):
        return moment.date().isoformat()
    return moment.isoformat()


def start_of_day(moment: datetime) -> datetime:
    return datetime.combine(moment.date(), time.min, tzinfo=moment.tzinfo)


def at_time_on(day: date, time_of_day: time, tz: ZoneInfo) -> datetime:
    """Anchor a time-of-day on a calendar date in the given zone."""
    return datetime.combine(day, time_of_day.replace(tzinfo=None), tzinfo=tz)


def elapsed_seconds(start: datetime, end: datetime) -> float:
    """Real seconds from ``start`` to ``end``, counting DST transitions at their true length."""
    return end.timestamp() - start.timestamp()


def to_local(moment: datetime, tz: ZoneInfo) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=tz)
    return moment.astimezone(tz)
