"""
Источник времени.

Все сервисы получают часы через конструктор, поэтому тесты кулдауна и
перехода суток ставят точное время вместо sleep.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        """Текущее время в UTC (timezone-aware)."""
        ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock:
    """Часы, которые двигаются только вручную."""

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
        if self._now.tzinfo is None:
            self._now = self._now.replace(tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def set(self, value: datetime) -> None:
        self._now = value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    def advance(self, delta: timedelta = None, **kwargs) -> datetime:
        self._now = self._now + (delta if delta is not None else timedelta(**kwargs))
        return self._now


def utc_day(moment: datetime) -> date:
    """Календарный день UTC для момента времени."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).date()


def next_utc_midnight(moment: datetime) -> datetime:
    return datetime.combine(utc_day(moment) + timedelta(days=1), time.min, tzinfo=timezone.utc)
