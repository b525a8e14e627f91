"""
Источники текущего времени для расчёта сроков.
"""

from datetime import datetime, timedelta, timezone
from typing import Protocol


def as_utc(moment: datetime) -> datetime:
    """Наивное время считается UTC, остальное переводится в UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Системные часы, всегда возвращают время в UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """
    Управляемые часы для тестов и пересчёта "на момент времени".
    """

    def __init__(self, start: datetime) -> None:
        self._now = as_utc(start)

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs: float) -> datetime:
        """Сдвигает часы вперёд, аргументы как у timedelta."""
        self._now = self._now + timedelta(**kwargs)
        return self._now
