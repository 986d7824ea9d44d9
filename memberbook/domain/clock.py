"""Time sources injected into every operation that needs "now"."""
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, tzinfo
from threading import Lock
from typing import Optional


class Clock(ABC):
    """Abstract time source"""

    @abstractmethod
    def now(self) -> datetime:
        pass

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    """Wall clock; naive local time unless a tzinfo is given"""

    def __init__(self, tz: Optional[tzinfo] = None):
        self._tz = tz

    def now(self) -> datetime:
        return datetime.now(self._tz)


class FixedClock(Clock):
    """Settable clock for deterministic evaluation and tests"""

    def __init__(self, instant: datetime):
        self._instant = instant
        self._lock = Lock()

    def now(self) -> datetime:
        return self._instant

    def set(self, instant: datetime) -> None:
        with self._lock:
            self._instant = instant

    def advance(self, **delta) -> datetime:
        """Move forward by timedelta keyword arguments (hours=2, days=1, ...)"""
        with self._lock:
            self._instant = self._instant + timedelta(**delta)
            return self._instant
