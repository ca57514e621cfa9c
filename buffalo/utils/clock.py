"""
Period clock.

Services never read the wall clock or the current year directly; they ask a
PeriodClock. Production uses SystemClock, tests swap in FrozenClock.
"""

from datetime import datetime, timedelta
from typing import Optional

from buffalo.utils.datetime_utils import utcnow, ensure_utc


class PeriodClock:
    """Source of the current time and the active competition period."""

    def now(self) -> datetime:
        raise NotImplementedError

    def current_period(self) -> int:
        raise NotImplementedError


class SystemClock(PeriodClock):
    """Wall-clock time; the period is the current UTC calendar year."""

    def now(self) -> datetime:
        return utcnow()

    def current_period(self) -> int:
        return self.now().year


class FrozenClock(PeriodClock):
    """Manually advanced clock for tests and replays."""

    def __init__(self, start: datetime, period: Optional[int] = None):
        self._now = ensure_utc(start)
        self._period = period

    def now(self) -> datetime:
        return self._now

    def current_period(self) -> int:
        return self._period if self._period is not None else self._now.year

    def advance(self, **kwargs) -> datetime:
        """Move time forward, e.g. ``clock.advance(minutes=2)``."""
        self._now = self._now + timedelta(**kwargs)
        return self._now


_clock: PeriodClock = SystemClock()


def get_clock() -> PeriodClock:
    """Get the process-wide clock."""
    return _clock


def set_clock(clock: PeriodClock) -> PeriodClock:
    """Replace the process-wide clock, returning the previous one."""
    global _clock
    previous = _clock
    _clock = clock
    return previous
