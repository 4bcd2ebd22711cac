"""
Time sources for the placement engine.

Every engine and sweeper decision reads "now" from an injected ``Clock``
so that deadlines can be exercised deterministically in tests.
"""

from datetime import datetime, timedelta
from typing import Protocol

from placements.utils import ensure_utc, utc_now


class Clock(Protocol):
    """Anything with a ``now()`` returning an aware UTC datetime."""

    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall-clock time."""

    def now(self) -> datetime:
        return utc_now()


class ManualClock:
    """A clock that only moves when told to.

    Args:
        start: Initial instant (naive values are treated as UTC).
    """

    def __init__(self, start: datetime) -> None:
        self._now = ensure_utc(start)

    def now(self) -> datetime:
        return self._now

    def advance(self, delta: timedelta) -> datetime:
        self._now = self._now + delta
        return self._now

    def set(self, instant: datetime) -> None:
        self._now = ensure_utc(instant)


__all__ = [
    "Clock",
    "SystemClock",
    "ManualClock",
]
