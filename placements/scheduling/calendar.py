"""
Slot calendar: expands a weekly (weekday, hour) pattern into instants.

Pure functions, no engine state:
- ``default_schedule()``: every day of the week, 10:00-19:00.
- ``normalize_schedule(raw)``: drop invalid entries, dedupe, sort.
- ``expand(schedule, window_from, window_to, now, tz, safety_margin)``:
  concrete future instants inside a window.

Schedules are expressed in the engine timezone; expanded instants are
absolute UTC datetimes.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Any, Iterable, List, Optional, Tuple

from placements.scheduling.models import Slot
from placements.utils import ensure_utc

logger = logging.getLogger(__name__)

# Default schedule for new channels: each weekday, 10:00 through 19:00
DEFAULT_DAYS = range(1, 8)
DEFAULT_HOURS = range(10, 20)

DEFAULT_SAFETY_MARGIN = timedelta(seconds=30)


def default_schedule() -> Tuple[Slot, ...]:
    """Return the default weekly schedule."""
    return tuple(Slot(day, hour) for day in DEFAULT_DAYS for hour in DEFAULT_HOURS)


def normalize_schedule(raw: Optional[Iterable[Any]]) -> Tuple[Slot, ...]:
    """
    Normalize a raw schedule.

    Accepts ``Slot`` instances, ``{"day": .., "hour": ..}`` mappings and
    ``(day, hour)`` pairs. Entries that are malformed or outside
    day 1-7 / hour 0-23 are dropped, duplicates removed, and the result
    sorted by day then hour.

    Args:
        raw: Iterable of slot-like values (``None`` is treated as empty).

    Returns:
        Tuple of valid slots; may be empty.
    """
    slots = set()
    for item in raw or ():
        slot = _coerce_slot(item)
        if slot is None or not slot.is_valid:
            continue
        slots.add(slot)
    return tuple(sorted(slots))


def expand(
    schedule: Iterable[Slot],
    window_from: datetime,
    window_to: datetime,
    now: datetime,
    tz: tzinfo = timezone.utc,
    safety_margin: timedelta = DEFAULT_SAFETY_MARGIN,
) -> List[datetime]:
    """
    Expand a weekly schedule into concrete instants inside a window.

    For every calendar day (in *tz*) touched by the window, each slot whose
    ISO weekday matches yields ``day + hour`` converted to UTC. Instants
    not strictly later than ``now + safety_margin`` or outside
    ``[window_from, window_to]`` are discarded.

    Args:
        schedule: Weekly slots.
        window_from: Window start (inclusive).
        window_to: Window end (inclusive).
        now: Current instant.
        tz: Timezone the schedule's hours are expressed in.
        safety_margin: Minimum lead time before an instant is offered.

    Returns:
        Sorted, deduplicated list of aware UTC datetimes.
    """
    window_from = ensure_utc(window_from)
    window_to = ensure_utc(window_to)
    if window_to < window_from:
        return []

    earliest = ensure_utc(now) + safety_margin
    hours_by_day = {}
    for slot in schedule:
        hours_by_day.setdefault(slot.day, set()).add(slot.hour)
    if not hours_by_day:
        return []

    instants = set()
    day = window_from.astimezone(tz).date()
    last_day = window_to.astimezone(tz).date()
    while day <= last_day:
        for hour in hours_by_day.get(day.isoweekday(), ()):
            instant = _local_to_utc(day, hour, tz)
            if instant <= earliest:
                continue
            if instant < window_from or instant > window_to:
                continue
            instants.add(instant)
        day += timedelta(days=1)

    return sorted(instants)


# =============================================================================
# HELPERS
# =============================================================================


def _local_to_utc(day: date, hour: int, tz: tzinfo) -> datetime:
    local = datetime.combine(day, time(hour=hour), tzinfo=tz)
    return local.astimezone(timezone.utc)


def _coerce_slot(item: Any) -> Optional[Slot]:
    if isinstance(item, Slot):
        return item
    if isinstance(item, (str, bytes)):
        logger.debug("Dropping malformed schedule entry: %r", item)
        return None
    try:
        if isinstance(item, dict):
            day, hour = item["day"], item["hour"]
        else:
            day, hour = item
    except (KeyError, TypeError, ValueError):
        logger.debug("Dropping malformed schedule entry: %r", item)
        return None
    if isinstance(day, bool) or isinstance(hour, bool):
        return None
    if not isinstance(day, int) or not isinstance(hour, int):
        try:
            day_f, hour_f = float(day), float(hour)
        except (TypeError, ValueError):
            return None
        if not (day_f.is_integer() and hour_f.is_integer()):
            return None
        day, hour = int(day_f), int(hour_f)
    return Slot(day, hour)


__all__ = [
    "DEFAULT_SAFETY_MARGIN",
    "default_schedule",
    "normalize_schedule",
    "expand",
]
