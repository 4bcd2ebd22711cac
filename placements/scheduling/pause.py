"""
Auto-pause arbiter: per-channel suspend/resume gate for autoposting.

A paused channel accepts no new offers until ``pause_until`` passes.
Paused channels are skipped on creation with an explicit reason; nothing
is queued for later. Only modes that publish without consent support
pausing (see ``PostingMode.supports_pause``).
"""

import logging
from datetime import datetime, timedelta
from typing import List

from placements.exceptions import IllegalStateError, ValidationError
from placements.scheduling.models import Channel

logger = logging.getLogger(__name__)


class PauseArbiter:
    """Applies pause rules to channels in place.

    Args:
        max_days: Longest allowed pause.
    """

    def __init__(self, max_days: int = 30) -> None:
        self.max_days = max_days

    @staticmethod
    def is_paused(channel: Channel, now: datetime) -> bool:
        return channel.pause_until is not None and channel.pause_until > now

    @staticmethod
    def skip_detail(channel: Channel) -> str:
        until = channel.pause_until.isoformat() if channel.pause_until else "unknown"
        return f"Autoposting paused until {until}"

    def pause(self, channel: Channel, days: int, now: datetime) -> datetime:
        """
        Suspend autoposting on *channel* for *days* days from *now*.

        Pausing an already paused channel replaces its expiry.

        Returns:
            The new ``pause_until``.

        Raises:
            ValidationError: If *days* is not an integer in 1..max_days.
            IllegalStateError: If the channel's mode does not support pausing.
        """
        if isinstance(days, bool) or not isinstance(days, int) or not 1 <= days <= self.max_days:
            raise ValidationError(f"Pause duration must be 1..{self.max_days} days, got {days!r}")
        if not channel.mode.supports_pause:
            raise IllegalStateError(
                channel.id, channel.mode.value, "pause", "mode does not support pausing"
            )
        channel.pause_until = now + timedelta(days=days)
        logger.info(
            "[PAUSE] Channel %s paused until %s",
            channel.id,
            channel.pause_until.isoformat(),
        )
        return channel.pause_until

    @staticmethod
    def resume(channel: Channel) -> bool:
        """Clear any pause. Returns ``True`` if the channel had one."""
        had_pause = channel.pause_until is not None
        channel.pause_until = None
        if had_pause:
            logger.info("[PAUSE] Channel %s resumed", channel.id)
        return had_pause

    @staticmethod
    def expired(channels: List[Channel], now: datetime) -> List[Channel]:
        """Channels whose pause has run out but has not been cleared yet."""
        return [
            channel
            for channel in channels
            if channel.pause_until is not None and channel.pause_until <= now
        ]


__all__ = [
    "PauseArbiter",
]
