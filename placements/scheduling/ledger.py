"""
Reservation ledger: which instants a blogger's active offers hold.

The ledger is a read model over the repository. It never mutates offers;
the engine's state lock makes "check free, then create/reschedule" atomic.

Rules:
    - Per blogger, no two active offers share a scheduled instant.
    - A blogger may hold fewer active offers than the channel's weekly limit.
"""

import logging
from datetime import datetime, timedelta, timezone, tzinfo
from typing import List, Optional, Set

from placements.repository import Repository
from placements.scheduling import calendar
from placements.scheduling.models import ACTIVE_STATUSES, Channel, Offer

logger = logging.getLogger(__name__)


class ReservationLedger:
    """Computes reserved and free instants from the repository.

    Args:
        repository: Entity storage.
        tz: Timezone channel schedules are expressed in.
        safety_margin: Minimum lead time before an instant is offered.
    """

    def __init__(
        self,
        repository: Repository,
        tz: tzinfo = timezone.utc,
        safety_margin: timedelta = calendar.DEFAULT_SAFETY_MARGIN,
    ) -> None:
        self.repository = repository
        self.tz = tz
        self.safety_margin = safety_margin

    def reserved_instants(
        self,
        blogger_id: int,
        exclude_offer_id: Optional[int] = None,
    ) -> Set[datetime]:
        """Scheduled instants of the blogger's active offers."""
        return {
            offer.scheduled_at
            for offer in self.repository.list_offers(
                blogger_id=blogger_id, statuses=ACTIVE_STATUSES
            )
            if offer.id != exclude_offer_id
        }

    def active_count(self, blogger_id: int) -> int:
        return len(self.repository.list_offers(blogger_id=blogger_id, statuses=ACTIVE_STATUSES))

    def has_capacity(self, blogger_id: int, channel: Channel) -> bool:
        """True while the blogger holds fewer active offers than the channel limit."""
        return self.active_count(blogger_id) < channel.weekly_limit

    def free_instants(
        self,
        channel: Channel,
        window_from: datetime,
        window_to: datetime,
        now: datetime,
    ) -> List[datetime]:
        """Calendar instants of *channel* inside the window that its owner has not reserved."""
        reserved = self.reserved_instants(channel.blogger_id)
        candidates = calendar.expand(
            channel.schedule,
            window_from,
            window_to,
            now,
            tz=self.tz,
            safety_margin=self.safety_margin,
        )
        return [instant for instant in candidates if instant not in reserved]

    def available_slots(self, offer: Offer, now: datetime) -> List[datetime]:
        """
        Instants *offer* may be moved to.

        The channel's calendar instants inside the offer's own window,
        minus instants held by the blogger's other active offers, plus the
        offer's current instant while it is still in the future.
        """
        channel = self.repository.get_channel(offer.channel_id)
        reserved = self.reserved_instants(offer.blogger_id, exclude_offer_id=offer.id)
        slots: Set[datetime] = set()
        if channel is not None:
            slots.update(
                instant
                for instant in calendar.expand(
                    channel.schedule,
                    offer.window_from,
                    offer.window_to,
                    now,
                    tz=self.tz,
                    safety_margin=self.safety_margin,
                )
                if instant not in reserved
            )
        if offer.scheduled_at > now:
            slots.add(offer.scheduled_at)
        return sorted(slots)


__all__ = [
    "ReservationLedger",
]
