"""
Entity repository for bloggers, channels and offers.

``Repository`` is the storage seam the engine talks to: get/list/put per
entity plus id counters. ``InMemoryRepository`` keeps everything in dicts
and converts to and from the persisted snapshot document::

    {
        "version": 1,
        "counters": {"blogger": 3, "channel": 4, "offer": 17},
        "bloggers": {"1": {...}},
        "channels": {"1": {...}},
        "offers": {"1": {...}}
    }

Whole-document persistence of that snapshot lives in
:mod:`placements.database`; it is one possible backing, not an
assumption of the engine.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Protocol

from placements.exceptions import StoreError
from placements.scheduling import calendar
from placements.scheduling.models import Blogger, Channel, Offer, OfferStatus

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1
COUNTER_KINDS = ("blogger", "channel", "offer")


class Repository(Protocol):
    """Storage interface used by the engine."""

    def next_id(self, kind: str) -> int:
        ...

    def get_blogger(self, blogger_id: int) -> Optional[Blogger]:
        ...

    def list_bloggers(self) -> List[Blogger]:
        ...

    def put_blogger(self, blogger: Blogger) -> None:
        ...

    def get_channel(self, channel_id: int) -> Optional[Channel]:
        ...

    def list_channels(self, blogger_id: Optional[int] = None) -> List[Channel]:
        ...

    def put_channel(self, channel: Channel) -> None:
        ...

    def get_offer(self, offer_id: int) -> Optional[Offer]:
        ...

    def list_offers(
        self,
        blogger_id: Optional[int] = None,
        channel_id: Optional[int] = None,
        statuses: Optional[Iterable[OfferStatus]] = None,
    ) -> List[Offer]:
        ...

    def put_offer(self, offer: Offer) -> None:
        ...

    def to_snapshot(self) -> Dict[str, Any]:
        ...

    def load_snapshot(self, snapshot: Dict[str, Any]) -> None:
        ...


class InMemoryRepository:
    """Dict-backed repository. Not thread-safe; the engine lock guards it."""

    def __init__(self) -> None:
        self._counters: Dict[str, int] = {kind: 0 for kind in COUNTER_KINDS}
        self._bloggers: Dict[int, Blogger] = {}
        self._channels: Dict[int, Channel] = {}
        self._offers: Dict[int, Offer] = {}

    # ================================================================
    # IDS
    # ================================================================

    def next_id(self, kind: str) -> int:
        if kind not in self._counters:
            raise ValueError(f"Unknown counter '{kind}'. Valid: {list(COUNTER_KINDS)}")
        self._counters[kind] += 1
        return self._counters[kind]

    # ================================================================
    # BLOGGERS
    # ================================================================

    def get_blogger(self, blogger_id: int) -> Optional[Blogger]:
        return self._bloggers.get(blogger_id)

    def list_bloggers(self) -> List[Blogger]:
        return [self._bloggers[k] for k in sorted(self._bloggers)]

    def put_blogger(self, blogger: Blogger) -> None:
        self._bloggers[blogger.id] = blogger

    # ================================================================
    # CHANNELS
    # ================================================================

    def get_channel(self, channel_id: int) -> Optional[Channel]:
        return self._channels.get(channel_id)

    def list_channels(self, blogger_id: Optional[int] = None) -> List[Channel]:
        return [
            self._channels[k]
            for k in sorted(self._channels)
            if blogger_id is None or self._channels[k].blogger_id == blogger_id
        ]

    def put_channel(self, channel: Channel) -> None:
        self._channels[channel.id] = channel

    # ================================================================
    # OFFERS
    # ================================================================

    def get_offer(self, offer_id: int) -> Optional[Offer]:
        return self._offers.get(offer_id)

    def list_offers(
        self,
        blogger_id: Optional[int] = None,
        channel_id: Optional[int] = None,
        statuses: Optional[Iterable[OfferStatus]] = None,
    ) -> List[Offer]:
        wanted = set(statuses) if statuses is not None else None
        result = []
        for key in sorted(self._offers):
            offer = self._offers[key]
            if blogger_id is not None and offer.blogger_id != blogger_id:
                continue
            if channel_id is not None and offer.channel_id != channel_id:
                continue
            if wanted is not None and offer.status not in wanted:
                continue
            result.append(offer)
        return result

    def put_offer(self, offer: Offer) -> None:
        self._offers[offer.id] = offer

    # ================================================================
    # SNAPSHOT
    # ================================================================

    def to_snapshot(self) -> Dict[str, Any]:
        """Serialize the whole repository into the snapshot document."""
        return {
            "version": SNAPSHOT_VERSION,
            "counters": dict(self._counters),
            "bloggers": {str(k): v.to_dict() for k, v in sorted(self._bloggers.items())},
            "channels": {str(k): v.to_dict() for k, v in sorted(self._channels.items())},
            "offers": {str(k): v.to_dict() for k, v in sorted(self._offers.items())},
        }

    def load_snapshot(self, snapshot: Dict[str, Any]) -> None:
        """
        Replace the repository contents with a snapshot document.

        Counters never go below the highest stored id, so a hand-edited
        snapshot cannot cause id reuse.

        Raises:
            StoreError: If the snapshot is malformed or from a newer version.
        """
        version = snapshot.get("version", SNAPSHOT_VERSION)
        if version > SNAPSHOT_VERSION:
            raise StoreError(
                f"Snapshot version {version} is newer than supported {SNAPSHOT_VERSION}"
            )
        try:
            bloggers = {
                int(k): Blogger.from_dict(v) for k, v in snapshot.get("bloggers", {}).items()
            }
            channels = {
                int(k): Channel.from_dict(v) for k, v in snapshot.get("channels", {}).items()
            }
            offers = {
                int(k): Offer.from_dict(v) for k, v in snapshot.get("offers", {}).items()
            }
        except (KeyError, TypeError, ValueError) as exc:
            raise StoreError(f"Malformed snapshot: {exc}") from exc

        for channel in channels.values():
            schedule = calendar.normalize_schedule(channel.schedule)
            if not schedule:
                logger.warning(
                    "[STORE] Channel %s has no valid schedule, using the default", channel.id
                )
                schedule = calendar.default_schedule()
            channel.schedule = schedule

        stored_counters = snapshot.get("counters", {})
        counters = {}
        for kind, entities in (("blogger", bloggers), ("channel", channels), ("offer", offers)):
            counters[kind] = max(int(stored_counters.get(kind, 0)), max(entities, default=0))

        self._bloggers = bloggers
        self._channels = channels
        self._offers = offers
        self._counters = counters
        logger.info(
            "[STORE] Loaded snapshot: %d bloggers, %d channels, %d offers",
            len(bloggers),
            len(channels),
            len(offers),
        )


__all__ = [
    "SNAPSHOT_VERSION",
    "Repository",
    "InMemoryRepository",
]
