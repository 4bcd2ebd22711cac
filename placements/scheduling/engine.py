"""
Placement engine: the facade every inbound operation goes through.

``PlacementEngine`` wires the calendar, ledger, pause arbiter, offer state
machine and deadline sweeper around one repository, and:

- serializes every mutation behind a single ``asyncio.Lock`` so that
  "check a free instant, then reserve it" is atomic;
- persists the whole snapshot after each mutation (when a store is set);
- dispatches owner notifications and journal entries only after the
  governing transition is decided, outside the lock.

Owner-facing operations accept an optional ``actor_blogger_id``; an owner
acting on an offer or channel they do not own gets ``NotFoundError``.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Union

from placements.config import Settings, get_settings
from placements.database import validate_not_empty, validate_positive
from placements.exceptions import NotFoundError, ValidationError
from placements.logging import LogComponent
from placements.repository import InMemoryRepository, Repository
from placements.scheduling import calendar
from placements.scheduling.clock import Clock, SystemClock
from placements.scheduling.gateways import Effects
from placements.scheduling.ledger import ReservationLedger
from placements.scheduling.models import (
    ACTIVE_STATUSES,
    Blogger,
    Channel,
    CreateOffersResult,
    NotifyKind,
    Offer,
    OfferStatus,
    OfferSummary,
    PostingMode,
    SkipReason,
    SkippedTarget,
)
from placements.scheduling.offer_machine import OfferStateMachine, validate_mode
from placements.scheduling.pause import PauseArbiter
from placements.scheduling.sweeper import DeadlineSweeper, SweepReport
from placements.utils import format_instant, parse_instant

logger = logging.getLogger(__name__)

MAX_WEEKLY_LIMIT = 28


class PlacementEngine:
    """Offer lifecycle engine.

    Args:
        repository: Entity storage. Defaults to an empty in-memory repository.
        messaging: Owner notification gateway (``notify(blogger_id, kind, data)``).
        publisher: Channel delivery gateway (``publish(destination, text)``).
        store: Optional snapshot store (``load()`` / ``save(snapshot)``).
        clock: Time source. Defaults to the system clock.
        settings: Engine settings. Defaults to :func:`get_settings`.
        journal: Optional :class:`~placements.logging.EventLogger`.
    """

    def __init__(
        self,
        repository: Optional[Repository] = None,
        messaging: Any = None,
        publisher: Any = None,
        store: Any = None,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
        journal: Any = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.repository: Repository = repository if repository is not None else InMemoryRepository()
        self.messaging = messaging
        self.publisher = publisher
        self.store = store
        self.clock: Clock = clock or SystemClock()
        self.journal = journal

        self.ledger = ReservationLedger(
            self.repository,
            tz=self.settings.tzinfo,
            safety_margin=self.settings.safety_margin,
        )
        self.arbiter = PauseArbiter(max_days=self.settings.max_pause_days)
        self.machine = OfferStateMachine(
            self.repository,
            self.ledger,
            self.arbiter,
            precheck_window=self.settings.precheck_window,
            payout_share=self.settings.payout_share,
            ad_marker=self.settings.ad_marker,
        )
        self.sweeper = DeadlineSweeper(self, interval_seconds=self.settings.tick_seconds)

        self.state_lock = asyncio.Lock()
        # Offer ids whose single delivery attempt is running in this process
        self.in_flight: Set[int] = set()

    # ================================================================
    # PERSISTENCE
    # ================================================================

    async def load(self) -> bool:
        """
        Restore state from the store.

        Returns:
            ``True`` if a snapshot was loaded.

        Raises:
            StoreError: If the stored snapshot is unreadable.
        """
        if self.store is None:
            return False
        snapshot = await self.store.load()
        if not snapshot:
            return False
        async with self.state_lock:
            self.repository.load_snapshot(snapshot)
            self.in_flight.clear()
        return True

    async def persist(self) -> bool:
        """
        Save the whole snapshot. Caller holds ``state_lock``.

        A failed save is logged; the in-memory state stays authoritative
        and the next successful save includes it.
        """
        if self.store is None:
            return True
        try:
            await self.store.save(self.repository.to_snapshot())
            return True
        except Exception:
            logger.exception("[STORE] Failed to persist engine snapshot")
            return False

    # ================================================================
    # BLOGGERS & CHANNELS
    # ================================================================

    async def add_blogger(
        self,
        username: str,
        telegram_user_id: Optional[int] = None,
        chat_id: Optional[int] = None,
    ) -> Blogger:
        validate_not_empty(username, "username")
        async with self.state_lock:
            blogger = Blogger(
                id=self.repository.next_id("blogger"),
                username=username.lstrip("@"),
                telegram_user_id=telegram_user_id,
                chat_id=chat_id,
            )
            self.repository.put_blogger(blogger)
            await self.persist()
        logger.info("[ENGINE] Registered blogger %s (@%s)", blogger.id, blogger.username)
        return blogger

    async def set_blogger_address(self, blogger_id: int, chat_id: Optional[int]) -> Blogger:
        """Bind (or clear) the chat the blogger receives notifications in."""
        async with self.state_lock:
            blogger = self._blogger(blogger_id)
            blogger.chat_id = chat_id
            self.repository.put_blogger(blogger)
            await self.persist()
        return blogger

    def get_blogger(self, blogger_id: int) -> Blogger:
        return self._blogger(blogger_id)

    def find_blogger_by_telegram_user(self, telegram_user_id: int) -> Optional[Blogger]:
        for blogger in self.repository.list_bloggers():
            if blogger.telegram_user_id == telegram_user_id:
                return blogger
        return None

    async def add_channel(
        self,
        blogger_id: int,
        title: str,
        destination: Union[str, int],
        schedule: Optional[Iterable[Any]] = None,
        weekly_limit: Optional[int] = None,
        mode: Union[str, PostingMode] = PostingMode.PRECHECK,
    ) -> Channel:
        """
        Register a channel for *blogger_id*.

        A missing or empty schedule becomes the default schedule.

        Raises:
            NotFoundError: If the blogger is unknown.
            ValidationError: On an empty destination, invalid mode or limit.
        """
        validate_not_empty(destination, "destination")
        posting_mode = validate_mode(mode)
        limit = self._validate_limit(
            self.settings.default_weekly_limit if weekly_limit is None else weekly_limit
        )
        slots = calendar.normalize_schedule(schedule) or calendar.default_schedule()
        async with self.state_lock:
            self._blogger(blogger_id)
            channel = Channel(
                id=self.repository.next_id("channel"),
                blogger_id=blogger_id,
                title=title or str(destination),
                destination=str(destination),
                schedule=slots,
                weekly_limit=limit,
                mode=posting_mode,
                created_at=self.clock.now(),
            )
            self.repository.put_channel(channel)
            await self.persist()
        logger.info("[ENGINE] Registered channel %s for blogger %s", channel.id, blogger_id)
        return channel

    def get_channel(self, channel_id: int, actor_blogger_id: Optional[int] = None) -> Channel:
        return self._channel(channel_id, actor_blogger_id)

    def list_channels(self, blogger_id: Optional[int] = None) -> List[Channel]:
        return self.repository.list_channels(blogger_id=blogger_id)

    # ================================================================
    # OFFER CREATION
    # ================================================================

    async def create_offers(
        self,
        window_from: Union[datetime, str, int, float],
        window_to: Union[datetime, str, int, float],
        price: float,
        text: str,
        channel_ids: Optional[Iterable[int]] = None,
        blogger_ids: Optional[Iterable[int]] = None,
    ) -> CreateOffersResult:
        """
        Create one offer per target channel.

        Blogger targets expand to every channel the blogger owns. Each
        target is evaluated in order and reserves its instant before the
        next one is evaluated.

        Args:
            window_from: Availability window start.
            window_to: Availability window end.
            price: Advertiser CPV.
            text: Placement text.
            channel_ids: Target channels.
            blogger_ids: Target bloggers.

        Returns:
            Created offer summaries and skipped targets with reasons.

        Raises:
            ValidationError: On a malformed window, price, text or no targets.
        """
        start = parse_instant(window_from, "window_from")
        end = parse_instant(window_to, "window_to")
        if end <= start:
            raise ValidationError("window_to must be later than window_from")
        validate_positive(price, "price")
        validate_not_empty(text, "text")
        channel_ids = list(channel_ids or [])
        blogger_ids = list(blogger_ids or [])
        if not channel_ids and not blogger_ids:
            raise ValidationError("At least one channel or blogger target is required")

        result = CreateOffersResult()
        effects = Effects()
        async with self.state_lock:
            now = self.clock.now()
            for channel, skipped in self._resolve_targets(channel_ids, blogger_ids):
                if skipped is not None:
                    result.skipped.append(skipped)
                    continue
                blogger = self.repository.get_blogger(channel.blogger_id)
                if blogger is None:
                    result.skipped.append(SkippedTarget(
                        f"channel:{channel.id}",
                        SkipReason.UNKNOWN_TARGET,
                        f"Owner {channel.blogger_id} not found",
                    ))
                    continue
                outcome = self.machine.create(blogger, channel, start, end, text, float(price), now)
                if isinstance(outcome, SkippedTarget):
                    result.skipped.append(outcome)
                    logger.info(
                        "[ENGINE] Skipped %s: %s",
                        outcome.target,
                        outcome.reason.value,
                    )
                    continue
                result.created.append(OfferSummary.from_offer(outcome))
                effects.notify(outcome.blogger_id, NotifyKind.OFFER_CREATED, self.offer_data(outcome))
                effects.record(LogComponent.ENGINE, "Offer created", offer_id=outcome.id, channel_id=channel.id)
            if result.created:
                await self.persist()

        await effects.dispatch(self.messaging, self.journal)
        return result

    def _resolve_targets(self, channel_ids: List[int], blogger_ids: List[int]):
        """Yield ``(channel, None)`` or ``(None, SkippedTarget)``, each channel once."""
        seen: Set[int] = set()
        for channel_id in channel_ids:
            channel = self.repository.get_channel(channel_id)
            if channel is None:
                yield None, SkippedTarget(
                    f"channel:{channel_id}", SkipReason.UNKNOWN_TARGET, "Channel not found"
                )
                continue
            if channel.id not in seen:
                seen.add(channel.id)
                yield channel, None
        for blogger_id in blogger_ids:
            if self.repository.get_blogger(blogger_id) is None:
                yield None, SkippedTarget(
                    f"blogger:{blogger_id}", SkipReason.UNKNOWN_TARGET, "Blogger not found"
                )
                continue
            channels = self.repository.list_channels(blogger_id=blogger_id)
            if not channels:
                yield None, SkippedTarget(
                    f"blogger:{blogger_id}", SkipReason.UNKNOWN_TARGET, "Blogger has no channels"
                )
                continue
            for channel in channels:
                if channel.id not in seen:
                    seen.add(channel.id)
                    yield channel, None

    # ================================================================
    # OWNER DECISIONS & CANCELLATIONS
    # ================================================================

    async def approve(self, offer_id: int, actor_blogger_id: Optional[int] = None) -> OfferSummary:
        return await self._transition(
            offer_id, actor_blogger_id, self.machine.approve, NotifyKind.OFFER_UPDATED, "Approved by owner"
        )

    async def decline(self, offer_id: int, actor_blogger_id: Optional[int] = None) -> OfferSummary:
        return await self._transition(
            offer_id, actor_blogger_id, self.machine.decline, NotifyKind.OFFER_UPDATED, "Declined by owner"
        )

    async def reschedule(
        self,
        offer_id: int,
        new_instant: Union[datetime, str, int, float],
        actor_blogger_id: Optional[int] = None,
    ) -> OfferSummary:
        """
        Move a pending offer to one of its available slots.

        Raises:
            NotFoundError: Unknown offer (or not the actor's).
            IllegalStateError: Offer no longer awaiting a decision.
            ValidationError: *new_instant* is not an available slot.
        """
        instant = parse_instant(new_instant, "new_instant")
        return await self._transition(
            offer_id,
            actor_blogger_id,
            lambda offer, now: self.machine.reschedule(offer, instant, now),
            NotifyKind.OFFER_UPDATED,
            f"Rescheduled to {instant.isoformat()}",
        )

    async def cancel_by_owner(self, offer_id: int, actor_blogger_id: Optional[int] = None) -> OfferSummary:
        return await self._transition(
            offer_id,
            actor_blogger_id,
            lambda offer, now: self.machine.cancel(offer, True, now),
            NotifyKind.OFFER_UPDATED,
            "Cancelled by owner",
        )

    async def cancel_by_advertiser(self, offer_id: int) -> OfferSummary:
        return await self._transition(
            offer_id,
            None,
            lambda offer, now: self.machine.cancel(offer, False, now),
            NotifyKind.OFFER_CANCELLED,
            "Cancelled by advertiser",
        )

    async def _transition(
        self,
        offer_id: int,
        actor_blogger_id: Optional[int],
        apply: Callable[[Offer, datetime], Offer],
        kind: NotifyKind,
        message: str,
    ) -> OfferSummary:
        effects = Effects()
        async with self.state_lock:
            offer = self._offer(offer_id, actor_blogger_id)
            apply(offer, self.clock.now())
            await self.persist()
            summary = OfferSummary.from_offer(offer)
            effects.notify(offer.blogger_id, kind, self.offer_data(offer))
            effects.record(LogComponent.ENGINE, message, offer_id=offer.id, channel_id=offer.channel_id)
        await effects.dispatch(self.messaging, self.journal)
        return summary

    # ================================================================
    # CHANNEL SETTINGS & PAUSE
    # ================================================================

    async def set_channel_mode(
        self,
        channel_id: int,
        mode: Union[str, PostingMode],
        actor_blogger_id: Optional[int] = None,
    ) -> Channel:
        """
        Change a channel's posting mode.

        Existing offers keep the mode they were created with. Switching to
        a mode without pause support clears an active pause.
        """
        posting_mode = validate_mode(mode)
        effects = Effects()
        async with self.state_lock:
            channel = self._channel(channel_id, actor_blogger_id)
            channel.mode = posting_mode
            if not posting_mode.supports_pause and self.arbiter.resume(channel):
                effects.notify(channel.blogger_id, NotifyKind.PAUSE_RESUMED, self.channel_data(channel))
                effects.record(LogComponent.PAUSE, "Pause cleared by mode change", channel_id=channel.id)
            self.repository.put_channel(channel)
            await self.persist()
            effects.record(
                LogComponent.ENGINE,
                f"Posting mode set to {posting_mode.value}",
                channel_id=channel.id,
            )
        await effects.dispatch(self.messaging, self.journal)
        return channel

    async def set_channel_schedule(
        self,
        channel_id: int,
        slots: Iterable[Any],
        weekly_limit: int,
        actor_blogger_id: Optional[int] = None,
    ) -> Channel:
        """
        Replace a channel's weekly schedule and limit.

        Raises:
            ValidationError: If no valid slot remains after normalization,
                or the limit is not an integer in 1..28.
        """
        normalized = calendar.normalize_schedule(slots)
        if not normalized:
            raise ValidationError("Invalid schedule: no valid (day, hour) slots")
        limit = self._validate_limit(weekly_limit)
        effects = Effects()
        async with self.state_lock:
            channel = self._channel(channel_id, actor_blogger_id)
            channel.schedule = normalized
            channel.weekly_limit = limit
            self.repository.put_channel(channel)
            await self.persist()
            effects.record(
                LogComponent.ENGINE,
                "Schedule updated",
                channel_id=channel.id,
                data={"slots": len(normalized), "weekly_limit": limit},
            )
        await effects.dispatch(self.messaging, self.journal)
        return channel

    async def pause(
        self,
        channel_id: int,
        days: Optional[int] = None,
        actor_blogger_id: Optional[int] = None,
    ) -> Channel:
        """
        Suspend autoposting on a channel.

        Raises:
            ValidationError: If *days* is outside 1..max_pause_days.
            IllegalStateError: If the channel's mode does not support pausing.
        """
        days = self.settings.default_pause_days if days is None else days
        effects = Effects()
        async with self.state_lock:
            channel = self._channel(channel_id, actor_blogger_id)
            self.arbiter.pause(channel, days, self.clock.now())
            self.repository.put_channel(channel)
            await self.persist()
            effects.notify(channel.blogger_id, NotifyKind.PAUSE_STARTED, self.channel_data(channel))
            effects.record(LogComponent.PAUSE, f"Paused for {days} day(s)", channel_id=channel.id)
        await effects.dispatch(self.messaging, self.journal)
        return channel

    async def resume(self, channel_id: int, actor_blogger_id: Optional[int] = None) -> Channel:
        """Clear a channel's pause. Notifies only if the channel was paused."""
        effects = Effects()
        async with self.state_lock:
            channel = self._channel(channel_id, actor_blogger_id)
            if self.arbiter.resume(channel):
                self.repository.put_channel(channel)
                await self.persist()
                effects.notify(channel.blogger_id, NotifyKind.PAUSE_RESUMED, self.channel_data(channel))
                effects.record(LogComponent.PAUSE, "Resumed by owner", channel_id=channel.id)
        await effects.dispatch(self.messaging, self.journal)
        return channel

    def is_paused(self, channel_id: int) -> bool:
        return self.arbiter.is_paused(self._channel(channel_id), self.clock.now())

    # ================================================================
    # QUERIES
    # ================================================================

    def available_slots(self, offer_id: int, actor_blogger_id: Optional[int] = None) -> List[datetime]:
        offer = self._offer(offer_id, actor_blogger_id)
        return self.ledger.available_slots(offer, self.clock.now())

    def get_offer(self, offer_id: int, actor_blogger_id: Optional[int] = None) -> OfferSummary:
        return OfferSummary.from_offer(self._offer(offer_id, actor_blogger_id))

    def list_offers(
        self,
        blogger_id: Optional[int] = None,
        channel_id: Optional[int] = None,
        statuses: Optional[Iterable[Union[OfferStatus, str]]] = None,
    ) -> List[OfferSummary]:
        wanted = None
        if statuses is not None:
            try:
                wanted = [OfferStatus(s) for s in statuses]
            except ValueError as exc:
                raise ValidationError(f"Unknown offer status: {exc}") from exc
        offers = self.repository.list_offers(
            blogger_id=blogger_id, channel_id=channel_id, statuses=wanted
        )
        return [OfferSummary.from_offer(o) for o in offers]

    def owner_overview(self, blogger_id: int) -> Dict[str, List[OfferSummary]]:
        """Owner's offers grouped as upcoming, published and failed."""
        self._blogger(blogger_id)
        offers = self.repository.list_offers(blogger_id=blogger_id)
        upcoming = sorted(
            (o for o in offers if o.status in ACTIVE_STATUSES), key=lambda o: o.scheduled_at
        )
        published = sorted(
            (o for o in offers if o.status is OfferStatus.REWARDED),
            key=lambda o: o.scheduled_at,
            reverse=True,
        )
        failed = sorted(
            (o for o in offers if o.status is OfferStatus.PUBLISH_FAILED),
            key=lambda o: o.scheduled_at,
            reverse=True,
        )
        return {
            "upcoming": [OfferSummary.from_offer(o) for o in upcoming],
            "published": [OfferSummary.from_offer(o) for o in published],
            "failed": [OfferSummary.from_offer(o) for o in failed],
        }

    # ================================================================
    # SWEEPER
    # ================================================================

    async def tick(self) -> Optional[SweepReport]:
        """Run one sweeper pass; ``None`` if a pass was already running."""
        return await self.sweeper.run_once()

    # ================================================================
    # NOTIFICATION PAYLOADS
    # ================================================================

    def offer_data(self, offer: Offer) -> Dict[str, Any]:
        data = OfferSummary.from_offer(offer).to_dict()
        channel = self.repository.get_channel(offer.channel_id)
        data["channel_title"] = channel.title if channel else ""
        return data

    def channel_data(self, channel: Channel) -> Dict[str, Any]:
        return {
            "channel_id": channel.id,
            "channel_title": channel.title,
            "mode": channel.mode.value,
            "pause_until": format_instant(channel.pause_until),
        }

    # ================================================================
    # LOOKUPS
    # ================================================================

    def _blogger(self, blogger_id: int) -> Blogger:
        blogger = self.repository.get_blogger(blogger_id)
        if blogger is None:
            raise NotFoundError("blogger", blogger_id)
        return blogger

    def _channel(self, channel_id: int, actor_blogger_id: Optional[int] = None) -> Channel:
        channel = self.repository.get_channel(channel_id)
        if channel is None or (actor_blogger_id is not None and channel.blogger_id != actor_blogger_id):
            raise NotFoundError("channel", channel_id)
        return channel

    def _offer(self, offer_id: int, actor_blogger_id: Optional[int] = None) -> Offer:
        offer = self.repository.get_offer(offer_id)
        if offer is None or (actor_blogger_id is not None and offer.blogger_id != actor_blogger_id):
            raise NotFoundError("offer", offer_id)
        return offer

    @staticmethod
    def _validate_limit(weekly_limit: Any) -> int:
        if (
            isinstance(weekly_limit, bool)
            or not isinstance(weekly_limit, int)
            or not 1 <= weekly_limit <= MAX_WEEKLY_LIMIT
        ):
            raise ValidationError(
                f"weekly_limit must be an integer in 1..{MAX_WEEKLY_LIMIT}, got {weekly_limit!r}"
            )
        return weekly_limit


__all__ = [
    "MAX_WEEKLY_LIMIT",
    "PlacementEngine",
]
