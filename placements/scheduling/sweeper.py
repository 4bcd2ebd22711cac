"""
Deadline sweeper: applies every time-triggered transition.

``DeadlineSweeper`` runs one pass per tick, either driven by its own
asyncio loop (:meth:`start`) or by the engine's ``tick()``. A pass, in
order:

1. Clears expired channel pauses (one "resumed" notification each).
2. Fails scheduled offers whose delivery was claimed but is not in
   flight in this process (interrupted by a restart).
3. Approves ``pending_precheck`` offers past their decision deadline.
4. Archives ``pending_approval`` offers past their scheduled instant.
5. Claims due ``scheduled`` offers and publishes each exactly once.

Later steps see the results of earlier ones, so an offer approved in
step 3 that is already due is published in the same pass and a second
pass right after finds nothing to do.

Passes are single-flight: a tick arriving while a pass is running is
dropped, not queued.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional

from placements.exceptions import DeliveryError
from placements.logging import LogComponent, LogLevel
from placements.scheduling.gateways import Effects
from placements.scheduling.models import NotifyKind, Offer, OfferStatus

if TYPE_CHECKING:
    from placements.scheduling.engine import PlacementEngine

logger = logging.getLogger(__name__)

INTERRUPTED_DELIVERY_ERROR = "Delivery interrupted before completion; not retried"


@dataclass
class SweepReport:
    """Offer and channel ids touched by one pass."""

    resumed_channels: List[int] = field(default_factory=list)
    approved: List[int] = field(default_factory=list)
    archived: List[int] = field(default_factory=list)
    published: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return any((
            self.resumed_channels,
            self.approved,
            self.archived,
            self.published,
            self.failed,
        ))


class DeadlineSweeper:
    """Periodic, single-flight pass over offers and channels.

    Args:
        engine: The engine whose state, lock and collaborators are swept.
        interval_seconds: Delay between passes when running the loop.
    """

    def __init__(self, engine: "PlacementEngine", interval_seconds: float = 5.0) -> None:
        self.engine = engine
        self.interval_seconds = interval_seconds
        self._pass_lock = asyncio.Lock()
        self._running: bool = False
        self.dropped_ticks: int = 0

    # ================================================================
    # LIFECYCLE
    # ================================================================

    async def start(self) -> None:
        """Run passes every ``interval_seconds`` until :meth:`stop` is called."""
        self._running = True
        logger.info(
            "[SWEEPER] Deadline sweeper started (interval=%.1fs)",
            self.interval_seconds,
        )

        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                logger.info("[SWEEPER] Deadline sweeper cancelled")
                break
            except Exception:
                logger.exception("[SWEEPER] Unexpected error in sweeper pass")

            try:
                await asyncio.sleep(self.interval_seconds)
            except asyncio.CancelledError:
                logger.info("[SWEEPER] Deadline sweeper sleep cancelled")
                break

        self._running = False
        logger.info("[SWEEPER] Deadline sweeper stopped")

    async def stop(self) -> None:
        """Ask the loop to exit after the current pass."""
        self._running = False
        logger.info("[SWEEPER] Deadline sweeper stop requested")

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def pass_in_progress(self) -> bool:
        return self._pass_lock.locked()

    # ================================================================
    # PASS
    # ================================================================

    async def run_once(self) -> Optional[SweepReport]:
        """
        Run one pass unless one is already running.

        Returns:
            The pass report, or ``None`` if the tick was dropped.
        """
        if self._pass_lock.locked():
            self.dropped_ticks += 1
            logger.debug("[SWEEPER] Pass already running, tick dropped")
            return None
        async with self._pass_lock:
            return await self._sweep()

    async def _sweep(self) -> SweepReport:
        engine = self.engine
        repo = engine.repository
        machine = engine.machine
        report = SweepReport()
        effects = Effects()
        claimed: List[Offer] = []

        async with engine.state_lock:
            now = engine.clock.now()

            # 1. Expired pauses
            for channel in engine.arbiter.expired(repo.list_channels(), now):
                engine.arbiter.resume(channel)
                repo.put_channel(channel)
                report.resumed_channels.append(channel.id)
                effects.notify(channel.blogger_id, NotifyKind.PAUSE_RESUMED, engine.channel_data(channel))
                effects.record(LogComponent.PAUSE, "Pause expired", channel_id=channel.id)

            # 2. Claimed deliveries with no attempt in flight
            for offer in repo.list_offers(statuses=[OfferStatus.SCHEDULED]):
                if offer.publish_claimed_at is None or offer.id in engine.in_flight:
                    continue
                machine.fail(offer, INTERRUPTED_DELIVERY_ERROR, now)
                report.failed.append(offer.id)
                logger.warning("[SWEEPER] Offer %s had an interrupted delivery", offer.id)
                effects.notify(offer.blogger_id, NotifyKind.OFFER_FAILED, engine.offer_data(offer))
                effects.record(
                    LogComponent.SWEEPER,
                    "Interrupted delivery marked failed",
                    level=LogLevel.ERROR,
                    offer_id=offer.id,
                )

            # 3. Silence is consent
            for offer in repo.list_offers(statuses=[OfferStatus.PENDING_PRECHECK]):
                if not machine.is_precheck_expired(offer, now):
                    continue
                machine.approve(offer, now)
                report.approved.append(offer.id)
                effects.notify(offer.blogger_id, NotifyKind.OFFER_UPDATED, engine.offer_data(offer))
                effects.record(LogComponent.SWEEPER, "Precheck deadline passed, approved", offer_id=offer.id)

            # 4. Silence is refusal
            for offer in repo.list_offers(statuses=[OfferStatus.PENDING_APPROVAL]):
                if not machine.is_approval_expired(offer, now):
                    continue
                machine.archive(offer, now)
                report.archived.append(offer.id)
                effects.notify(offer.blogger_id, NotifyKind.OFFER_ARCHIVED, engine.offer_data(offer))
                effects.record(LogComponent.SWEEPER, "Approval window passed, archived", offer_id=offer.id)

            # 5. Claim due deliveries
            for offer in repo.list_offers(statuses=[OfferStatus.SCHEDULED]):
                if machine.is_due(offer, now):
                    machine.claim(offer, now)
                    claimed.append(offer)

            if report.changed or claimed:
                persisted = await engine.persist()
                if claimed and not persisted:
                    # Deliver only once the claim is durable
                    for offer in claimed:
                        machine.release_claim(offer)
                    logger.error(
                        "[SWEEPER] Claims for %d offers not persisted, delivery postponed",
                        len(claimed),
                    )
                    claimed = []
            engine.in_flight.update(offer.id for offer in claimed)

        await effects.dispatch(engine.messaging, engine.journal)

        for offer in claimed:
            if await self._deliver(offer):
                report.published.append(offer.id)
            else:
                report.failed.append(offer.id)

        if report.changed:
            logger.info(
                "[SWEEPER] Pass done: resumed=%d approved=%d archived=%d published=%d failed=%d",
                len(report.resumed_channels),
                len(report.approved),
                len(report.archived),
                len(report.published),
                len(report.failed),
            )
        return report

    # ================================================================
    # DELIVERY
    # ================================================================

    async def _deliver(self, offer: Offer) -> bool:
        """Make the single delivery attempt for a claimed offer.

        Any exception from the gateway counts as a failure; the offer
        becomes ``publish_failed`` and is never attempted again.
        """
        engine = self.engine
        channel = engine.repository.get_channel(offer.channel_id)
        handle = None
        error: Optional[str] = None

        logger.info(
            "[SWEEPER] Publishing offer %s to channel %s",
            offer.id,
            offer.channel_id,
        )
        try:
            if channel is None:
                raise DeliveryError(f"Channel {offer.channel_id} no longer exists")
            if engine.publisher is None:
                raise DeliveryError("No publish gateway configured")
            handle = await engine.publisher.publish(
                channel.destination,
                engine.machine.marked_text(offer),
            )
        except Exception as exc:
            error = str(exc) or type(exc).__name__
            logger.error("[SWEEPER] Failed to publish offer %s: %s", offer.id, error)

        effects = Effects()
        async with engine.state_lock:
            now = engine.clock.now()
            engine.in_flight.discard(offer.id)
            if handle is not None:
                engine.machine.complete(offer, handle, now)
                effects.notify(offer.blogger_id, NotifyKind.OFFER_PUBLISHED, engine.offer_data(offer))
                effects.record(
                    LogComponent.SWEEPER,
                    "Placement published",
                    offer_id=offer.id,
                    data={"message_id": handle.message_id},
                )
            else:
                engine.machine.fail(offer, error or "Delivery failed", now)
                effects.notify(offer.blogger_id, NotifyKind.OFFER_FAILED, engine.offer_data(offer))
                effects.record(
                    LogComponent.SWEEPER,
                    "Placement delivery failed",
                    level=LogLevel.ERROR,
                    offer_id=offer.id,
                    data={"error": error},
                )
            await engine.persist()

        await effects.dispatch(engine.messaging, engine.journal)
        return handle is not None


__all__ = [
    "INTERRUPTED_DELIVERY_ERROR",
    "SweepReport",
    "DeadlineSweeper",
]
