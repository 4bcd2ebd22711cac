"""
Offer state machine: creation and every legal status transition.

``OfferStateMachine`` owns offer status. Each transition checks the
``TRANSITIONS`` table first and raises ``IllegalStateError`` without
touching the offer when the action is not legal for its status. Mutated
offers are written back to the repository; persistence and notifications
are the engine's job.

Transitions:
    create     -> PENDING_PRECHECK (precheck) | PENDING_APPROVAL (manual)
    approve    PENDING_*  -> SCHEDULED
    decline    PENDING_*  -> DECLINED_BY_OWNER
    reschedule PENDING_*  -> (same status, new instant)
    cancel     ACTIVE     -> CANCELLED_BY_OWNER | CANCELLED_BY_ADVERTISER
    archive    PENDING_APPROVAL -> ARCHIVED_NOT_PUBLISHED
    claim      SCHEDULED  -> (same status, publish_claimed_at set)
    complete   SCHEDULED  -> REWARDED
    fail       SCHEDULED  -> PUBLISH_FAILED

Decision deadline rule (creation and reschedule, precheck only)::

    decision_deadline = min(scheduled_at, now + precheck_window)
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, FrozenSet, List, Optional, Tuple, Union

from placements.exceptions import IllegalStateError, ValidationError
from placements.repository import Repository
from placements.scheduling.ledger import ReservationLedger
from placements.scheduling.models import (
    ACTIVE_STATUSES,
    PENDING_STATUSES,
    Blogger,
    Channel,
    DeliveryHandle,
    Offer,
    OfferStatus,
    PostingMode,
    SkipReason,
    SkippedTarget,
)
from placements.scheduling.pause import PauseArbiter
from placements.utils import ensure_utc

logger = logging.getLogger(__name__)


class OfferStateMachine:
    """Creates offers and applies status transitions.

    Args:
        repository: Entity storage offers are written back to.
        ledger: Reservation ledger for instant selection and capacity.
        arbiter: Pause gate consulted before the ledger.
        precheck_window: Silence-is-consent period for precheck offers.
        payout_share: Blogger share of the advertiser price.
        ad_marker: Appended to the text of every delivered placement.
    """

    # action -> (allowed source statuses, target status or None if unchanged)
    TRANSITIONS: Dict[str, Tuple[FrozenSet[OfferStatus], Optional[OfferStatus]]] = {
        "approve": (PENDING_STATUSES, OfferStatus.SCHEDULED),
        "decline": (PENDING_STATUSES, OfferStatus.DECLINED_BY_OWNER),
        "reschedule": (PENDING_STATUSES, None),
        "cancel_by_owner": (ACTIVE_STATUSES, OfferStatus.CANCELLED_BY_OWNER),
        "cancel_by_advertiser": (ACTIVE_STATUSES, OfferStatus.CANCELLED_BY_ADVERTISER),
        "archive": (frozenset({OfferStatus.PENDING_APPROVAL}), OfferStatus.ARCHIVED_NOT_PUBLISHED),
        "claim": (frozenset({OfferStatus.SCHEDULED}), None),
        "complete": (frozenset({OfferStatus.SCHEDULED}), OfferStatus.REWARDED),
        "fail": (frozenset({OfferStatus.SCHEDULED}), OfferStatus.PUBLISH_FAILED),
    }

    def __init__(
        self,
        repository: Repository,
        ledger: ReservationLedger,
        arbiter: PauseArbiter,
        precheck_window: timedelta = timedelta(hours=1),
        payout_share: float = 0.8,
        ad_marker: str = "#ad",
    ) -> None:
        self.repository = repository
        self.ledger = ledger
        self.arbiter = arbiter
        self.precheck_window = precheck_window
        self.payout_share = payout_share
        self.ad_marker = ad_marker

    # ================================================================
    # TABLE QUERIES
    # ================================================================

    @classmethod
    def can_transition(cls, status: OfferStatus, action: str) -> bool:
        sources, _ = cls.TRANSITIONS[action]
        return status in sources

    @classmethod
    def allowed_actions(cls, status: OfferStatus) -> List[str]:
        return [action for action, (sources, _) in cls.TRANSITIONS.items() if status in sources]

    def _require(self, offer: Offer, action: str, detail: Optional[str] = None) -> Optional[OfferStatus]:
        if not self.can_transition(offer.status, action):
            raise IllegalStateError(offer.id, offer.status.value, action, detail)
        return self.TRANSITIONS[action][1]

    # ================================================================
    # CREATION
    # ================================================================

    def deadline_for(self, scheduled_at: datetime, now: datetime) -> datetime:
        return min(scheduled_at, now + self.precheck_window)

    def payout_for(self, price: float) -> float:
        return round(price * self.payout_share, 2)

    def create(
        self,
        blogger: Blogger,
        channel: Channel,
        window_from: datetime,
        window_to: datetime,
        text: str,
        price: float,
        now: datetime,
    ) -> Union[Offer, SkippedTarget]:
        """
        Create one offer for *channel*, or explain why not.

        Checks, in order: delivery address, pause, weekly limit, free
        instant. The earliest free instant is taken and reserved in the
        repository before returning, so the next creation in the same
        batch sees it as taken.

        Args:
            blogger: Channel owner.
            channel: Target channel.
            window_from: Advertiser window start.
            window_to: Advertiser window end.
            text: Placement text.
            price: Advertiser CPV (already validated).
            now: Current instant.

        Returns:
            The created ``Offer``, or a ``SkippedTarget``.
        """
        target = f"channel:{channel.id}"
        if blogger.chat_id is None:
            return SkippedTarget(
                target,
                SkipReason.NO_DELIVERY_ADDRESS,
                f"Blogger {blogger.id} has not started the bot",
            )
        if self.arbiter.is_paused(channel, now):
            return SkippedTarget(target, SkipReason.PAUSED, self.arbiter.skip_detail(channel))
        if not self.ledger.has_capacity(blogger.id, channel):
            return SkippedTarget(
                target,
                SkipReason.LIMIT_FILLED,
                f"Weekly limit of {channel.weekly_limit} reached",
            )
        free = self.ledger.free_instants(channel, window_from, window_to, now)
        if not free:
            return SkippedTarget(
                target,
                SkipReason.NO_SLOT_IN_WINDOW,
                f"No free slot between {window_from.isoformat()} and {window_to.isoformat()}",
            )

        scheduled_at = free[0]
        status = channel.mode.initial_status
        offer = Offer(
            id=self.repository.next_id("offer"),
            blogger_id=blogger.id,
            channel_id=channel.id,
            status=status,
            scheduled_at=scheduled_at,
            window_from=window_from,
            window_to=window_to,
            text=text,
            price=price,
            expected_payout=self.payout_for(price),
            posting_mode=channel.mode,
            decision_deadline=(
                self.deadline_for(scheduled_at, now)
                if status is OfferStatus.PENDING_PRECHECK
                else None
            ),
            created_at=now,
            updated_at=now,
        )
        self.repository.put_offer(offer)
        logger.info(
            "[ENGINE] Created offer %s for channel %s at %s (%s)",
            offer.id,
            channel.id,
            scheduled_at.isoformat(),
            status.value,
        )
        return offer

    # ================================================================
    # OWNER DECISIONS
    # ================================================================

    def approve(self, offer: Offer, now: datetime) -> Offer:
        target = self._require(offer, "approve")
        return self._move(offer, target, now, decided=True)

    def decline(self, offer: Offer, now: datetime) -> Offer:
        target = self._require(offer, "decline")
        return self._move(offer, target, now, decided=True)

    def reschedule(self, offer: Offer, new_instant: datetime, now: datetime) -> Offer:
        """
        Move a pending offer to one of its available slots.

        Raises:
            IllegalStateError: If the offer is no longer awaiting a decision.
            ValidationError: If *new_instant* is not an available slot.
        """
        self._require(offer, "reschedule")
        new_instant = ensure_utc(new_instant)
        if new_instant not in self.ledger.available_slots(offer, now):
            raise ValidationError(
                f"{new_instant.isoformat()} is not an available slot for offer {offer.id}"
            )
        offer.scheduled_at = new_instant
        if offer.status is OfferStatus.PENDING_PRECHECK:
            offer.decision_deadline = self.deadline_for(new_instant, now)
        offer.updated_at = now
        self.repository.put_offer(offer)
        logger.info("[ENGINE] Offer %s rescheduled to %s", offer.id, new_instant.isoformat())
        return offer

    def cancel(self, offer: Offer, by_owner: bool, now: datetime) -> Offer:
        """
        Cancel an active offer on behalf of its owner or the advertiser.

        Raises:
            IllegalStateError: If the offer is terminal or its delivery
                has already been claimed.
        """
        action = "cancel_by_owner" if by_owner else "cancel_by_advertiser"
        target = self._require(offer, action)
        if offer.publish_claimed_at is not None:
            raise IllegalStateError(
                offer.id, offer.status.value, action, "delivery already in progress"
            )
        return self._move(offer, target, now, decided=by_owner)

    # ================================================================
    # TIME-TRIGGERED TRANSITIONS
    # ================================================================

    def is_precheck_expired(self, offer: Offer, now: datetime) -> bool:
        return (
            offer.status is OfferStatus.PENDING_PRECHECK
            and offer.decision_deadline is not None
            and offer.decision_deadline <= now
        )

    @staticmethod
    def is_approval_expired(offer: Offer, now: datetime) -> bool:
        return offer.status is OfferStatus.PENDING_APPROVAL and offer.scheduled_at <= now

    @staticmethod
    def is_due(offer: Offer, now: datetime) -> bool:
        return (
            offer.status is OfferStatus.SCHEDULED
            and offer.publish_claimed_at is None
            and offer.scheduled_at <= now
        )

    def archive(self, offer: Offer, now: datetime) -> Offer:
        target = self._require(offer, "archive")
        return self._move(offer, target, now)

    def claim(self, offer: Offer, now: datetime) -> Offer:
        """Mark the single delivery attempt as started."""
        self._require(offer, "claim")
        if offer.publish_claimed_at is not None:
            raise IllegalStateError(offer.id, offer.status.value, "claim", "already claimed")
        offer.publish_claimed_at = now
        offer.updated_at = now
        self.repository.put_offer(offer)
        return offer

    def release_claim(self, offer: Offer) -> None:
        """Undo a claim whose attempt never started."""
        offer.publish_claimed_at = None
        self.repository.put_offer(offer)

    def complete(self, offer: Offer, handle: DeliveryHandle, now: datetime) -> Offer:
        target = self._require(offer, "complete")
        offer.delivery_handle = handle.message_id
        offer.published_at = now
        return self._move(offer, target, now)

    def fail(self, offer: Offer, error: str, now: datetime) -> Offer:
        target = self._require(offer, "fail")
        offer.error = error
        return self._move(offer, target, now)

    def marked_text(self, offer: Offer) -> str:
        """Placement text as delivered: body, blank line, ad marker."""
        if not self.ad_marker:
            return offer.text
        return f"{offer.text}\n\n{self.ad_marker}"

    # ================================================================
    # HELPERS
    # ================================================================

    def _move(
        self,
        offer: Offer,
        target: Optional[OfferStatus],
        now: datetime,
        decided: bool = False,
    ) -> Offer:
        previous = offer.status
        if target is not None:
            offer.status = target
        if offer.status is not OfferStatus.PENDING_PRECHECK:
            offer.decision_deadline = None
        if decided:
            offer.decided_at = now
        offer.updated_at = now
        self.repository.put_offer(offer)
        logger.info(
            "[ENGINE] Offer %s: %s -> %s",
            offer.id,
            previous.value,
            offer.status.value,
        )
        return offer


def validate_mode(mode: Union[str, PostingMode]) -> PostingMode:
    """
    Parse a posting mode.

    Raises:
        ValidationError: If *mode* is not a known posting mode.
    """
    if isinstance(mode, PostingMode):
        return mode
    try:
        return PostingMode(mode)
    except ValueError as exc:
        valid = [m.value for m in PostingMode]
        raise ValidationError(f"Unknown posting mode {mode!r}. Valid: {valid}") from exc


__all__ = [
    "OfferStateMachine",
    "validate_mode",
]
