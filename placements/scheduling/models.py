"""
Placement data models: statuses, channels, offers, bloggers and results.

Defines the core data structures used by the placement engine:
- ``OfferStatus``: Lifecycle status of an offer.
- ``PostingMode``: Channel posting policy (precheck / manual approval).
- ``Slot``: One recurring (ISO weekday, hour) entry of a weekly schedule.
- ``Blogger``, ``Channel``, ``Offer``: Persisted domain entities.
- ``OfferSummary``: Read-only projection returned by engine operations.
- ``SkipReason``, ``SkippedTarget``, ``CreateOffersResult``: Outcome of
  a creation batch.
- ``DeliveryHandle``, ``NotifyKind``, ``Notification``: Collaborator payloads.

Entities serialize with ``to_dict()`` / ``from_dict()`` into the shape kept
in engine snapshots. Instants are timezone-aware UTC everywhere.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from placements.utils import format_instant, parse_instant, utc_now


# =============================================================================
# OFFER STATUS ENUM
# =============================================================================


class OfferStatus(Enum):
    """Lifecycle status of an offer.

    Transitions:
        PENDING_PRECHECK -> SCHEDULED (approve, or deadline passed)
                         -> DECLINED_BY_OWNER
        PENDING_APPROVAL -> SCHEDULED (approve)
                         -> DECLINED_BY_OWNER
                         -> ARCHIVED_NOT_PUBLISHED (scheduled instant passed)
        SCHEDULED        -> REWARDED | PUBLISH_FAILED
        any active       -> CANCELLED_BY_OWNER | CANCELLED_BY_ADVERTISER
    """

    PENDING_PRECHECK = "pending_precheck"
    PENDING_APPROVAL = "pending_approval"
    SCHEDULED = "scheduled"
    REWARDED = "rewarded"
    DECLINED_BY_OWNER = "declined_by_owner"
    CANCELLED_BY_ADVERTISER = "cancelled_by_advertiser"
    CANCELLED_BY_OWNER = "cancelled_by_owner"
    ARCHIVED_NOT_PUBLISHED = "archived_not_published"
    PUBLISH_FAILED = "publish_failed"

    @property
    def is_terminal(self) -> bool:
        """Check if status is terminal (no further transitions allowed)."""
        return self not in ACTIVE_STATUSES

    @property
    def is_active(self) -> bool:
        """Active offers hold a reservation on their scheduled instant."""
        return self in ACTIVE_STATUSES

    @property
    def awaits_decision(self) -> bool:
        return self in PENDING_STATUSES

    @property
    def title(self) -> str:
        return STATUS_TITLES[self]


ACTIVE_STATUSES = frozenset({
    OfferStatus.PENDING_PRECHECK,
    OfferStatus.PENDING_APPROVAL,
    OfferStatus.SCHEDULED,
})

PENDING_STATUSES = frozenset({
    OfferStatus.PENDING_PRECHECK,
    OfferStatus.PENDING_APPROVAL,
})

STATUS_TITLES: Dict[OfferStatus, str] = {
    OfferStatus.PENDING_PRECHECK: "Awaiting precheck",
    OfferStatus.PENDING_APPROVAL: "Awaiting approval",
    OfferStatus.SCHEDULED: "Scheduled",
    OfferStatus.REWARDED: "Published",
    OfferStatus.DECLINED_BY_OWNER: "Declined by owner",
    OfferStatus.CANCELLED_BY_ADVERTISER: "Cancelled by advertiser",
    OfferStatus.CANCELLED_BY_OWNER: "Cancelled by owner",
    OfferStatus.ARCHIVED_NOT_PUBLISHED: "Expired without approval",
    OfferStatus.PUBLISH_FAILED: "Publishing failed",
}


# =============================================================================
# POSTING MODE
# =============================================================================


class PostingMode(Enum):
    """Channel posting policy.

    ``PRECHECK``: silence from the owner is consent.
    ``MANUAL_APPROVAL``: silence is refusal; explicit approval required.
    """

    PRECHECK = "precheck"
    MANUAL_APPROVAL = "manual_approval"

    @property
    def supports_pause(self) -> bool:
        """Only modes that can publish without consent have autoposting to pause."""
        return self is PostingMode.PRECHECK

    @property
    def initial_status(self) -> OfferStatus:
        if self is PostingMode.MANUAL_APPROVAL:
            return OfferStatus.PENDING_APPROVAL
        return OfferStatus.PENDING_PRECHECK

    @property
    def title(self) -> str:
        if self is PostingMode.MANUAL_APPROVAL:
            return "Manual approval"
        return "Precheck"


# =============================================================================
# SCHEDULE SLOT
# =============================================================================


@dataclass(frozen=True, order=True)
class Slot:
    """A recurring weekly slot.

    Attributes:
        day: ISO weekday (1=Monday, 7=Sunday).
        hour: Hour of day in 24h format (0-23), in the engine timezone.
    """

    day: int
    hour: int

    @property
    def is_valid(self) -> bool:
        return 1 <= self.day <= 7 and 0 <= self.hour <= 23

    def to_dict(self) -> Dict[str, int]:
        return {"day": self.day, "hour": self.hour}


# =============================================================================
# ENTITIES
# =============================================================================


@dataclass
class Blogger:
    """A channel owner.

    Attributes:
        id: Engine-assigned integer id.
        username: Telegram username (without ``@``).
        telegram_user_id: Telegram user id, used to match bot updates.
        chat_id: Delivery address for notifications; ``None`` until the
            owner has started the bot.
    """

    id: int
    username: str
    telegram_user_id: Optional[int] = None
    chat_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "telegram_user_id": self.telegram_user_id,
            "chat_id": self.chat_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Blogger":
        return cls(
            id=int(data["id"]),
            username=data.get("username", ""),
            telegram_user_id=data.get("telegram_user_id"),
            chat_id=data.get("chat_id"),
        )


@dataclass
class Channel:
    """A Telegram channel that accepts paid placements.

    Attributes:
        id: Engine-assigned integer id.
        blogger_id: Owning blogger.
        title: Display title.
        destination: Telegram chat id or ``@username`` to publish into.
        schedule: Normalized weekly slots (see ``calendar.normalize_schedule``).
        weekly_limit: Max active offers per blogger (1-28).
        mode: Posting policy.
        pause_until: Autoposting suspended while this is in the future.
        created_at: Creation instant.
    """

    id: int
    blogger_id: int
    title: str
    destination: str
    schedule: Tuple[Slot, ...]
    weekly_limit: int = 7
    mode: PostingMode = PostingMode.PRECHECK
    pause_until: Optional[datetime] = None
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "blogger_id": self.blogger_id,
            "title": self.title,
            "destination": self.destination,
            "schedule": [slot.to_dict() for slot in self.schedule],
            "weekly_limit": self.weekly_limit,
            "mode": self.mode.value,
            "pause_until": format_instant(self.pause_until),
            "created_at": format_instant(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Channel":
        return cls(
            id=int(data["id"]),
            blogger_id=int(data["blogger_id"]),
            title=data.get("title", ""),
            destination=str(data.get("destination", "")),
            schedule=tuple(
                Slot(int(s["day"]), int(s["hour"])) for s in data.get("schedule", [])
            ),
            weekly_limit=int(data.get("weekly_limit", 7)),
            mode=PostingMode(data.get("mode", PostingMode.PRECHECK.value)),
            pause_until=_optional_instant(data.get("pause_until")),
            created_at=_optional_instant(data.get("created_at")) or utc_now(),
        )


@dataclass
class Offer:
    """A single proposed paid placement.

    Holds domain state only. What the owner is shown next is computed
    from ``status`` at the Telegram boundary (``placements.ui.prompts``).

    Attributes:
        id: Engine-assigned integer id.
        blogger_id: Owner the placement is proposed to.
        channel_id: Channel the placement goes into.
        status: Current lifecycle status.
        scheduled_at: Instant the placement is reserved for.
        window_from: Start of the advertiser's availability window.
        window_to: End of the advertiser's availability window.
        text: Advertisement text (without the ad marker).
        price: Advertiser CPV.
        expected_payout: Blogger's share of ``price``.
        posting_mode: Channel mode at creation time.
        decision_deadline: Silence-is-consent deadline, only set while
            ``PENDING_PRECHECK``.
        created_at: Creation instant.
        updated_at: Last mutation instant.
        delivery_handle: Message id of the published post (``REWARDED``).
        publish_claimed_at: Set right before the single delivery attempt.
        published_at: Instant the delivery succeeded.
        error: Failure description (``PUBLISH_FAILED``).
        decided_at: Instant of the owner's (or sweeper's) decision.
    """

    # Required fields
    id: int
    blogger_id: int
    channel_id: int
    status: OfferStatus
    scheduled_at: datetime
    window_from: datetime
    window_to: datetime
    text: str
    price: float
    expected_payout: float
    posting_mode: PostingMode

    # Lifecycle tracking
    decision_deadline: Optional[datetime] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    delivery_handle: Optional[str] = None
    publish_claimed_at: Optional[datetime] = None
    published_at: Optional[datetime] = None
    error: Optional[str] = None
    decided_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "blogger_id": self.blogger_id,
            "channel_id": self.channel_id,
            "status": self.status.value,
            "scheduled_at": format_instant(self.scheduled_at),
            "window_from": format_instant(self.window_from),
            "window_to": format_instant(self.window_to),
            "text": self.text,
            "price": self.price,
            "expected_payout": self.expected_payout,
            "posting_mode": self.posting_mode.value,
            "decision_deadline": format_instant(self.decision_deadline),
            "created_at": format_instant(self.created_at),
            "updated_at": format_instant(self.updated_at),
            "delivery_handle": self.delivery_handle,
            "publish_claimed_at": format_instant(self.publish_claimed_at),
            "published_at": format_instant(self.published_at),
            "error": self.error,
            "decided_at": format_instant(self.decided_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Offer":
        return cls(
            id=int(data["id"]),
            blogger_id=int(data["blogger_id"]),
            channel_id=int(data["channel_id"]),
            status=OfferStatus(data["status"]),
            scheduled_at=parse_instant(data["scheduled_at"], "scheduled_at"),
            window_from=parse_instant(data["window_from"], "window_from"),
            window_to=parse_instant(data["window_to"], "window_to"),
            text=data.get("text", ""),
            price=float(data.get("price", 0)),
            expected_payout=float(data.get("expected_payout", 0)),
            posting_mode=PostingMode(data.get("posting_mode", PostingMode.PRECHECK.value)),
            decision_deadline=_optional_instant(data.get("decision_deadline")),
            created_at=_optional_instant(data.get("created_at")) or utc_now(),
            updated_at=_optional_instant(data.get("updated_at")) or utc_now(),
            delivery_handle=data.get("delivery_handle"),
            publish_claimed_at=_optional_instant(data.get("publish_claimed_at")),
            published_at=_optional_instant(data.get("published_at")),
            error=data.get("error"),
            decided_at=_optional_instant(data.get("decided_at")),
        )


# =============================================================================
# OFFER SUMMARY
# =============================================================================


@dataclass(frozen=True)
class OfferSummary:
    """Read-only view of an offer returned by engine operations."""

    id: int
    blogger_id: int
    channel_id: int
    status: OfferStatus
    status_title: str
    mode: PostingMode
    mode_title: str
    scheduled_at: datetime
    cpv: float
    expected_payout: float
    text: str
    decision_deadline: Optional[datetime] = None
    delivery_handle: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_offer(cls, offer: Offer) -> "OfferSummary":
        return cls(
            id=offer.id,
            blogger_id=offer.blogger_id,
            channel_id=offer.channel_id,
            status=offer.status,
            status_title=offer.status.title,
            mode=offer.posting_mode,
            mode_title=offer.posting_mode.title,
            scheduled_at=offer.scheduled_at,
            cpv=offer.price,
            expected_payout=offer.expected_payout,
            text=offer.text,
            decision_deadline=offer.decision_deadline,
            delivery_handle=offer.delivery_handle,
            error=offer.error,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "blogger_id": self.blogger_id,
            "channel_id": self.channel_id,
            "status": self.status.value,
            "status_title": self.status_title,
            "mode": self.mode.value,
            "mode_title": self.mode_title,
            "scheduled_at": format_instant(self.scheduled_at),
            "cpv": self.cpv,
            "expected_payout": self.expected_payout,
            "text": self.text,
            "decision_deadline": format_instant(self.decision_deadline),
            "delivery_handle": self.delivery_handle,
            "error": self.error,
        }


# =============================================================================
# CREATION OUTCOMES
# =============================================================================


class SkipReason(Enum):
    """Why a creation target produced no offer. Not an error."""

    PAUSED = "paused"
    LIMIT_FILLED = "limit filled"
    NO_SLOT_IN_WINDOW = "no slot in window"
    NO_DELIVERY_ADDRESS = "no delivery address"
    UNKNOWN_TARGET = "unknown target"


@dataclass(frozen=True)
class SkippedTarget:
    """A creation target that was skipped.

    Attributes:
        target: ``"channel:<id>"`` or ``"blogger:<id>"``.
        reason: Structured reason.
        detail: Human-readable explanation (e.g. pause expiry).
    """

    target: str
    reason: SkipReason
    detail: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"target": self.target, "reason": self.reason.value, "detail": self.detail}


@dataclass
class CreateOffersResult:
    """Outcome of one ``create_offers`` batch."""

    created: List[OfferSummary] = field(default_factory=list)
    skipped: List[SkippedTarget] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "created": [s.to_dict() for s in self.created],
            "skipped": [s.to_dict() for s in self.skipped],
        }


# =============================================================================
# COLLABORATOR PAYLOADS
# =============================================================================


@dataclass(frozen=True)
class DeliveryHandle:
    """Identifier of a delivered placement (Telegram message id)."""

    message_id: str
    destination: str = ""


class NotifyKind(Enum):
    """Owner notification kinds."""

    OFFER_CREATED = "offer_created"
    OFFER_UPDATED = "offer_updated"
    OFFER_CANCELLED = "offer_cancelled"
    OFFER_ARCHIVED = "offer_archived"
    OFFER_PUBLISHED = "offer_published"
    OFFER_FAILED = "offer_failed"
    PAUSE_STARTED = "pause_started"
    PAUSE_RESUMED = "pause_resumed"


@dataclass(frozen=True)
class Notification:
    """A message the engine asks the messaging gateway to deliver."""

    blogger_id: int
    kind: NotifyKind
    data: Dict[str, Any] = field(default_factory=dict)


# =============================================================================
# HELPERS
# =============================================================================


def _optional_instant(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    return parse_instant(value)


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "OfferStatus",
    "ACTIVE_STATUSES",
    "PENDING_STATUSES",
    "STATUS_TITLES",
    "PostingMode",
    "Slot",
    "Blogger",
    "Channel",
    "Offer",
    "OfferSummary",
    "SkipReason",
    "SkippedTarget",
    "CreateOffersResult",
    "DeliveryHandle",
    "NotifyKind",
    "Notification",
]
