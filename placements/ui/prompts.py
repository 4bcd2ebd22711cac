"""
Owner-facing prompts: message text and inline keyboards for offers.

What the owner sees next is a pure projection of an offer's status plus
the view the owner just asked for (``main`` or ``picking-time``); nothing
about the prompt is stored on the offer.

Callback data formats::

    of:ap:<offer_id>            approve
    of:dr:<offer_id>            decline
    of:pt:<offer_id>            show the time picker
    of:rt:<offer_id>:<epoch>    reschedule to <epoch> (UTC seconds)
    of:bk:<offer_id>            back to the main view
    of:cn:<offer_id>            cancel a scheduled placement
    pause:set:<channel_id>:24h  pause autoposting for one day
    pause:set:<channel_id>:<n>d pause autoposting for n days
    pause:set:<channel_id>:resume
"""

from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Any, Dict, List, NamedTuple, Optional, Sequence

from telegram import InlineKeyboardButton, InlineKeyboardMarkup

from placements.scheduling.models import Channel, NotifyKind, OfferStatus, OfferSummary, PostingMode
from placements.utils import parse_instant

# Telegram message and picker limits
MAX_MESSAGE_LENGTH = 4096
MAX_PICKER_SLOTS = 8

VIEW_MAIN = "main"
VIEW_PICKING_TIME = "picking-time"

OFFER_ACTIONS = ("ap", "dr", "pt", "rt", "bk", "cn")


class Button(NamedTuple):
    label: str
    data: str


@dataclass(frozen=True)
class OfferCallback:
    """Parsed ``of:`` callback data."""

    action: str
    offer_id: int
    epoch: Optional[int] = None

    @property
    def instant(self) -> Optional[datetime]:
        if self.epoch is None:
            return None
        return datetime.fromtimestamp(self.epoch, tz=timezone.utc)


@dataclass(frozen=True)
class PauseCallback:
    """Parsed ``pause:set:`` callback data; ``days`` is ``None`` for resume."""

    channel_id: int
    days: Optional[int]


# =============================================================================
# CALLBACK DATA
# =============================================================================


def offer_callback(action: str, offer_id: int, instant: Optional[datetime] = None) -> str:
    if action not in OFFER_ACTIONS:
        raise ValueError(f"Unknown offer action '{action}'")
    data = f"of:{action}:{offer_id}"
    if instant is not None:
        data += f":{int(instant.timestamp())}"
    return data


def pause_callback(channel_id: int, days: Optional[int]) -> str:
    if days is None:
        return f"pause:set:{channel_id}:resume"
    if days == 1:
        return f"pause:set:{channel_id}:24h"
    return f"pause:set:{channel_id}:{days}d"


def parse_offer_callback(data: str) -> Optional[OfferCallback]:
    """Parse ``of:`` callback data, or ``None`` if malformed."""
    parts = (data or "").split(":")
    if len(parts) not in (3, 4) or parts[0] != "of" or parts[1] not in OFFER_ACTIONS:
        return None
    try:
        offer_id = int(parts[2])
        epoch = int(parts[3]) if len(parts) == 4 else None
        if epoch is not None:
            datetime.fromtimestamp(epoch, tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        return None
    if parts[1] == "rt" and epoch is None:
        return None
    return OfferCallback(parts[1], offer_id, epoch)


def parse_pause_callback(data: str) -> Optional[PauseCallback]:
    """Parse ``pause:set:`` callback data, or ``None`` if malformed."""
    parts = (data or "").split(":")
    if len(parts) != 4 or parts[0] != "pause" or parts[1] != "set":
        return None
    try:
        channel_id = int(parts[2])
    except ValueError:
        return None
    value = parts[3]
    if value == "resume":
        return PauseCallback(channel_id, None)
    if value == "24h":
        return PauseCallback(channel_id, 1)
    if value.endswith("d") and value[:-1].isdigit():
        return PauseCallback(channel_id, int(value[:-1]))
    return None


# =============================================================================
# KEYBOARD PROJECTIONS
# =============================================================================


def offer_actions(
    offer: OfferSummary,
    view: str = VIEW_MAIN,
    slots: Sequence[datetime] = (),
    tz: tzinfo = timezone.utc,
) -> List[List[Button]]:
    """
    Buttons to show for *offer*.

    Args:
        offer: Current offer state.
        view: ``"main"`` or ``"picking-time"``.
        slots: Available instants, used by the picking-time view.
        tz: Timezone for button labels.

    Returns:
        Keyboard rows; empty when the offer needs no further input.
    """
    if offer.status.awaits_decision:
        if view == VIEW_PICKING_TIME:
            rows = [
                [Button(format_time(slot, tz), offer_callback("rt", offer.id, slot))]
                for slot in picker_slots(offer, slots)
            ]
            rows.append([Button("Back", offer_callback("bk", offer.id))])
            return rows
        return [
            [
                Button("Approve", offer_callback("ap", offer.id)),
                Button("Decline", offer_callback("dr", offer.id)),
            ],
            [Button("Pick another time", offer_callback("pt", offer.id))],
        ]
    if offer.status is OfferStatus.SCHEDULED:
        return [[Button("Cancel placement", offer_callback("cn", offer.id))]]
    return []


def picker_slots(offer: OfferSummary, slots: Sequence[datetime]) -> List[datetime]:
    """
    The first ``MAX_PICKER_SLOTS`` of *slots*.

    The offer's current instant stays in the picker when it is available,
    replacing the last of the earlier slots if needed.
    """
    available = list(slots)
    picks = available[:MAX_PICKER_SLOTS]
    current = offer.scheduled_at
    if current in available and current not in picks:
        picks = picks[: MAX_PICKER_SLOTS - 1] + [current]
    return picks


def pause_actions(channel: Channel, paused: bool) -> List[List[Button]]:
    if not channel.mode.supports_pause:
        return []
    if paused:
        return [[Button("Resume autoposting", pause_callback(channel.id, None))]]
    return [[Button("Pause for 24h", pause_callback(channel.id, 1))]]


def to_markup(rows: List[List[Button]]) -> Optional[InlineKeyboardMarkup]:
    if not rows:
        return None
    return InlineKeyboardMarkup(
        [[InlineKeyboardButton(b.label, callback_data=b.data) for b in row] for row in rows]
    )


# =============================================================================
# MESSAGE TEXT
# =============================================================================

_HEADERS: Dict[NotifyKind, str] = {
    NotifyKind.OFFER_CREATED: "New paid placement offer",
    NotifyKind.OFFER_UPDATED: "Placement updated",
    NotifyKind.OFFER_CANCELLED: "Placement cancelled by the advertiser",
    NotifyKind.OFFER_ARCHIVED: "Placement expired without your approval",
    NotifyKind.OFFER_PUBLISHED: "Placement published",
    NotifyKind.OFFER_FAILED: "Placement could not be published",
    NotifyKind.PAUSE_STARTED: "Autoposting paused",
    NotifyKind.PAUSE_RESUMED: "Autoposting resumed",
}


def format_time(instant: datetime, tz: tzinfo = timezone.utc) -> str:
    return instant.astimezone(tz).strftime("%a %d %b %H:%M")


def truncate(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    """Truncate *text* to fit within Telegram's message size limit."""
    if len(text) <= max_length:
        return text
    return text[: max_length - 20] + "\n...(truncated)"


def render_offer(offer: OfferSummary, channel_title: str = "", tz: tzinfo = timezone.utc) -> str:
    lines = []
    if channel_title:
        lines.append(f"Channel: {channel_title}")
    lines.append(f"When: {format_time(offer.scheduled_at, tz)} ({offer.mode_title})")
    lines.append(f"Status: {offer.status_title}")
    lines.append(f"CPV: {offer.cpv:g} | Your income: {offer.expected_payout:g}")
    if offer.status is OfferStatus.PENDING_PRECHECK and offer.decision_deadline:
        lines.append(
            f"Publishes automatically unless you decline by {format_time(offer.decision_deadline, tz)}"
        )
    if offer.error:
        lines.append(f"Error: {offer.error}")
    lines.append("")
    lines.append(offer.text)
    return "\n".join(lines)


def render_notification(kind: NotifyKind, data: Dict[str, Any], tz: tzinfo = timezone.utc) -> str:
    """Plain-text message for a notification payload."""
    header = _HEADERS.get(kind, kind.value)
    title = data.get("channel_title") or ""
    if kind in (NotifyKind.PAUSE_STARTED, NotifyKind.PAUSE_RESUMED):
        text = f"{header}: {title}" if title else header
        if kind is NotifyKind.PAUSE_STARTED and data.get("pause_until"):
            until = parse_instant(data["pause_until"], "pause_until")
            text += f"\nNew offers are skipped until {format_time(until, tz)}"
        return text
    summary = summary_from_data(data)
    return truncate(f"{header}\n\n{render_offer(summary, title, tz)}")


def summary_from_data(data: Dict[str, Any]) -> OfferSummary:
    """Rebuild an ``OfferSummary`` from its ``to_dict()`` payload."""
    deadline = data.get("decision_deadline")
    return OfferSummary(
        id=int(data["id"]),
        blogger_id=int(data["blogger_id"]),
        channel_id=int(data["channel_id"]),
        status=OfferStatus(data["status"]),
        status_title=data.get("status_title", ""),
        mode=PostingMode(data["mode"]),
        mode_title=data.get("mode_title", ""),
        scheduled_at=parse_instant(data["scheduled_at"], "scheduled_at"),
        cpv=float(data.get("cpv", 0)),
        expected_payout=float(data.get("expected_payout", 0)),
        text=data.get("text", ""),
        decision_deadline=parse_instant(deadline, "decision_deadline") if deadline else None,
        delivery_handle=data.get("delivery_handle"),
        error=data.get("error"),
    )


__all__ = [
    "Button",
    "OfferCallback",
    "PauseCallback",
    "VIEW_MAIN",
    "VIEW_PICKING_TIME",
    "offer_callback",
    "pause_callback",
    "parse_offer_callback",
    "parse_pause_callback",
    "offer_actions",
    "picker_slots",
    "pause_actions",
    "to_markup",
    "format_time",
    "truncate",
    "render_offer",
    "render_notification",
    "summary_from_data",
]
