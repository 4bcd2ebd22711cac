"""
Outbound collaborators used by the engine.

- ``MessagingGateway``: notifies a blogger (decision prompts, confirmations,
  pause/resume notices).
- ``PublishGateway``: delivers marked placement text to a channel and
  returns a ``DeliveryHandle``; raises (typically ``DeliveryError``) on
  failure.
- ``Effects``: notifications and journal entries collected while the
  engine state lock is held and dispatched after it is released.

Telegram implementations live in :mod:`placements.tools.telegram_gateway`.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from placements.logging import LogComponent, LogLevel
from placements.scheduling.models import DeliveryHandle, Notification, NotifyKind

logger = logging.getLogger(__name__)


class MessagingGateway(Protocol):
    async def notify(self, blogger_id: int, kind: NotifyKind, data: Dict[str, Any]) -> None:
        ...


class PublishGateway(Protocol):
    async def publish(self, destination: str, marked_text: str) -> DeliveryHandle:
        ...


@dataclass
class JournalEvent:
    component: LogComponent
    message: str
    level: LogLevel = LogLevel.INFO
    offer_id: Optional[int] = None
    channel_id: Optional[int] = None
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Effects:
    """Side effects decided by a transition, dispatched after it."""

    notifications: List[Notification] = field(default_factory=list)
    events: List[JournalEvent] = field(default_factory=list)

    def notify(self, blogger_id: int, kind: NotifyKind, data: Dict[str, Any]) -> None:
        self.notifications.append(Notification(blogger_id, kind, data))

    def record(self, component: LogComponent, message: str, **kwargs: Any) -> None:
        self.events.append(JournalEvent(component, message, **kwargs))

    async def dispatch(self, messaging: Any = None, journal: Any = None) -> None:
        """
        Send notifications, then write journal entries.

        A failed notification never undoes or blocks the transition that
        produced it; it is logged and journaled as an error.
        """
        for note in self.notifications:
            if messaging is None:
                continue
            try:
                await messaging.notify(note.blogger_id, note.kind, note.data)
            except Exception as exc:
                logger.warning(
                    "[ENGINE] Notification %s to blogger %s failed: %s",
                    note.kind.value,
                    note.blogger_id,
                    exc,
                )
                self.events.append(JournalEvent(
                    LogComponent.TELEGRAM,
                    f"Notification {note.kind.value} failed",
                    level=LogLevel.ERROR,
                    offer_id=note.data.get("id"),
                    channel_id=note.data.get("channel_id"),
                    data={"blogger_id": note.blogger_id, "error": str(exc)},
                ))
        if journal is None:
            return
        for event in self.events:
            await journal.log(
                event.level,
                event.component,
                event.message,
                offer_id=event.offer_id,
                channel_id=event.channel_id,
                data=event.data,
            )


__all__ = [
    "MessagingGateway",
    "PublishGateway",
    "JournalEvent",
    "Effects",
]
