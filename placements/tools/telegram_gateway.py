"""
Telegram implementations of the engine's outbound gateways.

Provides:
    - **TelegramMessagingGateway**: renders owner notifications with the
      inline keyboard projected from the offer's status and sends them to
      the blogger's bound chat. Delivery problems are logged, never raised.
    - **TelegramPublishGateway**: posts marked placement text into a channel
      and returns the message id. Any Bot API error becomes a
      ``DeliveryError``; there is no retry.
    - **TelegramLogForwarder**: ``send_log()`` target for the event journal,
      posting high-severity entries to an admin chat.

All three share one ``telegram.Bot`` instance.
"""

import logging
from datetime import timezone, tzinfo
from typing import Any, Dict, Optional, Union

from telegram import Bot
from telegram.error import NetworkError, TelegramError

from placements.exceptions import DeliveryError, RetryExhaustedError
from placements.scheduling.models import DeliveryHandle, NotifyKind
from placements.ui import prompts
from placements.utils import with_retry

logger = logging.getLogger(__name__)

_OFFER_KINDS = frozenset({
    NotifyKind.OFFER_CREATED,
    NotifyKind.OFFER_UPDATED,
    NotifyKind.OFFER_CANCELLED,
    NotifyKind.OFFER_ARCHIVED,
    NotifyKind.OFFER_PUBLISHED,
    NotifyKind.OFFER_FAILED,
})


def chat_target(destination: Union[str, int]) -> Union[str, int]:
    """Numeric chat ids go to the Bot API as ints, ``@usernames`` as-is."""
    if isinstance(destination, int):
        return destination
    value = destination.strip()
    if value.lstrip("-").isdigit():
        return int(value)
    return value


# =============================================================================
# MESSAGING
# =============================================================================


class TelegramMessagingGateway:
    """Sends owner notifications through the Bot API.

    Args:
        bot: Shared ``telegram.Bot``.
        repository: Used to resolve a blogger id to its chat id.
        tz: Timezone used for times shown to owners.
    """

    def __init__(self, bot: Bot, repository: Any, tz: tzinfo = timezone.utc) -> None:
        self.bot = bot
        self.repository = repository
        self.tz = tz

    async def notify(self, blogger_id: int, kind: NotifyKind, data: Dict[str, Any]) -> None:
        blogger = self.repository.get_blogger(blogger_id)
        if blogger is None or blogger.chat_id is None:
            logger.warning(
                "[TELEGRAM] Blogger %s has no chat bound, %s not sent",
                blogger_id,
                kind.value,
            )
            return

        text = prompts.render_notification(kind, data, self.tz)
        markup = None
        if kind in _OFFER_KINDS:
            summary = prompts.summary_from_data(data)
            markup = prompts.to_markup(prompts.offer_actions(summary, tz=self.tz))

        try:
            await self._send(blogger.chat_id, text, markup)
        except (TelegramError, RetryExhaustedError) as exc:
            logger.error(
                "[TELEGRAM] Failed to notify blogger %s (%s): %s",
                blogger_id,
                kind.value,
                exc,
            )

    @with_retry(
        max_attempts=3,
        base_delay=1.0,
        retryable_exceptions=(NetworkError,),
        operation_name="telegram_notify",
    )
    async def _send(self, chat_id: int, text: str, markup: Any) -> None:
        await self.bot.send_message(chat_id=chat_id, text=text, reply_markup=markup)


# =============================================================================
# PUBLISHING
# =============================================================================


class TelegramPublishGateway:
    """Posts placements into channels. Exactly one API call per attempt."""

    def __init__(self, bot: Bot) -> None:
        self.bot = bot

    async def publish(self, destination: str, marked_text: str) -> DeliveryHandle:
        """
        Send *marked_text* to *destination*.

        Raises:
            DeliveryError: If the Bot API rejects or fails the request.
        """
        try:
            message = await self.bot.send_message(
                chat_id=chat_target(destination),
                text=marked_text,
            )
        except TelegramError as exc:
            raise DeliveryError(f"Telegram rejected post to {destination}: {exc}") from exc
        logger.info(
            "[TELEGRAM] Published to %s (message_id=%s)",
            destination,
            message.message_id,
        )
        return DeliveryHandle(message_id=str(message.message_id), destination=str(destination))


# =============================================================================
# JOURNAL FORWARDING
# =============================================================================


class TelegramLogForwarder:
    """``send_log`` target for :class:`~placements.logging.EventLogger`."""

    def __init__(self, bot: Bot, chat_id: Union[str, int]) -> None:
        if not chat_id:
            raise ValueError("TelegramLogForwarder requires a non-empty chat_id")
        self.bot = bot
        self.chat_id = chat_target(chat_id)

    async def send_log(self, message: str) -> None:
        await self.bot.send_message(chat_id=self.chat_id, text=prompts.truncate(message))


def build_bot(token: Optional[str]) -> Bot:
    if not token:
        raise ValueError("A non-empty bot token is required")
    return Bot(token=token)


__all__ = [
    "chat_target",
    "TelegramMessagingGateway",
    "TelegramPublishGateway",
    "TelegramLogForwarder",
    "build_bot",
]
