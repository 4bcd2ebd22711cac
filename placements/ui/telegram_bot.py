"""
Owner-facing Telegram bot.

Channel owners talk to the engine through this bot:

    - ``/start`` -- bind the chat that receives offer notifications
    - ``/offers`` -- upcoming placements with their action buttons
    - ``/pause`` -- channels with pause / resume controls
    - Inline callbacks ``of:*`` and ``pause:set:*`` (see :mod:`placements.ui.prompts`)

Every action is executed as the blogger bound to the pressing Telegram
user, so an owner can only act on their own offers and channels.
"""

import logging
from datetime import timezone, tzinfo
from typing import Any, List, Optional, Tuple

from telegram.error import BadRequest
from telegram.ext import Application, CallbackQueryHandler, CommandHandler

from placements.exceptions import IllegalStateError, NotFoundError, ValidationError
from placements.scheduling.engine import PlacementEngine
from placements.scheduling.models import Blogger, Channel, OfferSummary
from placements.ui import prompts
from placements.ui.prompts import Button

logger = logging.getLogger(__name__)

Reply = Tuple[str, List[List[Button]]]


class OwnerBot:
    """
    Interactive bot for channel owners.

    Args:
        engine: The running placement engine.
        bot_token: Telegram Bot API token.
        tz: Timezone used for times shown to owners.

    Usage::

        bot = OwnerBot(engine, token)
        await bot.start()
        # ... keep running ...
        await bot.stop()
    """

    def __init__(self, engine: PlacementEngine, bot_token: str, tz: tzinfo = timezone.utc) -> None:
        if not bot_token:
            raise ValueError("OwnerBot requires a non-empty bot_token")
        self.engine = engine
        self.tz = tz
        self._bot_token = bot_token
        self._app: Any = None  # telegram.ext.Application (set in start())
        self._started = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Build the ``Application``, register handlers, and start polling."""
        if self._started:
            logger.warning("[OWNER_BOT] Bot is already running, ignoring start()")
            return

        self._app = Application.builder().token(self._bot_token).build()
        self._setup_handlers(self._app)

        await self._app.initialize()
        await self._app.start()
        await self._app.updater.start_polling(drop_pending_updates=True)
        self._started = True
        logger.info("[OWNER_BOT] Bot started polling")

    async def stop(self) -> None:
        """Stop polling and shut down the ``Application``."""
        if not self._started:
            return
        try:
            if self._app and self._app.updater:
                await self._app.updater.stop()
            if self._app:
                await self._app.stop()
                await self._app.shutdown()
            self._started = False
            logger.info("[OWNER_BOT] Bot stopped")
        except Exception:
            logger.exception("[OWNER_BOT] Error during bot shutdown")

    @property
    def bot(self) -> Any:
        """The underlying ``telegram.Bot`` once started."""
        return self._app.bot if self._app else None

    def _setup_handlers(self, app: Any) -> None:
        app.add_handler(CommandHandler("start", self._cmd_start))
        app.add_handler(CommandHandler("offers", self._cmd_offers))
        app.add_handler(CommandHandler("pause", self._cmd_pause))
        app.add_handler(CallbackQueryHandler(self._handle_callback))
        app.add_error_handler(self._error_handler)

    # ------------------------------------------------------------------
    # Command handlers
    # ------------------------------------------------------------------

    async def _cmd_start(self, update: Any, context: Any) -> None:
        """Handle ``/start`` -- bind this chat to the owner's account."""
        blogger = self.engine.find_blogger_by_telegram_user(update.effective_user.id)
        if blogger is None:
            await update.message.reply_text(
                "This Telegram account is not registered as a channel owner."
            )
            return
        await self.engine.set_blogger_address(blogger.id, update.effective_chat.id)
        logger.info("[OWNER_BOT] Bound chat %s to blogger %s", update.effective_chat.id, blogger.id)
        await update.message.reply_text(
            f"Hi @{blogger.username}! Paid placement offers will arrive here.\n\n"
            "/offers   -- Upcoming placements\n"
            "/pause    -- Pause or resume autoposting\n"
        )

    async def _cmd_offers(self, update: Any, context: Any) -> None:
        """Handle ``/offers`` -- one message per upcoming placement."""
        blogger = await self._owner_or_reply(update)
        if blogger is None:
            return
        upcoming = self.engine.owner_overview(blogger.id)["upcoming"]
        if not upcoming:
            await update.message.reply_text("No upcoming placements.")
            return
        for summary in upcoming:
            text, rows = self._offer_reply(summary)
            await update.message.reply_text(text, reply_markup=prompts.to_markup(rows))

    async def _cmd_pause(self, update: Any, context: Any) -> None:
        """Handle ``/pause`` -- pause controls per channel."""
        blogger = await self._owner_or_reply(update)
        if blogger is None:
            return
        channels = self.engine.list_channels(blogger.id)
        if not channels:
            await update.message.reply_text("You have no registered channels.")
            return
        for channel in channels:
            text, rows = self._channel_reply(channel)
            await update.message.reply_text(text, reply_markup=prompts.to_markup(rows))

    async def _owner_or_reply(self, update: Any) -> Optional[Blogger]:
        blogger = self.engine.find_blogger_by_telegram_user(update.effective_user.id)
        if blogger is None:
            await update.message.reply_text(
                "This Telegram account is not registered as a channel owner."
            )
        return blogger

    # ------------------------------------------------------------------
    # Callback handler
    # ------------------------------------------------------------------

    async def _handle_callback(self, update: Any, context: Any) -> None:
        """Handle inline button presses for offers and pause controls."""
        query = update.callback_query
        if query is None:
            return

        blogger = self.engine.find_blogger_by_telegram_user(query.from_user.id)
        if blogger is None:
            await query.answer("Unauthorized.", show_alert=True)
            return
        await query.answer()

        data = query.data or ""
        if data.startswith("of:"):
            text, rows = await self.apply_offer_action(blogger.id, data)
        elif data.startswith("pause:"):
            text, rows = await self.apply_pause_action(blogger.id, data)
        else:
            logger.warning("[OWNER_BOT] Unknown callback data: %s", data)
            return

        try:
            await query.edit_message_text(text=text, reply_markup=prompts.to_markup(rows))
        except BadRequest as exc:
            # Pressing the same button twice leaves the message unchanged
            logger.debug("[OWNER_BOT] Message not edited: %s", exc)

    async def apply_offer_action(self, blogger_id: int, data: str) -> Reply:
        """
        Execute an ``of:*`` callback as *blogger_id*.

        Returns:
            Message text and keyboard rows reflecting the offer afterwards.
            A rejected action leaves the offer as it was and explains why.
        """
        callback = prompts.parse_offer_callback(data)
        if callback is None:
            logger.warning("[OWNER_BOT] Malformed offer callback: %s", data)
            return "This button is no longer valid.", []

        offer_id = callback.offer_id
        try:
            if callback.action == "ap":
                summary = await self.engine.approve(offer_id, blogger_id)
            elif callback.action == "dr":
                summary = await self.engine.decline(offer_id, blogger_id)
            elif callback.action == "rt":
                summary = await self.engine.reschedule(offer_id, callback.instant, blogger_id)
            elif callback.action == "cn":
                summary = await self.engine.cancel_by_owner(offer_id, blogger_id)
            elif callback.action == "pt":
                summary = self.engine.get_offer(offer_id, blogger_id)
                slots = self.engine.available_slots(offer_id, blogger_id)
                return self._offer_reply(summary, prompts.VIEW_PICKING_TIME, slots)
            else:
                summary = self.engine.get_offer(offer_id, blogger_id)
        except NotFoundError:
            return "Offer not found.", []
        except (IllegalStateError, ValidationError) as exc:
            logger.info("[OWNER_BOT] Offer %s action '%s' rejected: %s", offer_id, callback.action, exc)
            text, rows = self._offer_reply(self.engine.get_offer(offer_id, blogger_id))
            return f"{text}\n\n{exc}", rows
        return self._offer_reply(summary)

    async def apply_pause_action(self, blogger_id: int, data: str) -> Reply:
        """Execute a ``pause:set:*`` callback as *blogger_id*."""
        callback = prompts.parse_pause_callback(data)
        if callback is None:
            logger.warning("[OWNER_BOT] Malformed pause callback: %s", data)
            return "This button is no longer valid.", []

        try:
            if callback.days is None:
                channel = await self.engine.resume(callback.channel_id, blogger_id)
            else:
                channel = await self.engine.pause(callback.channel_id, callback.days, blogger_id)
        except NotFoundError:
            return "Channel not found.", []
        except (IllegalStateError, ValidationError) as exc:
            text, rows = self._channel_reply(self.engine.get_channel(callback.channel_id, blogger_id))
            return f"{text}\n\n{exc}", rows
        return self._channel_reply(channel)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _offer_reply(
        self,
        summary: OfferSummary,
        view: str = prompts.VIEW_MAIN,
        slots: Any = (),
    ) -> Reply:
        channel = self.engine.repository.get_channel(summary.channel_id)
        title = channel.title if channel else ""
        text = prompts.truncate(prompts.render_offer(summary, title, self.tz))
        return text, prompts.offer_actions(summary, view, slots, self.tz)

    def _channel_reply(self, channel: Channel) -> Reply:
        paused = self.engine.is_paused(channel.id)
        lines = [f"{channel.title} ({channel.mode.title})"]
        if paused:
            lines.append(f"Autoposting paused until {prompts.format_time(channel.pause_until, self.tz)}")
        elif channel.mode.supports_pause:
            lines.append("Autoposting active")
        return "\n".join(lines), prompts.pause_actions(channel, paused)

    # ------------------------------------------------------------------
    # Error handler
    # ------------------------------------------------------------------

    @staticmethod
    async def _error_handler(update: object, context: Any) -> None:
        """Log handler errors without crashing the polling loop."""
        logger.error(
            "[OWNER_BOT] Update %s caused error: %s",
            update,
            context.error,
            exc_info=context.error,
        )


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = ["OwnerBot"]
