"""
Tests for placements.tools.telegram_gateway.

The Bot API is never called: ``telegram.Bot`` is replaced by an AsyncMock
whose ``send_message`` returns a message double.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from telegram import Bot, InlineKeyboardMarkup
from telegram.error import BadRequest, Forbidden, NetworkError

from placements.exceptions import DeliveryError
from placements.repository import InMemoryRepository
from placements.scheduling.models import (
    Blogger,
    NotifyKind,
    Offer,
    OfferStatus,
    OfferSummary,
    PostingMode,
)
from placements.tools.telegram_gateway import (
    TelegramLogForwarder,
    TelegramMessagingGateway,
    TelegramPublishGateway,
    build_bot,
    chat_target,
)

AT = datetime(2026, 1, 5, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def bot():
    bot = AsyncMock()
    bot.send_message.return_value = MagicMock(message_id=42)
    return bot


@pytest.fixture
def repo():
    repo = InMemoryRepository()
    repo.put_blogger(Blogger(id=1, username="alice", chat_id=5001))
    repo.put_blogger(Blogger(id=2, username="bob"))
    return repo


def offer_data(status=OfferStatus.PENDING_PRECHECK):
    offer = Offer(
        id=9,
        blogger_id=1,
        channel_id=3,
        status=status,
        scheduled_at=AT,
        window_from=AT,
        window_to=AT + timedelta(days=1),
        text="Buy our course",
        price=50.0,
        expected_payout=40.0,
        posting_mode=PostingMode.PRECHECK,
    )
    return dict(OfferSummary.from_offer(offer).to_dict(), channel_title="Tech news")


# ===========================================================================
# chat_target
# ===========================================================================


@pytest.mark.parametrize("destination,expected", [
    ("@technews", "@technews"),
    ("-1001234567", -1001234567),
    (" 12345 ", 12345),
    (777, 777),
])
def test_chat_target(destination, expected):
    assert chat_target(destination) == expected


# ===========================================================================
# TelegramMessagingGateway
# ===========================================================================


class TestMessagingGateway:
    @pytest.mark.asyncio
    async def test_offer_notification_has_keyboard(self, bot, repo):
        gateway = TelegramMessagingGateway(bot, repo)

        await gateway.notify(1, NotifyKind.OFFER_CREATED, offer_data())

        kwargs = bot.send_message.call_args.kwargs
        assert kwargs["chat_id"] == 5001
        assert kwargs["text"].startswith("New paid placement offer")
        assert isinstance(kwargs["reply_markup"], InlineKeyboardMarkup)

    @pytest.mark.asyncio
    async def test_terminal_offer_notification_has_no_keyboard(self, bot, repo):
        gateway = TelegramMessagingGateway(bot, repo)
        await gateway.notify(1, NotifyKind.OFFER_PUBLISHED, offer_data(OfferStatus.REWARDED))
        assert bot.send_message.call_args.kwargs["reply_markup"] is None

    @pytest.mark.asyncio
    async def test_pause_notification(self, bot, repo):
        gateway = TelegramMessagingGateway(bot, repo)
        await gateway.notify(1, NotifyKind.PAUSE_RESUMED, {"channel_title": "Tech news"})
        assert bot.send_message.call_args.kwargs["text"] == "Autoposting resumed: Tech news"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("blogger_id", [2, 99])
    async def test_unbound_blogger_skipped(self, bot, repo, blogger_id):
        gateway = TelegramMessagingGateway(bot, repo)
        await gateway.notify(blogger_id, NotifyKind.OFFER_CREATED, offer_data())
        bot.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_forbidden_logged_not_raised(self, bot, repo, caplog):
        bot.send_message.side_effect = Forbidden("bot was blocked by the user")
        gateway = TelegramMessagingGateway(bot, repo)

        await gateway.notify(1, NotifyKind.OFFER_CREATED, offer_data())

        assert bot.send_message.await_count == 1
        assert "Failed to notify blogger 1" in caplog.text

    @pytest.mark.asyncio
    async def test_network_errors_retried_then_logged(self, bot, repo, caplog):
        bot.send_message.side_effect = NetworkError("timed out")
        gateway = TelegramMessagingGateway(bot, repo)

        with patch("placements.utils.asyncio.sleep", new_callable=AsyncMock):
            await gateway.notify(1, NotifyKind.OFFER_CREATED, offer_data())

        assert bot.send_message.await_count == 3
        assert "telegram_notify failed after 3 attempts" in caplog.text


# ===========================================================================
# TelegramPublishGateway
# ===========================================================================


class TestPublishGateway:
    @pytest.mark.asyncio
    async def test_publish_returns_handle(self, bot):
        handle = await TelegramPublishGateway(bot).publish("-100555", "Ad\n\n#ad")

        bot.send_message.assert_awaited_once_with(chat_id=-100555, text="Ad\n\n#ad")
        assert handle.message_id == "42"
        assert handle.destination == "-100555"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [Forbidden("not admin"), BadRequest("Chat not found"), NetworkError("reset")])
    async def test_api_errors_become_delivery_errors(self, bot, error):
        bot.send_message.side_effect = error
        with pytest.raises(DeliveryError, match="@technews"):
            await TelegramPublishGateway(bot).publish("@technews", "Ad")
        assert bot.send_message.await_count == 1


# ===========================================================================
# TelegramLogForwarder / build_bot
# ===========================================================================


class TestLogForwarder:
    @pytest.mark.asyncio
    async def test_send_log(self, bot):
        forwarder = TelegramLogForwarder(bot, "-1009")
        await forwarder.send_log("[ERROR] boom")
        bot.send_message.assert_awaited_once_with(chat_id=-1009, text="[ERROR] boom")

    @pytest.mark.parametrize("chat_id", ["", None])
    def test_requires_chat_id(self, bot, chat_id):
        with pytest.raises(ValueError):
            TelegramLogForwarder(bot, chat_id)


class TestBuildBot:
    def test_builds_bot(self):
        assert isinstance(build_bot("123456:TEST-TOKEN"), Bot)

    @pytest.mark.parametrize("token", ["", None])
    def test_requires_token(self, token):
        with pytest.raises(ValueError):
            build_bot(token)
