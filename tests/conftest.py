"""Shared fixtures for the placement engine test suite."""

import itertools
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from placements.config import Settings, reset_settings
from placements.scheduling.clock import ManualClock
from placements.scheduling.engine import PlacementEngine
from placements.scheduling.models import DeliveryHandle

# Monday 2026-01-05 08:00 UTC; the default schedule starts at 10:00
MONDAY_8AM = datetime(2026, 1, 5, 8, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Ensure we don't hit real services during tests
# ---------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _block_env_keys(monkeypatch):
    """Clear credentials and overrides so tests never depend on the host env."""
    keys = [
        "TELEGRAM_BOT_TOKEN",
        "TELEGRAM_ADMIN_CHAT_ID",
        "SUPABASE_URL",
        "SUPABASE_SERVICE_KEY",
        "ENGINE_TICK_SECONDS",
        "ENGINE_PRECHECK_WINDOW_SECONDS",
        "ENGINE_TIMEZONE",
        "ENGINE_STATE_FILE",
        "ENGINE_STORE",
        "LOG_LEVEL",
    ]
    for key in keys:
        monkeypatch.delenv(key, raising=False)
    reset_settings()
    yield
    reset_settings()


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------
@pytest.fixture
def now():
    """A fixed UTC instant for deterministic tests."""
    return MONDAY_8AM


@pytest.fixture
def clock(now):
    return ManualClock(now)


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------
@pytest.fixture
def messaging():
    """Messaging gateway double; inspect ``messaging.notify.call_args_list``."""
    return AsyncMock()


@pytest.fixture
def publisher():
    """Publish gateway double that always succeeds."""
    gateway = AsyncMock()
    gateway.publish.return_value = DeliveryHandle(message_id="101", destination="@chan")
    return gateway


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def engine(messaging, publisher, clock, settings):
    """An engine over an empty in-memory repository with no store."""
    return PlacementEngine(
        messaging=messaging,
        publisher=publisher,
        clock=clock,
        settings=settings,
    )


@pytest.fixture
def owner_factory(engine):
    """
    Async factory registering a blogger (with a bound chat) and one channel.

    Usage::

        blogger, channel = await owner_factory(mode="manual_approval")
    """
    seq = itertools.count(1)

    async def _make(chat_id=5000, telegram_user_id=None, destination="@chan", **channel_kwargs):
        n = next(seq)
        blogger = await engine.add_blogger(
            f"owner{n}",
            telegram_user_id=telegram_user_id,
            chat_id=None if chat_id is None else chat_id + n,
        )
        channel = await engine.add_channel(
            blogger.id, f"Channel {n}", destination, **channel_kwargs
        )
        return blogger, channel

    return _make
