"""
Entry point: run the placement engine with the owner Telegram bot.

Usage::

    python run.py
"""

import asyncio
import logging
import os
import sys

from dotenv import load_dotenv

load_dotenv()

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)-8s %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("run")


async def main() -> None:
    from placements.config import get_settings, validate_env
    from placements.database import build_store
    from placements.logging import init_logger
    from placements.repository import InMemoryRepository
    from placements.scheduling.engine import PlacementEngine
    from placements.tools.telegram_gateway import (
        TelegramLogForwarder,
        TelegramMessagingGateway,
        TelegramPublishGateway,
        build_bot,
    )
    from placements.ui.telegram_bot import OwnerBot

    validate_env(strict=True)
    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())

    bot_token = os.environ["TELEGRAM_BOT_TOKEN"]
    admin_chat_id = os.environ.get("TELEGRAM_ADMIN_CHAT_ID")

    bot = build_bot(bot_token)
    await bot.initialize()

    forwarder = TelegramLogForwarder(bot, admin_chat_id) if admin_chat_id else None
    journal = init_logger(log_dir=settings.log_dir, telegram_notifier=forwarder)

    repository = InMemoryRepository()
    engine = PlacementEngine(
        repository=repository,
        messaging=TelegramMessagingGateway(bot, repository, settings.tzinfo),
        publisher=TelegramPublishGateway(bot),
        store=await build_store(settings),
        settings=settings,
        journal=journal,
    )
    if await engine.load():
        logger.info(
            "Restored %d channels and %d offers",
            len(repository.list_channels()),
            len(repository.list_offers()),
        )

    owner_bot = OwnerBot(engine, bot_token, settings.tzinfo)
    await owner_bot.start()
    sweeper_task = asyncio.create_task(engine.sweeper.start())
    logger.info("Placement engine running (tick=%.1fs)", settings.tick_seconds)

    try:
        await sweeper_task
    finally:
        await engine.sweeper.stop()
        if not sweeper_task.done():
            sweeper_task.cancel()
        await owner_bot.stop()
        await journal.flush()
        await bot.shutdown()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Interrupted")
        sys.exit(0)
