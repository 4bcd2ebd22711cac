"""Event journal with file and Telegram outputs.

Provides the ``EventLogger`` class that records structured entries for
offer transitions and channel pause changes. Entries go to local JSON-line
files (via ``aiofiles``) and, at ERROR and above, to an optional Telegram
notifier. A lightweight in-memory ring buffer allows fast ``get_recent()``
queries.

Global helpers:
    - ``init_logger()``  -- create and register a singleton ``EventLogger``
    - ``get_logger()``   -- retrieve the singleton (raises if not initialised)
"""

import asyncio
import logging
from collections import deque
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional, Set

import aiofiles

from placements.logging.models import LogComponent, LogEntry, LogLevel
from placements.utils import utc_now

logger = logging.getLogger(__name__)


class EventLogger:
    """Structured journal for the placement engine.

    Parameters:
        log_dir: Directory for log files (created if missing).
        telegram_notifier: Optional notifier with ``send_log(text)``.
        telegram_min_level: Minimum level forwarded to Telegram.
        max_recent: Ring buffer size.
    """

    def __init__(
        self,
        log_dir: str = "logs",
        telegram_notifier: Any = None,
        telegram_min_level: LogLevel = LogLevel.ERROR,
        max_recent: int = 1000,
    ) -> None:
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.telegram = telegram_notifier
        self.telegram_min_level = telegram_min_level

        self._main_log = self.log_dir / "events.log"
        self._error_log = self.log_dir / "errors.log"

        self._recent: Deque[LogEntry] = deque(maxlen=max_recent)

        # Track pending async tasks to prevent garbage collection
        self._pending_tasks: Set["asyncio.Task[None]"] = set()

    # ------------------------------------------------------------------
    # Core log method
    # ------------------------------------------------------------------

    async def log(
        self,
        level: LogLevel,
        component: LogComponent,
        message: str,
        offer_id: Optional[int] = None,
        channel_id: Optional[int] = None,
        data: Optional[Dict[str, Any]] = None,
        error: Optional[BaseException] = None,
    ) -> LogEntry:
        """Record one entry.

        The file write is awaited; Telegram forwarding is fire-and-forget
        but tracked so ``flush()`` can wait for it.
        """
        entry = LogEntry(
            timestamp=utc_now(),
            level=level,
            component=component,
            message=message,
            offer_id=offer_id,
            channel_id=channel_id,
            data=data or {},
        )
        if error is not None:
            entry.error_type = type(error).__name__
            entry.error_message = str(error)

        self._recent.append(entry)

        try:
            await self._write_to_file(entry)
        except OSError:
            logger.exception("[LOGGING] Failed to write journal entry to %s", self.log_dir)

        if self.telegram and level.value >= self.telegram_min_level.value:
            task = asyncio.create_task(self._send_to_telegram(entry))
            self._pending_tasks.add(task)
            task.add_done_callback(self._pending_tasks.discard)

        return entry

    # ------------------------------------------------------------------
    # Convenience methods
    # ------------------------------------------------------------------

    async def info(self, component: LogComponent, message: str, **kwargs: Any) -> LogEntry:
        return await self.log(LogLevel.INFO, component, message, **kwargs)

    async def warning(self, component: LogComponent, message: str, **kwargs: Any) -> LogEntry:
        return await self.log(LogLevel.WARNING, component, message, **kwargs)

    async def error(self, component: LogComponent, message: str, **kwargs: Any) -> LogEntry:
        return await self.log(LogLevel.ERROR, component, message, **kwargs)

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    def get_recent(
        self,
        limit: int = 20,
        level: Optional[LogLevel] = None,
        component: Optional[LogComponent] = None,
        offer_id: Optional[int] = None,
    ) -> List[LogEntry]:
        """Return recent entries from the in-memory ring buffer."""
        entries = list(self._recent)

        if level is not None:
            entries = [entry for entry in entries if entry.level == level]
        if component is not None:
            entries = [entry for entry in entries if entry.component == component]
        if offer_id is not None:
            entries = [entry for entry in entries if entry.offer_id == offer_id]

        return entries[-limit:]

    # ------------------------------------------------------------------
    # Flush (call before shutdown)
    # ------------------------------------------------------------------

    async def flush(self) -> None:
        """Wait for all pending Telegram forwards."""
        if self._pending_tasks:
            await asyncio.gather(*self._pending_tasks, return_exceptions=True)
            self._pending_tasks.clear()

    # ------------------------------------------------------------------
    # Private output methods
    # ------------------------------------------------------------------

    async def _write_to_file(self, entry: LogEntry) -> None:
        """Append to ``events.log``; ERROR and above also to ``errors.log``."""
        json_line = entry.to_json() + "\n"

        async with aiofiles.open(self._main_log, "a", encoding="utf-8") as f:
            await f.write(json_line)

        if entry.level.value >= LogLevel.ERROR.value:
            async with aiofiles.open(self._error_log, "a", encoding="utf-8") as f:
                await f.write(json_line)

    async def _send_to_telegram(self, entry: LogEntry) -> None:
        try:
            await self.telegram.send_log(entry.to_readable())
        except Exception as exc:
            logger.warning("[LOGGING] Failed to forward journal entry to Telegram: %s", exc)


# ======================================================================
# GLOBAL LOGGER SINGLETON
# ======================================================================

_logger: Optional[EventLogger] = None


def init_logger(
    log_dir: str = "logs",
    telegram_notifier: Any = None,
    telegram_min_level: LogLevel = LogLevel.ERROR,
) -> EventLogger:
    """Initialise and register the global ``EventLogger`` singleton."""
    global _logger
    _logger = EventLogger(
        log_dir=log_dir,
        telegram_notifier=telegram_notifier,
        telegram_min_level=telegram_min_level,
    )
    return _logger


def get_logger() -> EventLogger:
    """Retrieve the global ``EventLogger`` singleton.

    Raises:
        RuntimeError: If ``init_logger()`` has not been called yet.
    """
    if _logger is None:
        raise RuntimeError("Logger not initialized. Call init_logger() first.")
    return _logger
