"""Journal data models: LogLevel, LogComponent, LogEntry."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class LogLevel(Enum):
    """Log levels with numeric values for severity comparison."""

    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40
    CRITICAL = 50

    @property
    def name_str(self) -> str:
        """Get lowercase name for display/serialization."""
        return self.name.lower()


class LogComponent(Enum):
    """System components that write to the journal."""

    ENGINE = "engine"
    SWEEPER = "sweeper"
    LEDGER = "ledger"
    PAUSE = "pause"
    STORE = "store"
    TELEGRAM = "telegram"
    OWNER_BOT = "owner_bot"
    STARTUP = "startup"
    CONFIG = "config"


@dataclass
class LogEntry:
    """Structured journal entry.

    One offer transition, pause change or failure, with the ids it
    concerns and optional error details.
    """

    # Required fields
    timestamp: datetime
    level: LogLevel
    component: LogComponent
    message: str

    # Context
    offer_id: Optional[int] = None
    channel_id: Optional[int] = None

    # Additional data
    data: Dict[str, Any] = field(default_factory=dict)

    # Error details
    error_type: Optional[str] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "level_name": self.level.name_str,
            "component": self.component.value,
            "message": self.message,
            "offer_id": self.offer_id,
            "channel_id": self.channel_id,
            "data": self.data,
            "error_type": self.error_type,
            "error_message": self.error_message,
        }

    def to_json(self) -> str:
        """Serialize to a JSON line for file logging."""
        return json.dumps(self.to_dict(), ensure_ascii=False, default=str)

    def to_readable(self) -> str:
        """Human-readable format for Telegram/console output."""
        time_str = self.timestamp.strftime("%H:%M:%S")
        indicator = {
            LogLevel.DEBUG: "[DEBUG]",
            LogLevel.INFO: "[INFO]",
            LogLevel.WARNING: "[WARN]",
            LogLevel.ERROR: "[ERROR]",
            LogLevel.CRITICAL: "[CRIT]",
        }.get(self.level, "[???]")
        msg = f"{indicator} [{time_str}] [{self.component.value}] {self.message}"
        if self.offer_id is not None:
            msg += f" (offer #{self.offer_id})"
        if self.error_message:
            msg += f": {self.error_message}"
        return msg
