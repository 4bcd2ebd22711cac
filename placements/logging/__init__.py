"""Event journal for the placement engine."""
from placements.logging.models import LogLevel, LogComponent, LogEntry
from placements.logging.event_logger import EventLogger, init_logger, get_logger

__all__ = [
    "LogLevel", "LogComponent", "LogEntry",
    "EventLogger", "init_logger", "get_logger",
]
