"""CPV placement engine for paid Telegram channel posts."""

__version__ = "0.1.0"
