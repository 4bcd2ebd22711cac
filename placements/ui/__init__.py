"""Owner-facing Telegram interface."""
