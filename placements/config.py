"""
Centralized configuration loader for the CPV placement engine.

Loads settings from YAML files and environment variables, providing
sensible defaults when configuration files are absent.

Provides:
    - Settings: Engine settings loaded from YAML + env vars
    - get_settings(): Singleton accessor for Settings
    - reset_settings(): Drop the cached singleton (tests, reloads)
    - validate_env(): Startup validation of required environment variables
"""

import logging
import os
from dataclasses import dataclass, fields
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from dotenv import load_dotenv

from placements.exceptions import ConfigurationError

# ---------------------------------------------------------------------------
# Load .env file (no-op if file does not exist)
# ---------------------------------------------------------------------------
load_dotenv()

# ---------------------------------------------------------------------------
# Project root directory (parent of placements/)
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent

logger = logging.getLogger(__name__)

STORE_BACKENDS = ("json", "supabase")


# ===========================================================================
# GLOBAL SETTINGS
# ===========================================================================


@dataclass
class Settings:
    """
    Engine settings.

    Loaded from ``config/settings.yaml`` when available, falling back to
    sensible defaults. Environment variables override YAML values for
    deployment-specific configuration.
    """

    # Sweeper
    tick_seconds: float = 5.0

    # Offer lifecycle
    precheck_window_seconds: int = 3600  # silence in precheck = consent after this
    safety_margin_seconds: int = 30  # slots closer than this to "now" are skipped
    payout_share: float = 0.8  # blogger share of the advertiser CPV

    # Channel defaults
    default_weekly_limit: int = 7
    max_pause_days: int = 30
    default_pause_days: int = 1

    # Delivery
    ad_marker: str = "#ad"

    # Timezone used to expand weekly schedules
    timezone: str = "UTC"

    # Persistence
    store: str = "json"
    state_file: str = "data/engine_state.json"

    # Logging
    log_level: str = "INFO"
    log_dir: str = "logs"

    def __post_init__(self) -> None:
        self.validate()

    # -----------------------------------------------------------------
    # DERIVED VALUES
    # -----------------------------------------------------------------

    @property
    def precheck_window(self) -> timedelta:
        return timedelta(seconds=self.precheck_window_seconds)

    @property
    def safety_margin(self) -> timedelta:
        return timedelta(seconds=self.safety_margin_seconds)

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def validate(self) -> None:
        """
        Check value ranges.

        Raises:
            ConfigurationError: If any value is out of range.
        """
        if self.tick_seconds <= 0:
            raise ConfigurationError(f"tick_seconds must be positive, got {self.tick_seconds}")
        if self.precheck_window_seconds <= 0:
            raise ConfigurationError(
                f"precheck_window_seconds must be positive, got {self.precheck_window_seconds}"
            )
        if self.safety_margin_seconds < 0:
            raise ConfigurationError(
                f"safety_margin_seconds must not be negative, got {self.safety_margin_seconds}"
            )
        if not 0 < self.payout_share <= 1:
            raise ConfigurationError(f"payout_share must be in (0, 1], got {self.payout_share}")
        if not 1 <= self.default_weekly_limit <= 28:
            raise ConfigurationError(
                f"default_weekly_limit must be in 1..28, got {self.default_weekly_limit}"
            )
        if not 1 <= self.default_pause_days <= self.max_pause_days:
            raise ConfigurationError(
                f"default_pause_days must be in 1..{self.max_pause_days}, "
                f"got {self.default_pause_days}"
            )
        if self.store not in STORE_BACKENDS:
            raise ConfigurationError(
                f"Unknown store backend '{self.store}'. Valid: {list(STORE_BACKENDS)}"
            )
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ConfigurationError(f"Unknown timezone '{self.timezone}'") from exc

    @classmethod
    def from_yaml(cls, path: Optional[Path] = None) -> "Settings":
        """
        Load settings from a YAML file.

        If the file does not exist, returns an instance with all defaults.
        Environment variables override YAML values for specific keys.

        Args:
            path: Path to the YAML file. Defaults to
                ``<PROJECT_ROOT>/config/settings.yaml``.

        Returns:
            Populated Settings instance.

        Raises:
            ConfigurationError: If the YAML file exists but cannot be parsed,
                or a value is invalid.
        """
        path = path or PROJECT_ROOT / "config" / "settings.yaml"

        data: Dict[str, Any] = {}
        if path.exists():
            try:
                with open(path, "r", encoding="utf-8") as fh:
                    data = yaml.safe_load(fh) or {}
            except yaml.YAMLError as exc:
                raise ConfigurationError(
                    f"Failed to parse settings YAML at {path}: {exc}"
                ) from exc
        if not isinstance(data, dict):
            raise ConfigurationError(f"Settings YAML at {path} must be a mapping")

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning("Ignoring unknown settings keys in %s: %s", path, unknown)
        kwargs: Dict[str, Any] = {k: v for k, v in data.items() if k in known}

        # -----------------------------------------------------------------
        # Environment variable overrides
        # -----------------------------------------------------------------
        env_overrides: Dict[str, Tuple[str, Callable[[str], Any]]] = {
            "ENGINE_TICK_SECONDS": ("tick_seconds", float),
            "ENGINE_PRECHECK_WINDOW_SECONDS": ("precheck_window_seconds", int),
            "ENGINE_TIMEZONE": ("timezone", str),
            "ENGINE_STATE_FILE": ("state_file", str),
            "ENGINE_STORE": ("store", str),
            "LOG_LEVEL": ("log_level", str),
        }
        for env_key, (attr_name, cast_fn) in env_overrides.items():
            env_val = os.environ.get(env_key)
            if env_val is not None:
                try:
                    kwargs[attr_name] = cast_fn(env_val)
                except (ValueError, TypeError) as exc:
                    raise ConfigurationError(
                        f"Invalid value for env var {env_key}='{env_val}': {exc}"
                    ) from exc

        try:
            return cls(**kwargs)
        except TypeError as exc:
            raise ConfigurationError(f"Invalid settings in {path}: {exc}") from exc


# ===========================================================================
# SINGLETON SETTINGS ACCESSOR
# ===========================================================================

_settings_instance: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the global Settings singleton.

    On first call, loads from ``config/settings.yaml`` (or defaults).
    Subsequent calls return the cached instance.
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings.from_yaml()
    return _settings_instance


def reset_settings() -> None:
    """Reset the cached Settings singleton."""
    global _settings_instance
    _settings_instance = None


# ===========================================================================
# ENVIRONMENT VARIABLE VALIDATION
# ===========================================================================

# Required environment variables for the system to function
REQUIRED_ENV_VARS: List[str] = [
    "TELEGRAM_BOT_TOKEN",
]

# Optional environment variables (Supabase snapshot store, error forwarding)
OPTIONAL_ENV_VARS: List[str] = [
    "SUPABASE_URL",
    "SUPABASE_SERVICE_KEY",
    "TELEGRAM_ADMIN_CHAT_ID",
]


def validate_env(strict: bool = True) -> Dict[str, bool]:
    """
    Validate that required environment variables are set.

    Args:
        strict: If ``True``, raise ``ConfigurationError`` when any required
            variable is missing. If ``False``, return the status dict
            without raising.

    Returns:
        Dict mapping variable name to presence status (``True`` if set).

    Raises:
        ConfigurationError: If ``strict=True`` and required vars are missing.
    """
    status: Dict[str, bool] = {}
    missing: List[str] = []

    for var in REQUIRED_ENV_VARS:
        present = bool(os.environ.get(var))
        status[var] = present
        if not present:
            missing.append(var)

    for var in OPTIONAL_ENV_VARS:
        status[var] = bool(os.environ.get(var))

    if strict and missing:
        raise ConfigurationError(
            f"Missing required environment variables: {missing}. "
            f"Copy .env.example to .env and fill in the values."
        )

    return status


# ===========================================================================
# PUBLIC API
# ===========================================================================

__all__ = [
    "Settings",
    "STORE_BACKENDS",
    "get_settings",
    "reset_settings",
    "validate_env",
    "REQUIRED_ENV_VARS",
    "OPTIONAL_ENV_VARS",
    "PROJECT_ROOT",
]
