"""
Tests for placements.config module.

Covers:
    - Settings defaults and derived values
    - Range validation in Settings
    - from_yaml with files and environment overrides
    - Singleton get_settings / reset_settings behaviour
    - validate_env strict and non-strict modes
"""

from datetime import timedelta

import pytest

from placements.config import (
    REQUIRED_ENV_VARS,
    Settings,
    get_settings,
    reset_settings,
    validate_env,
)
from placements.exceptions import ConfigurationError


# ===========================================================================
# 1. Defaults
# ===========================================================================


class TestSettingsDefaults:
    """Defaults that the engine relies on when no config file is present."""

    def test_lifecycle_defaults(self):
        settings = Settings()
        assert settings.precheck_window == timedelta(hours=1)
        assert settings.safety_margin == timedelta(seconds=30)
        assert settings.payout_share == 0.8
        assert settings.ad_marker == "#ad"

    def test_channel_defaults(self):
        settings = Settings()
        assert settings.default_weekly_limit == 7
        assert settings.max_pause_days == 30
        assert settings.default_pause_days == 1

    def test_store_defaults(self):
        settings = Settings()
        assert settings.store == "json"
        assert settings.state_file.endswith(".json")

    def test_tzinfo(self):
        assert Settings(timezone="Europe/Berlin").tzinfo.key == "Europe/Berlin"


# ===========================================================================
# 2. Validation
# ===========================================================================


class TestSettingsValidation:
    @pytest.mark.parametrize(
        "overrides",
        [
            {"tick_seconds": 0},
            {"precheck_window_seconds": -5},
            {"safety_margin_seconds": -1},
            {"payout_share": 0},
            {"payout_share": 1.5},
            {"default_weekly_limit": 29},
            {"default_pause_days": 31},
            {"store": "redis"},
            {"timezone": "Mars/Olympus_Mons"},
        ],
    )
    def test_out_of_range_rejected(self, overrides):
        with pytest.raises(ConfigurationError):
            Settings(**overrides)


# ===========================================================================
# 3. from_yaml
# ===========================================================================


class TestFromYaml:
    def test_missing_file_gives_defaults(self, tmp_path):
        settings = Settings.from_yaml(tmp_path / "absent.yaml")
        assert settings == Settings()

    def test_loads_values(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text(
            "tick_seconds: 2.5\n"
            "precheck_window_seconds: 600\n"
            "timezone: Europe/Moscow\n"
            "store: supabase\n",
            encoding="utf-8",
        )
        settings = Settings.from_yaml(path)
        assert settings.tick_seconds == 2.5
        assert settings.precheck_window == timedelta(minutes=10)
        assert settings.timezone == "Europe/Moscow"
        assert settings.store == "supabase"

    def test_unknown_keys_ignored(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("llm_model: whatever\nmax_pause_days: 10\n", encoding="utf-8")
        assert Settings.from_yaml(path).max_pause_days == 10

    def test_invalid_yaml_raises(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("tick_seconds: [1, 2", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="Failed to parse"):
            Settings.from_yaml(path)

    def test_non_mapping_raises(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="mapping"):
            Settings.from_yaml(path)

    def test_env_overrides_yaml(self, tmp_path, monkeypatch):
        path = tmp_path / "settings.yaml"
        path.write_text("precheck_window_seconds: 600\n", encoding="utf-8")
        monkeypatch.setenv("ENGINE_PRECHECK_WINDOW_SECONDS", "120")
        monkeypatch.setenv("ENGINE_STORE", "supabase")
        settings = Settings.from_yaml(path)
        assert settings.precheck_window_seconds == 120
        assert settings.store == "supabase"

    def test_env_override_bad_cast_raises(self, tmp_path, monkeypatch):
        monkeypatch.setenv("ENGINE_TICK_SECONDS", "often")
        with pytest.raises(ConfigurationError, match="ENGINE_TICK_SECONDS"):
            Settings.from_yaml(tmp_path / "absent.yaml")


# ===========================================================================
# 4. Singleton
# ===========================================================================


class TestSingleton:
    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()

    def test_reset_drops_cache(self):
        first = get_settings()
        reset_settings()
        assert get_settings() is not first


# ===========================================================================
# 5. validate_env
# ===========================================================================


class TestValidateEnv:
    def test_strict_raises_when_token_missing(self):
        with pytest.raises(ConfigurationError, match="TELEGRAM_BOT_TOKEN"):
            validate_env()

    def test_non_strict_reports_status(self, monkeypatch):
        monkeypatch.setenv("SUPABASE_URL", "https://example.supabase.co")
        status = validate_env(strict=False)
        assert status["TELEGRAM_BOT_TOKEN"] is False
        assert status["SUPABASE_URL"] is True
        assert status["SUPABASE_SERVICE_KEY"] is False

    def test_strict_passes_with_required_vars(self, monkeypatch):
        for var in REQUIRED_ENV_VARS:
            monkeypatch.setenv(var, "value")
        assert all(validate_env()[var] for var in REQUIRED_ENV_VARS)
