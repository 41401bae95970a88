"""Tests for reputation_oracle.core.config - OracleSettings and global config management.

Tests cover:
- Settings loading with defaults
- Environment variable overrides
- Validation of the protocol constants
- Singleton behavior (get_config / clear_config_cache)
- Computed properties (replay_rules)
"""

from __future__ import annotations

import pytest

from reputation_oracle.core.config import (
    DEFAULT_DECAY_DENOMINATOR,
    DEFAULT_DECAY_NUMERATOR,
    OracleSettings,
    clear_config_cache,
    get_config,
)
from reputation_oracle.core.exceptions import ConfigException

# ============================================================================
# OracleSettings - Default Values
# ============================================================================


class TestOracleSettingsDefaults:
    """Test that OracleSettings loads with correct default values."""

    def test_logging_defaults(self, clean_env):
        settings = OracleSettings()

        assert settings.log_level == "INFO"
        assert settings.log_format == ""
        assert settings.log_file is None

    def test_replay_defaults(self, clean_env):
        """Decay ratio and totals tracking match the deployed verifier."""
        settings = OracleSettings()

        assert settings.decay_numerator == 992327946262944
        assert settings.decay_denominator == 10**15
        assert settings.track_organization_totals is True

    def test_timing_defaults(self, clean_env):
        settings = OracleSettings()

        assert settings.mining_cycle_duration == 86400
        assert settings.challenge_window_seconds == 600
        assert settings.min_stake == 2000 * 10**18

    def test_miner_defaults(self, clean_env):
        settings = OracleSettings()

        assert settings.miner_id is None
        assert settings.checkpoint_dir == "./reputation_states"


# ============================================================================
# OracleSettings - Environment Overrides
# ============================================================================


class TestOracleSettingsEnv:
    """Test environment variable overrides."""

    def test_timing_from_env(self, clean_env, monkeypatch):
        monkeypatch.setenv("REPUTATION_ORACLE_MINING_CYCLE_DURATION", "3600")
        monkeypatch.setenv("REPUTATION_ORACLE_CHALLENGE_WINDOW_SECONDS", "30")
        monkeypatch.setenv("REPUTATION_ORACLE_MIN_STAKE", "5")

        settings = OracleSettings()

        assert settings.mining_cycle_duration == 3600
        assert settings.challenge_window_seconds == 30
        assert settings.min_stake == 5

    def test_decay_from_env(self, clean_env, monkeypatch):
        monkeypatch.setenv("REPUTATION_ORACLE_DECAY_NUMERATOR", "1")
        monkeypatch.setenv("REPUTATION_ORACLE_DECAY_DENOMINATOR", "2")

        settings = OracleSettings()

        assert settings.replay_rules.decay(100) == 50

    def test_totals_flag_from_env(self, clean_env, monkeypatch):
        monkeypatch.setenv("REPUTATION_ORACLE_TRACK_ORGANIZATION_TOTALS", "false")

        assert OracleSettings().track_organization_totals is False

    def test_miner_id_from_env(self, clean_env, monkeypatch):
        monkeypatch.setenv("REPUTATION_ORACLE_MINER_ID", "0x" + "ab" * 20)

        assert OracleSettings().miner_id == "0x" + "ab" * 20

    def test_env_file(self, clean_env, tmp_path):
        """A .env file in the working directory is read."""
        (tmp_path / ".env").write_text("REPUTATION_ORACLE_CHALLENGE_WINDOW_SECONDS=42\n")

        assert OracleSettings().challenge_window_seconds == 42


# ============================================================================
# OracleSettings - Validation
# ============================================================================


class TestOracleSettingsValidation:
    """Protocol constants are rejected before a miner can start with them."""

    @pytest.mark.parametrize(
        ("numerator", "denominator"),
        [("0", "10"), ("11", "10"), ("1", "0"), ("-1", "10")],
    )
    def test_bad_decay_ratio(self, clean_env, monkeypatch, numerator, denominator):
        monkeypatch.setenv("REPUTATION_ORACLE_DECAY_NUMERATOR", numerator)
        monkeypatch.setenv("REPUTATION_ORACLE_DECAY_DENOMINATOR", denominator)

        with pytest.raises(ConfigException, match="Decay ratio"):
            OracleSettings()

    def test_ratio_of_one_is_allowed(self, clean_env, monkeypatch):
        monkeypatch.setenv("REPUTATION_ORACLE_DECAY_NUMERATOR", "7")
        monkeypatch.setenv("REPUTATION_ORACLE_DECAY_DENOMINATOR", "7")

        assert OracleSettings().replay_rules.decay(123) == 123

    @pytest.mark.parametrize("var", ["MINING_CYCLE_DURATION", "CHALLENGE_WINDOW_SECONDS"])
    def test_non_positive_timing(self, clean_env, monkeypatch, var):
        monkeypatch.setenv(f"REPUTATION_ORACLE_{var}", "0")

        with pytest.raises(ConfigException, match="positive"):
            OracleSettings()

    def test_non_positive_stake(self, clean_env, monkeypatch):
        monkeypatch.setenv("REPUTATION_ORACLE_MIN_STAKE", "0")

        with pytest.raises(ConfigException, match="stake"):
            OracleSettings()


# ============================================================================
# Singleton and computed properties
# ============================================================================


class TestGetConfig:
    """Tests for the lazily loaded global instance."""

    def test_returns_same_instance(self, clean_env):
        assert get_config() is get_config()

    def test_clear_cache_reloads(self, clean_env, monkeypatch):
        first = get_config()
        monkeypatch.setenv("REPUTATION_ORACLE_CHALLENGE_WINDOW_SECONDS", "9")

        assert get_config() is first
        clear_config_cache()
        assert get_config().challenge_window_seconds == 9


class TestComputedProperties:
    def test_replay_rules(self, clean_env):
        rules = OracleSettings().replay_rules

        assert rules.decay_numerator == DEFAULT_DECAY_NUMERATOR
        assert rules.decay_denominator == DEFAULT_DECAY_DENOMINATOR
        assert rules.track_organization_totals is True
