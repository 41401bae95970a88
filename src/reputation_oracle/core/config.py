# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Core configuration - centralized config for the reputation oracle.

All environment-based configuration should flow through this module.
The decay ratio and timing constants must match the external verifier
bit for bit, so they live here rather than in code.

Usage:
    from reputation_oracle.core.config import get_config
    config = get_config()

    rules = config.replay_rules
    window = config.challenge_window_seconds
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigException

if TYPE_CHECKING:
    from ..reputation.rules import ReplayRules

DEFAULT_DECAY_NUMERATOR = 992327946262944
DEFAULT_DECAY_DENOMINATOR = 1000000000000000
DEFAULT_MIN_STAKE = 2000 * 10**18


class OracleSettings(BaseSettings):
    """Configuration settings for a reputation miner.

    Settings can be configured via environment variables with the
    REPUTATION_ORACLE_ prefix, or through a .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ==========================================================================
    # LOGGING SETTINGS
    # ==========================================================================

    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)",
        validation_alias="REPUTATION_ORACLE_LOG_LEVEL",
    )
    log_format: str = Field(
        default="",
        description="Log format: 'json', 'text', or '' (auto-detect)",
        validation_alias="REPUTATION_ORACLE_LOG_FORMAT",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (optional)",
        validation_alias="REPUTATION_ORACLE_LOG_FILE",
    )

    # ==========================================================================
    # REPLAY SETTINGS (pinned to the verifier)
    # ==========================================================================

    decay_numerator: int = Field(
        default=DEFAULT_DECAY_NUMERATOR,
        description="Numerator of the per-cycle decay ratio",
        validation_alias="REPUTATION_ORACLE_DECAY_NUMERATOR",
    )
    decay_denominator: int = Field(
        default=DEFAULT_DECAY_DENOMINATOR,
        description="Denominator of the per-cycle decay ratio",
        validation_alias="REPUTATION_ORACLE_DECAY_DENOMINATOR",
    )
    track_organization_totals: bool = Field(
        default=True,
        description="Expand every log entry into an organization-wide half and a participant half",
        validation_alias="REPUTATION_ORACLE_TRACK_ORGANIZATION_TOTALS",
    )

    # ==========================================================================
    # PROTOCOL TIMING SETTINGS
    # ==========================================================================

    mining_cycle_duration: int = Field(
        default=60 * 60 * 24,
        description="Length of the submission window in seconds",
        validation_alias="REPUTATION_ORACLE_MINING_CYCLE_DURATION",
    )
    challenge_window_seconds: int = Field(
        default=600,
        description="Time each side has to act in a contest",
        validation_alias="REPUTATION_ORACLE_CHALLENGE_WINDOW_SECONDS",
    )
    min_stake: int = Field(
        default=DEFAULT_MIN_STAKE,
        description="Stake backing a single submission entry",
        validation_alias="REPUTATION_ORACLE_MIN_STAKE",
    )

    # ==========================================================================
    # MINER SETTINGS
    # ==========================================================================

    miner_id: str | None = Field(
        default=None,
        description="20-byte hex address the miner stakes and submits from",
        validation_alias="REPUTATION_ORACLE_MINER_ID",
    )
    checkpoint_dir: str = Field(
        default="./reputation_states",
        description="Directory for saved reputation states",
        validation_alias="REPUTATION_ORACLE_CHECKPOINT_DIR",
    )

    @model_validator(mode="after")
    def _check_protocol_constants(self) -> OracleSettings:
        if self.decay_denominator <= 0 or not 0 < self.decay_numerator <= self.decay_denominator:
            raise ConfigException(
                f"Decay ratio {self.decay_numerator}/{self.decay_denominator} must be in (0, 1]"
            )
        if self.mining_cycle_duration <= 0 or self.challenge_window_seconds <= 0:
            raise ConfigException("Cycle duration and challenge window must be positive")
        if self.min_stake <= 0:
            raise ConfigException("Minimum stake must be positive")
        return self

    # ==========================================================================
    # COMPUTED PROPERTIES
    # ==========================================================================

    @property
    def replay_rules(self) -> ReplayRules:
        """Replay constants as consumed by the engine and the verifier."""
        from ..reputation.rules import ReplayRules

        return ReplayRules(
            decay_numerator=self.decay_numerator,
            decay_denominator=self.decay_denominator,
            track_organization_totals=self.track_organization_totals,
        )


# ==========================================================================
# GLOBAL CONFIG INSTANCE (lazy loaded)
# ==========================================================================

_config: OracleSettings | None = None


def get_config() -> OracleSettings:
    """Get the global configuration instance.

    Returns:
        The singleton OracleSettings instance.
    """
    global _config
    if _config is None:
        _config = OracleSettings()
    return _config


def clear_config_cache() -> None:
    """Clear the config cache. Useful for testing."""
    global _config
    _config = None
