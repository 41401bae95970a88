# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Reputation oracle core - configuration, logging and errors."""

from .config import OracleSettings, clear_config_cache, get_config
from .exceptions import (
    AlreadyRespondedError,
    CheckpointIntegrityError,
    ConfigException,
    DeadlineExpiredError,
    EntryAlreadyUsedError,
    EntryNotEligibleError,
    InvalidStateError,
    MalformedLogEntryError,
    NotFoundError,
    ProofLengthMismatchError,
    ProofVerificationError,
    ProtocolViolationError,
    ReputationOracleException,
    StaleRootError,
    SubmissionWindowClosedError,
)
from .logging import (
    LedgerCallLogger,
    configure_logging,
    cycle_context,
    get_logger,
    ledger_logger,
)

__all__ = [
    # Config
    "OracleSettings",
    "get_config",
    "clear_config_cache",
    # Exceptions
    "ReputationOracleException",
    "MalformedLogEntryError",
    "StaleRootError",
    "ProofVerificationError",
    "CheckpointIntegrityError",
    "ProtocolViolationError",
    "AlreadyRespondedError",
    "ProofLengthMismatchError",
    "InvalidStateError",
    "SubmissionWindowClosedError",
    "EntryAlreadyUsedError",
    "EntryNotEligibleError",
    "DeadlineExpiredError",
    "ConfigException",
    "NotFoundError",
    # Logging
    "configure_logging",
    "get_logger",
    "cycle_context",
    "LedgerCallLogger",
    "ledger_logger",
]
