# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Custom exception hierarchy for the reputation oracle.

Errors fall into four groups:

- Local computation errors (malformed log entries, stale roots, broken
  proofs, corrupt checkpoints). These must surface before anything is
  submitted, since they would otherwise produce a losing root hash.
- Protocol violations by this client (acting outside a window, answering
  twice, proofs of the wrong length). Callers re-read ledger state before
  doing anything else; these are never retried blindly.
- Timeouts. A missed deadline is fatal to the contest it belongs to.
- Configuration and lookup failures.

Lies told by an opponent are not exceptions. They show up as the opponent's
contest reaching ``ContestState.ELIMINATED``.
"""

from __future__ import annotations

from typing import Any


class ReputationOracleException(Exception):  # noqa: N818 - matches the rest of the hierarchy
    """Base exception for all reputation oracle errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


# =============================================================================
# LOCAL COMPUTATION ERRORS
# =============================================================================


class MalformedLogEntryError(ReputationOracleException):
    """Raised when an update log entry cannot be expanded.

    Raised when:
    - ``nUpdates`` does not match the category chain of the entry
    - ``nPreviousUpdates`` is not the running sum of earlier entries
    - The entry references an unknown category
    """

    def __init__(self, message: str, entry_index: int | None = None, field: str | None = None):
        details: dict[str, Any] = {}
        if entry_index is not None:
            details["entry_index"] = entry_index
        if field:
            details["field"] = field
        super().__init__(message, details)
        self.entry_index = entry_index
        self.field = field


class StaleRootError(ReputationOracleException):
    """Raised when a proof is requested against a root the store no longer holds."""

    def __init__(self, root_hash: str):
        super().__init__(f"Root hash is not retained by this store: {root_hash}", {"root_hash": root_hash})
        self.root_hash = root_hash


class ProofVerificationError(ReputationOracleException):
    """Raised when a locally produced proof does not verify against its own root."""

    pass


class CheckpointIntegrityError(ReputationOracleException):
    """Raised when a loaded checkpoint does not reproduce its recorded root."""

    def __init__(self, expected_root: str, actual_root: str):
        super().__init__(
            f"Checkpoint reproduced root {actual_root}, expected {expected_root}",
            {"expected_root": expected_root, "actual_root": actual_root},
        )
        self.expected_root = expected_root
        self.actual_root = actual_root


# =============================================================================
# PROTOCOL VIOLATIONS BY THIS CLIENT
# =============================================================================


class ProtocolViolationError(ReputationOracleException):
    """Raised when a ledger call breaks the dispute protocol.

    Raised when:
    - A call is made in the wrong contest phase
    - A proof does not verify against the caller's own commitment
    - A boundary proof does not match the claimed leaf or step counts
    """

    def __init__(self, message: str, round_id: int | None = None, contest_id: int | None = None):
        details: dict[str, Any] = {}
        if round_id is not None:
            details["round_id"] = round_id
        if contest_id is not None:
            details["contest_id"] = contest_id
        super().__init__(message, details)
        self.round_id = round_id
        self.contest_id = contest_id


class AlreadyRespondedError(ProtocolViolationError):
    """Raised when a side answers the same challenge twice."""

    pass


class ProofLengthMismatchError(ProtocolViolationError):
    """Raised when boundary proofs have the wrong number of siblings."""

    pass


class InvalidStateError(ProtocolViolationError):
    """Raised when an action is not allowed in the current contest state."""

    pass


class SubmissionWindowClosedError(ProtocolViolationError):
    """Raised when a root hash is submitted after the window has closed."""

    pass


class EntryAlreadyUsedError(ProtocolViolationError):
    """Raised when a miner reuses an entry index within one cycle."""

    def __init__(self, miner_id: str, entry_index: int):
        super().__init__(f"Entry {entry_index} already used by {miner_id}")
        self.details.update({"miner_id": miner_id, "entry_index": entry_index})
        self.miner_id = miner_id
        self.entry_index = entry_index


class EntryNotEligibleError(ProtocolViolationError):
    """Raised when no stake-backed entry passes the acceptance target."""

    pass


# =============================================================================
# TIMEOUTS
# =============================================================================


class DeadlineExpiredError(ReputationOracleException):
    """Raised when a protocol deadline has passed.

    The contest the deadline belongs to is lost. This is reported, not retried.
    """

    def __init__(self, message: str, deadline: int, now: int):
        super().__init__(message, {"deadline": deadline, "now": now})
        self.deadline = deadline
        self.now = now


# =============================================================================
# CONFIGURATION AND LOOKUP
# =============================================================================


class ConfigException(ReputationOracleException):
    """Exception for configuration errors.

    Raised when:
    - A decay ratio is not in (0, 1]
    - Timing constants are not positive
    """

    def __init__(self, message: str, missing_vars: list[str] | None = None):
        details = {}
        if missing_vars:
            details["missing_vars"] = missing_vars
        super().__init__(message, details)
        self.missing_vars = missing_vars or []


class NotFoundError(ReputationOracleException):
    """Exception for resource not found errors.

    Raised when:
    - A checkpoint for a root hash doesn't exist
    - A reputation key doesn't exist in a saved state
    - A submission or contest doesn't exist on the ledger
    """

    def __init__(self, resource_type: str, resource_id: str):
        message = f"{resource_type} not found: {resource_id}"
        details = {
            "resource_type": resource_type,
            "resource_id": resource_id,
        }
        super().__init__(message, details)
        self.resource_type = resource_type
        self.resource_id = resource_id
