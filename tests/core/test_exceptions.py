"""Tests for reputation_oracle.core.exceptions module."""

from __future__ import annotations

import pytest

from reputation_oracle.core.exceptions import (
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

# ============================================================================
# ReputationOracleException Tests
# ============================================================================


class TestReputationOracleException:
    """Tests for the base exception."""

    def test_create_with_message(self):
        """Create exception with just message."""
        exc = ReputationOracleException("Something went wrong")
        assert str(exc) == "Something went wrong"
        assert exc.message == "Something went wrong"
        assert exc.details == {}

    def test_to_dict(self):
        """to_dict should serialize correctly."""
        exc = ReputationOracleException("Test error", details={"info": "extra"})
        assert exc.to_dict() == {
            "error": "ReputationOracleException",
            "message": "Test error",
            "details": {"info": "extra"},
        }

    def test_to_dict_class_name(self):
        """to_dict should use actual class name."""
        assert ProofVerificationError("bad").to_dict()["error"] == "ProofVerificationError"

    @pytest.mark.parametrize(
        "exc",
        [
            MalformedLogEntryError("x"),
            StaleRootError("0x00"),
            ProofVerificationError("x"),
            CheckpointIntegrityError("0x01", "0x02"),
            ProtocolViolationError("x"),
            DeadlineExpiredError("x", 1, 2),
            ConfigException("x"),
            NotFoundError("checkpoint", "0x00"),
        ],
    )
    def test_hierarchy(self, exc):
        """Every error is a ReputationOracleException."""
        assert isinstance(exc, ReputationOracleException)


# ============================================================================
# Local computation errors
# ============================================================================


class TestLocalErrors:
    def test_malformed_log_entry_details(self):
        """Entry index and field land in details."""
        exc = MalformedLogEntryError("nUpdates is 3, expected 4", entry_index=2, field="nUpdates")
        assert exc.details == {"entry_index": 2, "field": "nUpdates"}
        assert exc.entry_index == 2

    def test_malformed_log_entry_without_location(self):
        """Location is optional."""
        assert MalformedLogEntryError("bad").details == {}

    def test_stale_root(self):
        """The root is named in the message."""
        exc = StaleRootError("0xabcd")
        assert "0xabcd" in exc.message
        assert exc.root_hash == "0xabcd"

    def test_checkpoint_integrity(self):
        """Both roots are kept."""
        exc = CheckpointIntegrityError("0x01", "0x02")
        assert exc.details == {"expected_root": "0x01", "actual_root": "0x02"}


# ============================================================================
# Protocol errors
# ============================================================================


class TestProtocolErrors:
    def test_contest_location(self):
        """Round and contest ids land in details."""
        exc = ProtocolViolationError("Probe is at 5, not 4", round_id=0, contest_id=1)
        assert exc.details == {"round_id": 0, "contest_id": 1}
        assert (exc.round_id, exc.contest_id) == (0, 1)

    @pytest.mark.parametrize(
        "cls",
        [
            AlreadyRespondedError,
            ProofLengthMismatchError,
            InvalidStateError,
            SubmissionWindowClosedError,
            EntryNotEligibleError,
        ],
    )
    def test_subclasses(self, cls):
        """Specific refusals are protocol violations."""
        assert isinstance(cls("x"), ProtocolViolationError)

    def test_entry_already_used(self):
        """Miner and entry are recorded."""
        exc = EntryAlreadyUsedError("0x" + "01" * 20, 3)
        assert isinstance(exc, ProtocolViolationError)
        assert exc.details["entry_index"] == 3
        assert exc.miner_id == "0x" + "01" * 20

    def test_deadline_is_not_a_protocol_violation(self):
        """A missed deadline loses the contest; it is not a refused call."""
        exc = DeadlineExpiredError("too late", deadline=160, now=161)
        assert not isinstance(exc, ProtocolViolationError)
        assert exc.details == {"deadline": 160, "now": 161}


# ============================================================================
# Configuration and lookup
# ============================================================================


class TestConfigException:
    def test_missing_vars(self):
        """Missing variables are listed."""
        exc = ConfigException("No miner id", missing_vars=["REPUTATION_ORACLE_MINER_ID"])
        assert exc.missing_vars == ["REPUTATION_ORACLE_MINER_ID"]
        assert exc.details == {"missing_vars": ["REPUTATION_ORACLE_MINER_ID"]}

    def test_no_missing_vars(self):
        """missing_vars defaults to an empty list."""
        exc = ConfigException("bad ratio")
        assert exc.missing_vars == []
        assert exc.details == {}


class TestNotFoundError:
    def test_message_and_details(self):
        """Resource type and id build the message."""
        exc = NotFoundError("submission", "7")
        assert exc.message == "submission not found: 7"
        assert exc.details == {"resource_type": "submission", "resource_id": "7"}
