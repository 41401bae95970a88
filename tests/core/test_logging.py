"""Tests for reputation_oracle.core.logging module."""

from __future__ import annotations

import json
import logging
import sys

import pytest


def make_record(level: int = logging.INFO, msg: str = "Test message", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="test.logger",
        level=level,
        pathname="test.py",
        lineno=10,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class FakeStream:
    def __init__(self, tty: bool):
        self.tty = tty

    def isatty(self) -> bool:
        return self.tty


@pytest.fixture
def restore_root_logger():
    """Put the root logger back the way it was after configure_logging."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield root
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        if handler not in handlers:
            handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


# ============================================================================
# Cycle Context Tests
# ============================================================================


class TestCycleContext:
    """Tests for binding log lines to a mining cycle."""

    def test_defaults_none(self):
        """Nothing is bound outside a context."""
        from reputation_oracle.core.logging import get_contest_id, get_cycle_id

        assert get_cycle_id() is None
        assert get_contest_id() is None

    def test_binds_and_resets(self):
        """Should bind both ids inside and reset them on exit."""
        from reputation_oracle.core.logging import cycle_context, get_contest_id, get_cycle_id

        with cycle_context(3, "0/1") as cycle_id:
            assert cycle_id == 3
            assert get_cycle_id() == 3
            assert get_contest_id() == "0/1"

        assert get_cycle_id() is None
        assert get_contest_id() is None

    def test_nested_contexts(self):
        """Inner context wins and the outer one is restored."""
        from reputation_oracle.core.logging import cycle_context, get_contest_id, get_cycle_id

        with cycle_context(1):
            with cycle_context(1, "2/0"):
                assert get_contest_id() == "2/0"
            assert get_cycle_id() == 1
            assert get_contest_id() is None

    def test_resets_on_exception(self):
        """Should reset even when the body raises."""
        from reputation_oracle.core.logging import cycle_context, get_cycle_id

        with pytest.raises(RuntimeError):
            with cycle_context(9):
                raise RuntimeError("boom")
        assert get_cycle_id() is None


# ============================================================================
# JSONFormatter Tests
# ============================================================================


class TestJSONFormatter:
    """Tests for JSONFormatter class."""

    def test_format_basic_message(self):
        """Should format basic log message as JSON."""
        from reputation_oracle.core.logging import JSONFormatter

        data = json.loads(JSONFormatter().format(make_record()))

        assert "timestamp" in data
        assert data["level"] == "INFO"
        assert data["logger"] == "test.logger"
        assert data["message"] == "Test message"
        assert "cycle_id" not in data
        assert "source" not in data

    def test_includes_cycle_and_contest(self):
        """Should include the bound cycle and contest."""
        from reputation_oracle.core.logging import JSONFormatter, cycle_context

        with cycle_context(4, "1/0"):
            data = json.loads(JSONFormatter().format(make_record()))

        assert data["cycle_id"] == 4
        assert data["contest_id"] == "1/0"

    def test_cycle_zero_is_included(self):
        """Cycle 0 is a real cycle, not a missing one."""
        from reputation_oracle.core.logging import JSONFormatter, cycle_context

        with cycle_context(0):
            data = json.loads(JSONFormatter().format(make_record()))

        assert data["cycle_id"] == 0
        assert "contest_id" not in data

    def test_warning_includes_source(self):
        """Warnings and errors carry their source location."""
        from reputation_oracle.core.logging import JSONFormatter

        data = json.loads(JSONFormatter().format(make_record(logging.WARNING)))

        assert data["source"]["file"] == "test.py"
        assert data["source"]["line"] == 10

    def test_includes_exception(self):
        """Should include formatted exception info."""
        from reputation_oracle.core.logging import JSONFormatter

        try:
            raise ValueError("bad proof")
        except ValueError:
            record = make_record(logging.ERROR)
            record.exc_info = sys.exc_info()

        data = json.loads(JSONFormatter().format(record))
        assert "ValueError: bad proof" in data["exception"]

    def test_includes_extra_data(self):
        """Should include structured extra data."""
        from reputation_oracle.core.logging import JSONFormatter

        record = make_record(extra_data={"method": "submitRootHash", "root": b"\x01"})
        data = json.loads(JSONFormatter().format(record))

        assert data["extra"]["method"] == "submitRootHash"


# ============================================================================
# StandardFormatter Tests
# ============================================================================


class TestStandardFormatter:
    """Tests for StandardFormatter class."""

    def test_format_without_context(self):
        """Should format plainly without a cycle prefix."""
        from reputation_oracle.core.logging import StandardFormatter

        output = StandardFormatter(use_colors=False).format(make_record())

        assert "test.logger - INFO - Test message" in output
        assert "[cycle" not in output

    def test_cycle_prefix(self):
        """Should prefix the bound cycle and contest."""
        from reputation_oracle.core.logging import StandardFormatter, cycle_context

        with cycle_context(2, "0/1"):
            output = StandardFormatter(use_colors=False).format(make_record())

        assert "[cycle 2 contest 0/1] Test message" in output

    def test_does_not_mutate_record(self):
        """Other handlers must see the original message."""
        from reputation_oracle.core.logging import StandardFormatter, cycle_context

        record = make_record()
        with cycle_context(2):
            StandardFormatter(use_colors=False).format(record)

        assert record.msg == "Test message"
        assert record.levelname == "INFO"

    def test_no_colors_without_tty(self, monkeypatch):
        """Colors are only used on a terminal."""
        from reputation_oracle.core.logging import StandardFormatter

        monkeypatch.setattr(sys, "stderr", FakeStream(tty=False))
        formatter = StandardFormatter(use_colors=True)

        assert not formatter.use_colors
        assert "\033[" not in formatter.format(make_record())

    def test_colors_on_tty(self, monkeypatch):
        """Level names are colored on a terminal."""
        from reputation_oracle.core.logging import StandardFormatter

        monkeypatch.setattr(sys, "stderr", FakeStream(tty=True))
        output = StandardFormatter(use_colors=True).format(make_record(logging.ERROR))

        assert StandardFormatter.COLORS["ERROR"] in output


# ============================================================================
# configure_logging Tests
# ============================================================================


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_replaces_handlers(self, clean_env, restore_root_logger):
        """Should leave exactly one console handler."""
        from reputation_oracle.core.logging import configure_logging

        restore_root_logger.addHandler(logging.NullHandler())
        configure_logging("DEBUG", json_format=False)

        assert len(restore_root_logger.handlers) == 1
        assert restore_root_logger.level == logging.DEBUG

    def test_json_format(self, clean_env, restore_root_logger):
        """json_format=True should install the JSON formatter."""
        from reputation_oracle.core.logging import JSONFormatter, configure_logging

        configure_logging("WARNING", json_format=True)

        assert isinstance(restore_root_logger.handlers[0].formatter, JSONFormatter)
        assert restore_root_logger.level == logging.WARNING

    def test_format_from_env(self, clean_env, monkeypatch, restore_root_logger):
        """REPUTATION_ORACLE_LOG_FORMAT picks the formatter."""
        from reputation_oracle.core.logging import StandardFormatter, configure_logging

        monkeypatch.setenv("REPUTATION_ORACLE_LOG_FORMAT", "text")
        configure_logging()

        assert isinstance(restore_root_logger.handlers[0].formatter, StandardFormatter)

    def test_level_from_env(self, clean_env, monkeypatch, restore_root_logger):
        """The default level yields to REPUTATION_ORACLE_LOG_LEVEL."""
        from reputation_oracle.core.logging import configure_logging

        monkeypatch.setenv("REPUTATION_ORACLE_LOG_LEVEL", "ERROR")
        configure_logging(json_format=True)

        assert restore_root_logger.level == logging.ERROR

    def test_unknown_level_falls_back_to_info(self, clean_env, restore_root_logger):
        """An unknown level name means INFO."""
        from reputation_oracle.core.logging import configure_logging

        configure_logging("CHATTY", json_format=True)

        assert restore_root_logger.level == logging.INFO

    def test_log_file_is_json(self, clean_env, tmp_path, restore_root_logger):
        """File output is always JSON."""
        from reputation_oracle.core.logging import configure_logging, get_logger

        log_file = tmp_path / "miner.log"
        configure_logging("INFO", json_format=False, log_file=str(log_file))
        get_logger("reputation_oracle.test").info("Replayed %d steps", 18)
        for handler in restore_root_logger.handlers:
            handler.flush()

        assert len(restore_root_logger.handlers) == 2
        line = json.loads(log_file.read_text().strip().splitlines()[-1])
        assert line["message"] == "Replayed 18 steps"


# ============================================================================
# LedgerCallLogger Tests
# ============================================================================


class TestLedgerCallLogger:
    """Tests for compact ledger call logging."""

    def test_log_call(self, caplog):
        """Should log the method with summarized arguments."""
        from reputation_oracle.core.logging import LedgerCallLogger

        call_logger = LedgerCallLogger(logging.getLogger("test.ledger"))
        with caplog.at_level(logging.DEBUG, logger="test.ledger"):
            call_logger.log_call("submitRootHash", {"root_hash": b"\xab\xcd", "n_leaves": 4})

        record = caplog.records[-1]
        assert record.getMessage() == "Ledger call: submitRootHash"
        assert record.extra_data == {
            "method": "submitRootHash",
            "arguments": {"root_hash": "0xabcd", "n_leaves": 4},
        }

    def test_log_result(self, caplog):
        """Should report accepted and rejected calls."""
        from reputation_oracle.core.logging import LedgerCallLogger

        call_logger = LedgerCallLogger(logging.getLogger("test.ledger"))
        with caplog.at_level(logging.DEBUG, logger="test.ledger"):
            call_logger.log_result("invalidateHash", True)
            call_logger.log_result("respondToChallenge", False, "Challenge already answered")

        messages = [r.getMessage() for r in caplog.records]
        assert "Ledger result: invalidateHash -> accepted" in messages
        assert "Ledger result: respondToChallenge -> rejected (Challenge already answered)" in messages

    def test_summarize_long_lists(self):
        """Sibling lists are cut after a few items."""
        from reputation_oracle.core.logging import LedgerCallLogger

        summary = LedgerCallLogger()._summarize([bytes([i]) for i in range(7)])

        assert summary == ["0x00", "0x01", "0x02", "0x03", "... (3 more)"]

    def test_summarize_objects_and_strings(self):
        """Objects with to_dict are expanded and long strings truncated."""
        from reputation_oracle.core.logging import LedgerCallLogger
        from reputation_oracle.tree.merkle import MerkleProof

        call_logger = LedgerCallLogger()
        proof = MerkleProof(3, (b"\x01", b"\x02"))

        assert call_logger._summarize(proof) == {"index": 3, "siblings": ["0x01", "0x02"]}
        long = call_logger._summarize("x" * 500)
        assert len(long) == LedgerCallLogger.MAX_STRING + 3
        assert long.endswith("...")

    def test_summarize_long_payloads(self):
        """Justification payloads are cut like strings; hashes stay whole."""
        from reputation_oracle.core.logging import LedgerCallLogger

        call_logger = LedgerCallLogger()
        payload = call_logger._summarize(b"{" * 4000)

        assert len(payload) == LedgerCallLogger.MAX_STRING + 3
        assert payload.startswith("0x7b7b")
        assert call_logger._summarize(b"\xab" * 32) == "0x" + "ab" * 32
