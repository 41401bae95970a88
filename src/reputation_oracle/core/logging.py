# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Structured logging configuration for the reputation oracle.

Provides:
- JSON formatter for unattended miners (machine-parseable)
- Standard formatter for development (human-readable)
- Cycle context so every line carries the mining cycle it belongs to
- Compact ledger call logging (proofs are summarized, not dumped)
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Generator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

# Context variables for the cycle and contest currently being worked on
_cycle_id: ContextVar[int | None] = ContextVar("cycle_id", default=None)
_contest_id: ContextVar[str | None] = ContextVar("contest_id", default=None)


def get_cycle_id() -> int | None:
    """Get the mining cycle bound to the current context."""
    return _cycle_id.get()


def get_contest_id() -> str | None:
    """Get the contest (``round:index``) bound to the current context."""
    return _contest_id.get()


@contextmanager
def cycle_context(cycle_id: int, contest_id: str | None = None) -> Generator[int, None, None]:
    """Context manager binding log lines to a mining cycle.

    Args:
        cycle_id: Mining cycle being worked on.
        contest_id: Optional contest identifier within that cycle.

    Yields:
        The cycle id being used.

    Example:
        with cycle_context(3, "0:1"):
            logger.info("Responding to challenge")  # includes cycle=3 contest=0:1
    """
    cycle_token = _cycle_id.set(cycle_id)
    contest_token = _contest_id.set(contest_id)
    try:
        yield cycle_id
    finally:
        _contest_id.reset(contest_token)
        _cycle_id.reset(cycle_token)


class JSONFormatter(logging.Formatter):
    """JSON log formatter for production environments.

    Includes the cycle and contest ids when present in context.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        cycle_id = get_cycle_id()
        if cycle_id is not None:
            log_data["cycle_id"] = cycle_id
        contest_id = get_contest_id()
        if contest_id:
            log_data["contest_id"] = contest_id

        # Add source location for warnings and errors
        if record.levelno >= logging.WARNING:
            log_data["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_data"):
            log_data["extra"] = record.extra_data

        return json.dumps(log_data, default=str)


class StandardFormatter(logging.Formatter):
    """Standard log formatter for development.

    Human-readable format with colors for terminal output.
    """

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"
    CONTEXT_COLOR = "\033[90m"  # Gray

    def __init__(self, use_colors: bool = True):
        super().__init__(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        self.use_colors = use_colors and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        # Copy so other handlers see the original record
        record = logging.makeLogRecord(record.__dict__)

        cycle_id = get_cycle_id()
        if cycle_id is not None:
            label = f"cycle {cycle_id}"
            contest_id = get_contest_id()
            if contest_id:
                label += f" contest {contest_id}"
            if self.use_colors:
                prefix = f"{self.CONTEXT_COLOR}[{label}]{self.RESET} "
            else:
                prefix = f"[{label}] "
            record.msg = prefix + str(record.msg)

        if self.use_colors:
            color = self.COLORS.get(record.levelname, "")
            record.levelname = f"{color}{record.levelname}{self.RESET}"

        return super().format(record)


def configure_logging(
    level: str | int = "INFO",
    json_format: bool | None = None,
    log_file: str | None = None,
) -> None:
    """Configure logging for a miner process.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format (auto-detect if None)
        log_file: Optional file to write logs to

    Environment variables:
        REPUTATION_ORACLE_LOG_LEVEL: Override log level
        REPUTATION_ORACLE_LOG_FORMAT: Log format ("json" or "text", auto-detect if unset)
        REPUTATION_ORACLE_LOG_FILE: Log file path
    """
    from .config import get_config

    config = get_config()

    level = config.log_level if level == "INFO" else level
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    if json_format is None:
        format_env = config.log_format.lower()
        if format_env == "json":
            json_format = True
        elif format_env == "text":
            json_format = False
        else:
            # Auto-detect: use JSON if not in a terminal
            json_format = not sys.stderr.isatty()

    log_file = config.log_file if log_file is None else log_file

    formatter: logging.Formatter
    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = StandardFormatter()

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        # Always use JSON for file output
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name."""
    return logging.getLogger(name)


class LedgerCallLogger:
    """Logger for calls made against the ledger.

    Byte strings are rendered as hex and long sibling lists are summarized,
    so a single challenge response does not flood the log.
    """

    MAX_LIST_ITEMS = 4
    MAX_STRING = 200

    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or logging.getLogger("reputation_oracle.ledger")

    def log_call(
        self,
        method: str,
        arguments: dict[str, Any],
        level: int = logging.DEBUG,
    ) -> None:
        """Log a ledger call with summarized arguments."""
        self.logger.log(
            level,
            f"Ledger call: {method}",
            extra={
                "extra_data": {
                    "method": method,
                    "arguments": self._summarize(arguments),
                }
            },
        )

    def log_result(
        self,
        method: str,
        success: bool,
        reason: str | None = None,
        level: int = logging.DEBUG,
    ) -> None:
        """Log the outcome of a ledger call."""
        status = "accepted" if success else "rejected"
        msg = f"Ledger result: {method} -> {status}"
        if reason:
            msg += f" ({reason})"

        self.logger.log(
            level,
            msg,
            extra={
                "extra_data": {
                    "method": method,
                    "success": success,
                    "reason": reason,
                }
            },
        )

    def _summarize(self, data: Any) -> Any:
        """Recursively convert arguments into a compact, JSON-friendly form."""
        if isinstance(data, dict):
            return {key: self._summarize(value) for key, value in data.items()}
        elif isinstance(data, bytes):
            return self._summarize("0x" + data.hex())
        elif isinstance(data, (list, tuple)):
            if len(data) > self.MAX_LIST_ITEMS:
                head = [self._summarize(item) for item in data[: self.MAX_LIST_ITEMS]]
                return head + [f"... ({len(data) - self.MAX_LIST_ITEMS} more)"]
            return [self._summarize(item) for item in data]
        elif hasattr(data, "to_dict"):
            return self._summarize(data.to_dict())
        elif isinstance(data, str) and len(data) > self.MAX_STRING:
            return data[: self.MAX_STRING] + "..."
        else:
            return data


# Default ledger call logger
ledger_logger = LedgerCallLogger()
