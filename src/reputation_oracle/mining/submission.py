# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Choosing which stake entry to submit a root hash with.

Each ``min_stake`` of locked stake is one entry. An entry may be used
once per cycle, and only once its hash falls under a target that grows
linearly from zero to the maximum over the submission window. Once the
window has passed with nobody submitting, any eligible entry will do.
"""

from __future__ import annotations

import hashlib
import logging

from ..core.exceptions import EntryNotEligibleError
from ..dispute.models import Submission
from ..ledger.interface import Ledger
from ..reputation.models import normalize_address

logger = logging.getLogger(__name__)

MAX_TARGET = 2**256 - 1


def entry_hash(miner_id: str, entry_index: int, root_hash: bytes) -> bytes:
    """``H(miner (20) || entry_index (32) || root_hash (32))``."""
    miner = bytes.fromhex(normalize_address(miner_id)[2:])
    return hashlib.sha256(miner + entry_index.to_bytes(32, "big") + root_hash).digest()


def acceptance_target(elapsed: int, cycle_duration: int) -> int:
    """Target an entry hash must fall under, ``elapsed`` seconds into the window."""
    if elapsed >= cycle_duration:
        return MAX_TARGET
    return max(0, elapsed) * MAX_TARGET // cycle_duration


def within_target(miner_id: str, entry_index: int, root_hash: bytes, elapsed: int, cycle_duration: int) -> bool:
    if elapsed >= cycle_duration:
        return True
    target = acceptance_target(elapsed, cycle_duration)
    return int.from_bytes(entry_hash(miner_id, entry_index, root_hash), "big") < target


class SubmissionSelector:
    """Finds and submits qualifying entries for one miner."""

    def __init__(self, ledger: Ledger, miner_id: str):
        self.ledger = ledger
        self.miner_id = normalize_address(miner_id)

    def max_entries(self) -> int:
        return self.ledger.get_user_lock(self.miner_id).balance // self.ledger.min_stake

    def submission_possible(self, entry_index: int, root_hash: bytes) -> bool:
        """Whether the ledger would accept ``entry_index`` right now."""
        if entry_index < 1:
            raise ValueError("Entry indices start at 1")

        window_open = self.ledger.get_window_open_timestamp()
        elapsed = self.ledger.now() - window_open
        duration = self.ledger.mining_cycle_duration
        if elapsed >= duration and self.ledger.get_submissions():
            return False

        lock = self.ledger.get_user_lock(self.miner_id)
        if entry_index > lock.balance // self.ledger.min_stake:
            return False
        if window_open < lock.timestamp:
            return False
        if self.ledger.entry_used(self.miner_id, entry_index):
            return False
        return within_target(self.miner_id, entry_index, root_hash, elapsed, duration)

    def candidate_entries(self, root_hash: bytes) -> list[int]:
        """Every entry that would be accepted now."""
        return [i for i in range(1, self.max_entries() + 1) if self.submission_possible(i, root_hash)]

    def get_entry_index(self, root_hash: bytes, start_index: int = 1) -> int:
        """First qualifying entry at or after ``start_index``.

        Raises:
            EntryNotEligibleError: If no entry qualifies.
        """
        for index in range(start_index, self.max_entries() + 1):
            if self.submission_possible(index, root_hash):
                return index
        raise EntryNotEligibleError("No valid entry for submission found")

    def submit(
        self, root_hash: bytes, n_leaves: int, jrh: bytes, entry_index: int | None = None
    ) -> Submission:
        """Submit with ``entry_index``, or the first qualifying entry.

        Failures are raised as typed errors and never retried here; the
        caller has to re-read the window state first.
        """
        if entry_index is None:
            entry_index = self.get_entry_index(root_hash)
        submission = self.ledger.submit_root_hash(self.miner_id, root_hash, n_leaves, jrh, entry_index)
        logger.info(
            "Submitted root %s (%d leaves) with entry %d",
            root_hash.hex()[:16],
            n_leaves,
            entry_index,
        )
        return submission
