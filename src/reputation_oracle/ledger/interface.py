# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""The external ledger a miner talks to.

Everything a miner learns about other miners, and everything it commits
to, goes through this interface. The ledger's clock is authoritative.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from ..dispute.models import Contest, CycleRecord, Submission, UserLock, Verdict
from ..reputation.models import CategoryTree, UpdateLogEntry
from ..tree.merkle import MerkleProof


class Ledger(ABC):
    """Abstract ledger hosting staking, submissions and dispute rounds."""

    # -------------------------------------------------------------------------
    # Clock and protocol constants
    # -------------------------------------------------------------------------

    @abstractmethod
    def now(self) -> int:
        """Current ledger timestamp in seconds."""
        pass

    @property
    @abstractmethod
    def mining_cycle_duration(self) -> int:
        pass

    @property
    @abstractmethod
    def challenge_window_seconds(self) -> int:
        pass

    @property
    @abstractmethod
    def min_stake(self) -> int:
        pass

    # -------------------------------------------------------------------------
    # Cycle state
    # -------------------------------------------------------------------------

    @abstractmethod
    def get_cycle_id(self) -> int:
        pass

    @abstractmethod
    def get_window_open_timestamp(self) -> int:
        pass

    @abstractmethod
    def get_accepted_state(self) -> tuple[bytes, int]:
        """Root hash and leaf count the current cycle starts from."""
        pass

    @abstractmethod
    def get_closed_update_log(self) -> list[UpdateLogEntry]:
        """The frozen log the current cycle must replay."""
        pass

    @abstractmethod
    def get_category_tree(self) -> CategoryTree:
        pass

    @abstractmethod
    def get_cycle_history(self) -> list[CycleRecord]:
        """Every completed cycle, oldest first."""
        pass

    # -------------------------------------------------------------------------
    # Staking
    # -------------------------------------------------------------------------

    @abstractmethod
    def deposit(self, sender: str, amount: int) -> UserLock:
        pass

    @abstractmethod
    def withdraw(self, sender: str, amount: int) -> UserLock:
        pass

    @abstractmethod
    def get_user_lock(self, participant: str) -> UserLock:
        pass

    # -------------------------------------------------------------------------
    # Submissions
    # -------------------------------------------------------------------------

    @abstractmethod
    def entry_used(self, miner: str, entry_index: int) -> bool:
        pass

    @abstractmethod
    def get_submissions(self) -> list[Submission]:
        """Unique submissions of the current cycle in submission order."""
        pass

    @abstractmethod
    def submit_root_hash(
        self, sender: str, root_hash: bytes, n_leaves: int, jrh: bytes, entry_index: int
    ) -> Submission:
        """Back a (root, n_leaves, jrh) claim with one stake entry.

        Raises:
            SubmissionWindowClosedError: If the window closed with submissions.
            EntryNotEligibleError: If the entry is not stake-backed or misses the target.
            EntryAlreadyUsedError: If the entry was already used this cycle.
        """
        pass

    # -------------------------------------------------------------------------
    # Disputes
    # -------------------------------------------------------------------------

    @abstractmethod
    def get_dispute_round(self, round_id: int) -> list[Contest]:
        """Contests of a round; empty once past the last round."""
        pass

    @abstractmethod
    def confirm_justification_root_hash(
        self,
        sender: str,
        round_id: int,
        contest_id: int,
        anchor_payload: bytes,
        anchor_proof: MerkleProof,
        newest_payload: bytes,
        newest_proof: MerkleProof,
    ) -> None:
        pass

    @abstractmethod
    def respond_to_binary_search_for_challenge(
        self,
        sender: str,
        round_id: int,
        contest_id: int,
        mid_index: int,
        leaf_hash: bytes,
        proof: MerkleProof,
    ) -> None:
        pass

    @abstractmethod
    def confirm_binary_search_result(
        self,
        sender: str,
        round_id: int,
        contest_id: int,
        agreed_payload: bytes,
        proof: MerkleProof,
    ) -> None:
        pass

    @abstractmethod
    def respond_to_challenge(
        self,
        sender: str,
        round_id: int,
        contest_id: int,
        payload: bytes,
        proof: MerkleProof,
    ) -> Verdict:
        pass

    @abstractmethod
    def invalidate_hash(self, round_id: int, contest_id: int) -> list[int]:
        """Eliminate every side of a contest that let its window lapse."""
        pass

    @abstractmethod
    def confirm_new_hash(self, round_id: int) -> Submission:
        """Accept the lone survivor and open the next cycle."""
        pass
