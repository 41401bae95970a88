# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Records describing submissions and contests as the ledger holds them."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from ..reputation.models import UpdateLogEntry


class ContestState(StrEnum):
    """Where this client's side of a contest stands."""

    AWAITING_JRH = "awaiting_jrh"
    JRH_CONFIRMED = "jrh_confirmed"
    BINARY_SEARCHING = "binary_searching"
    AWAITING_CONFIRM = "awaiting_confirm"
    AWAITING_CHALLENGE_RESPONSE = "awaiting_challenge_response"
    SURVIVED = "survived"
    ELIMINATED = "eliminated"


class ContestPhase(StrEnum):
    """Where the contest as a whole stands."""

    AWAITING_JRH = "awaiting_jrh"
    BINARY_SEARCH = "binary_search"
    CHALLENGE = "challenge"
    RESOLVED = "resolved"


@dataclass
class Submission:
    """A unique (root, n_leaves, jrh) claim and the miners backing it."""

    submission_id: int
    root_hash: bytes
    n_leaves: int
    jrh: bytes
    first_submitter: str
    submitted_at: int
    backers: list[tuple[str, int]] = field(default_factory=list)
    eliminated: bool = False

    @property
    def identity(self) -> tuple[bytes, int, bytes]:
        return self.root_hash, self.n_leaves, self.jrh

    def to_dict(self) -> dict[str, Any]:
        return {
            "submission_id": self.submission_id,
            "root_hash": "0x" + self.root_hash.hex(),
            "n_leaves": self.n_leaves,
            "jrh": "0x" + self.jrh.hex(),
            "first_submitter": self.first_submitter,
            "submitted_at": self.submitted_at,
            "backers": [{"miner": m, "entry_index": e} for m, e in self.backers],
            "eliminated": self.eliminated,
        }


@dataclass
class SideProgress:
    """One submission's progress through a contest."""

    submission_id: int
    jrh_confirmed: bool = False
    search_mid: int | None = None
    search_hash: bytes | None = None
    agreed_confirmed: bool = False
    agreed_payload: bytes | None = None
    challenge_responded: bool = False
    challenge_valid: bool | None = None
    eliminated: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "submission_id": self.submission_id,
            "jrh_confirmed": self.jrh_confirmed,
            "search_mid": self.search_mid,
            "agreed_confirmed": self.agreed_confirmed,
            "challenge_responded": self.challenge_responded,
            "challenge_valid": self.challenge_valid,
            "eliminated": self.eliminated,
        }


@dataclass
class Contest:
    """A pairing within a round; ``second`` is None for a bye."""

    round_id: int
    index: int
    first: SideProgress
    second: SideProgress | None
    lower: int
    upper: int
    last_response_timestamp: int
    challenge_rounds_completed: int = 0
    resolved: bool = False
    winner: int | None = None

    @property
    def is_bye(self) -> bool:
        return self.second is None

    @property
    def sides(self) -> list[SideProgress]:
        return [self.first] if self.second is None else [self.first, self.second]

    @property
    def mid(self) -> int:
        """Next position to query: ``lower + ceil((upper - lower) / 2)``."""
        return self.lower + (self.upper - self.lower + 1) // 2

    @property
    def search_converged(self) -> bool:
        return self.upper - self.lower <= 1

    @property
    def phase(self) -> ContestPhase:
        if self.resolved:
            return ContestPhase.RESOLVED
        if not all(side.jrh_confirmed for side in self.sides):
            return ContestPhase.AWAITING_JRH
        if not self.search_converged:
            return ContestPhase.BINARY_SEARCH
        return ContestPhase.CHALLENGE

    def side_for(self, submission_id: int) -> SideProgress:
        for side in self.sides:
            if side.submission_id == submission_id:
                return side
        raise KeyError(submission_id)

    def opponent_of(self, submission_id: int) -> SideProgress | None:
        for side in self.sides:
            if side.submission_id != submission_id:
                return side
        return None

    def owes_action(self, side: SideProgress) -> bool:
        """Whether ``side`` is the one holding the contest up."""
        if self.resolved or side.eliminated:
            return False
        phase = self.phase
        if phase is ContestPhase.AWAITING_JRH:
            return not side.jrh_confirmed
        if phase is ContestPhase.BINARY_SEARCH:
            return side.search_mid != self.mid
        return not side.agreed_confirmed or not side.challenge_responded

    def deadline(self, window: int) -> int:
        return self.last_response_timestamp + window

    def to_dict(self) -> dict[str, Any]:
        return {
            "round_id": self.round_id,
            "index": self.index,
            "phase": self.phase.value,
            "first": self.first.to_dict(),
            "second": self.second.to_dict() if self.second else None,
            "lower": self.lower,
            "upper": self.upper,
            "last_response_timestamp": self.last_response_timestamp,
            "challenge_rounds_completed": self.challenge_rounds_completed,
            "resolved": self.resolved,
            "winner": self.winner,
        }


@dataclass(frozen=True)
class UserLock:
    """Staked balance of one miner."""

    balance: int
    timestamp: int
    lock_count: int = 0


@dataclass(frozen=True)
class Verdict:
    """Outcome of checking one side's challenge response or boundary proofs."""

    valid: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.valid


@dataclass(frozen=True)
class CycleRecord:
    """A completed mining cycle as the ledger remembers it."""

    cycle_id: int
    log: list[UpdateLogEntry]
    root_hash: bytes
    n_leaves: int
    confirmed_at: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "cycle_id": self.cycle_id,
            "log": [entry.to_dict() for entry in self.log],
            "root_hash": "0x" + self.root_hash.hex(),
            "n_leaves": self.n_leaves,
            "confirmed_at": self.confirmed_at,
        }
