# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""In-memory reference ledger.

Hosts one update log, stake locks, submissions and the elimination bracket,
and verifies challenge responses with ``ChallengeVerifier``. The clock is a
plain integer moved by ``advance_time`` / ``set_time``, so a whole cycle
including timeouts can be simulated deterministically.

Contest timing: ``last_response_timestamp`` is set when a contest opens
and whenever it moves to a new step (both JRHs confirmed, a binary search
midpoint answered by both sides). Each side then has ``challenge_window_seconds``
to act. Past that, an action is refused with ``DeadlineExpiredError`` and
anybody may call ``invalidate_hash`` to eliminate the sides still owing one.
"""

from __future__ import annotations

import functools
import inspect
import logging
from collections.abc import Callable
from typing import Any, TypeVar

from ..core.config import get_config
from ..core.exceptions import (
    AlreadyRespondedError,
    DeadlineExpiredError,
    EntryAlreadyUsedError,
    EntryNotEligibleError,
    InvalidStateError,
    NotFoundError,
    ProofLengthMismatchError,
    ProtocolViolationError,
    ReputationOracleException,
    SubmissionWindowClosedError,
)
from ..core.logging import ledger_logger
from ..dispute.models import Contest, ContestPhase, CycleRecord, SideProgress, Submission, UserLock, Verdict
from ..dispute.verifier import ChallengeVerifier
from ..mining.submission import within_target
from ..reputation.models import CategoryTree, UpdateLogEntry, normalize_address
from ..reputation.rules import ReplayRules
from ..tree.merkle import MerkleProof, hash_leaf
from ..tree.patricia import EMPTY_ROOT
from .interface import Ledger

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def ledger_call(method: str) -> Callable[[F], F]:
    """Log a ledger method's arguments and whether it was accepted."""

    def decorator(func: F) -> F:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
            arguments = signature.bind(self, *args, **kwargs).arguments
            arguments.pop("self", None)
            ledger_logger.log_call(method, arguments)
            try:
                result = func(self, *args, **kwargs)
            except ReputationOracleException as e:
                ledger_logger.log_result(method, False, e.message)
                raise
            ledger_logger.log_result(method, True)
            return result

        return wrapper  # type: ignore[return-value]

    return decorator


class InMemoryLedger(Ledger):
    """Single-process ledger for tests and local simulation.

    Args:
        categories: Category hierarchy; an empty one if omitted.
        rules: Replay rules the verifier enforces; from config if omitted.
        mining_cycle_duration: Submission window length in seconds.
        challenge_window_seconds: Time each side has per contest step.
        min_stake: Stake backing one submission entry.
        start_time: Initial clock value; the first window opens here.
    """

    def __init__(
        self,
        categories: CategoryTree | None = None,
        rules: ReplayRules | None = None,
        mining_cycle_duration: int | None = None,
        challenge_window_seconds: int | None = None,
        min_stake: int | None = None,
        start_time: int = 0,
    ):
        config = get_config()
        self._categories = categories or CategoryTree()
        self._rules = rules or config.replay_rules
        self._cycle_duration = mining_cycle_duration or config.mining_cycle_duration
        self._challenge_window = challenge_window_seconds or config.challenge_window_seconds
        self._min_stake = min_stake or config.min_stake

        self._time = start_time
        self._cycle_id = 0
        self._window_open = start_time
        self._accepted: tuple[bytes, int] = (EMPTY_ROOT, 0)
        self._closed_log: list[UpdateLogEntry] = []
        self._pending_log: list[UpdateLogEntry] = []
        self._history: list[CycleRecord] = []

        self._locks: dict[str, UserLock] = {}
        self._slashed: dict[str, int] = {}

        self._submissions: list[Submission] = []
        self._used_entries: set[tuple[str, int]] = set()
        self._backing: dict[str, int] = {}
        self._rounds: list[list[Contest]] = []
        self._verifier: ChallengeVerifier | None = None

    # -------------------------------------------------------------------------
    # Clock and protocol constants
    # -------------------------------------------------------------------------

    def now(self) -> int:
        return self._time

    def advance_time(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError("Time cannot move backwards")
        self._time += seconds
        return self._time

    def set_time(self, timestamp: int) -> int:
        if timestamp < self._time:
            raise ValueError("Time cannot move backwards")
        self._time = timestamp
        return self._time

    @property
    def mining_cycle_duration(self) -> int:
        return self._cycle_duration

    @property
    def challenge_window_seconds(self) -> int:
        return self._challenge_window

    @property
    def min_stake(self) -> int:
        return self._min_stake

    @property
    def rules(self) -> ReplayRules:
        return self._rules

    # -------------------------------------------------------------------------
    # Cycle state and the update log
    # -------------------------------------------------------------------------

    def get_cycle_id(self) -> int:
        return self._cycle_id

    def get_window_open_timestamp(self) -> int:
        return self._window_open

    def get_accepted_state(self) -> tuple[bytes, int]:
        return self._accepted

    def get_closed_update_log(self) -> list[UpdateLogEntry]:
        return list(self._closed_log)

    def get_pending_update_log(self) -> list[UpdateLogEntry]:
        return list(self._pending_log)

    def get_category_tree(self) -> CategoryTree:
        return self._categories

    def get_cycle_history(self) -> list[CycleRecord]:
        return list(self._history)

    def add_category(self, category: int, parent: int | None = None) -> None:
        self._categories.add(category, parent)

    def add_log_entry(self, participant: str, amount: int, category: int, organization: str) -> UpdateLogEntry:
        """Append an entry to the log the next cycle will replay.

        ``nUpdates`` is fixed from the category tree as it stands now.
        Categories added later only ever append descendants, so the entry
        keeps expanding the same way.
        """
        half = self._categories.updates_per_half(category, amount)
        n_updates = half * (2 if self._rules.track_organization_totals else 1)
        n_previous = sum(entry.n_updates for entry in self._pending_log)
        entry = UpdateLogEntry(
            participant=participant,
            amount=amount,
            category=category,
            organization=organization,
            n_updates=n_updates,
            n_previous_updates=n_previous,
        )
        self._pending_log.append(entry)
        return entry

    def close_pending_log(self) -> list[UpdateLogEntry]:
        """Make the pending log the one the current cycle replays.

        Only allowed before anything was submitted this cycle. Used to seed
        a simulation without running an empty first cycle.
        """
        if self._submissions:
            raise InvalidStateError("Cannot change the closed log after submissions were made")
        self._closed_log = self._pending_log
        self._pending_log = []
        self._verifier = None
        return list(self._closed_log)

    @property
    def verifier(self) -> ChallengeVerifier:
        if self._verifier is None:
            root, n_leaves = self._accepted
            self._verifier = ChallengeVerifier(self._categories, self._closed_log, root, n_leaves, self._rules)
        return self._verifier

    # -------------------------------------------------------------------------
    # Staking
    # -------------------------------------------------------------------------

    @ledger_call("deposit")
    def deposit(self, sender: str, amount: int) -> UserLock:
        if amount <= 0:
            raise ValueError("Deposit must be positive")
        sender = normalize_address(sender)
        lock = self.get_user_lock(sender)
        lock = UserLock(lock.balance + amount, self._time, lock.lock_count + 1)
        self._locks[sender] = lock
        return lock

    @ledger_call("withdraw")
    def withdraw(self, sender: str, amount: int) -> UserLock:
        sender = normalize_address(sender)
        if sender in self._backing:
            raise ProtocolViolationError("Stake backs a submission of the current cycle")
        lock = self.get_user_lock(sender)
        if not 0 < amount <= lock.balance:
            raise ProtocolViolationError(f"Cannot withdraw {amount} from a balance of {lock.balance}")
        lock = UserLock(lock.balance - amount, lock.timestamp, lock.lock_count + 1)
        self._locks[sender] = lock
        return lock

    def get_user_lock(self, participant: str) -> UserLock:
        return self._locks.get(normalize_address(participant), UserLock(0, 0))

    def get_slashed(self, participant: str) -> int:
        """Total stake ``participant`` forfeited by backing eliminated submissions."""
        return self._slashed.get(normalize_address(participant), 0)

    # -------------------------------------------------------------------------
    # Submissions
    # -------------------------------------------------------------------------

    def entry_used(self, miner: str, entry_index: int) -> bool:
        return (normalize_address(miner), entry_index) in self._used_entries

    def get_submissions(self) -> list[Submission]:
        return list(self._submissions)

    def get_submission(self, submission_id: int) -> Submission:
        if not 0 <= submission_id < len(self._submissions):
            raise NotFoundError("submission", str(submission_id))
        return self._submissions[submission_id]

    def find_submission_id(self, miner: str) -> int | None:
        """Submission ``miner`` backs this cycle, if any."""
        return self._backing.get(normalize_address(miner))

    @ledger_call("submitRootHash")
    def submit_root_hash(
        self, sender: str, root_hash: bytes, n_leaves: int, jrh: bytes, entry_index: int
    ) -> Submission:
        sender = normalize_address(sender)
        elapsed = self._time - self._window_open
        if self._rounds or (elapsed >= self._cycle_duration and self._submissions):
            raise SubmissionWindowClosedError("Submission window is closed")

        lock = self.get_user_lock(sender)
        if not 1 <= entry_index <= lock.balance // self._min_stake:
            raise EntryNotEligibleError(f"Entry {entry_index} is not backed by stake")
        if lock.timestamp > self._window_open:
            raise EntryNotEligibleError("Stake was locked after the submission window opened")
        if (sender, entry_index) in self._used_entries:
            raise EntryAlreadyUsedError(sender, entry_index)
        if not within_target(sender, entry_index, root_hash, elapsed, self._cycle_duration):
            raise EntryNotEligibleError(f"Entry {entry_index} is above the acceptance target")

        submission = next((s for s in self._submissions if s.identity == (root_hash, n_leaves, jrh)), None)
        backing = self._backing.get(sender)
        if backing is not None and (submission is None or submission.submission_id != backing):
            raise ProtocolViolationError(f"{sender} already backs submission {backing}")

        if submission is None:
            submission = Submission(
                submission_id=len(self._submissions),
                root_hash=root_hash,
                n_leaves=n_leaves,
                jrh=jrh,
                first_submitter=sender,
                submitted_at=self._time,
            )
            self._submissions.append(submission)
            logger.info("New submission %d: root %s, %d leaves", submission.submission_id, root_hash.hex()[:16], n_leaves)
        submission.backers.append((sender, entry_index))
        self._used_entries.add((sender, entry_index))
        self._backing[sender] = submission.submission_id
        return submission

    # -------------------------------------------------------------------------
    # Bracket bookkeeping
    # -------------------------------------------------------------------------

    def _ensure_rounds(self) -> None:
        if self._rounds or not self._submissions:
            return
        window_close = self._window_open + self._cycle_duration
        if self._time < window_close:
            return
        opened = max(window_close, max(s.submitted_at for s in self._submissions))
        self._open_round([s.submission_id for s in self._submissions], opened)
        self._maybe_next_round()

    def _open_round(self, submission_ids: list[int], opened: int) -> None:
        round_id = len(self._rounds)
        upper = self.verifier.sentinel_position
        contests = []
        for index, start in enumerate(range(0, len(submission_ids), 2)):
            pair = submission_ids[start : start + 2]
            contests.append(
                Contest(
                    round_id=round_id,
                    index=index,
                    first=SideProgress(pair[0]),
                    second=SideProgress(pair[1]) if len(pair) > 1 else None,
                    lower=0,
                    upper=upper,
                    last_response_timestamp=opened,
                )
            )
        self._rounds.append(contests)
        logger.info("Opened dispute round %d with %d contests", round_id, len(contests))
        for contest in contests:
            self._finish(contest)

    def _finish(self, contest: Contest) -> bool:
        """Resolve ``contest`` if at most one side is left standing."""
        if contest.resolved:
            return True
        alive = [side for side in contest.sides if not side.eliminated]
        if not contest.is_bye and len(alive) > 1:
            return False
        for side in contest.sides:
            if side.eliminated:
                self._submissions[side.submission_id].eliminated = True
        contest.resolved = True
        contest.winner = alive[0].submission_id if alive else None
        contest.last_response_timestamp = self._time
        logger.info("Contest %d/%d resolved, winner %s", contest.round_id, contest.index, contest.winner)
        return True

    def _maybe_next_round(self) -> None:
        while self._rounds:
            current = self._rounds[-1]
            if not all(contest.resolved for contest in current):
                return
            if len(current) == 1 and current[0].is_bye:
                return
            winners = [c.winner for c in current if c.winner is not None]
            if not winners:
                logger.warning("Every submission of cycle %d was eliminated", self._cycle_id)
                return
            self._open_round(winners, self._time)

    def _contest(self, round_id: int, contest_id: int) -> Contest:
        self._ensure_rounds()
        if not 0 <= round_id < len(self._rounds) or not 0 <= contest_id < len(self._rounds[round_id]):
            raise NotFoundError("contest", f"{round_id}/{contest_id}")
        return self._rounds[round_id][contest_id]

    def _open_contest(self, round_id: int, contest_id: int) -> Contest:
        contest = self._contest(round_id, contest_id)
        if contest.resolved:
            raise InvalidStateError("Contest is already resolved", round_id, contest_id)
        deadline = contest.deadline(self._challenge_window)
        if self._time > deadline:
            raise DeadlineExpiredError(f"Response window of contest {round_id}/{contest_id} has passed", deadline, self._time)
        return contest

    def _side(self, contest: Contest, sender: str) -> SideProgress:
        submission_id = self._backing.get(normalize_address(sender))
        if submission_id is None:
            raise ProtocolViolationError("Sender backs no submission", contest.round_id, contest.index)
        try:
            side = contest.side_for(submission_id)
        except KeyError:
            raise ProtocolViolationError(
                f"Submission {submission_id} is not part of this contest", contest.round_id, contest.index
            ) from None
        if side.eliminated:
            raise InvalidStateError("Submission has been eliminated", contest.round_id, contest.index)
        return side

    def _check_proof(self, contest: Contest, proof: MerkleProof, position: int) -> None:
        expected = self.verifier.proof_length
        if len(proof.siblings) != expected:
            raise ProofLengthMismatchError(
                f"Proof has {len(proof.siblings)} siblings, expected {expected}", contest.round_id, contest.index
            )
        if proof.index != position:
            raise ProtocolViolationError(
                f"Proof is for leaf {proof.index}, expected {position}", contest.round_id, contest.index
            )

    # -------------------------------------------------------------------------
    # Disputes
    # -------------------------------------------------------------------------

    def get_dispute_round(self, round_id: int) -> list[Contest]:
        self._ensure_rounds()
        if round_id >= len(self._rounds):
            return []
        return list(self._rounds[round_id])

    def get_round_count(self) -> int:
        self._ensure_rounds()
        return len(self._rounds)

    @ledger_call("confirmJustificationRootHash")
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
        contest = self._open_contest(round_id, contest_id)
        side = self._side(contest, sender)
        if side.jrh_confirmed:
            raise AlreadyRespondedError("Justification root hash already confirmed", round_id, contest_id)
        submission = self._submissions[side.submission_id]
        try:
            self.verifier.check_boundary(
                submission.jrh,
                submission.root_hash,
                submission.n_leaves,
                anchor_payload,
                anchor_proof,
                newest_payload,
                newest_proof,
            )
        except ProtocolViolationError as e:
            e.details.update({"round_id": round_id, "contest_id": contest_id})
            raise
        side.jrh_confirmed = True
        if all(s.jrh_confirmed for s in contest.sides):
            contest.last_response_timestamp = self._time

    @ledger_call("respondToBinarySearchForChallenge")
    def respond_to_binary_search_for_challenge(
        self,
        sender: str,
        round_id: int,
        contest_id: int,
        mid_index: int,
        leaf_hash: bytes,
        proof: MerkleProof,
    ) -> None:
        contest = self._open_contest(round_id, contest_id)
        side = self._side(contest, sender)
        if contest.phase is not ContestPhase.BINARY_SEARCH:
            raise InvalidStateError(f"Contest is in phase {contest.phase.value}", round_id, contest_id)
        if mid_index != contest.mid:
            raise ProtocolViolationError(f"Probe is at {contest.mid}, not {mid_index}", round_id, contest_id)
        if side.search_mid == contest.mid:
            raise AlreadyRespondedError(f"Already answered the midpoint at {mid_index}", round_id, contest_id)
        self._check_proof(contest, proof, mid_index)
        if not proof.verify(leaf_hash, self._submissions[side.submission_id].jrh):
            raise ProtocolViolationError("Leaf hash is not in the justification tree", round_id, contest_id)

        side.search_mid = mid_index
        side.search_hash = leaf_hash
        if all(s.search_mid == mid_index for s in contest.sides):
            if len({s.search_hash for s in contest.sides}) == 1:
                contest.lower = mid_index
            else:
                contest.upper = mid_index
            contest.last_response_timestamp = self._time
            logger.debug(
                "Contest %d/%d narrowed to [%d, %d]", round_id, contest_id, contest.lower, contest.upper
            )

    @ledger_call("confirmBinarySearchResult")
    def confirm_binary_search_result(
        self,
        sender: str,
        round_id: int,
        contest_id: int,
        agreed_payload: bytes,
        proof: MerkleProof,
    ) -> None:
        contest = self._open_contest(round_id, contest_id)
        side = self._side(contest, sender)
        if contest.phase is not ContestPhase.CHALLENGE:
            raise InvalidStateError("Binary search has not converged", round_id, contest_id)
        if side.agreed_confirmed:
            raise AlreadyRespondedError("Binary search result already confirmed", round_id, contest_id)
        self._check_proof(contest, proof, contest.lower)
        if not proof.verify(hash_leaf(agreed_payload), self._submissions[side.submission_id].jrh):
            raise ProtocolViolationError("Agreed leaf is not in the justification tree", round_id, contest_id)
        side.agreed_confirmed = True
        side.agreed_payload = agreed_payload

    @ledger_call("respondToChallenge")
    def respond_to_challenge(
        self,
        sender: str,
        round_id: int,
        contest_id: int,
        payload: bytes,
        proof: MerkleProof,
    ) -> Verdict:
        contest = self._open_contest(round_id, contest_id)
        side = self._side(contest, sender)
        if side.challenge_responded:
            raise AlreadyRespondedError("Challenge already answered", round_id, contest_id)
        if not side.agreed_confirmed or side.agreed_payload is None:
            raise InvalidStateError("Confirm the binary search result first", round_id, contest_id)
        self._check_proof(contest, proof, contest.upper)

        if proof.verify(hash_leaf(payload), self._submissions[side.submission_id].jrh):
            verdict = self.verifier.verify_response(contest.upper, side.agreed_payload, payload)
        else:
            verdict = Verdict(False, "challenge leaf is not in the justification tree")
        side.challenge_responded = True
        side.challenge_valid = verdict.valid
        if not verdict:
            side.eliminated = True
            logger.warning(
                "Submission %d eliminated in contest %d/%d: %s",
                side.submission_id,
                round_id,
                contest_id,
                verdict.reason,
            )

        if all(s.challenge_responded for s in contest.sides):
            contest.challenge_rounds_completed += 1
            survivors = [s for s in contest.sides if not s.eliminated]
            if len(survivors) > 1:
                # Both replays check out; the earlier submission keeps its place.
                later = max(survivors, key=lambda s: s.submission_id)
                later.eliminated = True
                logger.warning("Both responses valid in contest %d/%d, keeping the earlier submission", round_id, contest_id)
        if self._finish(contest):
            self._maybe_next_round()
        return verdict

    @ledger_call("invalidateHash")
    def invalidate_hash(self, round_id: int, contest_id: int) -> list[int]:
        contest = self._contest(round_id, contest_id)
        if contest.resolved:
            raise InvalidStateError("Contest is already resolved", round_id, contest_id)
        deadline = contest.deadline(self._challenge_window)
        if self._time <= deadline:
            raise InvalidStateError(f"Response window is open until {deadline}", round_id, contest_id)

        eliminated = []
        for side in contest.sides:
            if contest.owes_action(side):
                side.eliminated = True
                eliminated.append(side.submission_id)
        logger.info("Invalidated submissions %s in contest %d/%d", eliminated, round_id, contest_id)
        if self._finish(contest):
            self._maybe_next_round()
        return eliminated

    @ledger_call("confirmNewHash")
    def confirm_new_hash(self, round_id: int) -> Submission:
        self._ensure_rounds()
        if round_id != len(self._rounds) - 1:
            raise InvalidStateError(f"Round {round_id} is not the last dispute round", round_id)
        final = self._rounds[round_id]
        if len(final) != 1 or not final[0].is_bye or final[0].winner is None:
            raise InvalidStateError("More than one submission is still standing", round_id)
        deadline = final[0].deadline(self._challenge_window)
        if self._time <= deadline:
            raise InvalidStateError(f"Survivor can still be challenged until {deadline}", round_id)

        winner = self._submissions[final[0].winner]
        self._history.append(
            CycleRecord(
                cycle_id=self._cycle_id,
                log=list(self._closed_log),
                root_hash=winner.root_hash,
                n_leaves=winner.n_leaves,
                confirmed_at=self._time,
            )
        )
        self._slash_eliminated()
        logger.info(
            "Cycle %d confirmed root %s with %d leaves",
            self._cycle_id,
            winner.root_hash.hex()[:16],
            winner.n_leaves,
        )
        self._open_next_cycle(winner)
        return winner

    def _slash_eliminated(self) -> None:
        for submission in self._submissions:
            if not submission.eliminated:
                continue
            for miner, _ in submission.backers:
                lock = self._locks.get(miner)
                if lock is None or lock.balance == 0:
                    continue
                self._slashed[miner] = self._slashed.get(miner, 0) + lock.balance
                self._locks[miner] = UserLock(0, lock.timestamp, lock.lock_count)
                logger.warning("Slashed %d from %s", lock.balance, miner)

    def _open_next_cycle(self, winner: Submission) -> None:
        self._cycle_id += 1
        self._window_open = self._time
        self._accepted = (winner.root_hash, winner.n_leaves)
        self._closed_log = self._pending_log
        self._pending_log = []
        self._submissions = []
        self._used_entries = set()
        self._backing = {}
        self._rounds = []
        self._verifier = None
