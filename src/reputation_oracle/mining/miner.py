# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Reputation miner: replay, commit, submit and defend one cycle at a time.

Typical cycle, step by step:

    miner.process_cycle()       # replay the closed log, build the JRH tree
    miner.submit_root_hash()    # back it with a qualifying stake entry
    miner.dispute()             # poll until SURVIVED or ELIMINATED
    miner.confirm_new_hash()    # once the lone survivor's window elapsed

or unattended, where ``wait`` sleeps until the ledger may have moved on:

    while True:
        miner.mine(wait)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import StrEnum
from typing import Any

from ..core.config import get_config
from ..core.exceptions import (
    ConfigException,
    DeadlineExpiredError,
    EntryNotEligibleError,
    InvalidStateError,
    ProtocolViolationError,
    StaleRootError,
    SubmissionWindowClosedError,
)
from ..core.logging import cycle_context
from ..dispute.machine import DisputeStateMachine
from ..dispute.models import Contest, ContestState, Submission
from ..ledger.interface import Ledger
from ..reputation.checkpoint import CheckpointBackend
from ..reputation.models import CellProof, ReputationCell, ReputationKey
from ..reputation.replay import ReplayEngine, ReplayResult
from ..reputation.rules import ReplayRules
from ..reputation.store import ReputationStore
from .faults import HONEST, Fault
from .justification import JustificationTree
from .submission import SubmissionSelector

logger = logging.getLogger(__name__)


class MinerAction(StrEnum):
    """What one ``ReputationMiner.poll`` did."""

    IDLE = "idle"
    PROCESSED = "processed"
    SUBMITTED = "submitted"
    DISPUTED = "disputed"
    CONFIRMED = "confirmed"
    ADOPTED = "adopted"


def final_survivor(ledger: Ledger) -> Contest | None:
    """The resolved lone bye that closes the bracket, once there is one."""
    last: list[Contest] = []
    round_id = 0
    while contests := ledger.get_dispute_round(round_id):
        last = contests
        round_id += 1
    if len(last) == 1 and last[0].is_bye and last[0].winner is not None:
        return last[0]
    return None


class ReputationMiner:
    """Keeps a local reputation store in step with the ledger.

    Args:
        ledger: Ledger to mine against.
        miner_id: Staking address; ``REPUTATION_ORACLE_MINER_ID`` if omitted.
        fault: Deviation to apply; ``HONEST`` for a correct miner.
        checkpoints: Where accepted states are saved, if anywhere.
        rules: Replay rules; from config if omitted.
    """

    def __init__(
        self,
        ledger: Ledger,
        miner_id: str | None = None,
        fault: Fault = HONEST,
        checkpoints: CheckpointBackend | None = None,
        rules: ReplayRules | None = None,
    ):
        config = get_config()
        miner_id = miner_id or config.miner_id
        if not miner_id:
            raise ConfigException("No miner id configured", ["REPUTATION_ORACLE_MINER_ID"])

        self.ledger = ledger
        self.fault = fault
        self.checkpoints = checkpoints
        self.rules = rules or config.replay_rules
        self.selector = SubmissionSelector(ledger, miner_id)
        self.miner_id = self.selector.miner_id

        self.store = ReputationStore()
        self.result: ReplayResult | None = None
        self.tree: JustificationTree | None = None
        self.submission: Submission | None = None
        self.machine: DisputeStateMachine | None = None
        self.cycle_id: int | None = None
        self.outcome: ContestState | None = None
        self.last_confirmed: Submission | None = None
        self._refused = False

    # -------------------------------------------------------------------------
    # Sync
    # -------------------------------------------------------------------------

    def sync(self, save_states: bool = False) -> int:
        """Bring the local store up to the ledger's accepted state.

        Loads a checkpoint of the accepted root if one exists, otherwise
        replays every completed cycle after the last one whose root matches
        local state. Returns the number of cycles replayed.
        """
        accepted_root, _ = self.ledger.get_accepted_state()
        if self.store.root_hash == accepted_root:
            return 0
        if self.checkpoints is not None and self.checkpoints.exists(accepted_root):
            self.store = self.checkpoints.load(accepted_root)
            logger.info("Loaded accepted state %s from checkpoint", accepted_root.hex()[:16])
            return 0

        history = self.ledger.get_cycle_history()
        start = 0
        for i, record in enumerate(history):
            if record.root_hash == self.store.root_hash:
                start = i + 1
        if start == 0:
            self.store = ReputationStore()

        engine = ReplayEngine(self.ledger.get_category_tree(), self.rules)
        for record in history[start:]:
            with cycle_context(record.cycle_id):
                result = engine.replay(self.store, record.log)
                if (result.root_hash, result.n_leaves) != (record.root_hash, record.n_leaves):
                    logger.warning(
                        "Local replay of cycle %d gives %s, ledger accepted %s",
                        record.cycle_id,
                        result.root_hash.hex()[:16],
                        record.root_hash.hex()[:16],
                    )
                    if self.checkpoints is not None and self.checkpoints.exists(record.root_hash):
                        self.store = self.checkpoints.load(record.root_hash)
                        continue
                self.store = result.store
                if save_states and self.checkpoints is not None:
                    self.checkpoints.save(self.store)
        self._prune()
        logger.info("Synced %d cycles, now at %s", len(history) - start, self.store.root_hash.hex()[:16])
        return len(history) - start

    # -------------------------------------------------------------------------
    # One cycle
    # -------------------------------------------------------------------------

    def process_cycle(self) -> ReplayResult:
        """Replay the current cycle's closed log on top of the accepted state.

        Raises:
            StaleRootError: If the accepted state cannot be reconstructed locally.
            MalformedLogEntryError: If the closed log cannot be replayed.
        """
        self.cycle_id = self.ledger.get_cycle_id()
        accepted_root, _ = self.ledger.get_accepted_state()
        if self.store.root_hash != accepted_root:
            self.sync()
        if self.store.root_hash != accepted_root:
            raise StaleRootError("0x" + accepted_root.hex())

        with cycle_context(self.cycle_id):
            engine = ReplayEngine(self.ledger.get_category_tree(), self.rules, self.fault)
            self.result = engine.replay(self.store, self.ledger.get_closed_update_log())
            self.tree = JustificationTree.build(self.result, self.fault)
        self.submission = None
        self.machine = None
        self.outcome = None
        self._refused = False
        return self.result

    def _require_result(self) -> tuple[ReplayResult, JustificationTree]:
        if self.result is None or self.tree is None:
            raise InvalidStateError("No cycle has been processed")
        return self.result, self.tree

    @property
    def root_hash(self) -> bytes:
        return self._require_result()[0].root_hash

    @property
    def n_leaves(self) -> int:
        """Leaf count this miner claims, which a faulty miner may misreport."""
        return self.fault.adjust_n_leaves(self._require_result()[0].n_leaves)

    @property
    def jrh(self) -> bytes:
        return self._require_result()[1].root

    def get_entry_index(self, start_index: int = 1) -> int:
        return self.selector.get_entry_index(self.root_hash, start_index)

    def submit_root_hash(self, entry_index: int | None = None) -> Submission:
        """Submit the processed cycle and prepare to defend it.

        Raises:
            EntryNotEligibleError: If no entry qualifies (or ``entry_index`` does not).
            SubmissionWindowClosedError: If the window is closed.
        """
        _, tree = self._require_result()
        with cycle_context(self.ledger.get_cycle_id()):
            submission = self.selector.submit(self.root_hash, self.n_leaves, self.jrh, entry_index)
        if self.machine is None or self.machine.submission_id != submission.submission_id:
            self.machine = DisputeStateMachine(
                self.ledger, self.miner_id, tree, submission.submission_id, self.fault
            )
        self.submission = submission
        return submission

    # -------------------------------------------------------------------------
    # Disputes
    # -------------------------------------------------------------------------

    def _require_machine(self) -> DisputeStateMachine:
        if self.machine is None:
            raise InvalidStateError("Nothing was submitted this cycle")
        return self.machine

    def find_my_contest(self) -> Contest | None:
        """The (latest) contest holding this miner's submission."""
        return self._require_machine().find_contest()

    def dispute(self) -> ContestState:
        """Advance this miner's contest by at most one action."""
        return self._require_machine().advance()

    @property
    def contest_state(self) -> ContestState | None:
        return self.machine.state if self.machine is not None else None

    def confirm_new_hash(self, round_id: int | None = None) -> Submission:
        """Confirm the surviving submission and adopt the new accepted state."""
        if round_id is None:
            contest = self.find_my_contest()
            if contest is None:
                raise InvalidStateError("Dispute rounds have not started")
            round_id = contest.round_id
        self.settle()
        winner = self.ledger.confirm_new_hash(round_id)
        self.adopt_accepted_state()
        return winner

    def settle(self) -> ContestState | None:
        """Record where this miner's submission stands, without acting."""
        if self.machine is not None:
            self.outcome = self.machine.refresh()
        return self.outcome

    def adopt_accepted_state(self) -> None:
        """Move to the ledger's newly accepted state after a confirmation."""
        if self.outcome is None:
            self.settle()
        accepted_root, accepted_n = self.ledger.get_accepted_state()
        if self.result is not None and (self.result.root_hash, self.result.n_leaves) == (accepted_root, accepted_n):
            self.store = self.result.store
        else:
            self.sync()
        if self.checkpoints is not None and self.store.root_hash == accepted_root:
            self.checkpoints.save(self.store)
        self._prune()
        self.result = self.tree = None
        self.submission = self.machine = None

    def _prune(self) -> None:
        keep = {record.root_hash for record in self.ledger.get_cycle_history()}
        self.store.prune_history(keep)

    # -------------------------------------------------------------------------
    # Unattended mining
    # -------------------------------------------------------------------------

    def poll(self, confirm: bool = True) -> MinerAction:
        """Do whatever the current cycle needs next, with at most one ledger write.

        Adopts a cycle someone else confirmed, processes a newly opened
        cycle, submits once an entry qualifies, defends the submission, and
        with ``confirm`` set confirms the cycle once the lone survivor's
        window has passed. Refused actions and missed deadlines are logged
        rather than raised; the ledger decides what they cost.

        Raises:
            StaleRootError: If the accepted state cannot be reconstructed locally.
            MalformedLogEntryError: If the closed log cannot be replayed.
        """
        if self.result is not None and self.cycle_id != self.ledger.get_cycle_id():
            self.adopt_accepted_state()
            logger.info("Cycle %d was confirmed, adopted the accepted state", self.cycle_id)
            return MinerAction.ADOPTED
        if self.result is None:
            self.process_cycle()
            return MinerAction.PROCESSED

        if self.submission is None:
            if self._try_submit():
                return MinerAction.SUBMITTED
        elif self._defend():
            return MinerAction.DISPUTED

        if confirm and self._confirm_if_due():
            return MinerAction.CONFIRMED
        return MinerAction.IDLE

    def mine(self, wait: Callable[[], Any], max_polls: int = 10_000) -> Submission | None:
        """Poll until the current cycle is confirmed, calling ``wait`` whenever idle.

        Returns the confirmed submission if this miner confirmed it.
        """
        return mine_together([self], wait, max_polls=max_polls)

    def _try_submit(self) -> bool:
        try:
            self.submit_root_hash()
        except (EntryNotEligibleError, SubmissionWindowClosedError) as e:
            logger.debug("Not submitting yet: %s", e.message)
            return False
        return True

    def _defend(self) -> bool:
        machine = self._require_machine()
        if machine.state is ContestState.ELIMINATED:
            return False
        if self._refused:
            machine.refresh()
            return False
        try:
            machine.advance()
        except DeadlineExpiredError:
            return False
        except ProtocolViolationError as e:
            logger.error("Ledger refused our dispute action: %s", e.message)
            self._refused = True
            return False
        return machine.acted

    def _confirm_if_due(self) -> bool:
        survivor = final_survivor(self.ledger)
        if survivor is None:
            return False
        if self.ledger.now() <= survivor.deadline(self.ledger.challenge_window_seconds):
            return False
        try:
            self.last_confirmed = self.confirm_new_hash(survivor.round_id)
        except InvalidStateError as e:
            logger.debug("Cycle not confirmable: %s", e.message)
            return False
        return True

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_reputation(self, key: ReputationKey, root: bytes | None = None) -> ReputationCell | None:
        return self.store.get(key, root)

    def historical_proof(self, key: ReputationKey, root: bytes | None = None) -> CellProof:
        """Prove ``key`` against ``root``, falling back to a saved checkpoint.

        Raises:
            StaleRootError: If neither the store nor a checkpoint holds the root.
        """
        try:
            return self.store.cell_proof(key, root)
        except StaleRootError:
            if root is None or self.checkpoints is None or not self.checkpoints.exists(root):
                raise
            return self.checkpoints.historical_proof(root, key)

    def participants_with_reputation(self, organization: str, category: int, root: bytes | None = None) -> list[str]:
        return self.store.participants_with_reputation(organization, category, root)


def mine_together(
    miners: list[ReputationMiner],
    wait: Callable[[], Any],
    confirm: bool = True,
    max_polls: int = 10_000,
) -> Submission | None:
    """Poll miners sharing one ledger until the current cycle is decided.

    Each pass polls every miner once; ``wait`` is called after a pass in
    which nobody did anything. With ``confirm`` the loop runs until the
    cycle is confirmed and every miner has adopted the new state, and
    returns the confirmed submission. Without it the loop stops as soon as
    the bracket is down to one survivor and returns that submission.

    Raises:
        InvalidStateError: If the cycle is not decided within ``max_polls`` passes.
    """
    ledger = miners[0].ledger
    cycle_id = ledger.get_cycle_id()
    winner: Submission | None = None

    for polls in range(1, max_polls + 1):
        acted = False
        for miner in miners:
            if ledger.get_cycle_id() != cycle_id and miner.result is None:
                continue
            action = miner.poll(confirm=confirm)
            if action is MinerAction.CONFIRMED:
                winner = miner.last_confirmed
            acted = acted or action is not MinerAction.IDLE

        if confirm:
            if ledger.get_cycle_id() != cycle_id and all(miner.result is None for miner in miners):
                logger.info("Cycle %d confirmed after %d polls", cycle_id, polls)
                return winner
        else:
            survivor = final_survivor(ledger)
            if survivor is not None:
                for miner in miners:
                    miner.settle()
                return ledger.get_submissions()[survivor.winner]
        if not acted:
            wait()

    raise InvalidStateError(f"Cycle {cycle_id} was not decided after {max_polls} polls")
