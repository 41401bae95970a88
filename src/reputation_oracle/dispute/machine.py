# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Client side of a contest, driven by polling the ledger.

Each call to ``advance`` re-reads the contest, performs at most one ledger
action, and reports where this side stands. Nothing is awaited: the
caller decides how often to poll, and the ledger clock decides deadlines.

    AWAITING_JRH -> JRH_CONFIRMED -> BINARY_SEARCHING -> AWAITING_CONFIRM
        -> AWAITING_CHALLENGE_RESPONSE -> SURVIVED | ELIMINATED

A missed deadline on this side is fatal and raised as
``DeadlineExpiredError``. A missed deadline on the opponent's side is
turned into its elimination via ``invalidate_hash``.
"""

from __future__ import annotations

import logging

from ..core.exceptions import DeadlineExpiredError
from ..core.logging import cycle_context
from ..ledger.interface import Ledger
from ..mining.faults import HONEST, Fault
from ..mining.justification import JustificationTree
from ..reputation.models import normalize_address
from .models import Contest, ContestPhase, ContestState, SideProgress

logger = logging.getLogger(__name__)


class DisputeStateMachine:
    """Defends one submission through every round of the bracket.

    Args:
        ledger: Ledger hosting the dispute.
        miner_id: Address acting for the submission.
        tree: Justification tree the submission committed to.
        submission_id: Ledger id of the defended submission.
        fault: Deviation to apply; only ``UNRESPONSIVE`` matters here.
    """

    def __init__(
        self,
        ledger: Ledger,
        miner_id: str,
        tree: JustificationTree,
        submission_id: int,
        fault: Fault = HONEST,
    ):
        self.ledger = ledger
        self.miner_id = normalize_address(miner_id)
        self.tree = tree
        self.submission_id = submission_id
        self.fault = fault
        self.state = ContestState.AWAITING_JRH
        self.acted = False

    def find_contest(self) -> Contest | None:
        """Latest contest containing this submission, or None before round 0."""
        found = None
        round_id = 0
        while contests := self.ledger.get_dispute_round(round_id):
            for contest in contests:
                if any(side.submission_id == self.submission_id for side in contest.sides):
                    found = contest
            round_id += 1
        return found

    def advance(self) -> ContestState:
        """Act once if this side owes an action, then return the new state.

        Raises:
            DeadlineExpiredError: If this side let its response window pass.
            ProtocolViolationError: If the ledger refused the action.
        """
        self.acted = False
        contest = self.find_contest()
        if contest is None:
            return self.state

        with cycle_context(self.ledger.get_cycle_id(), f"{contest.round_id}/{contest.index}"):
            side = contest.side_for(self.submission_id)
            if side.eliminated or contest.resolved:
                return self.refresh()

            now = self.ledger.now()
            deadline = contest.deadline(self.ledger.challenge_window_seconds)
            if now > deadline:
                if contest.owes_action(side):
                    self.state = ContestState.ELIMINATED
                    logger.error("Missed the response deadline %d (now %d)", deadline, now)
                    raise DeadlineExpiredError(
                        f"Response window of contest {contest.round_id}/{contest.index} has passed",
                        deadline,
                        now,
                    )
                eliminated = self.ledger.invalidate_hash(contest.round_id, contest.index)
                logger.info("Opponent missed its deadline, invalidated %s", eliminated)
                self.acted = True
                return self.refresh()

            if contest.owes_action(side):
                self._act(contest, side)
            return self.refresh()

    def _act(self, contest: Contest, side: SideProgress) -> None:
        round_id, contest_id = contest.round_id, contest.index
        phase = contest.phase

        if phase is ContestPhase.AWAITING_JRH:
            anchor_proof, newest_proof = self.tree.boundary_proofs()
            self.ledger.confirm_justification_root_hash(
                self.miner_id,
                round_id,
                contest_id,
                self.tree.payload(0),
                anchor_proof,
                self.tree.payload(self.tree.sentinel_position),
                newest_proof,
            )
            logger.info("Confirmed justification root %s", self.tree.root.hex()[:16])

        elif phase is ContestPhase.BINARY_SEARCH:
            mid = contest.mid
            self.ledger.respond_to_binary_search_for_challenge(
                self.miner_id, round_id, contest_id, mid, self.tree.leaf_hash(mid), self.tree.proof(mid)
            )
            logger.debug("Answered search step at %d within [%d, %d]", mid, contest.lower, contest.upper)

        elif not side.agreed_confirmed:
            self.ledger.confirm_binary_search_result(
                self.miner_id, round_id, contest_id, self.tree.payload(contest.lower), self.tree.proof(contest.lower)
            )
            logger.info("Confirmed agreed leaf %d; first disagreement at %d", contest.lower, contest.upper)

        else:
            if not self.fault.responds_to_challenge:
                logger.debug("Withholding challenge response")
                return
            verdict = self.ledger.respond_to_challenge(
                self.miner_id, round_id, contest_id, self.tree.payload(contest.upper), self.tree.proof(contest.upper)
            )
            if verdict:
                logger.info("Challenge response at %d accepted", contest.upper)
            else:
                logger.warning("Challenge response at %d rejected: %s", contest.upper, verdict.reason)

        self.acted = True

    def refresh(self) -> ContestState:
        """Re-read the contest and update ``state`` without acting."""
        contest = self.find_contest()
        if contest is not None:
            self.state = self._state_for(contest, contest.side_for(self.submission_id))
        return self.state

    def _state_for(self, contest: Contest, side: SideProgress) -> ContestState:
        if side.eliminated:
            return ContestState.ELIMINATED
        if contest.resolved:
            return ContestState.SURVIVED if contest.winner == self.submission_id else ContestState.ELIMINATED
        phase = contest.phase
        if phase is ContestPhase.AWAITING_JRH:
            return ContestState.JRH_CONFIRMED if side.jrh_confirmed else ContestState.AWAITING_JRH
        if phase is ContestPhase.BINARY_SEARCH:
            return ContestState.BINARY_SEARCHING
        if not side.agreed_confirmed:
            return ContestState.AWAITING_CONFIRM
        return ContestState.AWAITING_CHALLENGE_RESPONSE
