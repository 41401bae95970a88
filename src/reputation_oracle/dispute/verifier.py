# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Independent checks of justification leaves.

This is what the ledger runs on a challenge response. Given the leaf both
sides agreed on and one side's leaf at the first disagreement, it
recomputes the step from the agreed state alone: the expected key from the
log, the expected cell from the replay rules, and the expected roots from
the submitted proofs. Nothing in it trusts the side being checked.
"""

from __future__ import annotations

import logging

from ..core.exceptions import (
    MalformedLogEntryError,
    ProofLengthMismatchError,
    ProofVerificationError,
    ProtocolViolationError,
)
from ..mining.justification import GENESIS_PREV, AnchorLeaf, NewestLeaf, decode_leaf
from ..reputation.models import CategoryTree, PlannedUpdate, ReputationCell, StepKind, StepWitness, UpdateLogEntry
from ..reputation.rules import (
    ReplayRules,
    clamp,
    compute_delta,
    decay,
    expand_entry,
    locate_update,
    total_steps,
    validate_log,
)
from ..tree.merkle import MerkleProof, hash_leaf, proof_length
from ..tree.patricia import InclusionProof, compute_root, compute_root_with_insert, compute_root_with_update
from .models import Verdict

logger = logging.getLogger(__name__)


class ChallengeVerifier:
    """Verifies boundary proofs and challenge responses for one cycle."""

    def __init__(
        self,
        categories: CategoryTree,
        log: list[UpdateLogEntry],
        anchor_root: bytes,
        anchor_n_leaves: int,
        rules: ReplayRules | None = None,
    ):
        validate_log(log)
        self.categories = categories
        self.log = log
        self.anchor_root = anchor_root
        self.anchor_n_leaves = anchor_n_leaves
        self.rules = rules or ReplayRules()
        self.total_steps = total_steps(anchor_n_leaves, log)
        self._plans: dict[int, list[PlannedUpdate]] = {}

    @property
    def sentinel_position(self) -> int:
        return self.total_steps + 1

    @property
    def leaf_count(self) -> int:
        return self.total_steps + 2

    @property
    def proof_length(self) -> int:
        return proof_length(self.leaf_count)

    # -------------------------------------------------------------------------
    # Boundary proofs
    # -------------------------------------------------------------------------

    def check_boundary(
        self,
        jrh: bytes,
        root_hash: bytes,
        n_leaves: int,
        anchor_payload: bytes,
        anchor_proof: MerkleProof,
        newest_payload: bytes,
        newest_proof: MerkleProof,
    ) -> None:
        """Check the first and last justification leaves of a submission.

        Raises:
            ProofLengthMismatchError: If either proof is not sized for
                ``total_steps + 2`` leaves.
            ProtocolViolationError: If a leaf is not proven or does not match
                the accepted state or the submission.
        """
        expected = self.proof_length
        for name, proof in (("anchor", anchor_proof), ("newest", newest_proof)):
            if len(proof.siblings) != expected:
                raise ProofLengthMismatchError(
                    f"{name} proof has {len(proof.siblings)} siblings, expected {expected}"
                    f" for {self.total_steps} steps"
                )
        if anchor_proof.index != 0 or newest_proof.index != self.sentinel_position:
            raise ProtocolViolationError("Boundary proofs are for the wrong positions")
        if not anchor_proof.verify(hash_leaf(anchor_payload), jrh):
            raise ProtocolViolationError("Anchor leaf is not in the justification tree")
        if not newest_proof.verify(hash_leaf(newest_payload), jrh):
            raise ProtocolViolationError("Newest-reputation leaf is not in the justification tree")

        try:
            anchor_prev, anchor = decode_leaf(anchor_payload)
            _, newest = decode_leaf(newest_payload)
        except ValueError as e:
            raise ProtocolViolationError(str(e)) from e
        if anchor_prev != GENESIS_PREV:
            raise ProtocolViolationError("Anchor leaf must not link to an earlier leaf")
        if not isinstance(anchor, AnchorLeaf) or (anchor.root, anchor.n_leaves) != (
            self.anchor_root,
            self.anchor_n_leaves,
        ):
            raise ProtocolViolationError("Anchor leaf does not match the accepted reputation state")
        if not isinstance(newest, NewestLeaf) or (newest.root, newest.n_leaves) != (root_hash, n_leaves):
            raise ProtocolViolationError("Newest-reputation leaf does not match the submitted state")

    # -------------------------------------------------------------------------
    # Challenge responses
    # -------------------------------------------------------------------------

    def verify_response(self, position: int, agreed_payload: bytes, payload: bytes) -> Verdict:
        """Check one side's leaf at ``position`` against the agreed leaf before it."""
        if not 1 <= position <= self.sentinel_position:
            return Verdict(False, f"position {position} is outside the justification tree")
        try:
            _, agreed = decode_leaf(agreed_payload)
            prev, leaf = decode_leaf(payload)
        except ValueError as e:
            return Verdict(False, str(e))
        if prev != hash_leaf(agreed_payload):
            return Verdict(False, "leaf does not link to the agreed leaf")

        if isinstance(agreed, AnchorLeaf):
            state = (agreed.root, agreed.n_leaves)
        elif isinstance(agreed, StepWitness):
            state = (agreed.after_root, agreed.after_n_leaves)
        else:
            return Verdict(False, "agreed leaf cannot be the newest-reputation leaf")

        if position == self.sentinel_position:
            if not isinstance(leaf, NewestLeaf):
                return Verdict(False, "expected the newest-reputation leaf")
            return self._verify_newest(state, leaf)
        if not isinstance(leaf, StepWitness):
            return Verdict(False, "expected a step witness")
        try:
            return self._verify_step(position - 1, state, leaf)
        except (MalformedLogEntryError, ProofVerificationError) as e:
            return Verdict(False, e.message)

    def _verify_newest(self, state: tuple[bytes, int], leaf: NewestLeaf) -> Verdict:
        if (leaf.root, leaf.n_leaves) != state:
            return Verdict(False, "final state does not follow the last agreed step")
        if leaf.n_leaves == 0:
            if leaf.newest is not None:
                return Verdict(False, "empty state cannot have a newest reputation")
            return Verdict(True)
        if leaf.newest is None or leaf.newest.cell is None:
            return Verdict(False, "newest reputation is missing")
        if leaf.newest.cell.uid != leaf.n_leaves - 1:
            return Verdict(False, f"newest reputation has uid {leaf.newest.cell.uid}, expected {leaf.n_leaves - 1}")
        if not leaf.newest.verify(leaf.root):
            return Verdict(False, "newest reputation proof does not verify")
        return Verdict(True)

    def _plan_for(self, step: int) -> tuple[UpdateLogEntry, PlannedUpdate]:
        entry_index, offset = locate_update(self.log, step - self.anchor_n_leaves)
        if entry_index not in self._plans:
            self._plans[entry_index] = expand_entry(self.log[entry_index], self.categories, self.rules, entry_index)
        return self.log[entry_index], self._plans[entry_index][offset]

    def _verify_step(self, step: int, state: tuple[bytes, int], w: StepWitness) -> Verdict:
        if w.index != step:
            return Verdict(False, f"witness is for step {w.index}, expected {step}")
        if (w.before_root, w.before_n_leaves) != state:
            return Verdict(False, "before state does not follow the agreed state")
        if not w.before.verify(w.before_root):
            return Verdict(False, "before proof does not verify")

        before = w.before.cell
        if step < self.anchor_n_leaves:
            if before is None or before.uid != step:
                return Verdict(False, f"decay step {step} must update the cell with uid {step}")
            expected = ReputationCell(decay(before.value, self.rules), before.uid)
        else:
            entry, plan = self._plan_for(step)
            if w.key != plan.key:
                return Verdict(False, f"step {step} updates {w.key}, expected {plan.key}")
            origin_value = child_value = 0
            if plan.kind is StepKind.DESCENDANT:
                if w.origin is None or w.child is None:
                    return Verdict(False, "descendant step needs origin and child proofs")
                if w.origin.key != plan.origin_key or w.child.key != plan.child_key:
                    return Verdict(False, "origin or child proof is for the wrong key")
                if not (w.origin.verify(w.before_root) and w.child.verify(w.before_root)):
                    return Verdict(False, "origin or child proof does not verify")
                origin_value, child_value = w.origin.value, w.child.value
            delta = compute_delta(plan, entry.amount, origin_value, child_value)
            if before is None:
                expected = ReputationCell(clamp(delta), w.before_n_leaves)
            else:
                expected = ReputationCell(clamp(before.value + delta), before.uid)

        if w.after_cell != expected:
            return Verdict(
                False,
                f"step {step} claims value {w.after_cell.value} uid {w.after_cell.uid},"
                f" expected value {expected.value} uid {expected.uid}",
            )

        expected_n = w.before_n_leaves + (1 if before is None else 0)
        if w.after_n_leaves != expected_n:
            return Verdict(False, f"step {step} claims {w.after_n_leaves} leaves, expected {expected_n}")

        path, payload = w.key.path, expected.to_payload()
        if isinstance(w.before.proof, InclusionProof):
            expected_root = compute_root_with_update(path, payload, w.before.proof)
        else:
            expected_root = compute_root_with_insert(path, payload, w.before.proof)
        if w.after_root != expected_root:
            return Verdict(False, f"step {step} after root does not match the single update")
        if compute_root(path, payload, w.after_proof) != w.after_root:
            return Verdict(False, "after proof does not verify")
        return Verdict(True)
