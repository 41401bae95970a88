# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Deterministic replay of a closed update log into a reputation store.

Step ``g`` of a cycle is:

- ``g < n_leaves_before``: decay of the cell whose uid is ``g``
- otherwise: update ``g - n_leaves_before`` of the flattened log

Every step records the before and after state with proofs, so any single
step can later be shown to a verifier on its own.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field

from ..mining.faults import HONEST, Fault
from .models import (
    CategoryTree,
    CellProof,
    ElementaryStep,
    PlannedUpdate,
    ReputationCell,
    ReputationKey,
    StepKind,
    StepWitness,
    UpdateLogEntry,
)
from .rules import ReplayRules, clamp, compute_delta, decay, expand_entry, validate_log
from .store import ReputationStore

logger = logging.getLogger(__name__)


@dataclass
class ReplayResult:
    """New store and the ordered record of how it was reached."""

    store: ReputationStore
    root_before: bytes
    n_leaves_before: int
    log: list[UpdateLogEntry]
    steps: list[ElementaryStep] = field(default_factory=list)
    witnesses: list[StepWitness] = field(default_factory=list)

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    @property
    def root_hash(self) -> bytes:
        return self.store.root_hash

    @property
    def n_leaves(self) -> int:
        return self.store.n_leaves


class ReplayEngine:
    """Replays closed logs under fixed rules and a category tree.

    Args:
        categories: Category hierarchy the log entries refer to.
        rules: Decay ratio and expansion mode.
        fault: Deviation to apply; ``HONEST`` for a correct miner.
    """

    def __init__(
        self,
        categories: CategoryTree,
        rules: ReplayRules | None = None,
        fault: Fault = HONEST,
    ):
        self.categories = categories
        self.rules = rules or ReplayRules()
        self.fault = fault

    def replay(self, store: ReputationStore, log: list[UpdateLogEntry]) -> ReplayResult:
        """Apply one cycle: decay every existing cell, then every log update.

        The input store is not modified.

        Raises:
            MalformedLogEntryError: If any entry cannot be expanded.
        """
        validate_log(log)
        plans = [expand_entry(entry, self.categories, self.rules, i) for i, entry in enumerate(log)]

        work = store.fork()
        result = ReplayResult(
            store=work,
            root_before=work.root_hash,
            n_leaves_before=work.n_leaves,
            log=list(log),
        )

        for index in range(result.n_leaves_before):
            self._decay_step(work, index, result)

        index = result.n_leaves_before
        for entry_index, (entry, plan) in enumerate(zip(log, plans, strict=True)):
            for planned in plan:
                self._log_step(work, index, entry_index, entry, planned, result)
                index += 1

        logger.info(
            "Replayed %d steps (%d decays, %d log entries): %d -> %d leaves",
            result.total_steps,
            result.n_leaves_before,
            len(log),
            result.n_leaves_before,
            work.n_leaves,
        )
        return result

    def _decay_step(self, work: ReputationStore, index: int, result: ReplayResult) -> None:
        key = work.key_for_uid(index)
        before = work.cell_proof(key)
        assert before.cell is not None
        value = self.fault.adjust_decay(index, decay(before.cell.value, self.rules))
        after = ReputationCell(clamp(value), self.fault.adjust_uid(index, before.cell.uid))
        self._record(work, index, StepKind.DECAY, before, after, result)

    def _log_step(
        self,
        work: ReputationStore,
        index: int,
        entry_index: int,
        entry: UpdateLogEntry,
        planned: PlannedUpdate,
        result: ReplayResult,
    ) -> None:
        before = work.cell_proof(planned.key)
        origin = child = None
        if planned.kind is StepKind.DESCENDANT:
            assert planned.origin_key is not None and planned.child_key is not None
            origin = work.cell_proof(planned.origin_key)
            child = work.cell_proof(planned.child_key)
        delta = compute_delta(
            planned,
            entry.amount,
            origin.value if origin else 0,
            child.value if child else 0,
        )
        delta = self.fault.adjust_delta(index, delta)

        if before.cell is None:
            after = ReputationCell(clamp(delta), self.fault.adjust_uid(index, work.n_leaves))
        else:
            after = ReputationCell(clamp(before.cell.value + delta), self.fault.adjust_uid(index, before.cell.uid))
        self._record(work, index, planned.kind, before, after, result, entry_index, origin, child)

    def _record(
        self,
        work: ReputationStore,
        index: int,
        kind: StepKind,
        before: CellProof,
        after: ReputationCell,
        result: ReplayResult,
        entry_index: int | None = None,
        origin: CellProof | None = None,
        child: CellProof | None = None,
    ) -> None:
        before_root, before_n = work.root_hash, work.n_leaves
        work.put(before.key, after)
        result.witnesses.append(
            StepWitness(
                index=index,
                before_root=before_root,
                before_n_leaves=before_n,
                before=before,
                after_root=work.root_hash,
                after_n_leaves=work.n_leaves,
                after_cell=after,
                after_proof=work.prove_inclusion(before.key),
                origin=origin,
                child=child,
            )
        )
        result.steps.append(
            ElementaryStep(
                global_index=index,
                key=before.key,
                kind=kind,
                amount_delta=after.value - before.value,
                is_new_leaf=before.cell is None,
                before=before.cell,
                after=after,
                entry_index=entry_index,
            )
        )
        if self.fault.inserts_after(index):
            seed = hashlib.sha256(b"unlogged" + index.to_bytes(32, "big")).digest()
            ghost = ReputationKey(before.key.organization, before.key.category, "0x" + seed[:20].hex())
            work.force_insert(ghost, self.fault.amount)
