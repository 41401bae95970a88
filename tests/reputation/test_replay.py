"""Tests for reputation_oracle.reputation.replay - the deterministic replay engine."""

from __future__ import annotations

import pytest

from reputation_oracle.core.exceptions import MalformedLogEntryError
from reputation_oracle.mining.faults import Fault, FaultKind
from reputation_oracle.reputation.models import (
    AGGREGATE_PARTICIPANT,
    INT128_MAX,
    INT128_MIN,
    ReputationCell,
    ReputationKey,
    StepKind,
)
from reputation_oracle.reputation.replay import ReplayEngine
from reputation_oracle.reputation.rules import ReplayRules
from reputation_oracle.reputation.store import ReputationStore
from reputation_oracle.tree.patricia import EMPTY_ROOT, compute_root

ORG = "0x" + "11" * 20
ALICE = "0x" + "a1" * 20
BOB = "0x" + "b0" * 20
ROOT, SKILL, SUB, OTHER = 1, 2, 3, 4


class TestWorkedExample:
    """One entry in a child category, then an empty decaying cycle."""

    def test_first_cycle(self, categories, make_log):
        rules = ReplayRules(track_organization_totals=False)
        log = make_log([(ALICE, 100, SKILL)], rules)
        assert log[0].n_updates == 2

        result = ReplayEngine(categories, rules).replay(ReputationStore(), log)

        assert result.total_steps == 2
        assert result.n_leaves == 2
        assert result.store.get(ReputationKey(ORG, SKILL, ALICE)) == ReputationCell(100, 0)
        assert result.store.get(ReputationKey(ORG, ROOT, ALICE)) == ReputationCell(100, 1)

    def test_second_cycle_decays(self, categories, make_log):
        rules = ReplayRules(
            decay_numerator=999999999, decay_denominator=1000000000, track_organization_totals=False
        )
        engine = ReplayEngine(categories, rules)
        first = engine.replay(ReputationStore(), make_log([(ALICE, 100, SKILL)], rules))

        second = engine.replay(first.store, [])

        assert second.total_steps == 2
        assert [step.kind for step in second.steps] == [StepKind.DECAY, StepKind.DECAY]
        assert second.store.get(ReputationKey(ORG, SKILL, ALICE)) == ReputationCell(99, 0)
        assert second.store.get(ReputationKey(ORG, ROOT, ALICE)) == ReputationCell(99, 1)
        assert second.n_leaves == 2


class TestReplay:
    def test_tracked_totals(self, categories, rules, make_log):
        log = make_log([(ALICE, 100, SKILL), (BOB, 50, SKILL)])
        result = ReplayEngine(categories, rules).replay(ReputationStore(), log)

        aggregate = ReputationKey(ORG, SKILL, AGGREGATE_PARTICIPANT)
        assert result.store.get(aggregate).value == 150
        assert result.store.get(aggregate).uid == 0
        assert result.store.get(ReputationKey(ORG, ROOT, AGGREGATE_PARTICIPANT)).value == 150
        assert result.store.get(ReputationKey(ORG, SKILL, BOB)).value == 50
        assert result.n_leaves == 6

    def test_input_store_is_untouched(self, categories, rules, make_log):
        store = ReputationStore()
        result = ReplayEngine(categories, rules).replay(store, make_log([(ALICE, 10, ROOT)]))
        assert store.root_hash == EMPTY_ROOT
        assert result.root_before == EMPTY_ROOT
        assert result.root_hash != EMPTY_ROOT

    def test_deterministic(self, categories, rules, make_log):
        log = make_log([(ALICE, 100, SUB), (BOB, -20, ROOT), (ALICE, 3, OTHER)])
        a = ReplayEngine(categories, rules).replay(ReputationStore(), log)
        b = ReplayEngine(categories, rules).replay(ReputationStore(), log)
        assert a.root_hash == b.root_hash
        assert a.n_leaves == b.n_leaves
        assert [w.encode() for w in a.witnesses] == [w.encode() for w in b.witnesses]

    def test_step_count(self, categories, rules, make_log):
        first = ReplayEngine(categories, rules).replay(ReputationStore(), make_log([(ALICE, 100, SUB)]))
        log = make_log([(BOB, 5, SKILL), (ALICE, -10, ROOT)])
        second = ReplayEngine(categories, rules).replay(first.store, log)
        assert second.n_leaves_before == first.n_leaves
        assert second.total_steps == first.n_leaves + sum(entry.n_updates for entry in log)

    def test_uids_are_sequential_and_stable(self, categories, rules, make_log):
        engine = ReplayEngine(categories, rules)
        first = engine.replay(ReputationStore(), make_log([(ALICE, 100, SUB)]))
        second = engine.replay(first.store, make_log([(BOB, 5, OTHER)]))

        uids = sorted(cell.uid for _, cell in second.store.items())
        assert uids == list(range(second.n_leaves))
        for key, cell in first.store.items():
            assert second.store.get(key).uid == cell.uid

    def test_leaf_count_moves_by_at_most_one_per_step(self, categories, rules, make_log):
        log = make_log([(ALICE, 100, SUB), (BOB, -20, ROOT), (ALICE, -10, SKILL)])
        result = ReplayEngine(categories, rules).replay(ReputationStore(), log)
        for witness in result.witnesses:
            assert witness.after_n_leaves - witness.before_n_leaves in (0, 1)

    def test_saturates_at_int128(self, categories, untracked_rules, make_log):
        log = make_log([(ALICE, INT128_MAX, OTHER), (ALICE, INT128_MAX, OTHER)], untracked_rules)
        result = ReplayEngine(categories, untracked_rules).replay(ReputationStore(), log)
        assert result.store.get(ReputationKey(ORG, OTHER, ALICE)).value == INT128_MAX

    def test_saturates_at_int128_min(self, categories, untracked_rules, make_log):
        log = make_log([(ALICE, INT128_MIN + 5, OTHER), (ALICE, -10, OTHER)], untracked_rules)
        result = ReplayEngine(categories, untracked_rules).replay(ReputationStore(), log)

        assert result.store.get(ReputationKey(ORG, OTHER, ALICE)).value == INT128_MIN
        assert result.witnesses[-1].after_cell.value == INT128_MIN

    def test_descendant_losses(self, categories, untracked_rules, make_log):
        engine = ReplayEngine(categories, untracked_rules)
        first = engine.replay(
            ReputationStore(),
            make_log([(ALICE, 60, SUB), (ALICE, 40, ROOT)], untracked_rules),
        )
        # ALICE: SUB 60, SKILL 60, ROOT 100
        rules_no_decay = ReplayRules(decay_numerator=1, decay_denominator=1, track_organization_totals=False)
        second = ReplayEngine(categories, rules_no_decay).replay(
            first.store, make_log([(ALICE, -50, ROOT)], untracked_rules)
        )
        # each child loses 50 * child / origin = 50 * 60 / 100 = 30
        assert second.store.get(ReputationKey(ORG, SKILL, ALICE)).value == 30
        assert second.store.get(ReputationKey(ORG, SUB, ALICE)).value == 30
        assert second.store.get(ReputationKey(ORG, ROOT, ALICE)).value == 50

    def test_malformed_log(self, categories, rules, make_log):
        log = make_log([(ALICE, 100, SUB)])
        bad = log[0].model_copy(update={"n_updates": 4})
        with pytest.raises(MalformedLogEntryError):
            ReplayEngine(categories, rules).replay(ReputationStore(), [bad])


class TestWitnesses:
    """Every step can be checked on its own."""

    def test_witness_chain(self, categories, rules, make_log):
        first = ReplayEngine(categories, rules).replay(ReputationStore(), make_log([(ALICE, 100, SUB)]))
        result = ReplayEngine(categories, rules).replay(first.store, make_log([(ALICE, -30, SKILL)]))

        assert result.witnesses[0].before_root == result.root_before
        for previous, current in zip(result.witnesses, result.witnesses[1:]):
            assert current.before_root == previous.after_root
            assert current.before_n_leaves == previous.after_n_leaves
        assert result.witnesses[-1].after_root == result.root_hash

    def test_witness_proofs_verify(self, categories, rules, make_log):
        first = ReplayEngine(categories, rules).replay(ReputationStore(), make_log([(ALICE, 100, SUB)]))
        result = ReplayEngine(categories, rules).replay(first.store, make_log([(ALICE, -30, SKILL)]))

        for witness in result.witnesses:
            assert witness.before.verify(witness.before_root)
            assert compute_root(witness.key.path, witness.after_cell.to_payload(), witness.after_proof) == (
                witness.after_root
            )

    def test_descendant_witness_carries_origin_and_child(self, categories, rules, make_log):
        first = ReplayEngine(categories, rules).replay(ReputationStore(), make_log([(ALICE, 100, SUB)]))
        result = ReplayEngine(categories, rules).replay(first.store, make_log([(ALICE, -30, SKILL)]))

        descendant_steps = [
            (step, witness)
            for step, witness in zip(result.steps, result.witnesses)
            if step.kind is StepKind.DESCENDANT
        ]
        assert len(descendant_steps) == 2
        for _, witness in descendant_steps:
            assert witness.origin.key == ReputationKey(ORG, SKILL, ALICE)
            assert witness.child.key == ReputationKey(ORG, SUB, ALICE)
            assert witness.origin.verify(witness.before_root)


class TestFaultSeams:
    def test_extra_reputation(self, categories, rules, make_log):
        log = make_log([(ALICE, 100, OTHER)])
        honest = ReplayEngine(categories, rules).replay(ReputationStore(), log)
        faulty = ReplayEngine(categories, rules, Fault(FaultKind.EXTRA_REPUTATION, 1, 5)).replay(
            ReputationStore(), log
        )
        assert faulty.store.get(ReputationKey(ORG, OTHER, ALICE)).value == 105
        assert faulty.witnesses[0].encode() == honest.witnesses[0].encode()
        assert faulty.witnesses[1].encode() != honest.witnesses[1].encode()

    def test_add_new_reputation(self, categories, rules, make_log):
        log = make_log([(ALICE, 100, OTHER)])
        faulty = ReplayEngine(categories, rules, Fault(FaultKind.ADD_NEW_REPUTATION, 0, 9)).replay(
            ReputationStore(), log
        )
        assert faulty.n_leaves == 3
        assert faulty.total_steps == 2
