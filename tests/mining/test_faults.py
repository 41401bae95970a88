"""Tests for reputation_oracle.mining.faults."""

from __future__ import annotations

import pytest

from reputation_oracle.mining.faults import HONEST, Fault, FaultKind


class TestHonest:
    """The honest strategy never deviates at any seam."""

    @pytest.mark.parametrize("index", [0, 1, 17])
    def test_no_deviation(self, index):
        assert HONEST.is_honest
        assert HONEST.adjust_delta(index, 5) == 5
        assert HONEST.adjust_uid(index, 3) == 3
        assert HONEST.adjust_decay(index, 9) == 9
        assert not HONEST.inserts_after(index)
        assert HONEST.tamper_leaf(index, b"h" * 32) == b"h" * 32

    def test_boundaries(self):
        assert HONEST.adjust_n_leaves(4) == 4
        assert HONEST.newest_uid(4) == 3
        assert HONEST.responds_to_challenge


class TestTargetedFaults:
    def test_only_target_index_is_hit(self):
        fault = Fault(FaultKind.EXTRA_REPUTATION, target_index=2, amount=10)
        assert fault.adjust_delta(1, 5) == 5
        assert fault.adjust_delta(2, 5) == 15
        assert fault.adjust_decay(2, 5) == 5

    def test_uid_faults(self):
        assert Fault(FaultKind.WRONG_UID, 1, 2).adjust_uid(1, 4) == 6
        assert Fault(FaultKind.REUSE_UID, 1, 2).adjust_uid(1, 4) == 2
        assert Fault(FaultKind.REUSE_UID, 1, 9).adjust_uid(1, 4) == 0

    def test_decay_fault(self):
        assert Fault(FaultKind.WRONG_DECAY, 0, -3).adjust_decay(0, 10) == 7

    def test_insert_fault(self):
        fault = Fault(FaultKind.ADD_NEW_REPUTATION, 4)
        assert fault.inserts_after(4)
        assert not fault.inserts_after(3)

    def test_tamper_fault(self):
        fault = Fault(FaultKind.WRONG_JRH_LEAF, 2)
        assert fault.tamper_leaf(2, b"h" * 32) != b"h" * 32
        assert fault.tamper_leaf(1, b"h" * 32) == b"h" * 32


class TestUntargetedFaults:
    def test_wrong_n_leaves(self):
        assert Fault(FaultKind.WRONG_N_LEAVES, amount=1).adjust_n_leaves(4) == 5
        assert Fault(FaultKind.WRONG_N_LEAVES, amount=-1).adjust_n_leaves(4) == 3
        assert Fault(FaultKind.WRONG_N_LEAVES, amount=-9).adjust_n_leaves(4) == 0

    def test_wrong_newest(self):
        assert Fault(FaultKind.WRONG_NEWEST_REPUTATION, amount=1).newest_uid(4) == 2
        assert Fault(FaultKind.WRONG_NEWEST_REPUTATION, amount=9).newest_uid(4) == 0

    def test_unresponsive(self):
        fault = Fault(FaultKind.UNRESPONSIVE)
        assert not fault.responds_to_challenge
        assert not fault.is_honest


def test_to_dict():
    assert Fault(FaultKind.WRONG_UID, 3, 2).to_dict() == {"kind": "wrong_uid", "target_index": 3, "amount": 2}
