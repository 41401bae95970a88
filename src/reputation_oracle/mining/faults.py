# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Fault strategies for modelling dishonest miners.

A ``Fault`` is a tagged value, not a subclass: the replay engine, the
justification builder and the dispute client each ask it at one seam
whether to deviate, and an honest miner simply carries ``HONEST``.

Seams:
    delta      EXTRA_REPUTATION adds ``amount`` to one step's delta
    uid        WRONG_UID / REUSE_UID shift one step's uid up / down
    decay      WRONG_DECAY adds ``amount`` to one decayed value
    insert     ADD_NEW_REPUTATION creates an unlogged cell after one step
    leaves     WRONG_N_LEAVES misreports the final leaf count
    jrh        WRONG_JRH_LEAF replaces one justification leaf with garbage
    newest     WRONG_NEWEST_REPUTATION proves an older cell as the newest
    respond    UNRESPONSIVE never answers a challenge
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import StrEnum
from typing import Any


class FaultKind(StrEnum):
    HONEST = "honest"
    EXTRA_REPUTATION = "extra_reputation"
    WRONG_UID = "wrong_uid"
    REUSE_UID = "reuse_uid"
    WRONG_DECAY = "wrong_decay"
    ADD_NEW_REPUTATION = "add_new_reputation"
    WRONG_N_LEAVES = "wrong_n_leaves"
    WRONG_JRH_LEAF = "wrong_jrh_leaf"
    WRONG_NEWEST_REPUTATION = "wrong_newest_reputation"
    UNRESPONSIVE = "unresponsive"


@dataclass(frozen=True)
class Fault:
    """Which lie to tell, at which step (or leaf position), by how much."""

    kind: FaultKind = FaultKind.HONEST
    target_index: int = 0
    amount: int = 1

    @property
    def is_honest(self) -> bool:
        return self.kind is FaultKind.HONEST

    def _hits(self, kind: FaultKind, index: int) -> bool:
        return self.kind is kind and index == self.target_index

    def adjust_delta(self, index: int, delta: int) -> int:
        return delta + self.amount if self._hits(FaultKind.EXTRA_REPUTATION, index) else delta

    def adjust_uid(self, index: int, uid: int) -> int:
        if self._hits(FaultKind.WRONG_UID, index):
            return uid + self.amount
        if self._hits(FaultKind.REUSE_UID, index):
            return max(0, uid - self.amount)
        return uid

    def adjust_decay(self, index: int, value: int) -> int:
        return value + self.amount if self._hits(FaultKind.WRONG_DECAY, index) else value

    def inserts_after(self, index: int) -> bool:
        return self._hits(FaultKind.ADD_NEW_REPUTATION, index)

    def adjust_n_leaves(self, n_leaves: int) -> int:
        if self.kind is FaultKind.WRONG_N_LEAVES:
            return max(0, n_leaves + self.amount)
        return n_leaves

    def tamper_leaf(self, position: int, leaf_hash: bytes) -> bytes:
        if self._hits(FaultKind.WRONG_JRH_LEAF, position):
            return hashlib.sha256(b"tampered" + leaf_hash).digest()
        return leaf_hash

    def newest_uid(self, n_leaves: int) -> int:
        uid = n_leaves - 1
        if self.kind is FaultKind.WRONG_NEWEST_REPUTATION:
            uid = max(0, uid - self.amount)
        return uid

    @property
    def responds_to_challenge(self) -> bool:
        return self.kind is not FaultKind.UNRESPONSIVE

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "target_index": self.target_index, "amount": self.amount}


HONEST = Fault()
