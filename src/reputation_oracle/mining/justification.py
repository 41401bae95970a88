# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Justification tree: a Merkle commitment to every step of a cycle.

Leaf layout for a cycle of ``N`` elementary steps:

    0        anchor: the accepted state the cycle starts from
    g + 1    witness of elementary step g
    N + 1    newest-reputation sentinel: final state and the cell with the
             highest uid, proving the claimed leaf count

Every payload carries the hash of the leaf before it, so two trees that
differ at some position differ at every later one. Because leaf 0 is fixed
by the ledger, the binary search over ``[0, N + 1]`` therefore always ends
with ``upper`` at the first diverging leaf: one past the first diverging
step, or on a tampered leaf whose preimage cannot be shown.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from ..core.exceptions import NotFoundError
from ..reputation.models import CellProof, StepWitness, canonical_json
from ..reputation.replay import ReplayResult
from ..tree.merkle import MerkleProof, MerkleTree, hash_leaf
from .faults import HONEST, Fault

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnchorLeaf:
    """State every miner of the cycle starts from."""

    root: bytes
    n_leaves: int

    def to_dict(self) -> dict[str, Any]:
        return {"type": "anchor", "root": "0x" + self.root.hex(), "n_leaves": self.n_leaves}


@dataclass(frozen=True)
class NewestLeaf:
    """Final state plus the cell whose uid should be ``n_leaves - 1``."""

    root: bytes
    n_leaves: int
    newest: CellProof | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "newest",
            "root": "0x" + self.root.hex(),
            "n_leaves": self.n_leaves,
            "newest": self.newest.to_dict() if self.newest else None,
        }


JustificationLeaf = AnchorLeaf | StepWitness | NewestLeaf

GENESIS_PREV = bytes(32)


def encode_leaf(leaf: JustificationLeaf, prev: bytes) -> bytes:
    """Payload of ``leaf`` linked to the hash of the leaf before it."""
    data = leaf.to_dict()
    data["prev"] = "0x" + prev.hex()
    return canonical_json(data)


def decode_leaf(payload: bytes) -> tuple[bytes, JustificationLeaf]:
    """Parse a leaf payload back into (previous leaf hash, record).

    Raises:
        ValueError: If the payload is not a well-formed leaf.
    """
    try:
        data = json.loads(payload.decode("utf-8"))
        prev = bytes.fromhex(data["prev"][2:])
        kind = data["type"]
        if kind == "anchor":
            return prev, AnchorLeaf(bytes.fromhex(data["root"][2:]), int(data["n_leaves"]))
        if kind == "newest":
            return prev, NewestLeaf(
                bytes.fromhex(data["root"][2:]),
                int(data["n_leaves"]),
                CellProof.from_dict(data["newest"]) if data.get("newest") else None,
            )
        if kind == "step":
            return prev, StepWitness.from_dict(data)
    except (KeyError, TypeError, ValueError, AttributeError, UnicodeDecodeError) as e:
        raise ValueError(f"Malformed justification leaf: {e}") from e
    raise ValueError(f"Unknown justification leaf type: {kind!r}")


class JustificationTree:
    """Leaves and Merkle tree for one replayed cycle."""

    def __init__(self, payloads: list[bytes], leaf_hashes: list[bytes], total_steps: int):
        if len(payloads) != total_steps + 2:
            raise ValueError(f"Expected {total_steps + 2} leaves, got {len(payloads)}")
        self.payloads = payloads
        self.total_steps = total_steps
        self._tree = MerkleTree(leaf_hashes)

    @classmethod
    def build(cls, result: ReplayResult, fault: Fault = HONEST) -> JustificationTree:
        store = result.store
        n_leaves = fault.adjust_n_leaves(store.n_leaves)
        newest = None
        if store.n_leaves:
            try:
                newest = store.cell_proof(store.key_for_uid(fault.newest_uid(store.n_leaves)))
            except NotFoundError:
                logger.warning("No cell carries uid %d", store.n_leaves - 1)

        leaves: list[JustificationLeaf] = [AnchorLeaf(result.root_before, result.n_leaves_before)]
        leaves.extend(result.witnesses)
        leaves.append(NewestLeaf(store.root_hash, n_leaves, newest))

        payloads: list[bytes] = []
        hashes: list[bytes] = []
        prev = GENESIS_PREV
        for position, leaf in enumerate(leaves):
            payload = encode_leaf(leaf, prev)
            prev = fault.tamper_leaf(position, hash_leaf(payload))
            payloads.append(payload)
            hashes.append(prev)

        tree = cls(payloads, hashes, result.total_steps)
        logger.debug("Built justification tree over %d leaves, root %s", len(payloads), tree.root.hex()[:16])
        return tree

    @property
    def root(self) -> bytes:
        return self._tree.root

    @property
    def leaf_count(self) -> int:
        return self._tree.leaf_count

    @property
    def sentinel_position(self) -> int:
        return self.total_steps + 1

    def leaf_hash(self, position: int) -> bytes:
        return self._tree.leaf(position)

    def payload(self, position: int) -> bytes:
        return self.payloads[position]

    def proof(self, position: int) -> MerkleProof:
        return self._tree.proof(position)

    def boundary_proofs(self) -> tuple[MerkleProof, MerkleProof]:
        """Proofs of the anchor and the newest-reputation sentinel."""
        return self.proof(0), self.proof(self.sentinel_position)
