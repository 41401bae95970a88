# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Fixed-shape binary Merkle tree.

Leaves are domain-separated from inner nodes and the leaf count is padded
to a power of two with zero leaves, so every proof for a tree of ``n``
leaves has exactly ``ceil(log2(n))`` siblings.

    leaf  = H(0x00 || payload)
    inner = H(0x01 || left || right)
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Any

LEAF_PREFIX = b"\x00"
NODE_PREFIX = b"\x01"
ZERO_LEAF = bytes(32)


def hash_leaf(payload: bytes) -> bytes:
    return hashlib.sha256(LEAF_PREFIX + payload).digest()


def hash_pair(left: bytes, right: bytes) -> bytes:
    return hashlib.sha256(NODE_PREFIX + left + right).digest()


def proof_length(leaf_count: int) -> int:
    """Number of siblings in a proof for a tree of ``leaf_count`` leaves."""
    if leaf_count <= 1:
        return 0
    return (leaf_count - 1).bit_length()


@dataclass(frozen=True)
class MerkleProof:
    """Sibling path for one leaf, bottom first."""

    index: int
    siblings: tuple[bytes, ...]

    def compute_root(self, leaf_hash: bytes) -> bytes:
        current = leaf_hash
        index = self.index
        for sibling in self.siblings:
            if index % 2 == 0:
                current = hash_pair(current, sibling)
            else:
                current = hash_pair(sibling, current)
            index //= 2
        return current

    def verify(self, leaf_hash: bytes, root: bytes) -> bool:
        """Verify this proof against a Merkle root."""
        return self.compute_root(leaf_hash) == root

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "siblings": ["0x" + s.hex() for s in self.siblings],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MerkleProof:
        return cls(
            index=int(data["index"]),
            siblings=tuple(bytes.fromhex(s.removeprefix("0x")) for s in data["siblings"]),
        )


class MerkleTree:
    """Binary Merkle tree built bottom-up over pre-hashed leaves."""

    def __init__(self, leaf_hashes: list[bytes]):
        if not leaf_hashes:
            raise ValueError("A Merkle tree needs at least one leaf")
        self.leaf_count = len(leaf_hashes)
        width = 1 << proof_length(self.leaf_count)
        leaves = list(leaf_hashes) + [ZERO_LEAF] * (width - self.leaf_count)

        self._levels: list[list[bytes]] = [leaves]
        current = leaves
        while len(current) > 1:
            current = [hash_pair(current[i], current[i + 1]) for i in range(0, len(current), 2)]
            self._levels.append(current)

    @classmethod
    def from_payloads(cls, payloads: list[bytes]) -> MerkleTree:
        return cls([hash_leaf(p) for p in payloads])

    @property
    def root(self) -> bytes:
        return self._levels[-1][0]

    def leaf(self, index: int) -> bytes:
        if not 0 <= index < self.leaf_count:
            raise IndexError(f"Leaf {index} out of range for {self.leaf_count} leaves")
        return self._levels[0][index]

    def proof(self, index: int) -> MerkleProof:
        """Sibling path for the leaf at ``index``."""
        if not 0 <= index < self.leaf_count:
            raise IndexError(f"Leaf {index} out of range for {self.leaf_count} leaves")
        siblings = []
        position = index
        for level in self._levels[:-1]:
            siblings.append(level[position ^ 1])
            position //= 2
        return MerkleProof(index=index, siblings=tuple(siblings))
