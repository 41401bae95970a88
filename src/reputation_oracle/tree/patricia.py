# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Binary path-compressed Patricia Merkle tree.

Keys are 256-bit paths. A node is a pair of edges; an edge carries the hash
of the node (or leaf payload) below it and the label of bits it skips.

    edge hash  = H(node_hash || label.length (32 bytes) || label.data (32 bytes))
    node hash  = H(edge_hash(left) || edge_hash(right))
    leaf hash  = H(payload)
    root hash  = edge_hash(root edge), or 32 zero bytes for an empty tree

Nodes are stored by hash and never overwritten, so every root the tree has
had stays provable until ``prune_history()`` drops it.

Proofs carry a branch mask (bit ``255 - d`` set for a branch at depth ``d``)
and the sibling edge hashes at those branches, root first. The module-level
``compute_root*`` functions recompute roots from proofs without a tree, which
is what a verifier holding only a root hash needs.
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

from ..core.exceptions import ProofVerificationError, StaleRootError

KEY_BITS = 256
WORD_MASK = (1 << KEY_BITS) - 1
EMPTY_ROOT = bytes(32)


def sha256(*parts: bytes) -> bytes:
    return hashlib.sha256(b"".join(parts)).digest()


# =============================================================================
# LABELS, EDGES, PROOFS
# =============================================================================


@dataclass(frozen=True)
class Label:
    """A run of path bits, left-aligned in a 256-bit word."""

    data: int
    length: int

    @classmethod
    def from_path(cls, path: int, start: int = 0, end: int = KEY_BITS) -> Label:
        """Bits ``[start, end)`` of a full 256-bit path."""
        length = end - start
        if length <= 0:
            return cls(0, 0)
        shifted = (path << start) & WORD_MASK
        data = (shifted >> (KEY_BITS - length)) << (KEY_BITS - length)
        return cls(data, length)

    def split_at(self, pos: int) -> tuple[Label, Label]:
        if not 0 <= pos <= self.length:
            raise ValueError(f"Cannot split a {self.length}-bit label at {pos}")
        if pos == 0:
            prefix = Label(0, 0)
        else:
            prefix = Label(self.data & (WORD_MASK << (KEY_BITS - pos)) & WORD_MASK, pos)
        suffix = Label((self.data << pos) & WORD_MASK, self.length - pos)
        return prefix, suffix

    def common_prefix(self, other: Label) -> int:
        length = min(self.length, other.length)
        if length == 0:
            return 0
        diff = self.data ^ other.data
        if diff == 0:
            return length
        return min(length, KEY_BITS - diff.bit_length())

    def chop_first_bit(self) -> tuple[int, Label]:
        if self.length == 0:
            raise ValueError("Cannot chop an empty label")
        head = self.data >> (KEY_BITS - 1)
        return head, Label((self.data << 1) & WORD_MASK, self.length - 1)

    def remove_prefix(self, count: int) -> Label:
        if count > self.length:
            raise ValueError(f"Cannot remove {count} bits from a {self.length}-bit label")
        return Label((self.data << count) & WORD_MASK, self.length - count)

    def encode(self) -> bytes:
        return self.length.to_bytes(32, "big") + self.data.to_bytes(32, "big")


@dataclass(frozen=True)
class Edge:
    node_hash: bytes
    label: Label

    def hash(self) -> bytes:
        return sha256(self.node_hash, self.label.encode())

    def to_dict(self) -> dict[str, Any]:
        return {
            "node_hash": "0x" + self.node_hash.hex(),
            "label_data": hex(self.label.data),
            "label_length": self.label.length,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Edge:
        return cls(
            node_hash=bytes.fromhex(data["node_hash"].removeprefix("0x")),
            label=Label(int(data["label_data"], 16), int(data["label_length"])),
        )


def node_hash(left: Edge, right: Edge) -> bytes:
    return sha256(left.hash(), right.hash())


@dataclass(frozen=True)
class InclusionProof:
    """Branch mask and sibling edge hashes (root first) for a present key."""

    branch_mask: int
    siblings: tuple[bytes, ...]

    def depths(self) -> list[int]:
        return _mask_depths(self.branch_mask)

    def to_dict(self) -> dict[str, Any]:
        return {
            "branch_mask": hex(self.branch_mask),
            "siblings": ["0x" + s.hex() for s in self.siblings],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InclusionProof:
        return cls(
            branch_mask=int(data["branch_mask"], 16),
            siblings=tuple(bytes.fromhex(s.removeprefix("0x")) for s in data["siblings"]),
        )

    def encode(self) -> bytes:
        return self.branch_mask.to_bytes(32, "big") + b"".join(self.siblings)


@dataclass(frozen=True)
class ExclusionProof:
    """Proof that a key is absent.

    ``terminal`` is the edge at which the key's path leaves the tree, hanging
    below the deepest branch in ``branch_mask``. It is None for an empty tree.
    """

    branch_mask: int
    siblings: tuple[bytes, ...]
    terminal: Edge | None

    def depths(self) -> list[int]:
        return _mask_depths(self.branch_mask)

    def to_dict(self) -> dict[str, Any]:
        return {
            "branch_mask": hex(self.branch_mask),
            "siblings": ["0x" + s.hex() for s in self.siblings],
            "terminal": self.terminal.to_dict() if self.terminal else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExclusionProof:
        return cls(
            branch_mask=int(data["branch_mask"], 16),
            siblings=tuple(bytes.fromhex(s.removeprefix("0x")) for s in data["siblings"]),
            terminal=Edge.from_dict(data["terminal"]) if data.get("terminal") else None,
        )

    def encode(self) -> bytes:
        terminal = self.terminal.node_hash + self.terminal.label.encode() if self.terminal else b""
        return self.branch_mask.to_bytes(32, "big") + b"".join(self.siblings) + terminal


def _mask_depths(branch_mask: int) -> list[int]:
    """Branch depths encoded in a mask, shallowest first."""
    return [KEY_BITS - 1 - bit for bit in range(KEY_BITS - 1, -1, -1) if branch_mask >> bit & 1]


# =============================================================================
# ROOT RECOMPUTATION (verifier side)
# =============================================================================


def _fold_path(path: int, depths: list[int], siblings: tuple[bytes, ...], bottom: Edge) -> bytes:
    """Hash ``bottom`` up through the branches at ``depths`` to a root hash."""
    if len(depths) != len(siblings):
        raise ProofVerificationError(
            f"Branch mask has {len(depths)} branches but proof has {len(siblings)} siblings"
        )
    edge = bottom
    for i in range(len(depths) - 1, -1, -1):
        depth = depths[i]
        own = edge.hash()
        if path >> (KEY_BITS - 1 - depth) & 1:
            hashed = sha256(siblings[i], own)
        else:
            hashed = sha256(own, siblings[i])
        start = depths[i - 1] + 1 if i > 0 else 0
        edge = Edge(hashed, Label.from_path(path, start, depth))
    return edge.hash()


def _bottom_start(depths: list[int]) -> int:
    return depths[-1] + 1 if depths else 0


def compute_root(path: int, payload: bytes, proof: InclusionProof) -> bytes:
    """Root hash implied by ``payload`` sitting at ``path`` under ``proof``."""
    depths = proof.depths()
    bottom = Edge(sha256(payload), Label.from_path(path, _bottom_start(depths)))
    return _fold_path(path, depths, proof.siblings, bottom)


def _check_exclusion(path: int, proof: ExclusionProof) -> tuple[int, int]:
    """Return (start, common prefix length) after checking the path really leaves at the terminal edge."""
    if proof.terminal is None:
        if proof.branch_mask or proof.siblings:
            raise ProofVerificationError("Empty-tree exclusion proof must not carry branches")
        return 0, 0
    depths = proof.depths()
    start = _bottom_start(depths)
    remaining = Label.from_path(path, start)
    shared = remaining.common_prefix(proof.terminal.label)
    if shared >= proof.terminal.label.length:
        raise ProofVerificationError("Exclusion proof terminal edge lies on the key's path")
    return start, shared


def compute_root_without(path: int, proof: ExclusionProof) -> bytes:
    """Root hash of a tree in which ``proof`` shows ``path`` is absent."""
    _check_exclusion(path, proof)
    if proof.terminal is None:
        return EMPTY_ROOT
    return _fold_path(path, proof.depths(), proof.siblings, proof.terminal)


def compute_root_with_insert(path: int, payload: bytes, proof: ExclusionProof) -> bytes:
    """Root hash after inserting ``payload`` at an absent ``path``.

    No other leaf changes, so the new branch goes exactly where the
    path leaves the terminal edge.
    """
    start, shared = _check_exclusion(path, proof)
    leaf_hash = sha256(payload)
    if proof.terminal is None:
        return Edge(leaf_hash, Label.from_path(path)).hash()

    branch_depth = start + shared
    new_leaf = Edge(leaf_hash, Label.from_path(path, branch_depth + 1))
    old_side = Edge(proof.terminal.node_hash, proof.terminal.label.remove_prefix(shared + 1))
    if path >> (KEY_BITS - 1 - branch_depth) & 1:
        hashed = node_hash(old_side, new_leaf)
    else:
        hashed = node_hash(new_leaf, old_side)
    bottom = Edge(hashed, Label.from_path(path, start, branch_depth))
    return _fold_path(path, proof.depths(), proof.siblings, bottom)


def compute_root_with_update(path: int, payload: bytes, proof: InclusionProof) -> bytes:
    """Root hash after replacing the payload at a present ``path``.

    The siblings are untouched by an update, so this is ``compute_root`` with
    the new payload.
    """
    return compute_root(path, payload, proof)


# =============================================================================
# TREE
# =============================================================================


class PatriciaTree:
    """In-memory Patricia tree retaining every root it has produced."""

    def __init__(self) -> None:
        self._nodes: dict[bytes, tuple[Edge, Edge]] = {}
        self._payloads: dict[bytes, bytes] = {}
        self._roots: dict[bytes, Edge | None] = {EMPTY_ROOT: None}
        self._root_edge: Edge | None = None

    @property
    def root_hash(self) -> bytes:
        return self._root_edge.hash() if self._root_edge else EMPTY_ROOT

    def has_root(self, root: bytes) -> bool:
        return root in self._roots

    def retained_roots(self) -> list[bytes]:
        return list(self._roots)

    def _edge_for(self, root: bytes | None) -> Edge | None:
        if root is None:
            return self._root_edge
        try:
            return self._roots[root]
        except KeyError:
            raise StaleRootError("0x" + root.hex()) from None

    # -------------------------------------------------------------------------
    # Mutation
    # -------------------------------------------------------------------------

    def insert(self, path: int, payload: bytes) -> bytes:
        """Insert or update the payload at ``path``. Returns the new root hash."""
        label = Label.from_path(path)
        leaf_hash = sha256(payload)
        self._payloads[leaf_hash] = payload
        if self._root_edge is None:
            edge = Edge(leaf_hash, label)
        else:
            edge = self._insert_at_edge(self._root_edge, label, leaf_hash)
        self._root_edge = edge
        root = edge.hash()
        self._roots[root] = edge
        return root

    def _insert_at_edge(self, edge: Edge, label: Label, leaf_hash: bytes) -> Edge:
        shared = label.common_prefix(edge.label)
        prefix, suffix = label.split_at(shared)
        if suffix.length == 0:
            new_hash = leaf_hash
        elif shared >= edge.label.length:
            head, tail = suffix.chop_first_bit()
            children = list(self._nodes[edge.node_hash])
            children[head] = self._insert_at_edge(children[head], tail, leaf_hash)
            new_hash = self._store_node(children[0], children[1])
        else:
            head, tail = suffix.chop_first_bit()
            fresh = Edge(leaf_hash, tail)
            existing = Edge(edge.node_hash, edge.label.remove_prefix(shared + 1))
            if head:
                new_hash = self._store_node(existing, fresh)
            else:
                new_hash = self._store_node(fresh, existing)
        return Edge(new_hash, prefix)

    def _store_node(self, left: Edge, right: Edge) -> bytes:
        hashed = node_hash(left, right)
        self._nodes[hashed] = (left, right)
        return hashed

    # -------------------------------------------------------------------------
    # Reads and proofs
    # -------------------------------------------------------------------------

    def _walk(self, path: int, root: bytes | None) -> tuple[int, list[bytes], Edge | None, bool]:
        """Follow ``path`` from a root.

        Returns (branch mask, siblings, last edge, found). When not found the
        last edge is where the path leaves the tree.
        """
        edge = self._edge_for(root)
        if edge is None:
            return 0, [], None, False
        label = Label.from_path(path)
        mask = 0
        siblings: list[bytes] = []
        depth = 0
        while True:
            shared = label.common_prefix(edge.label)
            if shared < edge.label.length:
                return mask, siblings, edge, False
            _, suffix = label.split_at(shared)
            if suffix.length == 0:
                return mask, siblings, edge, True
            depth += shared
            mask |= 1 << (KEY_BITS - 1 - depth)
            depth += 1
            head, tail = suffix.chop_first_bit()
            children = self._nodes[edge.node_hash]
            siblings.append(children[1 - head].hash())
            edge = children[head]
            label = tail

    def get(self, path: int, root: bytes | None = None) -> bytes | None:
        """Payload at ``path`` under ``root`` (current root by default)."""
        _, _, edge, found = self._walk(path, root)
        if not found or edge is None:
            return None
        return self._payloads[edge.node_hash]

    def prove_inclusion(self, path: int, root: bytes | None = None) -> InclusionProof:
        mask, siblings, _, found = self._walk(path, root)
        if not found:
            raise KeyError(hex(path))
        return InclusionProof(mask, tuple(siblings))

    def prove_exclusion(self, path: int, root: bytes | None = None) -> ExclusionProof:
        mask, siblings, edge, found = self._walk(path, root)
        if found:
            raise KeyError(hex(path))
        return ExclusionProof(mask, tuple(siblings), edge)

    def items(self, root: bytes | None = None) -> Iterator[tuple[int, bytes]]:
        """Yield (path, payload) for every leaf under ``root``, in path order."""
        edge = self._edge_for(root)
        if edge is None:
            return
        stack: list[tuple[Edge, int, int]] = [(edge, 0, 0)]
        while stack:
            current, prefix, depth = stack.pop()
            depth_after = depth + current.label.length
            prefix |= current.label.data >> depth
            if depth_after == KEY_BITS:
                yield prefix, self._payloads[current.node_hash]
                continue
            left, right = self._nodes[current.node_hash]
            branch_bit = 1 << (KEY_BITS - 1 - depth_after)
            stack.append((right, prefix | branch_bit, depth_after + 1))
            stack.append((left, prefix, depth_after + 1))

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    def prune_history(self, keep: set[bytes] | None = None) -> int:
        """Forget every root except the current one and ``keep``.

        Nodes and payloads only reachable from forgotten roots are dropped.
        Returns the number of roots forgotten.
        """
        keep_roots = set(keep or ()) | {self.root_hash}
        kept = {root: edge for root, edge in self._roots.items() if root in keep_roots}
        dropped = len(self._roots) - len(kept)

        live_nodes: dict[bytes, tuple[Edge, Edge]] = {}
        live_payloads: dict[bytes, bytes] = {}
        stack = [(edge, 0) for edge in kept.values() if edge is not None]
        while stack:
            edge, depth = stack.pop()
            depth_after = depth + edge.label.length
            if depth_after == KEY_BITS:
                live_payloads[edge.node_hash] = self._payloads[edge.node_hash]
            elif edge.node_hash not in live_nodes:
                left, right = self._nodes[edge.node_hash]
                live_nodes[edge.node_hash] = (left, right)
                stack.append((left, depth_after + 1))
                stack.append((right, depth_after + 1))

        self._roots = kept
        self._nodes = live_nodes
        self._payloads = live_payloads
        return dropped

    def copy(self) -> PatriciaTree:
        """Independent tree sharing no mutable state with this one."""
        clone = PatriciaTree()
        clone._nodes = dict(self._nodes)
        clone._payloads = dict(self._payloads)
        clone._roots = dict(self._roots)
        clone._root_edge = self._root_edge
        return clone
