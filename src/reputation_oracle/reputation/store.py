# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Reputation store: the Patricia tree of cells plus its leaf count.

``n_leaves`` and the next uid are owned by the store and only move through
``put``; nothing else assigns uids.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator

from ..core.exceptions import NotFoundError, StaleRootError
from ..tree.patricia import EMPTY_ROOT, ExclusionProof, InclusionProof, PatriciaTree
from .models import CellProof, ReputationCell, ReputationKey, normalize_address
from .rules import clamp

logger = logging.getLogger(__name__)


class ReputationStore:
    """Sparse map of reputation keys to cells with snapshot proofs."""

    def __init__(self) -> None:
        self._tree = PatriciaTree()
        self._keys: dict[int, ReputationKey] = {}
        self._uids: dict[int, ReputationKey] = {}
        self._n_leaves = 0
        self._history: dict[bytes, int] = {EMPTY_ROOT: 0}

    @classmethod
    def from_cells(cls, cells: Iterable[tuple[ReputationKey, ReputationCell]]) -> ReputationStore:
        """Rebuild a store from saved cells, inserting them in uid order."""
        store = cls()
        for key, cell in sorted(cells, key=lambda item: item[1].uid):
            store.put(key, cell)
        return store

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def root_hash(self) -> bytes:
        return self._tree.root_hash

    @property
    def n_leaves(self) -> int:
        return self._n_leaves

    def n_leaves_at(self, root: bytes) -> int:
        try:
            return self._history[root]
        except KeyError:
            raise StaleRootError("0x" + root.hex()) from None

    def has_root(self, root: bytes) -> bool:
        return self._tree.has_root(root)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, key: ReputationKey, root: bytes | None = None) -> ReputationCell | None:
        payload = self._tree.get(key.path, root)
        return ReputationCell.from_payload(payload) if payload is not None else None

    def key_for_uid(self, uid: int) -> ReputationKey:
        try:
            return self._uids[uid]
        except KeyError:
            raise NotFoundError("reputation uid", str(uid)) from None

    def prove_inclusion(self, key: ReputationKey, root: bytes | None = None) -> InclusionProof:
        """Proof for ``key`` against ``root`` (the current root by default).

        Raises:
            StaleRootError: If ``root`` is not retained by this store.
            NotFoundError: If the key has no cell under that root.
        """
        try:
            return self._tree.prove_inclusion(key.path, root)
        except KeyError:
            raise NotFoundError("reputation", str(key)) from None

    def prove_exclusion(self, key: ReputationKey, root: bytes | None = None) -> ExclusionProof:
        try:
            return self._tree.prove_exclusion(key.path, root)
        except KeyError:
            raise NotFoundError("absent reputation", str(key)) from None

    def cell_proof(self, key: ReputationKey, root: bytes | None = None) -> CellProof:
        """The key's cell with an inclusion proof, or an exclusion proof if it has none."""
        cell = self.get(key, root)
        if cell is None:
            return CellProof(key, None, self.prove_exclusion(key, root))
        return CellProof(key, cell, self.prove_inclusion(key, root))

    def items(self, root: bytes | None = None) -> Iterator[tuple[ReputationKey, ReputationCell]]:
        """Every (key, cell) under ``root``, in uid order."""
        cells = [
            (self._keys[path], ReputationCell.from_payload(payload))
            for path, payload in self._tree.items(root)
        ]
        cells.sort(key=lambda item: item[1].uid)
        return iter(cells)

    def participants_with_reputation(self, organization: str, category: int, root: bytes | None = None) -> list[str]:
        """Participants (aggregate excluded) holding a cell in one organization and category."""
        organization = normalize_address(organization)
        return [
            key.participant
            for key, _ in self.items(root)
            if key.organization == organization and key.category == category and not key.is_aggregate
        ]

    # -------------------------------------------------------------------------
    # Mutation
    # -------------------------------------------------------------------------

    def put(self, key: ReputationKey, cell: ReputationCell) -> bytes:
        """Write ``cell`` under ``key`` as given. Returns the new root hash.

        A key seen for the first time counts as a new leaf whatever uid
        ``cell`` carries; ``apply`` is the path that assigns uids.
        """
        path = key.path
        is_new = self._tree.get(path) is None
        root = self._tree.insert(path, cell.to_payload())
        if is_new:
            self._n_leaves += 1
            self._keys[path] = key
        self._uids.setdefault(cell.uid, key)
        self._history[root] = self._n_leaves
        return root

    def apply(self, key: ReputationKey, delta: int) -> tuple[ReputationCell | None, ReputationCell]:
        """Add ``delta`` to a cell, creating it with ``uid = n_leaves`` if absent.

        Returns:
            (old cell or None, new cell)
        """
        old = self.get(key)
        if old is None:
            new = ReputationCell(clamp(delta), self._n_leaves)
        else:
            new = ReputationCell(clamp(old.value + delta), old.uid)
        self.put(key, new)
        return old, new

    def force_insert(self, key: ReputationKey, value: int) -> ReputationCell:
        """Create a cell outside of replay. Used only to model a dishonest miner."""
        if self.get(key) is not None:
            raise ValueError(f"Cell already exists: {key}")
        cell = ReputationCell(clamp(value), self._n_leaves)
        self.put(key, cell)
        logger.debug("Force-inserted %s with uid %d", key, cell.uid)
        return cell

    # -------------------------------------------------------------------------
    # Snapshots
    # -------------------------------------------------------------------------

    def fork(self) -> ReputationStore:
        """Independent copy; mutating either store never affects the other."""
        clone = ReputationStore()
        clone._tree = self._tree.copy()
        clone._keys = dict(self._keys)
        clone._uids = dict(self._uids)
        clone._n_leaves = self._n_leaves
        clone._history = dict(self._history)
        return clone

    def prune_history(self, keep: set[bytes] | None = None) -> int:
        """Drop every retained root except the current one and ``keep``."""
        dropped = self._tree.prune_history(keep)
        retained = set(self._tree.retained_roots())
        self._history = {root: n for root, n in self._history.items() if root in retained}
        if dropped:
            logger.debug("Pruned %d historical roots", dropped)
        return dropped
