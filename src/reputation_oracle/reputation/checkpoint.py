# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Saved reputation states, keyed by root hash.

A checkpoint is the full cell set of one state. Loading rebuilds the tree
and refuses the result unless it reproduces the saved root, so a corrupted
file can never silently become a miner's starting state.

Supported backends:
- Memory (for testing)
- Local file system (one JSON file per root)
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from ..core.exceptions import CheckpointIntegrityError, NotFoundError
from .models import CellProof, ReputationCell, ReputationKey
from .store import ReputationStore

logger = logging.getLogger(__name__)


def store_to_dict(store: ReputationStore) -> dict[str, Any]:
    """Serialize the current state of ``store``, cells in uid order."""
    return {
        "root_hash": "0x" + store.root_hash.hex(),
        "n_leaves": store.n_leaves,
        "cells": [{"key": key.to_dict(), "cell": cell.to_dict()} for key, cell in store.items()],
    }


def store_from_dict(data: dict[str, Any]) -> ReputationStore:
    """Rebuild a store and check it against the saved root and leaf count.

    Raises:
        CheckpointIntegrityError: If the rebuilt state differs from the saved one.
    """
    store = ReputationStore.from_cells(
        (ReputationKey.from_dict(item["key"]), ReputationCell.from_dict(item["cell"])) for item in data["cells"]
    )
    expected = data["root_hash"]
    actual = "0x" + store.root_hash.hex()
    if actual != expected or store.n_leaves != int(data["n_leaves"]):
        raise CheckpointIntegrityError(expected, actual)
    return store


class CheckpointBackend(ABC):
    """Abstract base class for checkpoint storage."""

    @property
    @abstractmethod
    def backend_type(self) -> str:
        """Type of backend (e.g., 'memory', 'local')."""
        pass

    @abstractmethod
    def save(self, store: ReputationStore) -> bytes:
        """Save the current state of ``store`` and return its root hash."""
        pass

    @abstractmethod
    def load(self, root_hash: bytes) -> ReputationStore:
        """Load the state saved under ``root_hash``.

        Raises:
            NotFoundError: If no checkpoint exists for the root.
            CheckpointIntegrityError: If the checkpoint does not reproduce the root.
        """
        pass

    @abstractmethod
    def exists(self, root_hash: bytes) -> bool:
        pass

    @abstractmethod
    def list_roots(self) -> list[bytes]:
        pass

    @abstractmethod
    def delete(self, root_hash: bytes) -> bool:
        """Delete a checkpoint. Returns False if there was none."""
        pass

    def historical_proof(self, root_hash: bytes, key: ReputationKey) -> CellProof:
        """Prove ``key`` (or its absence) against a saved root."""
        return self.load(root_hash).cell_proof(key)


class MemoryCheckpointBackend(CheckpointBackend):
    """Keeps serialized checkpoints in a dictionary. Not persistent."""

    def __init__(self) -> None:
        self._checkpoints: dict[bytes, dict[str, Any]] = {}

    @property
    def backend_type(self) -> str:
        return "memory"

    def save(self, store: ReputationStore) -> bytes:
        root = store.root_hash
        self._checkpoints[root] = store_to_dict(store)
        return root

    def load(self, root_hash: bytes) -> ReputationStore:
        if root_hash not in self._checkpoints:
            raise NotFoundError("checkpoint", "0x" + root_hash.hex())
        return store_from_dict(self._checkpoints[root_hash])

    def exists(self, root_hash: bytes) -> bool:
        return root_hash in self._checkpoints

    def list_roots(self) -> list[bytes]:
        return list(self._checkpoints)

    def delete(self, root_hash: bytes) -> bool:
        return self._checkpoints.pop(root_hash, None) is not None

    def clear(self) -> None:
        """Clear all stored checkpoints."""
        self._checkpoints.clear()


class LocalFileCheckpointBackend(CheckpointBackend):
    """Stores each checkpoint as ``<root hex>.json`` under a directory."""

    def __init__(self, base_path: str | Path):
        self._base_path = Path(base_path)
        self._base_path.mkdir(parents=True, exist_ok=True)

    @property
    def backend_type(self) -> str:
        return "local"

    @property
    def base_path(self) -> Path:
        return self._base_path

    def _path(self, root_hash: bytes) -> Path:
        return self._base_path / f"{root_hash.hex()}.json"

    def save(self, store: ReputationStore) -> bytes:
        root = store.root_hash
        path = self._path(root)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(store_to_dict(store), indent=2))
        tmp.replace(path)
        logger.debug("Saved checkpoint %s (%d leaves)", path.name, store.n_leaves)
        return root

    def load(self, root_hash: bytes) -> ReputationStore:
        path = self._path(root_hash)
        if not path.exists():
            raise NotFoundError("checkpoint", "0x" + root_hash.hex())
        try:
            data = json.loads(path.read_text())
        except json.JSONDecodeError as e:
            raise CheckpointIntegrityError("0x" + root_hash.hex(), f"unreadable ({e.msg})") from e
        return store_from_dict(data)

    def exists(self, root_hash: bytes) -> bool:
        return self._path(root_hash).exists()

    def list_roots(self) -> list[bytes]:
        return sorted(bytes.fromhex(p.stem) for p in self._base_path.glob("*.json"))

    def delete(self, root_hash: bytes) -> bool:
        path = self._path(root_hash)
        if not path.exists():
            return False
        path.unlink()
        return True
