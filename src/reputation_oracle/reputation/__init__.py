# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Reputation state: keys, cells, replay rules, the store and checkpoints."""

from .checkpoint import CheckpointBackend, LocalFileCheckpointBackend, MemoryCheckpointBackend
from .models import (
    AGGREGATE_PARTICIPANT,
    CategoryTree,
    CellProof,
    ElementaryStep,
    ReputationCell,
    ReputationKey,
    StepKind,
    StepWitness,
    UpdateLogEntry,
)
from .replay import ReplayEngine, ReplayResult
from .rules import ReplayRules
from .store import ReputationStore

__all__ = [
    "AGGREGATE_PARTICIPANT",
    "ReputationKey",
    "ReputationCell",
    "UpdateLogEntry",
    "CategoryTree",
    "StepKind",
    "ElementaryStep",
    "CellProof",
    "StepWitness",
    "ReplayRules",
    "ReputationStore",
    "ReplayEngine",
    "ReplayResult",
    "CheckpointBackend",
    "MemoryCheckpointBackend",
    "LocalFileCheckpointBackend",
]
