# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Authenticated trees: the reputation Patricia tree and the justification Merkle tree."""

from .merkle import MerkleProof, MerkleTree, hash_leaf, proof_length
from .patricia import (
    EMPTY_ROOT,
    ExclusionProof,
    InclusionProof,
    PatriciaTree,
    compute_root,
    compute_root_with_insert,
    compute_root_with_update,
    compute_root_without,
)

__all__ = [
    "EMPTY_ROOT",
    "PatriciaTree",
    "InclusionProof",
    "ExclusionProof",
    "compute_root",
    "compute_root_without",
    "compute_root_with_insert",
    "compute_root_with_update",
    "MerkleTree",
    "MerkleProof",
    "hash_leaf",
    "proof_length",
]
