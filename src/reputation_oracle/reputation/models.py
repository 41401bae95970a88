# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Data model for reputation state.

Byte layouts here are part of the wire format: a key or payload encoded any
other way produces a different root hash than every other miner.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..core.exceptions import NotFoundError, ProofVerificationError
from ..tree.patricia import (
    ExclusionProof,
    InclusionProof,
    compute_root,
    compute_root_without,
)

INT128_MIN = -(2**127)
INT128_MAX = 2**127 - 1
UINT128_MAX = 2**128 - 1
ADDRESS_BYTES = 20

# The organization-wide aggregate lives under the zero participant
AGGREGATE_PARTICIPANT = "0x" + "00" * ADDRESS_BYTES


def normalize_address(value: str) -> str:
    """Lower-case, 0x-prefixed, 20-byte hex address."""
    text = value.lower()
    if not text.startswith("0x"):
        text = "0x" + text
    body = text[2:]
    if len(body) != ADDRESS_BYTES * 2:
        raise ValueError(f"Address must be {ADDRESS_BYTES} bytes: {value!r}")
    int(body, 16)
    return text


def canonical_json(data: Any) -> bytes:
    """Deterministic JSON encoding used for every hashed record."""
    return json.dumps(data, sort_keys=True, separators=(",", ":")).encode("utf-8")


# =============================================================================
# KEYS AND CELLS
# =============================================================================


@dataclass(frozen=True)
class ReputationKey:
    """(organization, category, participant) identifying one cell."""

    organization: str
    category: int
    participant: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "organization", normalize_address(self.organization))
        object.__setattr__(self, "participant", normalize_address(self.participant))
        if not 0 <= self.category < 2**256:
            raise ValueError(f"Category id out of range: {self.category}")

    def to_bytes(self) -> bytes:
        return (
            bytes.fromhex(self.organization[2:])
            + self.category.to_bytes(32, "big")
            + bytes.fromhex(self.participant[2:])
        )

    @property
    def path(self) -> int:
        """Position of this key in the reputation tree."""
        return int.from_bytes(hashlib.sha256(self.to_bytes()).digest(), "big")

    @property
    def is_aggregate(self) -> bool:
        return self.participant == AGGREGATE_PARTICIPANT

    def with_category(self, category: int) -> ReputationKey:
        return ReputationKey(self.organization, category, self.participant)

    def to_dict(self) -> dict[str, Any]:
        return {
            "organization": self.organization,
            "category": self.category,
            "participant": self.participant,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReputationKey:
        return cls(data["organization"], int(data["category"]), data["participant"])

    def __str__(self) -> str:
        return f"{self.organization}/{self.category}/{self.participant}"


@dataclass(frozen=True)
class ReputationCell:
    """Signed 128-bit value plus the uid assigned when the cell was created."""

    value: int
    uid: int

    def __post_init__(self) -> None:
        if not INT128_MIN <= self.value <= INT128_MAX:
            raise ValueError(f"Reputation value outside int128: {self.value}")
        if not 0 <= self.uid <= UINT128_MAX:
            raise ValueError(f"Reputation uid outside uint128: {self.uid}")

    def to_payload(self) -> bytes:
        return self.value.to_bytes(16, "big", signed=True) + self.uid.to_bytes(16, "big")

    @classmethod
    def from_payload(cls, payload: bytes) -> ReputationCell:
        if len(payload) != 32:
            raise ValueError(f"Reputation payload must be 32 bytes, got {len(payload)}")
        return cls(
            value=int.from_bytes(payload[:16], "big", signed=True),
            uid=int.from_bytes(payload[16:], "big"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"value": str(self.value), "uid": str(self.uid)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReputationCell:
        return cls(value=int(data["value"]), uid=int(data["uid"]))


# =============================================================================
# LOG ENTRIES AND CATEGORIES
# =============================================================================


class UpdateLogEntry(BaseModel):
    """One immutable record of the closed update log."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    participant: str = Field(..., description="Participant whose reputation changes")
    amount: int = Field(..., alias="amountRaw", description="Signed reputation change")
    category: int = Field(..., alias="categoryId", ge=0, description="Category the change originates in")
    organization: str = Field(..., alias="organizationId", description="Organization owning the reputation")
    n_updates: int = Field(..., alias="nUpdates", ge=1, description="Elementary updates this entry expands into")
    n_previous_updates: int = Field(
        ..., alias="nPreviousUpdates", ge=0, description="Elementary updates of all earlier entries"
    )

    @field_validator("participant", "organization")
    @classmethod
    def _normalize(cls, value: str) -> str:
        return normalize_address(value)

    @field_validator("amount")
    @classmethod
    def _within_int128(cls, value: int) -> int:
        if not INT128_MIN <= value <= INT128_MAX:
            raise ValueError("amount must fit in a signed 128-bit integer")
        return value

    def to_dict(self) -> dict[str, Any]:
        data = self.model_dump(by_alias=True)
        data["amountRaw"] = str(self.amount)
        return data


@dataclass
class CategoryTree:
    """Category hierarchy of every organization.

    Ancestors are listed nearest first and descendants in creation order,
    which is the order their updates appear in an expanded log entry.
    """

    parents: dict[int, int | None] = field(default_factory=dict)

    def add(self, category: int, parent: int | None = None) -> None:
        if category in self.parents:
            raise ValueError(f"Category {category} already exists")
        if parent is not None and parent not in self.parents:
            raise NotFoundError("category", str(parent))
        self.parents[category] = parent

    def __contains__(self, category: object) -> bool:
        return category in self.parents

    def ancestors(self, category: int) -> list[int]:
        if category not in self.parents:
            raise NotFoundError("category", str(category))
        chain = []
        parent = self.parents[category]
        while parent is not None:
            chain.append(parent)
            parent = self.parents[parent]
        return chain

    def descendants(self, category: int) -> list[int]:
        if category not in self.parents:
            raise NotFoundError("category", str(category))
        return [c for c in self.parents if c != category and category in self.ancestors(c)]

    def updates_per_half(self, category: int, amount: int) -> int:
        """Updates one participant half of an entry expands into, given the current tree."""
        base = 1 + len(self.ancestors(category))
        if amount < 0:
            base += len(self.descendants(category))
        return base

    def to_dict(self) -> dict[str, Any]:
        return {"categories": [{"id": c, "parent": p} for c, p in self.parents.items()]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CategoryTree:
        tree = cls()
        for item in data.get("categories", []):
            tree.add(int(item["id"]), None if item.get("parent") is None else int(item["parent"]))
        return tree


# =============================================================================
# ELEMENTARY STEPS AND THEIR WITNESSES
# =============================================================================


class StepKind(StrEnum):
    DECAY = "decay"
    DESCENDANT = "descendant"
    ORIGIN = "origin"
    ANCESTOR = "ancestor"


@dataclass(frozen=True)
class PlannedUpdate:
    """Key and role of one update implied by a log entry."""

    key: ReputationKey
    kind: StepKind
    origin_key: ReputationKey | None = None
    child_key: ReputationKey | None = None


@dataclass(frozen=True)
class ElementaryStep:
    """One atomic mutation of the reputation store."""

    global_index: int
    key: ReputationKey
    kind: StepKind
    amount_delta: int
    is_new_leaf: bool
    before: ReputationCell | None
    after: ReputationCell
    entry_index: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "global_index": self.global_index,
            "key": self.key.to_dict(),
            "kind": self.kind.value,
            "amount_delta": str(self.amount_delta),
            "is_new_leaf": self.is_new_leaf,
            "before": self.before.to_dict() if self.before else None,
            "after": self.after.to_dict(),
            "entry_index": self.entry_index,
        }


@dataclass(frozen=True)
class CellProof:
    """A key's cell (or its absence) proven against some reputation root."""

    key: ReputationKey
    cell: ReputationCell | None
    proof: InclusionProof | ExclusionProof

    def implied_root(self) -> bytes:
        if self.cell is not None:
            if not isinstance(self.proof, InclusionProof):
                raise ProofVerificationError("Present cell needs an inclusion proof")
            return compute_root(self.key.path, self.cell.to_payload(), self.proof)
        if not isinstance(self.proof, ExclusionProof):
            raise ProofVerificationError("Absent cell needs an exclusion proof")
        return compute_root_without(self.key.path, self.proof)

    def verify(self, root: bytes) -> bool:
        try:
            return self.implied_root() == root
        except ProofVerificationError:
            return False

    @property
    def value(self) -> int:
        return self.cell.value if self.cell else 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key.to_dict(),
            "cell": self.cell.to_dict() if self.cell else None,
            "proof": self.proof.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CellProof:
        cell = ReputationCell.from_dict(data["cell"]) if data.get("cell") else None
        proof: InclusionProof | ExclusionProof
        if cell is not None:
            proof = InclusionProof.from_dict(data["proof"])
        else:
            proof = ExclusionProof.from_dict(data["proof"])
        return cls(ReputationKey.from_dict(data["key"]), cell, proof)


@dataclass(frozen=True)
class StepWitness:
    """Everything needed to check one elementary step in isolation.

    The before proof is an exclusion proof when the step creates the cell.
    Descendant steps also carry the participant's origin and child cells,
    proven against the before root, since their delta depends on both.
    """

    index: int
    before_root: bytes
    before_n_leaves: int
    before: CellProof
    after_root: bytes
    after_n_leaves: int
    after_cell: ReputationCell
    after_proof: InclusionProof
    origin: CellProof | None = None
    child: CellProof | None = None

    @property
    def key(self) -> ReputationKey:
        return self.before.key

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "step",
            "index": self.index,
            "before_root": "0x" + self.before_root.hex(),
            "before_n_leaves": self.before_n_leaves,
            "before": self.before.to_dict(),
            "after_root": "0x" + self.after_root.hex(),
            "after_n_leaves": self.after_n_leaves,
            "after_cell": self.after_cell.to_dict(),
            "after_proof": self.after_proof.to_dict(),
            "origin": self.origin.to_dict() if self.origin else None,
            "child": self.child.to_dict() if self.child else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StepWitness:
        return cls(
            index=int(data["index"]),
            before_root=bytes.fromhex(data["before_root"][2:]),
            before_n_leaves=int(data["before_n_leaves"]),
            before=CellProof.from_dict(data["before"]),
            after_root=bytes.fromhex(data["after_root"][2:]),
            after_n_leaves=int(data["after_n_leaves"]),
            after_cell=ReputationCell.from_dict(data["after_cell"]),
            after_proof=InclusionProof.from_dict(data["after_proof"]),
            origin=CellProof.from_dict(data["origin"]) if data.get("origin") else None,
            child=CellProof.from_dict(data["child"]) if data.get("child") else None,
        )

    def encode(self) -> bytes:
        return canonical_json(self.to_dict())
