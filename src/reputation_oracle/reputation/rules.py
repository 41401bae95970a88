# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Replay rules shared by the replay engine and the challenge verifier.

Both sides of a dispute must compute exactly the same thing, so every rule
that turns a log entry or a decay step into a store mutation lives here and
nowhere else.
"""

from __future__ import annotations

import bisect
from dataclasses import dataclass

from ..core.exceptions import MalformedLogEntryError
from .models import (
    AGGREGATE_PARTICIPANT,
    INT128_MAX,
    INT128_MIN,
    CategoryTree,
    PlannedUpdate,
    ReputationKey,
    StepKind,
    UpdateLogEntry,
)


@dataclass(frozen=True)
class ReplayRules:
    """Constants pinned to the external verifier."""

    decay_numerator: int = 992327946262944
    decay_denominator: int = 1000000000000000
    track_organization_totals: bool = True

    def decay(self, value: int) -> int:
        return decay(value, self)


def clamp(value: int) -> int:
    """Saturate at the signed 128-bit bounds."""
    return max(INT128_MIN, min(INT128_MAX, value))


def decay(value: int, rules: ReplayRules) -> int:
    """``floor(value * numerator / denominator)``, clamped."""
    return clamp(value * rules.decay_numerator // rules.decay_denominator)


def _div_toward_zero(numerator: int, denominator: int) -> int:
    quotient = abs(numerator) // abs(denominator)
    return quotient if (numerator >= 0) == (denominator > 0) else -quotient


def compute_delta(plan: PlannedUpdate, amount: int, origin_value: int = 0, child_value: int = 0) -> int:
    """Change applied by one planned update.

    Origin and ancestor updates apply the entry amount. A descendant update
    takes the share of the loss the participant's child reputation bears
    relative to their origin reputation, and never pushes a non-negative
    child reputation below zero.
    """
    if plan.kind is not StepKind.DESCENDANT:
        return amount
    if origin_value <= 0:
        return 0
    delta = _div_toward_zero(amount * child_value, origin_value)
    if child_value >= 0 and child_value + delta < 0:
        delta = -child_value
    return delta


def expand_entry(
    entry: UpdateLogEntry,
    categories: CategoryTree,
    rules: ReplayRules,
    entry_index: int | None = None,
) -> list[PlannedUpdate]:
    """Ordered updates a log entry implies.

    Each half is the participant's descendants (losses only), then the
    origin category, then its ancestors nearest first. With organization
    totals tracked the aggregate half comes first.

    Raises:
        MalformedLogEntryError: If ``n_updates`` does not fit the category
            tree or the category is unknown.
    """
    if entry.category not in categories:
        raise MalformedLogEntryError(
            f"Unknown category {entry.category}", entry_index=entry_index, field="categoryId"
        )
    ancestors = categories.ancestors(entry.category)
    descendants = categories.descendants(entry.category)

    if rules.track_organization_totals:
        if entry.n_updates % 2:
            raise MalformedLogEntryError(
                f"nUpdates must be even when organization totals are tracked, got {entry.n_updates}",
                entry_index=entry_index,
                field="nUpdates",
            )
        half = entry.n_updates // 2
        holders = [AGGREGATE_PARTICIPANT, entry.participant]
    else:
        half = entry.n_updates
        holders = [entry.participant]

    n_children = half - 1 - len(ancestors)
    if entry.amount >= 0 and n_children != 0:
        raise MalformedLogEntryError(
            f"Entry for category {entry.category} implies {1 + len(ancestors)} updates per half, got {half}",
            entry_index=entry_index,
            field="nUpdates",
        )
    if not 0 <= n_children <= len(descendants):
        raise MalformedLogEntryError(
            f"Entry for category {entry.category} implies {n_children} descendant updates,"
            f" but only {len(descendants)} descendants exist",
            entry_index=entry_index,
            field="nUpdates",
        )

    origin_key = ReputationKey(entry.organization, entry.category, entry.participant)
    plan: list[PlannedUpdate] = []
    for holder in holders:
        for child in descendants[:n_children]:
            plan.append(
                PlannedUpdate(
                    key=ReputationKey(entry.organization, child, holder),
                    kind=StepKind.DESCENDANT,
                    origin_key=origin_key,
                    child_key=origin_key.with_category(child),
                )
            )
        plan.append(PlannedUpdate(ReputationKey(entry.organization, entry.category, holder), StepKind.ORIGIN))
        for parent in ancestors:
            plan.append(PlannedUpdate(ReputationKey(entry.organization, parent, holder), StepKind.ANCESTOR))
    return plan


def validate_log(entries: list[UpdateLogEntry]) -> int:
    """Check ``n_previous_updates`` is the running sum. Returns total log updates."""
    running = 0
    for index, entry in enumerate(entries):
        if entry.n_previous_updates != running:
            raise MalformedLogEntryError(
                f"nPreviousUpdates is {entry.n_previous_updates}, expected {running}",
                entry_index=index,
                field="nPreviousUpdates",
            )
        running += entry.n_updates
    return running


def locate_update(entries: list[UpdateLogEntry], log_update: int) -> tuple[int, int]:
    """Find the entry holding the ``log_update``-th update of the log.

    Returns:
        (entry index, offset within that entry)
    """
    starts = [entry.n_previous_updates for entry in entries]
    index = bisect.bisect_right(starts, log_update) - 1
    if index < 0 or log_update - starts[index] >= entries[index].n_updates:
        raise MalformedLogEntryError(f"No log entry holds update {log_update}")
    return index, log_update - starts[index]


def total_steps(n_leaves_before: int, entries: list[UpdateLogEntry]) -> int:
    """Decay steps for every existing cell plus every log update."""
    return n_leaves_before + sum(entry.n_updates for entry in entries)
