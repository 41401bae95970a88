"""Global test fixtures for the reputation oracle test suite."""

from __future__ import annotations

import os
from collections.abc import Callable

import pytest

from reputation_oracle.core.config import clear_config_cache
from reputation_oracle.ledger.memory import InMemoryLedger
from reputation_oracle.mining.faults import HONEST, Fault
from reputation_oracle.mining.miner import ReputationMiner
from reputation_oracle.reputation.models import CategoryTree, UpdateLogEntry
from reputation_oracle.reputation.rules import ReplayRules

# ============================================================================
# Addresses and ids
# ============================================================================

ORG = "0x" + "11" * 20
OTHER_ORG = "0x" + "12" * 20
ALICE = "0x" + "a1" * 20
BOB = "0x" + "b0" * 20
CAROL = "0x" + "c0" * 20
MINER_1 = "0x" + "01" * 20
MINER_2 = "0x" + "02" * 20
MINER_3 = "0x" + "03" * 20

# Category ids: ROOT -> SKILL -> SUB, and an unrelated OTHER root
ROOT = 1
SKILL = 2
SUB = 3
OTHER = 4

# Small timing constants so any entry qualifies late in the window
CYCLE = 100
WINDOW = 60
STAKE = 10


# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def reset_config():
    """Reset the config singleton around every test."""
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Remove all REPUTATION_ORACLE_ environment variables."""
    for key in list(os.environ.keys()):
        if key.startswith("REPUTATION_ORACLE_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


# ============================================================================
# Domain Fixtures
# ============================================================================


@pytest.fixture
def categories() -> CategoryTree:
    tree = CategoryTree()
    tree.add(ROOT)
    tree.add(SKILL, ROOT)
    tree.add(SUB, SKILL)
    tree.add(OTHER)
    return tree


@pytest.fixture
def rules() -> ReplayRules:
    return ReplayRules()


@pytest.fixture
def untracked_rules() -> ReplayRules:
    """Rules without organization-wide totals: one half per entry."""
    return ReplayRules(track_organization_totals=False)


@pytest.fixture
def make_log(categories) -> Callable[..., list[UpdateLogEntry]]:
    """Build a well-formed log from (participant, amount, category[, organization]) tuples."""

    def _make(items, rules: ReplayRules | None = None, tree: CategoryTree | None = None) -> list[UpdateLogEntry]:
        rules = rules or ReplayRules()
        tree = tree or categories
        entries = []
        running = 0
        for item in items:
            participant, amount, category, *rest = item
            organization = rest[0] if rest else ORG
            half = tree.updates_per_half(category, amount)
            n_updates = half * (2 if rules.track_organization_totals else 1)
            entries.append(
                UpdateLogEntry(
                    participant=participant,
                    amount=amount,
                    category=category,
                    organization=organization,
                    n_updates=n_updates,
                    n_previous_updates=running,
                )
            )
            running += n_updates
        return entries

    return _make


@pytest.fixture
def ledger(categories, rules) -> InMemoryLedger:
    """Ledger with small timing constants; nothing staked yet."""
    return InMemoryLedger(
        categories=categories,
        rules=rules,
        mining_cycle_duration=CYCLE,
        challenge_window_seconds=WINDOW,
        min_stake=STAKE,
    )


@pytest.fixture
def seeded_ledger(ledger) -> InMemoryLedger:
    """Ledger whose current cycle replays a small closed log."""
    ledger.add_log_entry(ALICE, 100, SKILL, ORG)
    ledger.add_log_entry(BOB, 50, SUB, ORG)
    ledger.add_log_entry(ALICE, 30, OTHER, ORG)
    ledger.add_log_entry(ALICE, -40, ROOT, ORG)
    ledger.close_pending_log()
    for miner in (MINER_1, MINER_2, MINER_3):
        ledger.deposit(miner, 5 * STAKE)
    return ledger


@pytest.fixture
def make_miner(rules) -> Callable[..., ReputationMiner]:
    def _make(ledger: InMemoryLedger, miner_id: str, fault: Fault = HONEST) -> ReputationMiner:
        return ReputationMiner(ledger, miner_id, fault=fault, rules=rules)

    return _make


# ============================================================================
# Waiting on the in-memory clock
# ============================================================================


def _waiter(ledger: InMemoryLedger) -> Callable[[], int]:
    """Move the clock to the next moment something can change.

    Late in the submission window (where nearly every entry qualifies),
    then to the window close, then one response window at a time.
    """

    def _wait() -> int:
        window_close = ledger.get_window_open_timestamp() + ledger.mining_cycle_duration
        if ledger.now() < window_close - 1:
            return ledger.set_time(window_close - 1)
        if ledger.now() < window_close:
            return ledger.set_time(window_close)
        return ledger.advance_time(ledger.challenge_window_seconds + 1)

    return _wait


@pytest.fixture
def wait_on() -> Callable[[InMemoryLedger], Callable[[], int]]:
    return _waiter
