# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""
Reputation oracle CLI - offline replay and inspection of reputation states.

Commands:
  reputation-oracle replay     Replay a closed update log into a new state
  reputation-oracle show       List saved states, or the cells of one state
  reputation-oracle prove      Print a proof for one reputation key
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from ..core.config import get_config
from ..core.exceptions import MalformedLogEntryError, ReputationOracleException
from ..core.logging import configure_logging
from ..mining.justification import JustificationTree
from ..reputation.checkpoint import LocalFileCheckpointBackend
from ..reputation.models import CategoryTree, ReputationKey, UpdateLogEntry, normalize_address
from ..reputation.replay import ReplayEngine
from ..reputation.store import ReputationStore

logger = logging.getLogger(__name__)


def parse_root(value: str) -> bytes:
    """Parse a 32-byte root hash given as hex, with or without ``0x``."""
    text = value[2:] if value.startswith("0x") else value
    try:
        root = bytes.fromhex(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a hex root hash: {value}") from None
    if len(root) != 32:
        raise argparse.ArgumentTypeError(f"root hash must be 32 bytes, got {len(root)}")
    return root


def parse_address(value: str) -> str:
    """Parse a 20-byte address given as hex, with or without ``0x``."""
    try:
        return normalize_address(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a 20-byte hex address: {value}") from None


def load_log(path: Path) -> list[UpdateLogEntry]:
    """Read a log file: a JSON list of entries, or ``{"entries": [...]}``.

    Raises:
        MalformedLogEntryError: If the file is not JSON or an entry does
            not validate.
    """
    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise MalformedLogEntryError(f"{path} is not valid JSON: {e}") from e
    if isinstance(data, dict):
        data = data.get("entries", [])
    if not isinstance(data, list):
        raise MalformedLogEntryError(f"{path} does not hold a list of log entries")

    entries = []
    for index, item in enumerate(data):
        try:
            entries.append(UpdateLogEntry.model_validate(item))
        except ValidationError as e:
            error = e.errors()[0]
            field = ".".join(str(part) for part in error["loc"]) or None
            where = f"entry {index}" + (f" {field}" if field else "")
            raise MalformedLogEntryError(f"{where}: {error['msg']}", entry_index=index, field=field) from e
    return entries


def load_categories(path: Path | None) -> CategoryTree:
    if path is None:
        return CategoryTree()
    try:
        return CategoryTree.from_dict(json.loads(path.read_text()))
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        raise ReputationOracleException(f"{path} is not a valid category tree: {e}") from e


def emit(data: Any, as_json: bool) -> None:
    if as_json:
        print(json.dumps(data, indent=2))
        return
    if isinstance(data, dict):
        for key, value in data.items():
            print(f"{key}: {value}")
    else:
        for item in data:
            print(item)


def _backend(args: argparse.Namespace) -> LocalFileCheckpointBackend:
    return LocalFileCheckpointBackend(args.checkpoint_dir or get_config().checkpoint_dir)


# ============================================================================
# Commands
# ============================================================================


def cmd_replay(args: argparse.Namespace) -> int:
    """Replay a log on top of a saved state (or the empty state)."""
    backend = _backend(args)
    store = backend.load(args.from_root) if args.from_root else ReputationStore()
    log = load_log(args.log)
    engine = ReplayEngine(load_categories(args.categories), get_config().replay_rules)

    result = engine.replay(store, log)
    tree = JustificationTree.build(result)
    if args.save:
        backend.save(result.store)

    emit(
        {
            "root_hash": "0x" + result.root_hash.hex(),
            "n_leaves": result.n_leaves,
            "total_steps": result.total_steps,
            "jrh": "0x" + tree.root.hex(),
            "saved": bool(args.save),
        },
        args.json,
    )
    return 0


def cmd_show(args: argparse.Namespace) -> int:
    """List saved roots, or the cells of one saved state."""
    backend = _backend(args)
    if args.root is None:
        roots = ["0x" + root.hex() for root in backend.list_roots()]
        if not roots and not args.json:
            print("No saved states")
            return 0
        emit(roots, args.json)
        return 0

    store = backend.load(args.root)
    if args.organization and args.category is not None:
        emit(store.participants_with_reputation(args.organization, args.category), args.json)
        return 0

    cells = [{"key": key.to_dict(), "cell": cell.to_dict()} for key, cell in store.items()]
    if args.json:
        emit({"root_hash": "0x" + store.root_hash.hex(), "n_leaves": store.n_leaves, "cells": cells}, True)
    else:
        print(f"Root 0x{store.root_hash.hex()} ({store.n_leaves} leaves)")
        for item in cells:
            key, cell = item["key"], item["cell"]
            print(
                f"  uid {cell['uid']:>4}  {key['organization']}  cat {key['category']:<4}"
                f"  {key['participant']}  {cell['value']}"
            )
    return 0


def cmd_prove(args: argparse.Namespace) -> int:
    """Print the cell and proof for one key against a saved root."""
    backend = _backend(args)
    key = ReputationKey(args.organization, args.category, args.participant)
    proof = backend.historical_proof(args.root, key)
    if not proof.verify(args.root):
        print("❌ Proof does not verify against the saved root", file=sys.stderr)
        return 1
    emit(proof.to_dict(), True)
    return 0


# ============================================================================
# Parser
# ============================================================================


def app() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="reputation-oracle",
        description="Replay and inspect reputation states",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  reputation-oracle replay --log log.json --categories categories.json --save
  reputation-oracle replay --log log.json --from 0xabc... --save
  reputation-oracle show
  reputation-oracle show 0xabc... --organization 0x11.. --category 1
  reputation-oracle prove 0xabc... --organization 0x11.. --category 1 --participant 0x22..
        """,
    )
    parser.add_argument("--checkpoint-dir", help="Directory of saved states (default from config)")
    parser.add_argument("--log-level", default="WARNING", help="Log level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # replay
    replay_parser = subparsers.add_parser("replay", help="Replay a closed update log")
    replay_parser.add_argument("--log", type=Path, required=True, help="JSON file of update log entries")
    replay_parser.add_argument("--categories", type=Path, help="JSON file of the category tree")
    replay_parser.add_argument("--from", dest="from_root", type=parse_root, help="Saved root to start from")
    replay_parser.add_argument("--save", action="store_true", help="Save the resulting state")
    replay_parser.add_argument("--json", action="store_true", help="Output JSON")

    # show
    show_parser = subparsers.add_parser("show", help="List saved states or show one")
    show_parser.add_argument("root", nargs="?", type=parse_root, help="Saved root to show")
    show_parser.add_argument("--organization", type=parse_address, help="Only participants of this organization")
    show_parser.add_argument("--category", type=int, help="Only participants in this category")
    show_parser.add_argument("--json", action="store_true", help="Output JSON")

    # prove
    prove_parser = subparsers.add_parser("prove", help="Prove one key against a saved root")
    prove_parser.add_argument("root", type=parse_root, help="Saved root")
    prove_parser.add_argument("--organization", type=parse_address, required=True)
    prove_parser.add_argument("--category", type=int, required=True)
    prove_parser.add_argument("--participant", type=parse_address, required=True)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = app()
    args = parser.parse_args(argv)
    configure_logging(level=args.log_level, json_format=False)

    commands = {
        "replay": cmd_replay,
        "show": cmd_show,
        "prove": cmd_prove,
    }

    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 1
    try:
        return handler(args)
    except ReputationOracleException as e:
        logger.debug("Command failed", exc_info=True)
        print(f"❌ {e.message}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
