# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""The external ledger boundary. ``InMemoryLedger`` lives in ``ledger.memory``."""

from .interface import Ledger

__all__ = ["Ledger"]
