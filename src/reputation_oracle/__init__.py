# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Reputation oracle - replay, commit and defend decentralized reputation.

A miner replays each cycle's closed update log into a Merkle-committed
reputation store, commits to every elementary step in a justification
tree, submits the resulting root with staked entries, and defends it in
an elimination bracket of binary-search disputes.

Architecture:
  tree        Patricia (reputation) and fixed-shape Merkle (justification) trees
  reputation  Keys, cells, replay rules, the store and its checkpoints
  mining      Justification tree, entry selection, fault strategies, the miner
  dispute     Contest records, the verifier and the client state machine
  ledger      The external ledger boundary and an in-memory reference ledger

CLI entry point: ``reputation-oracle``
"""

__version__ = "0.1.0"
