# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Mining: justification trees, entry selection, fault strategies and the miner.

Import ``ReputationMiner`` from ``reputation_oracle.mining.miner``; this
package only re-exports the fault strategy, which the replay engine needs.
"""

from .faults import HONEST, Fault, FaultKind

__all__ = ["HONEST", "Fault", "FaultKind"]
