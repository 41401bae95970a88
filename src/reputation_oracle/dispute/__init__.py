# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Dispute records; the verifier and state machine live in their own modules."""

from .models import Contest, ContestPhase, ContestState, CycleRecord, SideProgress, Submission, UserLock, Verdict

__all__ = [
    "Contest",
    "ContestPhase",
    "ContestState",
    "CycleRecord",
    "SideProgress",
    "Submission",
    "UserLock",
    "Verdict",
]
