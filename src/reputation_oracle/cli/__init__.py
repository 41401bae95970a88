# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Reputation oracle CLI - offline replay and inspection."""

from .main import app, main

__all__ = ["main", "app"]
