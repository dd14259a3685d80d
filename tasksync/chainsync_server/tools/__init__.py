"""
CLI tools for ChainSync administration.

This module provides command-line tools for:
- init: Create the sync database schema
- stats: Inspect a client's chain and snapshot

Invariants:
    - Tools work offline (no running server required)
"""

from .admin_cli import AdminCLI

__all__ = ["AdminCLI"]
