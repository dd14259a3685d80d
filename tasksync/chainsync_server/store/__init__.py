"""
Store module for ChainSync - persistent chain and snapshot state.

This module handles:
- Client registry (chain head per client)
- Append-only version chains with optimistic concurrency
- Single-snapshot retention per client

Invariants:
    - Every multi-statement mutation runs in one SQLite transaction
    - No process-wide mutable state; everything is keyed by client id
"""

from .chain_store import ChainStore

__all__ = [
    "ChainStore",
]
