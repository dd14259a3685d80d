"""
ChainSync Server - sync server for TaskChampion clients.

Each client (identified by a client id shared across its devices) keeps
an append-only, strictly linear chain of encrypted history segments plus
at most one compacted snapshot. The server:
- Arbitrates concurrent chain extensions with a compare-and-swap on the head
- Answers "what follows version X" queries one version at a time
- Keeps only the latest snapshot per client
- Advises clients when a new snapshot is due

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌──────────────┐
    │   Client    │────▶│    HTTP     │────▶│ SyncServicer │
    │ (replica)   │     │ + allowlist │     │              │
    └─────────────┘     └─────────────┘     └──────┬───────┘
                                                   │
                                                   ▼
                                            ┌──────────────┐
                                            │  ChainStore  │
                                            │   (SQLite)   │
                                            └──────────────┘

Invariants:
    - Payloads are opaque; the server never decrypts or merges task data
    - The server holds no in-process state between requests
    - Versions are immutable once stored

How to change safely:
    - Wire headers and status codes must stay compatible with clients
    - Store changes must keep the head update in the insert transaction

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
