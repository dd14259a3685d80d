"""
Admin CLI tool for ChainSync.

This tool inspects and prepares the sync database offline:
- init: Create the database file and schema
- stats: Show chain and snapshot statistics for a client

Usage:
    chainsync-admin --db /var/lib/chainsync/chainsync.db init
    chainsync-admin --db /var/lib/chainsync/chainsync.db stats <client_id>

Invariants:
    - Tools never modify chains or snapshots
    - Output of stats is deterministic (sorted JSON)
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from typing import Any

from ..errors import StoreNotInitializedError
from ..store import ChainStore
from ..urgency import DEFAULT_SNAPSHOT_VERSION_THRESHOLD


class AdminCLI:
    """CLI tool for sync database administration.

    Example:
        >>> cli = AdminCLI(store)
        >>> await cli.stats("0c5e...")  # Returns dict or None
    """

    def __init__(self, store: ChainStore) -> None:
        self.store = store

    async def init(self) -> str:
        """Create the database schema.

        Returns:
            Path of the initialized database
        """
        await self.store.initialize()
        return str(self.store.db_path)

    async def stats(self, client_id: str) -> dict[str, Any] | None:
        """Get statistics for a client.

        Args:
            client_id: Client identifier

        Returns:
            Statistics dictionary, or None if the client is unknown
        """
        return await self.store.get_client_stats(client_id)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="ChainSync administration tool")
    parser.add_argument(
        "--db",
        default=os.getenv("DATABASE_PATH", "/var/lib/chainsync/chainsync.db"),
        help="Path to the sync database (default: $DATABASE_PATH)",
    )
    parser.add_argument(
        "--threshold",
        type=int,
        default=int(
            os.getenv("SNAPSHOT_VERSION_THRESHOLD", str(DEFAULT_SNAPSHOT_VERSION_THRESHOLD))
        ),
        help="Snapshot version threshold used to report urgency",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init", help="Create the database schema")

    stats_parser = subparsers.add_parser("stats", help="Show statistics for a client")
    stats_parser.add_argument("client_id", help="Client id (X-Client-Id)")

    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point for the admin tool."""
    args = build_parser().parse_args(argv)
    store = ChainStore(args.db, snapshot_threshold=args.threshold)
    cli = AdminCLI(store)

    if args.command == "init":
        path = asyncio.run(cli.init())
        print(f"Initialized {path}", file=sys.stderr)
        return 0

    try:
        stats = asyncio.run(cli.stats(args.client_id))
    except StoreNotInitializedError as e:
        print(e.message, file=sys.stderr)
        return 1

    if stats is None:
        print(f"Unknown client: {args.client_id}", file=sys.stderr)
        return 1

    print(json.dumps(stats, indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    sys.exit(main())
