"""
SQLite store for client version chains and snapshots.

This module manages the database that holds, per client:
- The registry entry with the current chain head
- The append-only chain of versions (history segments)
- At most one snapshot

Every client's state is independent. All cross-request coordination
happens through SQLite transactions, so any number of server processes
can share one database file.

Invariants:
    - Inserting a version and advancing the head happen in one transaction
    - A version is accepted only if its parent equals the current head
    - A client has at most one version per parent (enforced by index)
    - A client has at most one snapshot; a new one replaces the old one
    - Snapshots only reference versions owned by the same client

How to change safely:
    - Schema migrations must be backward compatible
    - Keep BEGIN IMMEDIATE on every read-compare-write sequence
    - Never split the version insert and head update across transactions

Table schema:
    clients:
        - client_id TEXT PRIMARY KEY
        - latest_version_id TEXT (NULL while the chain is empty)
        - created_at INTEGER (Unix ms)
        - updated_at INTEGER (Unix ms)

    versions:
        - version_id TEXT PRIMARY KEY (UUID)
        - client_id TEXT
        - parent_version_id TEXT (NULL for the first version)
        - history_segment BLOB
        - created_at INTEGER (Unix ms)
        - seq INTEGER (position in the chain, 1-based)
        - UNIQUE (client_id, parent_version_id)

    snapshots:
        - client_id TEXT PRIMARY KEY
        - version_id TEXT
        - snapshot_data BLOB
        - created_at INTEGER (Unix ms)
        - version_seq INTEGER (seq of the referenced version)
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from ..errors import StoreNotInitializedError
from ..types import (
    AddVersionResult,
    ChildVersionFound,
    ChildVersionGone,
    ChildVersionNotFound,
    Client,
    GetChildVersionResult,
    GetSnapshotResult,
    SnapshotFound,
    SnapshotNotFound,
    Version,
    VersionAccepted,
    VersionRejected,
)
from ..urgency import DEFAULT_SNAPSHOT_VERSION_THRESHOLD, snapshot_urgency

logger = logging.getLogger(__name__)


class ChainStore:
    """SQLite store for version chains and snapshots.

    Thread safety:
        Each database connection is created per-operation.
        Writers serialize on SQLite's write lock (BEGIN IMMEDIATE);
        readers use WAL mode and see a consistent snapshot.

    Example:
        >>> store = ChainStore("/var/lib/chainsync/chainsync.db")
        >>> await store.initialize()
        >>> result = await store.append_version(client_id, None, b"...")
        >>> result.version_id
        '1c8a...'
    """

    # SQLite schema version for migrations
    SCHEMA_VERSION = 1

    def __init__(
        self,
        db_path: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        cache_size_pages: int = -16000,
        snapshot_threshold: int = DEFAULT_SNAPSHOT_VERSION_THRESHOLD,
    ) -> None:
        """Initialize the chain store.

        Args:
            db_path: Path of the SQLite database file
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
            cache_size_pages: SQLite cache size (negative = KB)
            snapshot_threshold: Versions since the last snapshot before
                clients are asked for a new one
        """
        self.db_path = Path(db_path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.cache_size_pages = cache_size_pages
        self.snapshot_threshold = snapshot_threshold
        self._lock = asyncio.Lock()

    @contextmanager
    def _get_connection(self, create: bool = False) -> Iterator[sqlite3.Connection]:
        """Get a database connection.

        Args:
            create: Whether to create the database if it does not exist

        Yields:
            SQLite connection

        Raises:
            StoreNotInitializedError: If database doesn't exist and create=False
        """
        if not create and not self.db_path.exists():
            raise StoreNotInitializedError(str(self.db_path))

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            conn.execute(f"PRAGMA cache_size = {self.cache_size_pages}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")

            yield conn
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create database schema."""
        conn.executescript("""
            -- Schema version tracking
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            -- Client registry with chain head
            CREATE TABLE IF NOT EXISTS clients (
                client_id TEXT PRIMARY KEY,
                latest_version_id TEXT,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL
            );

            -- Version chain
            CREATE TABLE IF NOT EXISTS versions (
                version_id TEXT PRIMARY KEY,
                client_id TEXT NOT NULL,
                parent_version_id TEXT,
                history_segment BLOB NOT NULL,
                created_at INTEGER NOT NULL,
                seq INTEGER NOT NULL
            );

            CREATE UNIQUE INDEX IF NOT EXISTS idx_versions_parent
                ON versions(client_id, parent_version_id)
                WHERE parent_version_id IS NOT NULL;
            CREATE UNIQUE INDEX IF NOT EXISTS idx_versions_root
                ON versions(client_id)
                WHERE parent_version_id IS NULL;
            CREATE INDEX IF NOT EXISTS idx_versions_seq ON versions(client_id, seq);

            -- Latest snapshot per client
            CREATE TABLE IF NOT EXISTS snapshots (
                client_id TEXT PRIMARY KEY,
                version_id TEXT NOT NULL,
                snapshot_data BLOB NOT NULL,
                created_at INTEGER NOT NULL,
                version_seq INTEGER NOT NULL
            );

            -- Record schema version
            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)

    async def initialize(self) -> None:
        """Create the database file and schema if they don't exist."""
        async with self._lock:
            with self._get_connection(create=True) as conn:
                self._create_schema(conn)
                logger.info(f"Initialized sync database: {self.db_path}")

    async def get_client(self, client_id: str) -> Client | None:
        """Get the registry entry for a client.

        Args:
            client_id: Client identifier

        Returns:
            Client or None if the client has never stored a version
        """
        with self._get_connection() as conn:
            cursor = conn.execute("SELECT * FROM clients WHERE client_id = ?", (client_id,))
            row = cursor.fetchone()
            if not row:
                return None

            return Client(
                client_id=row["client_id"],
                latest_version_id=row["latest_version_id"],
                created_at=row["created_at"],
                updated_at=row["updated_at"],
            )

    async def append_version(
        self,
        client_id: str,
        parent_version_id: str | None,
        history_segment: bytes,
    ) -> AddVersionResult:
        """Append a version to the client's chain.

        The version is accepted only if parent_version_id equals the current
        head (None for an empty chain). The head comparison, version insert
        and head update run in one IMMEDIATE transaction, so two writers
        racing on the same head get exactly one acceptance.

        Args:
            client_id: Client identifier
            parent_version_id: Declared parent (None for the first version)
            history_segment: Encrypted history segment

        Returns:
            VersionAccepted with the new id and snapshot urgency, or
            VersionRejected with the actual head
        """
        now = int(time.time() * 1000)

        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                cursor = conn.execute(
                    "SELECT latest_version_id FROM clients WHERE client_id = ?",
                    (client_id,),
                )
                row = cursor.fetchone()
                head = row["latest_version_id"] if row else None

                if parent_version_id != head:
                    conn.execute("ROLLBACK")
                    logger.info(
                        "Rejected version: parent mismatch",
                        extra={
                            "client_id": client_id,
                            "declared_parent": parent_version_id,
                            "expected_parent": head,
                        },
                    )
                    return VersionRejected(expected_parent_version_id=head)

                cursor = conn.execute(
                    "SELECT COALESCE(MAX(seq), 0) FROM versions WHERE client_id = ?",
                    (client_id,),
                )
                seq = cursor.fetchone()[0] + 1
                version_id = str(uuid.uuid4())

                conn.execute(
                    """
                    INSERT INTO versions (version_id, client_id, parent_version_id,
                                          history_segment, created_at, seq)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (version_id, client_id, parent_version_id, history_segment, now, seq),
                )

                if row is None:
                    conn.execute(
                        """
                        INSERT INTO clients (client_id, latest_version_id, created_at, updated_at)
                        VALUES (?, ?, ?, ?)
                        """,
                        (client_id, version_id, now, now),
                    )
                else:
                    # Compare-and-swap on the head
                    cursor = conn.execute(
                        """
                        UPDATE clients SET latest_version_id = ?, updated_at = ?
                        WHERE client_id = ? AND latest_version_id IS ?
                        """,
                        (version_id, now, client_id, parent_version_id),
                    )
                    if cursor.rowcount != 1:
                        current = conn.execute(
                            "SELECT latest_version_id FROM clients WHERE client_id = ?",
                            (client_id,),
                        ).fetchone()["latest_version_id"]
                        conn.execute("ROLLBACK")
                        return VersionRejected(expected_parent_version_id=current)

                urgency = snapshot_urgency(
                    self._count_versions_since_snapshot(conn, client_id),
                    self.snapshot_threshold,
                )

                conn.execute("COMMIT")

            except Exception:
                conn.execute("ROLLBACK")
                raise

        logger.debug(
            "Appended version",
            extra={
                "client_id": client_id,
                "version_id": version_id,
                "seq": seq,
                "urgency": urgency.value if urgency else None,
            },
        )

        return VersionAccepted(version_id=version_id, urgency=urgency)

    async def get_child_version(
        self,
        client_id: str,
        parent_version_id: str | None,
    ) -> GetChildVersionResult:
        """Get the version whose parent is parent_version_id.

        Only the single next version is returned, even if the chain
        continues beyond it.

        When no child exists the result is NotFound if the parent is the
        head (the caller is up to date). Otherwise a snapshot at a different
        version is taken as evidence that history before it was pruned, and
        the result is Gone. Without such a snapshot it is NotFound.

        Args:
            client_id: Client identifier
            parent_version_id: Parent version (None for the chain root)

        Returns:
            ChildVersionFound, ChildVersionNotFound or ChildVersionGone
        """
        with self._get_connection() as conn:
            conn.execute("BEGIN")
            try:
                cursor = conn.execute(
                    """
                    SELECT * FROM versions
                    WHERE client_id = ? AND parent_version_id IS ?
                    """,
                    (client_id, parent_version_id),
                )
                row = cursor.fetchone()
                if row:
                    return ChildVersionFound(version=self._row_to_version(row))

                cursor = conn.execute(
                    "SELECT latest_version_id FROM clients WHERE client_id = ?",
                    (client_id,),
                )
                client = cursor.fetchone()
                if not client or client["latest_version_id"] is None:
                    return ChildVersionNotFound()

                if client["latest_version_id"] == parent_version_id:
                    return ChildVersionNotFound()

                cursor = conn.execute(
                    """
                    SELECT 1 FROM snapshots
                    WHERE client_id = ? AND version_id IS NOT ?
                    LIMIT 1
                    """,
                    (client_id, parent_version_id),
                )
                if cursor.fetchone():
                    logger.info(
                        "Parent version is gone",
                        extra={"client_id": client_id, "parent_version_id": parent_version_id},
                    )
                    return ChildVersionGone()

                return ChildVersionNotFound()
            finally:
                conn.execute("COMMIT")

    async def add_snapshot(
        self,
        client_id: str,
        version_id: str | None,
        snapshot_data: bytes,
    ) -> bool:
        """Store a snapshot, replacing any existing one for the client.

        Args:
            client_id: Client identifier
            version_id: Version the snapshot is valid as of
            snapshot_data: Encrypted snapshot

        Returns:
            True if stored, False if the version doesn't exist for this client
        """
        if version_id is None:
            return False

        now = int(time.time() * 1000)

        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                cursor = conn.execute(
                    "SELECT seq FROM versions WHERE version_id = ? AND client_id = ?",
                    (version_id, client_id),
                )
                row = cursor.fetchone()
                if not row:
                    conn.execute("ROLLBACK")
                    return False

                conn.execute("DELETE FROM snapshots WHERE client_id = ?", (client_id,))
                conn.execute(
                    """
                    INSERT INTO snapshots (client_id, version_id, snapshot_data,
                                           created_at, version_seq)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (client_id, version_id, snapshot_data, now, row["seq"]),
                )

                conn.execute("COMMIT")

            except Exception:
                conn.execute("ROLLBACK")
                raise

        logger.info(
            "Stored snapshot",
            extra={"client_id": client_id, "version_id": version_id, "bytes": len(snapshot_data)},
        )
        return True

    async def get_snapshot(self, client_id: str) -> GetSnapshotResult:
        """Get the latest snapshot for a client.

        Args:
            client_id: Client identifier

        Returns:
            SnapshotFound or SnapshotNotFound
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                "SELECT version_id, snapshot_data FROM snapshots WHERE client_id = ?",
                (client_id,),
            )
            row = cursor.fetchone()
            if not row:
                return SnapshotNotFound()

            return SnapshotFound(
                version_id=row["version_id"],
                snapshot_data=bytes(row["snapshot_data"]),
            )

    async def count_versions_since_snapshot(self, client_id: str) -> int:
        """Count versions stored after the client's snapshot.

        Args:
            client_id: Client identifier

        Returns:
            Versions after the snapshot's version, or all versions if the
            client has no snapshot
        """
        with self._get_connection() as conn:
            return self._count_versions_since_snapshot(conn, client_id)

    def _count_versions_since_snapshot(self, conn: sqlite3.Connection, client_id: str) -> int:
        cursor = conn.execute(
            "SELECT version_seq FROM snapshots WHERE client_id = ?",
            (client_id,),
        )
        snapshot = cursor.fetchone()

        if snapshot:
            cursor = conn.execute(
                "SELECT COUNT(*) FROM versions WHERE client_id = ? AND seq > ?",
                (client_id, snapshot["version_seq"]),
            )
        else:
            cursor = conn.execute(
                "SELECT COUNT(*) FROM versions WHERE client_id = ?",
                (client_id,),
            )
        return cursor.fetchone()[0]

    async def get_client_stats(self, client_id: str) -> dict[str, Any] | None:
        """Get chain statistics for a client.

        Args:
            client_id: Client identifier

        Returns:
            Dictionary with head, counts and snapshot info, or None if the
            client is unknown
        """
        with self._get_connection() as conn:
            cursor = conn.execute("SELECT * FROM clients WHERE client_id = ?", (client_id,))
            client = cursor.fetchone()
            if not client:
                return None

            cursor = conn.execute(
                "SELECT COUNT(*) FROM versions WHERE client_id = ?", (client_id,)
            )
            version_count = cursor.fetchone()[0]

            cursor = conn.execute(
                "SELECT version_id, created_at, length(snapshot_data) FROM snapshots "
                "WHERE client_id = ?",
                (client_id,),
            )
            snapshot = cursor.fetchone()

            since_snapshot = self._count_versions_since_snapshot(conn, client_id)

        urgency = snapshot_urgency(since_snapshot, self.snapshot_threshold)
        return {
            "client_id": client_id,
            "latest_version_id": client["latest_version_id"],
            "versions": version_count,
            "snapshot_version_id": snapshot[0] if snapshot else None,
            "snapshot_created_at": snapshot[1] if snapshot else None,
            "snapshot_bytes": snapshot[2] if snapshot else None,
            "versions_since_snapshot": since_snapshot,
            "snapshot_urgency": urgency.value if urgency else None,
            "created_at": client["created_at"],
            "updated_at": client["updated_at"],
        }

    def _row_to_version(self, row: sqlite3.Row) -> Version:
        return Version(
            version_id=row["version_id"],
            client_id=row["client_id"],
            parent_version_id=row["parent_version_id"],
            history_segment=bytes(row["history_segment"]),
            created_at=row["created_at"],
            seq=row["seq"],
        )
