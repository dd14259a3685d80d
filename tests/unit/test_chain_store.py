"""
Unit tests for the SQLite chain store.

Tests cover:
- Version append and parent conflicts
- Child version lookup (found / up to date / gone)
- Snapshot replacement and validation
- Snapshot urgency after appends
"""

import sqlite3
import tempfile
from pathlib import Path

import pytest
import pytest_asyncio

from tasksync.chainsync_server.errors import StoreNotInitializedError
from tasksync.chainsync_server.store.chain_store import ChainStore
from tasksync.chainsync_server.types import (
    ChildVersionFound,
    ChildVersionGone,
    ChildVersionNotFound,
    SnapshotFound,
    SnapshotNotFound,
    SnapshotUrgency,
    VersionAccepted,
    VersionRejected,
)

CLIENT = "11111111-1111-1111-1111-111111111111"
OTHER_CLIENT = "22222222-2222-2222-2222-222222222222"
UNKNOWN_VERSION = "99999999-9999-9999-9999-999999999999"


class TestChainStore:
    """Tests for ChainStore."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest_asyncio.fixture
    async def store(self, data_dir):
        """Create an initialized store."""
        store = ChainStore(str(Path(data_dir) / "sync.db"), wal_mode=False)
        await store.initialize()
        return store

    async def _append_chain(self, store, client_id, count):
        parent = None
        ids = []
        for i in range(count):
            result = await store.append_version(client_id, parent, bytes([i % 256]))
            assert isinstance(result, VersionAccepted)
            ids.append(result.version_id)
            parent = result.version_id
        return ids

    @pytest.mark.asyncio
    async def test_requires_initialization(self, data_dir):
        """Operations fail before the database is created."""
        store = ChainStore(str(Path(data_dir) / "missing.db"))

        with pytest.raises(StoreNotInitializedError):
            await store.get_snapshot(CLIENT)

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, store):
        """Initializing twice keeps existing data."""
        result = await store.append_version(CLIENT, None, b"data")
        await store.initialize()

        client = await store.get_client(CLIENT)
        assert client.latest_version_id == result.version_id

    @pytest.mark.asyncio
    async def test_append_first_version(self, store):
        """First version is accepted with the root as parent."""
        result = await store.append_version(CLIENT, None, b"\x01\x02\x03")

        assert isinstance(result, VersionAccepted)
        assert result.urgency is None

        client = await store.get_client(CLIENT)
        assert client is not None
        assert client.latest_version_id == result.version_id

    @pytest.mark.asyncio
    async def test_append_sequential_chain(self, store):
        """N appends against the previous head all succeed."""
        ids = await self._append_chain(store, CLIENT, 10)

        assert len(set(ids)) == 10
        client = await store.get_client(CLIENT)
        assert client.latest_version_id == ids[-1]

    @pytest.mark.asyncio
    async def test_append_wrong_parent_rejected(self, store):
        """Stale parent is rejected with the actual head."""
        first = await store.append_version(CLIENT, None, b"one")

        result = await store.append_version(CLIENT, None, b"two")

        assert isinstance(result, VersionRejected)
        assert result.expected_parent_version_id == first.version_id

    @pytest.mark.asyncio
    async def test_rejected_append_does_not_mutate(self, store):
        """A rejected append leaves head and chain unchanged."""
        first = await store.append_version(CLIENT, None, b"one")

        await store.append_version(CLIENT, UNKNOWN_VERSION, b"two")

        client = await store.get_client(CLIENT)
        assert client.latest_version_id == first.version_id
        child = await store.get_child_version(CLIENT, first.version_id)
        assert isinstance(child, ChildVersionNotFound)

    @pytest.mark.asyncio
    async def test_rejected_append_on_new_client(self, store):
        """Non-root parent on an empty chain is rejected with the root."""
        result = await store.append_version(CLIENT, UNKNOWN_VERSION, b"data")

        assert isinstance(result, VersionRejected)
        assert result.expected_parent_version_id is None
        assert await store.get_client(CLIENT) is None

    @pytest.mark.asyncio
    async def test_retry_after_conflict(self, store):
        """Retrying with the reported head succeeds."""
        first = await store.append_version(CLIENT, None, b"one")
        rejected = await store.append_version(CLIENT, None, b"two")

        retried = await store.append_version(
            CLIENT, rejected.expected_parent_version_id, b"two"
        )

        assert isinstance(retried, VersionAccepted)
        child = await store.get_child_version(CLIENT, first.version_id)
        assert child.version.version_id == retried.version_id

    @pytest.mark.asyncio
    async def test_clients_are_independent(self, store):
        """Each client has its own chain."""
        a = await store.append_version(CLIENT, None, b"a")
        b = await store.append_version(OTHER_CLIENT, None, b"b")

        assert isinstance(a, VersionAccepted)
        assert isinstance(b, VersionAccepted)

        child = await store.get_child_version(OTHER_CLIENT, None)
        assert child.version.version_id == b.version_id
        assert child.version.history_segment == b"b"

    @pytest.mark.asyncio
    async def test_chain_walk_from_root(self, store):
        """The whole chain is retrievable one child at a time."""
        ids = await self._append_chain(store, CLIENT, 5)

        walked = []
        parent = None
        while True:
            result = await store.get_child_version(CLIENT, parent)
            if not isinstance(result, ChildVersionFound):
                assert isinstance(result, ChildVersionNotFound)
                break
            assert result.version.parent_version_id == parent
            walked.append(result.version.version_id)
            parent = result.version.version_id

        assert walked == ids

    @pytest.mark.asyncio
    async def test_child_version_payload(self, store):
        """Child lookup returns the stored bytes unchanged."""
        payload = bytes(range(256))
        result = await store.append_version(CLIENT, None, payload)

        child = await store.get_child_version(CLIENT, None)

        assert isinstance(child, ChildVersionFound)
        assert child.version.version_id == result.version_id
        assert child.version.parent_version_id is None
        assert child.version.history_segment == payload
        assert child.version.seq == 1

    @pytest.mark.asyncio
    async def test_child_of_head_is_not_found(self, store):
        """Querying the head means the caller is up to date."""
        ids = await self._append_chain(store, CLIENT, 3)
        await store.add_snapshot(CLIENT, ids[0], b"snap")

        result = await store.get_child_version(CLIENT, ids[-1])

        assert isinstance(result, ChildVersionNotFound)

    @pytest.mark.asyncio
    async def test_child_of_unknown_client(self, store):
        """Unknown client has nothing to fetch."""
        result = await store.get_child_version(CLIENT, None)

        assert isinstance(result, ChildVersionNotFound)

    @pytest.mark.asyncio
    async def test_unknown_parent_without_snapshot(self, store):
        """Unknown parent without a snapshot is not found."""
        await self._append_chain(store, CLIENT, 2)

        result = await store.get_child_version(CLIENT, UNKNOWN_VERSION)

        assert isinstance(result, ChildVersionNotFound)

    @pytest.mark.asyncio
    async def test_unknown_parent_with_snapshot_is_gone(self, store):
        """Unknown parent with a snapshot elsewhere is gone."""
        ids = await self._append_chain(store, CLIENT, 1)
        assert await store.add_snapshot(CLIENT, ids[0], b"snap")

        result = await store.get_child_version(CLIENT, UNKNOWN_VERSION)

        assert isinstance(result, ChildVersionGone)

    @pytest.mark.asyncio
    async def test_pruned_root_is_gone(self, store):
        """Root lookup after the first version was pruned is gone."""
        ids = await self._append_chain(store, CLIENT, 3)
        await store.add_snapshot(CLIENT, ids[1], b"snap")

        # Simulate external pruning of history before the snapshot
        conn = sqlite3.connect(str(store.db_path))
        conn.execute("DELETE FROM versions WHERE version_id = ?", (ids[0],))
        conn.commit()
        conn.close()

        result = await store.get_child_version(CLIENT, None)
        assert isinstance(result, ChildVersionGone)

        result = await store.get_child_version(CLIENT, ids[0])
        assert isinstance(result, ChildVersionFound)

    @pytest.mark.asyncio
    async def test_add_snapshot(self, store):
        """Snapshot is stored and returned byte-identical."""
        ids = await self._append_chain(store, CLIENT, 2)

        stored = await store.add_snapshot(CLIENT, ids[1], b"\x00full state\xff")
        assert stored is True

        result = await store.get_snapshot(CLIENT)
        assert isinstance(result, SnapshotFound)
        assert result.version_id == ids[1]
        assert result.snapshot_data == b"\x00full state\xff"

    @pytest.mark.asyncio
    async def test_add_snapshot_replaces_previous(self, store):
        """Second snapshot fully replaces the first."""
        ids = await self._append_chain(store, CLIENT, 3)
        await store.add_snapshot(CLIENT, ids[0], b"old")

        await store.add_snapshot(CLIENT, ids[2], b"new")

        result = await store.get_snapshot(CLIENT)
        assert result.version_id == ids[2]
        assert result.snapshot_data == b"new"

        conn = sqlite3.connect(str(store.db_path))
        count = conn.execute("SELECT COUNT(*) FROM snapshots").fetchone()[0]
        conn.close()
        assert count == 1

    @pytest.mark.asyncio
    async def test_add_snapshot_unknown_version(self, store):
        """Snapshot of a nonexistent version is rejected."""
        await self._append_chain(store, CLIENT, 1)

        stored = await store.add_snapshot(CLIENT, UNKNOWN_VERSION, b"snap")

        assert stored is False
        assert isinstance(await store.get_snapshot(CLIENT), SnapshotNotFound)

    @pytest.mark.asyncio
    async def test_add_snapshot_other_clients_version(self, store):
        """Snapshot of another client's version is rejected without mutation."""
        ids = await self._append_chain(store, CLIENT, 1)
        other_ids = await self._append_chain(store, OTHER_CLIENT, 1)
        await store.add_snapshot(CLIENT, ids[0], b"mine")

        stored = await store.add_snapshot(CLIENT, other_ids[0], b"theirs")

        assert stored is False
        result = await store.get_snapshot(CLIENT)
        assert result.version_id == ids[0]
        assert result.snapshot_data == b"mine"

    @pytest.mark.asyncio
    async def test_add_snapshot_root(self, store):
        """The root is not a version and cannot be snapshotted."""
        stored = await store.add_snapshot(CLIENT, None, b"snap")

        assert stored is False

    @pytest.mark.asyncio
    async def test_get_snapshot_none(self, store):
        """No snapshot stored yet."""
        result = await store.get_snapshot(CLIENT)

        assert isinstance(result, SnapshotNotFound)

    @pytest.mark.asyncio
    async def test_count_versions_since_snapshot(self, store):
        """Versions are counted after the snapshot's version."""
        ids = await self._append_chain(store, CLIENT, 5)
        assert await store.count_versions_since_snapshot(CLIENT) == 5

        await store.add_snapshot(CLIENT, ids[1], b"snap")
        assert await store.count_versions_since_snapshot(CLIENT) == 3

        await store.add_snapshot(CLIENT, ids[4], b"snap")
        assert await store.count_versions_since_snapshot(CLIENT) == 0

    @pytest.mark.asyncio
    async def test_client_stats(self, store):
        """Stats report head, counts and snapshot."""
        ids = await self._append_chain(store, CLIENT, 4)
        await store.add_snapshot(CLIENT, ids[1], b"snap")

        stats = await store.get_client_stats(CLIENT)

        assert stats["latest_version_id"] == ids[-1]
        assert stats["versions"] == 4
        assert stats["snapshot_version_id"] == ids[1]
        assert stats["snapshot_bytes"] == 4
        assert stats["versions_since_snapshot"] == 2
        assert stats["snapshot_urgency"] is None

        assert await store.get_client_stats(OTHER_CLIENT) is None


class TestSnapshotUrgencyOnAppend:
    """Urgency signal returned by append_version."""

    @pytest.fixture
    def data_dir(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    async def _store(self, data_dir, threshold):
        store = ChainStore(
            str(Path(data_dir) / "sync.db"), wal_mode=False, snapshot_threshold=threshold
        )
        await store.initialize()
        return store

    @pytest.mark.asyncio
    async def test_default_threshold(self, data_dir):
        """No signal until 100 versions, low at 100, high at 200."""
        store = await self._store(data_dir, 100)

        parent = None
        for n in range(1, 201):
            result = await store.append_version(CLIENT, parent, b"x")
            parent = result.version_id
            if n < 100:
                assert result.urgency is None, n
            elif n < 200:
                assert result.urgency == SnapshotUrgency.LOW, n
            else:
                assert result.urgency == SnapshotUrgency.HIGH

    @pytest.mark.asyncio
    async def test_snapshot_resets_count(self, data_dir):
        """Versions before the snapshot no longer count."""
        store = await self._store(data_dir, 3)

        parent = None
        for _ in range(4):
            result = await store.append_version(CLIENT, parent, b"x")
            parent = result.version_id
        assert result.urgency == SnapshotUrgency.LOW

        await store.add_snapshot(CLIENT, parent, b"snap")

        urgencies = []
        for _ in range(6):
            result = await store.append_version(CLIENT, parent, b"x")
            parent = result.version_id
            urgencies.append(result.urgency)

        assert urgencies == [
            None,
            None,
            SnapshotUrgency.LOW,
            SnapshotUrgency.LOW,
            SnapshotUrgency.LOW,
            SnapshotUrgency.HIGH,
        ]
