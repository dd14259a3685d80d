"""
Protocol constants and record/result types for the ChainSync server.

This module defines the wire-level constants of the TaskChampion sync
protocol together with the typed records and operation outcomes passed
between the store and the protocol handler.

Invariants:
    - The root of a chain is represented as None inside the server
    - NIL_VERSION_ID only exists at the wire boundary
    - Payloads are opaque bytes and are never inspected

How to change safely:
    - Header names and content types are compatibility-significant
    - Add new result variants rather than changing existing ones
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import Enum

# Wire form of "no parent" (base of the chain)
NIL_VERSION_ID = "00000000-0000-0000-0000-000000000000"


class ContentType:
    """Content types used by the protocol."""

    HISTORY_SEGMENT = "application/vnd.taskchampion.history-segment"
    SNAPSHOT = "application/vnd.taskchampion.snapshot"


class Headers:
    """Custom headers used by the protocol."""

    CLIENT_ID = "X-Client-Id"
    VERSION_ID = "X-Version-Id"
    PARENT_VERSION_ID = "X-Parent-Version-Id"
    SNAPSHOT_REQUEST = "X-Snapshot-Request"


class SnapshotUrgency(Enum):
    """How overdue a client is for submitting a fresh snapshot."""

    LOW = "low"
    HIGH = "high"

    def header_value(self) -> str:
        return f"urgency={self.value}"


def parse_version_id(value: str) -> str | None:
    """Convert a wire version id into its canonical form.

    Ids that are not UUIDs are kept verbatim; they can never match a
    stored version, so lookups against them simply miss.

    Args:
        value: Version id as received on the wire

    Returns:
        Canonical UUID string, or None for the nil UUID (chain root)
    """
    try:
        parsed = uuid.UUID(value)
    except ValueError:
        return value
    if parsed.int == 0:
        return None
    return str(parsed)


def format_version_id(version_id: str | None) -> str:
    """Convert a version id (or None for the root) into its wire form."""
    return NIL_VERSION_ID if version_id is None else version_id


@dataclass
class Client:
    """Registry entry for a client.

    Attributes:
        client_id: Client identifier shared by all devices of one account
        latest_version_id: Current chain head (None if empty)
        created_at: Creation timestamp (Unix ms)
        updated_at: Last head update timestamp (Unix ms)
    """

    client_id: str
    latest_version_id: str | None
    created_at: int
    updated_at: int


@dataclass
class Version:
    """A history segment in a client's chain.

    Attributes:
        version_id: Server-generated version UUID
        client_id: Owning client
        parent_version_id: Preceding version (None for the first version)
        history_segment: Encrypted history segment bytes
        created_at: Creation timestamp (Unix ms)
        seq: Position in the chain (1 for the first version)
    """

    version_id: str
    client_id: str
    parent_version_id: str | None
    history_segment: bytes
    created_at: int
    seq: int


@dataclass
class Snapshot:
    """The single live snapshot of a client."""

    client_id: str
    version_id: str
    snapshot_data: bytes
    created_at: int
    version_seq: int


@dataclass(frozen=True)
class VersionAccepted:
    """The new version was appended and is now the chain head."""

    version_id: str
    urgency: SnapshotUrgency | None = None


@dataclass(frozen=True)
class VersionRejected:
    """The declared parent was not the chain head; nothing was written."""

    expected_parent_version_id: str | None


AddVersionResult = VersionAccepted | VersionRejected


@dataclass(frozen=True)
class ChildVersionFound:
    version: Version


@dataclass(frozen=True)
class ChildVersionNotFound:
    """No child exists; the caller is up to date."""


@dataclass(frozen=True)
class ChildVersionGone:
    """The requested parent is unreachable; history was compacted past it."""


GetChildVersionResult = ChildVersionFound | ChildVersionNotFound | ChildVersionGone


@dataclass(frozen=True)
class SnapshotFound:
    version_id: str
    snapshot_data: bytes


@dataclass(frozen=True)
class SnapshotNotFound:
    pass


GetSnapshotResult = SnapshotFound | SnapshotNotFound
