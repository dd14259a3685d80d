"""
Sync protocol service for ChainSync.

This module translates the four protocol operations into store calls and
store outcomes into wire-level responses. It is independent of the HTTP
framework: the HTTP server hands it raw header/path/body values and turns
the returned SyncResponse into an HTTP response.

Invariants:
    - Input is validated before any store call; validation failures raise
      InvalidRequestError and never mutate state
    - The servicer holds no state between calls
    - Conflicts are answered with the actual head so clients can rebase

How to change safely:
    - Status codes and headers are part of the wire protocol
    - Keep validation in front of every store call
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..errors import InvalidRequestError
from ..store import ChainStore
from ..types import (
    ChildVersionFound,
    ChildVersionGone,
    ContentType,
    Headers,
    SnapshotFound,
    VersionRejected,
    format_version_id,
    parse_version_id,
)

logger = logging.getLogger(__name__)


@dataclass
class SyncResponse:
    """Wire-level outcome of a protocol operation."""

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes | None = None
    text: str | None = None


def require_client_id(client_id: str | None) -> str:
    if not client_id:
        raise InvalidRequestError(f"Missing {Headers.CLIENT_ID} header", field_name="client_id")
    return client_id


def require_version_id(value: str | None, what: str) -> str | None:
    if not value:
        raise InvalidRequestError(f"Missing {what}", field_name="version_id")
    return parse_version_id(value)


def check_content_type(content_type: str | None, expected: str) -> None:
    # An absent header is tolerated
    if content_type and expected not in content_type:
        raise InvalidRequestError("Invalid content type", field_name="content_type")


def require_body(body: bytes | None, what: str) -> bytes:
    if not body:
        raise InvalidRequestError(f"Missing {what}", field_name="body")
    return body


class SyncServicer:
    """Stateless sync protocol handler.

    Attributes:
        store: ChainStore holding chains and snapshots
    """

    def __init__(self, store: ChainStore) -> None:
        self.store = store

    async def add_version(
        self,
        client_id: str | None,
        parent_version_id: str | None,
        content_type: str | None,
        history_segment: bytes | None,
    ) -> SyncResponse:
        """Append a history segment to the client's chain.

        Returns:
            200 with X-Version-Id (and X-Snapshot-Request when a snapshot is
            due), or 409 with the expected X-Parent-Version-Id

        Raises:
            InvalidRequestError: If any input is missing or invalid
        """
        client_id = require_client_id(client_id)
        parent = require_version_id(parent_version_id, "parent version ID")
        check_content_type(content_type, ContentType.HISTORY_SEGMENT)
        history_segment = require_body(history_segment, "history segment")

        result = await self.store.append_version(client_id, parent, history_segment)

        if isinstance(result, VersionRejected):
            return SyncResponse(
                status=409,
                headers={
                    Headers.PARENT_VERSION_ID: format_version_id(result.expected_parent_version_id)
                },
            )

        headers = {Headers.VERSION_ID: result.version_id}
        if result.urgency is not None:
            headers[Headers.SNAPSHOT_REQUEST] = result.urgency.header_value()

        return SyncResponse(status=200, headers=headers)

    async def get_child_version(
        self,
        client_id: str | None,
        parent_version_id: str | None,
    ) -> SyncResponse:
        """Fetch the version following parent_version_id.

        Returns:
            200 with the history segment, 404 if the caller is up to date,
            410 if the parent was pruned

        Raises:
            InvalidRequestError: If client id or parent id is missing
        """
        client_id = require_client_id(client_id)
        parent = require_version_id(parent_version_id, "parent version ID")

        result = await self.store.get_child_version(client_id, parent)

        if isinstance(result, ChildVersionGone):
            return SyncResponse(status=410, text="Version pruned")
        if not isinstance(result, ChildVersionFound):
            return SyncResponse(status=404, text="Up to date")

        version = result.version
        return SyncResponse(
            status=200,
            headers={
                "Content-Type": ContentType.HISTORY_SEGMENT,
                Headers.VERSION_ID: version.version_id,
                Headers.PARENT_VERSION_ID: format_version_id(version.parent_version_id),
            },
            body=version.history_segment,
        )

    async def add_snapshot(
        self,
        client_id: str | None,
        version_id: str | None,
        content_type: str | None,
        snapshot_data: bytes | None,
    ) -> SyncResponse:
        """Store a snapshot as of version_id, replacing the previous one.

        Returns:
            200 on success

        Raises:
            InvalidRequestError: If any input is missing or invalid, or the
                version is unknown to this client
        """
        client_id = require_client_id(client_id)
        version = require_version_id(version_id, "version ID")
        check_content_type(content_type, ContentType.SNAPSHOT)
        snapshot_data = require_body(snapshot_data, "snapshot data")

        stored = await self.store.add_snapshot(client_id, version, snapshot_data)
        if not stored:
            raise InvalidRequestError("Invalid version ID", field_name="version_id")

        return SyncResponse(status=200)

    async def get_snapshot(self, client_id: str | None) -> SyncResponse:
        """Fetch the client's latest snapshot.

        Returns:
            200 with the snapshot and its X-Version-Id, or 404 if none

        Raises:
            InvalidRequestError: If client id is missing
        """
        client_id = require_client_id(client_id)

        result = await self.store.get_snapshot(client_id)
        if not isinstance(result, SnapshotFound):
            return SyncResponse(status=404, text="No snapshot available")

        return SyncResponse(
            status=200,
            headers={
                "Content-Type": ContentType.SNAPSHOT,
                Headers.VERSION_ID: result.version_id,
            },
            body=result.snapshot_data,
        )
