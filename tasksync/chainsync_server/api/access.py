"""
Client id allowlist for ChainSync.

If ALLOWED_CLIENT_IDS is set, only those clients can access the sync API.
If it is unset or empty, every client id is accepted (open mode).

Invariants:
    - Matching is case-insensitive
    - Requests without a client id pass through; the handler rejects them
    - The allowlist is read-only after construction
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


class ClientNotAllowedError(Exception):
    """Client id is not in the allowlist."""

    def __init__(self, client_id: str) -> None:
        self.client_id = client_id
        super().__init__("Forbidden: Client ID not in allowlist")


@dataclass(frozen=True)
class ClientAllowlist:
    """Set of client ids permitted to use the server.

    Attributes:
        client_ids: Lower-cased allowed client ids (empty = open mode)
    """

    client_ids: frozenset[str] = frozenset()

    @classmethod
    def parse(cls, allowed_client_ids: str | None) -> ClientAllowlist:
        """Parse a comma-separated list of client ids.

        Args:
            allowed_client_ids: Value like "id1, id2" (whitespace is ignored)

        Returns:
            Parsed allowlist
        """
        if not allowed_client_ids:
            return cls()

        return cls(
            frozenset(
                part.strip().lower()
                for part in allowed_client_ids.split(",")
                if part.strip()
            )
        )

    @property
    def is_open(self) -> bool:
        return not self.client_ids

    def allows(self, client_id: str | None) -> bool:
        """Check whether a request with this client id may proceed."""
        if self.is_open or not client_id:
            return True
        return client_id.lower() in self.client_ids

    def check(self, client_id: str | None) -> None:
        """Check a client id and raise if it is not allowed.

        Raises:
            ClientNotAllowedError: If the client id is not in the allowlist
        """
        if not self.allows(client_id):
            logger.warning("Rejected client not in allowlist", extra={"client_id": client_id})
            raise ClientNotAllowedError(client_id or "")
