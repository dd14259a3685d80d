"""
Error types for the ChainSync server.

This module defines the exceptions raised by the server components:
- ChainSyncError: Base exception
- InvalidRequestError: Request failed input validation
- StoreNotInitializedError: Database file has not been created

Conflicts, caught-up lookups and pruned ancestors are not errors; they are
ordinary results (see types.py). Storage I/O failures are not wrapped and
propagate as raised by the sqlite3 driver.

Invariants:
    - All errors inherit from ChainSyncError
    - Errors include context for debugging
    - Error messages are safe to return to clients
"""

from __future__ import annotations

from typing import Any


class ChainSyncError(Exception):
    """Base exception for all ChainSync server errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "CHAINSYNC_ERROR"
        self.details = details or {}


class InvalidRequestError(ChainSyncError):
    """Request failed input validation.

    Raised when:
    - X-Client-Id header is missing
    - Version id path parameter is missing
    - Content type does not match the operation
    - Request body is empty
    """

    def __init__(self, message: str, field_name: str | None = None) -> None:
        super().__init__(
            message,
            code="INVALID_REQUEST",
            details={"field": field_name},
        )
        self.field_name = field_name


class StoreNotInitializedError(ChainSyncError):
    """Database file does not exist yet."""

    def __init__(self, db_path: str) -> None:
        super().__init__(
            f"Sync database not found: {db_path}",
            code="STORE_NOT_INITIALIZED",
            details={"db_path": db_path},
        )
        self.db_path = db_path
