"""
API module for the ChainSync server.

This module provides the external interface:
- SyncServicer: framework-independent protocol handler
- HTTP server (aiohttp) routing requests to the servicer
- Client id allowlist gate

Invariants:
    - All /v1 operations require X-Client-Id
    - The servicer holds no state between requests

How to change safely:
    - Wire changes must stay compatible with TaskChampion clients
    - Add new endpoints, don't modify existing ones
"""

from .access import ClientAllowlist, ClientNotAllowedError
from .http_server import create_http_app
from .service import SyncResponse, SyncServicer

__all__ = [
    "ClientAllowlist",
    "ClientNotAllowedError",
    "SyncResponse",
    "SyncServicer",
    "create_http_app",
]
