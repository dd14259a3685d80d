"""
HTTP server implementation for ChainSync.

This module exposes the TaskChampion sync protocol over HTTP:

    GET  /                                          health check
    POST /v1/client/add-version/{parent_version_id}
    GET  /v1/client/get-child-version/{parent_version_id}
    POST /v1/client/add-snapshot/{version_id}
    GET  /v1/client/snapshot

Invariants:
    - All /v1 operations require the X-Client-Id header
    - Bodies are opaque binary payloads, never parsed
    - The client allowlist is checked before any handler runs

How to change safely:
    - Paths, headers and status codes are part of the wire protocol
    - Keep handlers thin; protocol logic lives in SyncServicer
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from aiohttp import web

from ..errors import InvalidRequestError
from ..types import Headers
from .access import ClientAllowlist, ClientNotAllowedError
from .service import SyncResponse, SyncServicer

logger = logging.getLogger(__name__)

SERVER_BANNER = "ChainSync - TaskChampion Sync Server"

# Default maximum request body size (10MB)
DEFAULT_MAX_BODY_BYTES = 10 * 1024 * 1024


def create_http_app(
    servicer: SyncServicer,
    allowlist: ClientAllowlist | None = None,
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES,
) -> web.Application:
    """Create an HTTP application for ChainSync.

    Args:
        servicer: SyncServicer instance
        allowlist: Client ids allowed to use /v1 endpoints (open if None)
        max_body_bytes: Maximum accepted request body size

    Returns:
        aiohttp Application instance
    """
    allowlist = allowlist or ClientAllowlist()

    @web.middleware
    async def error_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except InvalidRequestError as e:
            logger.debug(
                f"Invalid request: {e.message}",
                extra={"path": request.path, "field": e.field_name},
            )
            return web.Response(status=400, text=e.message)
        except Exception as e:
            logger.error(f"HTTP handler error: {e}", exc_info=True)
            return web.Response(status=500, text="Internal server error")

    @web.middleware
    async def allowlist_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        if request.path.startswith("/v1/"):
            try:
                allowlist.check(request.headers.get(Headers.CLIENT_ID))
            except ClientNotAllowedError as e:
                return web.Response(status=403, text=str(e))
        return await handler(request)

    app = web.Application(
        middlewares=[error_middleware, allowlist_middleware],
        client_max_size=max_body_bytes,
    )

    app.router.add_get("/", handle_health)
    app.router.add_post(
        "/v1/client/add-version/{parent_version_id}",
        lambda r: handle_add_version(r, servicer),
    )
    app.router.add_get(
        "/v1/client/get-child-version/{parent_version_id}",
        lambda r: handle_get_child_version(r, servicer),
    )
    app.router.add_post(
        "/v1/client/add-snapshot/{version_id}",
        lambda r: handle_add_snapshot(r, servicer),
    )
    app.router.add_get("/v1/client/snapshot", lambda r: handle_get_snapshot(r, servicer))

    return app


def to_http_response(response: SyncResponse) -> web.Response:
    """Convert a SyncResponse into an aiohttp response."""
    if response.text is not None:
        return web.Response(status=response.status, headers=response.headers, text=response.text)
    return web.Response(status=response.status, headers=response.headers, body=response.body)


async def handle_health(request: web.Request) -> web.Response:
    """Handle GET / - Health check."""
    return web.Response(text=SERVER_BANNER)


async def handle_add_version(request: web.Request, servicer: SyncServicer) -> web.Response:
    """Handle POST /v1/client/add-version/{parent_version_id}."""
    body = await request.read()
    result = await servicer.add_version(
        client_id=request.headers.get(Headers.CLIENT_ID),
        parent_version_id=request.match_info.get("parent_version_id"),
        content_type=request.headers.get("Content-Type"),
        history_segment=body,
    )
    return to_http_response(result)


async def handle_get_child_version(request: web.Request, servicer: SyncServicer) -> web.Response:
    """Handle GET /v1/client/get-child-version/{parent_version_id}."""
    result = await servicer.get_child_version(
        client_id=request.headers.get(Headers.CLIENT_ID),
        parent_version_id=request.match_info.get("parent_version_id"),
    )
    return to_http_response(result)


async def handle_add_snapshot(request: web.Request, servicer: SyncServicer) -> web.Response:
    """Handle POST /v1/client/add-snapshot/{version_id}."""
    body = await request.read()
    result = await servicer.add_snapshot(
        client_id=request.headers.get(Headers.CLIENT_ID),
        version_id=request.match_info.get("version_id"),
        content_type=request.headers.get("Content-Type"),
        snapshot_data=body,
    )
    return to_http_response(result)


async def handle_get_snapshot(request: web.Request, servicer: SyncServicer) -> web.Response:
    """Handle GET /v1/client/snapshot."""
    result = await servicer.get_snapshot(client_id=request.headers.get(Headers.CLIENT_ID))
    return to_http_response(result)
