"""
ChainSync Server - Main entry point.

This module starts the sync server:
- Opens (and if needed creates) the SQLite chain store
- Serves the sync protocol over HTTP

Usage:
    python -m tasksync.chainsync_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The database schema exists before requests are accepted
    - Graceful shutdown lets in-flight requests finish

How to change safely:
    - Test shutdown sequence thoroughly
    - Keep the server stateless; all state lives in the database
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path

import json_log_formatter
from aiohttp import web

from .api import SyncServicer, create_http_app
from .config import ServerConfig
from .store import ChainStore

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


class Server:
    """ChainSync server orchestrator.

    Attributes:
        config: Server configuration
        store: Chain store
        servicer: Sync protocol handler

    Example:
        >>> server = Server()
        >>> await server.start()
        >>> # Server is running
        >>> await server.stop()
    """

    def __init__(self, config: ServerConfig | None = None) -> None:
        """Initialize the server.

        Args:
            config: Optional server configuration (loaded from env if not provided)
        """
        self.config = config or ServerConfig.from_env()
        self._running = False
        self._shutdown_event = asyncio.Event()

        # Components (initialized in start())
        self.store: ChainStore | None = None
        self.servicer: SyncServicer | None = None
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Start the server and wait for a shutdown request."""
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting ChainSync server")
        self.config.log_config()

        try:
            Path(self.config.storage.database_path).parent.mkdir(parents=True, exist_ok=True)

            self.store = ChainStore(
                db_path=self.config.storage.database_path,
                wal_mode=self.config.storage.wal_mode,
                busy_timeout_ms=self.config.storage.busy_timeout_ms,
                cache_size_pages=self.config.storage.cache_size_pages,
                snapshot_threshold=self.config.sync.snapshot_threshold,
            )
            await self.store.initialize()

            self.servicer = SyncServicer(self.store)

            app = create_http_app(
                self.servicer,
                allowlist=self.config.access.allowlist,
                max_body_bytes=self.config.http.max_body_bytes,
            )
            self._runner = web.AppRunner(app)
            await self._runner.setup()

            site = web.TCPSite(self._runner, self.config.http.host, self.config.http.port)
            await site.start()

            self._running = True
            logger.info(
                f"HTTP server running on http://{self.config.http.host}:{self.config.http.port}"
            )

            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if self._runner is None:
            return

        logger.info("Stopping ChainSync server")
        await self._runner.cleanup()
        self._runner = None

        self._running = False
        logger.info("ChainSync server stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    server = Server(config)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(server.stop())
        loop.close()


if __name__ == "__main__":
    main()
