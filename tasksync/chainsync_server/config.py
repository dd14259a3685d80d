"""
Configuration management for the ChainSync server.

All configuration is done via environment variables - no config files
inside containers. This module provides typed configuration classes with
validation.

Invariants:
    - All settings have sensible defaults for local development
    - The client allowlist is never logged, only its size

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Deprecate settings by logging warnings but continuing to support them
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

from .api.access import ClientAllowlist
from .api.http_server import DEFAULT_MAX_BODY_BYTES
from .urgency import DEFAULT_SNAPSHOT_VERSION_THRESHOLD

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HttpConfig:
    """HTTP server configuration.

    Attributes:
        host: Address to bind
        port: Port to listen on
        max_body_bytes: Maximum request body size in bytes
    """

    host: str = "0.0.0.0"
    port: int = 8080
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        return cls(
            host=os.getenv("HTTP_HOST", "0.0.0.0"),
            port=int(os.getenv("HTTP_PORT", "8080")),
            max_body_bytes=int(os.getenv("MAX_BODY_BYTES", str(DEFAULT_MAX_BODY_BYTES))),
        )


@dataclass(frozen=True)
class StorageConfig:
    """Local storage configuration.

    Attributes:
        database_path: SQLite database file
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
        cache_size_pages: SQLite cache size in pages (negative = KB)
    """

    database_path: str = "/var/lib/chainsync/chainsync.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    cache_size_pages: int = -16000  # 16MB

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            database_path=os.getenv("DATABASE_PATH", "/var/lib/chainsync/chainsync.db"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            cache_size_pages=int(os.getenv("SQLITE_CACHE_SIZE", "-16000")),
        )


@dataclass(frozen=True)
class SyncConfig:
    """Sync protocol policy configuration.

    Attributes:
        snapshot_threshold: Versions since the last snapshot before clients
            are asked for a new one (twice this is urgent)
    """

    snapshot_threshold: int = DEFAULT_SNAPSHOT_VERSION_THRESHOLD

    @classmethod
    def from_env(cls) -> SyncConfig:
        """Load configuration from environment variables."""
        return cls(
            snapshot_threshold=int(
                os.getenv("SNAPSHOT_VERSION_THRESHOLD", str(DEFAULT_SNAPSHOT_VERSION_THRESHOLD))
            ),
        )


@dataclass(frozen=True)
class AccessConfig:
    """Access control configuration.

    Attributes:
        allowlist: Client ids allowed to sync (empty = open mode)
    """

    allowlist: ClientAllowlist = field(default_factory=ClientAllowlist)

    @classmethod
    def from_env(cls) -> AccessConfig:
        """Load configuration from environment variables."""
        return cls(allowlist=ClientAllowlist.parse(os.getenv("ALLOWED_CLIENT_IDS")))


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    Attributes:
        http: HTTP server configuration
        storage: Local storage configuration
        sync: Sync policy configuration
        access: Access control configuration
        observability: Logging configuration
    """

    http: HttpConfig = field(default_factory=HttpConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    access: AccessConfig = field(default_factory=AccessConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If configuration is missing or invalid.
        """
        config = cls(
            http=HttpConfig.from_env(),
            storage=StorageConfig.from_env(),
            sync=SyncConfig.from_env(),
            access=AccessConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not 0 < self.http.port < 65536:
            raise ValueError(f"HTTP_PORT must be between 1 and 65535, got {self.http.port}")
        if self.http.max_body_bytes <= 0:
            raise ValueError("MAX_BODY_BYTES must be positive")
        if self.sync.snapshot_threshold <= 0:
            raise ValueError("SNAPSHOT_VERSION_THRESHOLD must be positive")
        if not self.storage.database_path or self.storage.database_path == ":memory:":
            raise ValueError("DATABASE_PATH must name a database file")
        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

        if not os.path.exists(os.path.dirname(self.storage.database_path) or "."):
            logger.warning(
                f"Data directory for {self.storage.database_path} does not exist. "
                "It will be created on startup."
            )

    def log_config(self) -> None:
        """Log configuration (without the allowlist contents)."""
        logger.info(
            "Server configuration loaded",
            extra={
                "http_bind": f"{self.http.host}:{self.http.port}",
                "database_path": self.storage.database_path,
                "wal_mode": self.storage.wal_mode,
                "snapshot_threshold": self.sync.snapshot_threshold,
                "allowlist_size": len(self.access.allowlist.client_ids),
                "log_level": self.observability.log_level,
            },
        )
