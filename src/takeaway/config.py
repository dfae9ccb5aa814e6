"""
=============================================================================
SERVICE CONFIGURATION
=============================================================================

Centralized configuration for the takeaway service and its database.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m takeaway --port 3000                             │
    │                                                                      │
    │   2. Configuration file (JSON)                                      │
    │      └── python -m takeaway --config config.json                    │
    │                                                                      │
    │   3. Environment variables                                          │
    │      └── TAKEAWAY_PORT=3000 TAKEAWAY_DB_HOST=db python -m takeaway  │
    │                                                                      │
    │   4. Default values (in these dataclasses)                          │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
CONFIG FILE LAYOUT
=============================================================================

    {
        "host": "0.0.0.0",
        "port": 8080,
        "workers": 8,
        "database": {
            "host": "127.0.0.1",
            "port": 3306,
            "user": "takeaway",
            "password": "secret",
            "name": "takeaway",
            "pool_size": 10
        }
    }

Unknown keys are rejected so a typo does not silently fall back to a
default.

=============================================================================
"""

import json
import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Optional


@dataclass
class DatabaseConfig:
    """
    Connection parameters for the relational store.

    Supplied once at service construction; the lease pool uses them to
    manufacture new handles and never reloads them.
    """

    host: str = "127.0.0.1"
    port: int = 3306
    user: str = "root"
    password: str = ""
    name: str = "takeaway"
    """Database (schema) name."""

    # ─────────────────────────────────────────────────────────────────────
    # LEASE POOL
    # ─────────────────────────────────────────────────────────────────────

    pool_size: int = 10
    """Warm size: handles created when the service is constructed."""

    max_pool_size: Optional[int] = None
    """
    Hard cap on handles. None (the default) lets the pool grow on demand.
    When set, acquire() blocks until a handle is released.
    """

    acquire_timeout: Optional[float] = None
    """How long a capped acquire() waits before PoolExhaustedError."""

    connect_timeout: float = 5.0
    """Seconds to wait for the server when opening a connection."""

    validate_failed_handles: bool = True
    """
    Ping a handle whose last statement failed before putting it back.
    A handle that fails the ping is disconnected and reconnects on its
    next lease.
    """

    def validate(self) -> None:
        if not 0 < self.port < 65536:
            raise ValueError(f"Invalid database port: {self.port}")

        if self.pool_size < 0:
            raise ValueError("pool_size must be >= 0")

        if self.max_pool_size is not None and self.max_pool_size < max(self.pool_size, 1):
            raise ValueError("max_pool_size must be >= pool_size and >= 1")

        if self.acquire_timeout is not None and self.acquire_timeout <= 0:
            raise ValueError("acquire_timeout must be > 0")

        if self.connect_timeout <= 0:
            raise ValueError("connect_timeout must be > 0")


@dataclass
class ServiceConfig:
    """
    Configuration for the takeaway service.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    NETWORK SETTINGS
    - host, port, backlog, buffer_size, read_timeout, max_request_size

    EXECUTION
    - workers, readers, stop_timeout

    LOGGING
    - log_level, access_log_format

    DATABASE
    - database (see DatabaseConfig)

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "127.0.0.1"
    """
    The IP address to bind to.
    - "127.0.0.1" - Localhost only (development)
    - "0.0.0.0" - All network interfaces (production)
    """

    port: int = 8080
    """Port to listen on. 0 asks the OS for a free port."""

    backlog: int = 128
    """Maximum number of queued connections in the accept queue."""

    buffer_size: int = 8192
    """Size of each recv() call in bytes."""

    read_timeout: Optional[float] = 10.0
    """Seconds a reader waits for a client to finish sending a request."""

    max_request_size: int = 1024 * 1024  # 1 MB
    """Requests larger than this are answered 413."""

    # ─────────────────────────────────────────────────────────────────────
    # EXECUTION
    # ─────────────────────────────────────────────────────────────────────

    workers: int = field(default_factory=lambda: os.cpu_count() or 4)
    """Fixed number of worker threads. Defaults to the CPU count."""

    readers: int = 8
    """
    Threads that read requests off accepted connections. A client that
    connects and stays silent occupies one reader until read_timeout.
    """

    stop_timeout: float = 5.0
    """
    Seconds stop() waits for the listener to confirm exit.
    Past this, the service stops with a warning instead of hanging.
    """

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"

    access_log_format: str = "text"
    """Access log format: 'json' or 'text'."""

    # ─────────────────────────────────────────────────────────────────────
    # IDENTITY / DATABASE
    # ─────────────────────────────────────────────────────────────────────

    server_name: str = "TakeAwayPlatform/1.0"

    database: DatabaseConfig = field(default_factory=DatabaseConfig)

    @classmethod
    def from_env(cls) -> "ServiceConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        TAKEAWAY_HOST          Bind address (default: 127.0.0.1)
        TAKEAWAY_PORT          Listen port (default: 8080)
        TAKEAWAY_WORKERS       Worker threads (default: CPU count)
        TAKEAWAY_READERS       Request reader threads (default: 8)
        TAKEAWAY_STOP_TIMEOUT  Listener exit window (default: 5)
        TAKEAWAY_LOG_LEVEL     Logging level (default: INFO)
        TAKEAWAY_DB_HOST       Database host (default: 127.0.0.1)
        TAKEAWAY_DB_PORT       Database port (default: 3306)
        TAKEAWAY_DB_USER       Database user (default: root)
        TAKEAWAY_DB_PASSWORD   Database password (default: empty)
        TAKEAWAY_DB_NAME       Database name (default: takeaway)
        TAKEAWAY_DB_POOL_SIZE  Warm pool size (default: 10)

        =====================================================================
        """
        database = DatabaseConfig(
            host=os.getenv("TAKEAWAY_DB_HOST", "127.0.0.1"),
            port=int(os.getenv("TAKEAWAY_DB_PORT", "3306")),
            user=os.getenv("TAKEAWAY_DB_USER", "root"),
            password=os.getenv("TAKEAWAY_DB_PASSWORD", ""),
            name=os.getenv("TAKEAWAY_DB_NAME", "takeaway"),
            pool_size=int(os.getenv("TAKEAWAY_DB_POOL_SIZE", "10")),
        )
        config = cls(
            host=os.getenv("TAKEAWAY_HOST", "127.0.0.1"),
            port=int(os.getenv("TAKEAWAY_PORT", "8080")),
            stop_timeout=float(os.getenv("TAKEAWAY_STOP_TIMEOUT", "5")),
            log_level=os.getenv("TAKEAWAY_LOG_LEVEL", "INFO"),
            database=database,
        )
        workers = os.getenv("TAKEAWAY_WORKERS")
        if workers:
            config.workers = int(workers)
        readers = os.getenv("TAKEAWAY_READERS")
        if readers:
            config.readers = int(readers)
        return config

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServiceConfig":
        """Build a config from a parsed JSON document."""
        data = dict(data)
        db_data = data.pop("database", {}) or {}

        _reject_unknown(cls, data, "service")
        _reject_unknown(DatabaseConfig, db_data, "database")

        return cls(database=DatabaseConfig(**db_data), **data)

    @classmethod
    def from_file(cls, path: str) -> "ServiceConfig":
        """
        Load configuration from a JSON file.

        Raises:
            FileNotFoundError: If the file does not exist.
            ValueError: If the file is not valid JSON or has unknown keys.
        """
        with open(path, "r", encoding="utf-8") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid config file {path}: {e}") from e

        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a JSON object")

        return cls.from_dict(data)

    def validate(self) -> None:
        """
        Validate configuration values.

        Called at startup so bad values fail fast instead of surfacing
        on the first request.
        """
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.workers < 1:
            raise ValueError("workers must be >= 1")

        if self.readers < 1:
            raise ValueError("readers must be >= 1")

        if self.stop_timeout <= 0:
            raise ValueError("stop_timeout must be > 0")

        if self.buffer_size < 1024:
            raise ValueError("buffer_size must be >= 1024")

        if self.read_timeout is not None and self.read_timeout <= 0:
            raise ValueError("read_timeout must be > 0")

        if self.access_log_format not in ("text", "json"):
            raise ValueError(f"Unknown access_log_format: {self.access_log_format}")

        self.database.validate()


def _reject_unknown(cls, data: Dict[str, Any], section: str) -> None:
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown {section} config keys: {', '.join(sorted(unknown))}")
