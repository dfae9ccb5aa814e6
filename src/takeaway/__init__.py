"""
=============================================================================
TAKEAWAY - Takeaway Ordering Backend
=============================================================================

HTTP endpoints for users, merchants, dishes, orders, payments, deliveries
and reviews, backed by MySQL. Each endpoint is a thin INSERT or SELECT;
the interesting part is the concurrency core underneath them.

=============================================================================
PROJECT OVERVIEW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                     TAKEAWAY ARCHITECTURE                           │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   1. LISTENER (one thread) AND READERS (fixed size)                 │
    │      - The listener only accepts; readers parse one request each    │
    │      - Readers answer /, /health and protocol errors themselves     │
    │                                                                      │
    │   2. WORKER POOL (fixed size)                                       │
    │      - FIFO queue of work items, never run inline                   │
    │      - A failing item never kills its worker                        │
    │                                                                      │
    │   3. DATABASE LEASE POOL                                            │
    │      - Warm handles at startup, grows on demand                     │
    │      - Handles are recycled, never closed per request               │
    │                                                                      │
    │   4. LIFECYCLE CONTROLLER (TakeawayService)                         │
    │      - start() / stop() with a bounded listener wait                │
    │      - /health answers "draining" while stopping                    │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    takeaway/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI entry point (python -m takeaway)
    ├── service.py           # TakeawayService lifecycle controller
    ├── config.py            # ServiceConfig / DatabaseConfig
    ├── errors.py            # Exception taxonomy
    ├── core/                # Listener, connections, worker and lease pools
    ├── db/                  # DatabaseHandle over PyMySQL
    ├── http/                # Request parsing, responses, routing
    ├── middleware/          # Access logging, error mapping
    └── handlers/            # Endpoints grouped by area

=============================================================================
QUICK START
=============================================================================

    from takeaway import TakeawayService, ServiceConfig

    service = TakeawayService(ServiceConfig(port=8080))
    service.start()
    ...
    service.stop()

=============================================================================
"""

__version__ = "1.0.0"

from .config import DatabaseConfig, ServiceConfig
from .errors import (
    TakeawayError,
    DatabaseConnectionError,
    PoolClosedError,
    PoolExhaustedError,
    ShutdownTimeoutError,
    DoubleStartError,
    WorkRejectedError,
    ValidationError,
)
from .service import ServiceState, TakeawayService

__all__ = [
    "__version__",
    "DatabaseConfig",
    "ServiceConfig",
    "TakeawayError",
    "DatabaseConnectionError",
    "PoolClosedError",
    "PoolExhaustedError",
    "ShutdownTimeoutError",
    "DoubleStartError",
    "WorkRejectedError",
    "ValidationError",
    "ServiceState",
    "TakeawayService",
]
