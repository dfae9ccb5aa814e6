"""
=============================================================================
ERROR TAXONOMY
=============================================================================

Every failure the service knows how to talk about lives here, so the
handlers, the pools and the lifecycle controller agree on one vocabulary.

=============================================================================
WHERE EACH ERROR IS HANDLED
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                       ERROR PROPAGATION                             │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   WORK ITEM LEVEL (caught inside the work item, becomes HTTP)       │
    │   ───────────────────────────────────────────────────────────       │
    │   ValidationError          → 400 {"status": "error", ...}           │
    │   DatabaseConnectionError  → 500 {"status": "error", ...}           │
    │                                                                      │
    │   LIFECYCLE LEVEL (caught by the service, becomes a log line)       │
    │   ───────────────────────────────────────────────────────────       │
    │   DoubleStartError         → WARNING, start() returns False         │
    │   ShutdownTimeoutError     → WARNING, stop() returns False          │
    │                                                                      │
    │   SUBMISSION LEVEL (caught by the listener, becomes HTTP 503)       │
    │   ───────────────────────────────────────────────────────────       │
    │   WorkRejectedError                                                 │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

None of these ever unwinds into a worker loop. The worker keeps a last
resort `except Exception` for bugs, but a well-behaved work item answers
its own client.

=============================================================================
"""


class TakeawayError(Exception):
    """Base class for all service errors."""


# =============================================================================
# DATABASE ERRORS
# =============================================================================

class DatabaseConnectionError(TakeawayError, ConnectionError):
    """
    A database handle could not be opened, or a statement on it failed.

    Subclasses the builtin ConnectionError so generic network error
    handling still catches it.
    """


class PoolClosedError(DatabaseConnectionError):
    """Raised by acquire() once the lease pool has been drained."""


class PoolExhaustedError(DatabaseConnectionError):
    """Raised by acquire() when a capped pool has no handle free in time."""


# =============================================================================
# LIFECYCLE ERRORS
# =============================================================================

class ShutdownTimeoutError(TakeawayError, TimeoutError):
    """The listener did not confirm exit within the stop window."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Listener did not exit within {timeout:.1f}s")


class DoubleStartError(TakeawayError, RuntimeError):
    """start() was called on a service that is already running."""


class WorkRejectedError(TakeawayError, RuntimeError):
    """The worker pool is not accepting work (not started, or shutting down)."""


# =============================================================================
# REQUEST ERRORS
# =============================================================================

class ValidationError(TakeawayError, ValueError):
    """
    A request payload is missing a field or carries a bad value.

    Attributes:
        field: Name of the offending field, if there is one.
    """

    def __init__(self, message: str, field: str = None):
        super().__init__(message)
        self.message = message
        self.field = field
