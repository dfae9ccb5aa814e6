"""
=============================================================================
DATABASE LEASE POOL
=============================================================================

A pool of reusable DatabaseHandles. Work items lease a handle, run their
statements, and give it back; the physical connection survives the
lease and serves the next work item.

=============================================================================
WHY POOL CONNECTIONS?
=============================================================================

Opening a MySQL connection costs a TCP handshake plus an authentication
round trip. Doing that for every request would put the database's login
path on the hot path of every order.

    WITHOUT A POOL                       WITH A POOL
    ──────────────                       ───────────
    request → connect → query            request → acquire → query
            → close                              → release
    (handshake every time)               (handshake once per handle)

=============================================================================
POOL ARCHITECTURE
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      DatabaseLeasePool                              │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   ┌──────────── one lock (Condition) ─────────────┐                 │
    │   │                                                │                 │
    │   │   IDLE (deque)          LEASED (set)          │                 │
    │   │   [h1] [h2] [h5]        {h3, h4}              │                 │
    │   │                                                │                 │
    │   │   total = 5   (idle + leased == total)        │                 │
    │   └────────────────────────────────────────────────┘                 │
    │                                                                      │
    │   acquire():  pop idle ── or ── create a new handle                 │
    │               then connect OUTSIDE the lock                         │
    │                                                                      │
    │   release():  validate poisoned handle OUTSIDE the lock             │
    │               then push back to idle                                │
    │                                                                      │
    │   drain():    close every idle handle, refuse further leases        │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The lock is held only while the containers change. Connecting, pinging
and closing all happen with the lock released, so one slow database
round trip never stalls every other worker.

=============================================================================
GROWTH POLICY
=============================================================================

By default the pool is unbounded on the high side: when no idle handle
exists, acquire() makes a new one instead of waiting. That trades
backpressure for availability. Passing `max_size` turns on a hard cap;
acquire() then waits on the condition for a release, up to
`acquire_timeout`.

=============================================================================
INTERVIEW QUESTIONS
=============================================================================

Q: "What happens to a connection whose last query failed?"
A: "It is marked poisoned. On release we ping it outside the lock. If
   the ping fails we close the socket so the next lease reconnects.
   The handle object itself stays in the pool, so the accounting does
   not change."

Q: "How do you keep a handle from being used by two requests?"
A: "A handle is either in the idle deque or in the leased set, never
   both, and moves between them under the lock. Releasing something
   that is not in the leased set raises."

=============================================================================
"""

import logging
import threading
import time
from collections import deque
from contextlib import contextmanager
from typing import Callable, Deque, Iterator, Optional, Set

from ..db.handle import DatabaseHandle
from ..errors import DatabaseConnectionError, PoolClosedError, PoolExhaustedError


logger = logging.getLogger(__name__)

# Builds an unconnected handle. Must not do I/O: it runs under the pool lock.
HandleFactory = Callable[[int], DatabaseHandle]


class DatabaseLeasePool:
    """
    Pool of database handles with on-demand growth.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                     DatabaseLeasePool Usage                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   pool = DatabaseLeasePool(factory, warm_size=10)                   │
    │                                                                      │
    │   with pool.lease() as db:                                          │
    │       rows = db.execute("SELECT * FROM DISH")                       │
    │                                                                      │
    │   pool.drain()     # at shutdown, after the workers are gone         │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘
    """

    def __init__(
        self,
        factory: HandleFactory,
        warm_size: int = 10,
        max_size: Optional[int] = None,
        acquire_timeout: Optional[float] = None,
        validate_failed_handles: bool = True,
    ):
        """
        Initialize the pool and create the warm handles.

        Args:
            factory: Builds a handle given its id. Connections are opened
                     lazily, so warm-up never touches the network.
            warm_size: Handles created up front.
            max_size: Optional hard cap. None means grow on demand.
            acquire_timeout: With a cap, how long acquire() waits.
                             None waits forever.
            validate_failed_handles: Ping poisoned handles on release.
        """
        if max_size is not None and max_size < max(warm_size, 1):
            raise ValueError("max_size must be >= warm_size and >= 1")

        self._factory = factory
        self.warm_size = warm_size
        self.max_size = max_size
        self.acquire_timeout = acquire_timeout
        self.validate_failed_handles = validate_failed_handles

        self._lock = threading.Lock()
        self._available = threading.Condition(self._lock)
        self._idle: Deque[DatabaseHandle] = deque()
        self._leased: Set[DatabaseHandle] = set()
        # Handles between leave-the-leased-set and rejoin-idle while they
        # are being validated; still counted as checked out.
        self._returning: Set[DatabaseHandle] = set()
        self._total = 0
        self._closed = False

        # Metrics
        self.handles_created = 0
        self.created_on_demand = 0
        self.leases_granted = 0
        self.handles_reset = 0

        with self._lock:
            for _ in range(warm_size):
                self._idle.append(self._create_locked())

        logger.info(f"Lease pool ready with {warm_size} warm handles")

    # =========================================================================
    # LEASING
    # =========================================================================

    def acquire(self) -> DatabaseHandle:
        """
        Lease a handle.

        Returns an idle handle if there is one, otherwise makes a new one.
        With a cap configured and every handle leased, waits for a release.

        Raises:
            PoolClosedError: The pool has been drained.
            PoolExhaustedError: Capped pool stayed full past acquire_timeout.
            DatabaseConnectionError: The handle could not connect. The
                                     handle goes back to the idle set.
        """
        with self._lock:
            handle = self._take_locked()
            self._leased.add(handle)
            self.leases_granted += 1

        # ─────────────────────────────────────────────────────────────────
        # CONNECT OUTSIDE THE LOCK
        # ─────────────────────────────────────────────────────────────────
        try:
            handle.ensure_connected()
        except DatabaseConnectionError:
            self.release(handle)
            raise

        return handle

    def release(self, handle: DatabaseHandle) -> None:
        """
        Give a leased handle back.

        The handle is recycled even if its last statement failed. A
        poisoned handle is pinged first and disconnected if the ping
        fails, so the next lease starts from a fresh connection.

        Raises:
            ValueError: If the handle is not currently leased from this pool.
        """
        with self._lock:
            if handle not in self._leased:
                raise ValueError(f"{handle!r} is not leased from this pool")
            self._leased.discard(handle)
            self._returning.add(handle)

        reset = False
        if handle.poisoned and self.validate_failed_handles and not handle.ping():
            logger.warning(f"Handle {handle.handle_id} failed validation, reconnecting on next lease")
            handle.close()
            reset = True

        with self._lock:
            self._returning.discard(handle)
            if reset:
                self.handles_reset += 1
            discard = self._closed
            if discard:
                self._total -= 1
            else:
                self._idle.append(handle)
                self._available.notify()

        if discard:
            handle.close()

    @contextmanager
    def lease(self) -> Iterator[DatabaseHandle]:
        """Context manager around acquire() / release()."""
        handle = self.acquire()
        try:
            yield handle
        finally:
            self.release(handle)

    def drain(self) -> int:
        """
        Discard every idle handle and close the pool.

        Call this after the worker pool has shut down so nothing is mid
        lease. A handle still leased when drain() runs is closed when its
        holder releases it instead of being recycled.

        Returns:
            Number of handles discarded now.
        """
        with self._lock:
            self._closed = True
            handles = list(self._idle)
            self._idle.clear()
            self._total -= len(handles)
            outstanding = len(self._leased) + len(self._returning)
            self._available.notify_all()

        for handle in handles:
            handle.close()

        if outstanding:
            logger.warning(f"Lease pool drained with {outstanding} handles still leased")

        logger.info(f"Lease pool drained, {len(handles)} handles discarded")
        return len(handles)

    # =========================================================================
    # INTERNALS (lock held)
    # =========================================================================

    def _take_locked(self) -> DatabaseHandle:
        deadline = None

        while True:
            if self._closed:
                raise PoolClosedError("Lease pool has been drained")

            if self._idle:
                # LIFO keeps the most recently used connections warm
                return self._idle.pop()

            if self.max_size is None or self._total < self.max_size:
                self.created_on_demand += 1
                handle = self._create_locked()
                logger.debug(f"Pool grew to {self._total} handles")
                return handle

            # ─────────────────────────────────────────────────────────────
            # CAPPED AND FULL: WAIT FOR A RELEASE
            # ─────────────────────────────────────────────────────────────
            if self.acquire_timeout is None:
                self._available.wait()
                continue

            if deadline is None:
                deadline = time.monotonic() + self.acquire_timeout
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise PoolExhaustedError(
                    f"No database handle free within {self.acquire_timeout}s "
                    f"({self.max_size} leased)"
                )
            self._available.wait(remaining)

    def _create_locked(self) -> DatabaseHandle:
        handle = self._factory(self.handles_created)
        self.handles_created += 1
        self._total += 1
        return handle

    # =========================================================================
    # MONITORING
    # =========================================================================

    @property
    def idle_count(self) -> int:
        with self._lock:
            return len(self._idle)

    @property
    def leased_count(self) -> int:
        with self._lock:
            return len(self._leased) + len(self._returning)

    @property
    def total(self) -> int:
        with self._lock:
            return self._total

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def stats(self) -> dict:
        """Snapshot of the pool for health checks."""
        with self._lock:
            return {
                "idle": len(self._idle),
                "leased": len(self._leased) + len(self._returning),
                "total": self._total,
                "warm_size": self.warm_size,
                "max_size": self.max_size,
                "created": self.handles_created,
                "created_on_demand": self.created_on_demand,
                "leases": self.leases_granted,
                "resets": self.handles_reset,
                "closed": self._closed,
            }


# =============================================================================
# MODULE SUMMARY
# =============================================================================
#
# DatabaseLeasePool hands out DatabaseHandles:
#
# 1. acquire() reuses an idle handle or grows the pool
# 2. release() recycles, validating handles whose last statement failed
# 3. drain() closes idle handles and refuses further leases
#
# INVARIANT: idle + leased == total from construction until drain()
# =============================================================================
