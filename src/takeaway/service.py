"""
=============================================================================
TAKEAWAY SERVICE
=============================================================================

The lifecycle controller. It owns the long-lived pieces of the process
and is the only thing that starts or stops them:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        TakeawayService                               │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   listener      reader threads     worker threads     lease pool    │
    │   ────────      ──────────────     ──────────────     ──────────    │
    │   accept  ──►   read, parse,  ──►  run handler,  ──►  Database-     │
    │                 route, submit      send response      Handle        │
    │                                                                      │
    │   /, /health answered inline on the reader thread                   │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The listener never reads. Reading a request can take as long as the
client likes (up to read_timeout), so it happens on a small reader pool
of its own: a silent client costs one reader, never the accept loop and
never a database worker.

=============================================================================
LIFECYCLE
=============================================================================

    NOT_STARTED ──start()──► RUNNING ──stop()──► STOP_REQUESTED ──► STOPPED
                               │                                      ▲
                               └──── start() again: logged, ignored   │
                                                                      │
                         stop() in NOT_STARTED / STOPPED: no-op ──────┘

stop() flips the state to STOP_REQUESTED before doing anything else, so
/health reports "draining" and new requests get 503 while earlier work
is still finishing. Then, in this order:

    1. listener.shutdown(), wait up to stop_timeout for its thread
    2. abort reads still waiting on clients, reader_pool.shutdown()
    3. worker_pool.shutdown(wait=True)   every accepted item runs
    4. lease_pool.drain()                no worker holds a handle now

If the listener thread does not exit in time the timeout is logged, both
pools are told to stop without waiting and the lease pool is drained
anyway. stop() still returns, and the service ends STOPPED with
stopped_cleanly False.

=============================================================================
INTERVIEW QUESTIONS
=============================================================================

Q: "Why drain the lease pool last?"
A: "Workers hold leases. Draining before the workers are gone would
   close handles under a running query. After worker_pool.shutdown()
   returns nothing can hold a lease."

Q: "What stops a request from being accepted after stop() began?"
A: "The reader checks stop_requested before submitting and answers 503
   itself. The worker pool also rejects submissions once it has been
   shut down."

Q: "A browser opened a connection and never sent anything. Does stop()
   wait for it?"
A: "No. Connections that have not delivered a request yet are tracked;
   stop() aborts their reads so the readers exit at once. A request that
   was already read is not affected and still gets its answer."

=============================================================================
"""

import logging
import threading
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from .config import ServiceConfig
from .core.connection import ClientConnection
from .core.lease_pool import DatabaseLeasePool, HandleFactory
from .core.listener import SocketListener
from .core.thread_pool import Task, WorkerPool
from .db.handle import DatabaseHandle
from .errors import DoubleStartError, ShutdownTimeoutError, WorkRejectedError
from .handlers import API_HANDLERS, HealthHandler, HealthStatus, index
from .http.request import HTTPRequest
from .http.response import HTTPResponse, internal_error, service_unavailable
from .http.router import Router
from .middleware import ErrorMiddleware, LoggingMiddleware, MiddlewarePipeline, NextHandler


logger = logging.getLogger(__name__)

ListenerFactory = Callable[[ServiceConfig, Optional[int]], SocketListener]


class ServiceState(Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    STOP_REQUESTED = "stop_requested"
    STOPPED = "stopped"


class TakeawayService:
    """
    Takeaway order service.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      TakeawayService Usage                           │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   service = TakeawayService(ServiceConfig.from_env())               │
    │   service.start()                                                    │
    │   ...                                                                │
    │   service.stop()        # from a signal handler, a test, ...        │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    Args:
        config: Service configuration. Validated here.
        handle_factory: Builds an unconnected DatabaseHandle from an id.
                        Defaults to a pymysql-backed handle for
                        config.database.
        listener_factory: Builds the listener from (config, port).
                          Defaults to SocketListener.
    """

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        handle_factory: Optional[HandleFactory] = None,
        listener_factory: Optional[ListenerFactory] = None,
    ):
        self.config = config or ServiceConfig()
        self.config.validate()

        db_config = self.config.database
        if handle_factory is None:
            def handle_factory(handle_id: int) -> DatabaseHandle:
                return DatabaseHandle(db_config, handle_id=handle_id)

        self._listener_factory = listener_factory or self._default_listener

        self._lease_pool = DatabaseLeasePool(
            handle_factory,
            warm_size=db_config.pool_size,
            max_size=db_config.max_pool_size,
            acquire_timeout=db_config.acquire_timeout,
            validate_failed_handles=db_config.validate_failed_handles,
        )
        self._worker_pool = WorkerPool(num_workers=self.config.workers)
        self._reader_pool = WorkerPool(num_workers=self.config.readers, name="reader")

        self._router = Router()
        self._pipeline = MiddlewarePipeline()
        self._pipeline.add(LoggingMiddleware(
            log_format=self.config.access_log_format,
            skip_paths=["/health", "/health/live"],
        ))
        self._pipeline.add(ErrorMiddleware())
        self._register_routes()

        # Guards state transitions only; never held while waiting on threads
        self._lock = threading.Lock()
        self._state = ServiceState.NOT_STARTED
        self._stopped_cleanly = False
        self._listener: Optional[SocketListener] = None
        self._listener_thread: Optional[threading.Thread] = None
        self._listener_exited = threading.Event()

        # Accepted connections whose request has not been read yet, by id()
        self._unread: Dict[int, ClientConnection] = {}
        self._unread_lock = threading.Lock()

    @staticmethod
    def _default_listener(config: ServiceConfig, port: Optional[int]) -> SocketListener:
        return SocketListener(config, port=port)

    def _register_routes(self) -> None:
        health = HealthHandler(self.health_status)
        health.add_check("workers", self._check_workers)
        health.add_check("database", self._check_database)

        self._router.get("/", name="index", inline=True)(index)
        self._router.get("/health", name="health", inline=True)(health.handle)
        self._router.get("/health/live", name="liveness", inline=True)(health.liveness)

        for handler_class in API_HANDLERS:
            handler_class(self._lease_pool).register(self._router)

    def _check_workers(self) -> HealthStatus:
        alive = self._worker_pool.alive_workers
        return HealthStatus(
            healthy=alive == self._worker_pool.num_workers,
            message="OK" if alive else "No workers running",
            details=self._worker_pool.stats,
        )

    def _check_database(self) -> HealthStatus:
        stats = self._lease_pool.stats
        return HealthStatus(
            healthy=not stats["closed"],
            message="Drained" if stats["closed"] else "OK",
            details=stats,
        )

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self, port: Optional[int] = None) -> bool:
        """
        Bind the listener and start serving.

        Binding happens on the calling thread, so a busy port raises here.
        A second start() is logged and ignored.

        Args:
            port: Overrides config.port. 0 picks a free port.

        Returns:
            True if this call started the service.

        Raises:
            OSError: The listener could not bind. The service stays
                     NOT_STARTED and start() may be retried.
        """
        with self._lock:
            if self._state is ServiceState.STOPPED:
                logger.warning("Service has been stopped and cannot be restarted")
                return False
            if self._state is not ServiceState.NOT_STARTED:
                error = DoubleStartError(f"Service is already {self._state.value}")
                logger.warning(f"start() ignored: {error!r}")
                return False

            listener = self._listener_factory(self.config, port)
            listener.bind()

            self._worker_pool.start()
            self._reader_pool.start()

            self._listener = listener
            self._listener_exited.clear()
            self._listener_thread = threading.Thread(
                target=self._serve,
                args=(listener,),
                name="listener",
                daemon=True,
            )
            self._listener_thread.start()
            self._state = ServiceState.RUNNING

        host, bound_port = listener.address
        logger.info(
            f"{self.config.server_name} serving on {host}:{bound_port} "
            f"with {self.config.workers} workers and {self.config.readers} readers"
        )
        return True

    def _serve(self, listener: SocketListener) -> None:
        try:
            listener.serve_forever(self._handoff)
        except Exception as e:
            logger.exception(f"Listener crashed: {e}")
        finally:
            self._listener_exited.set()

    def stop(self, timeout: Optional[float] = None) -> bool:
        """
        Stop the service, finishing every request already accepted.

        Safe to call from any thread and more than once. Only the call
        that moves RUNNING to STOP_REQUESTED does the work; other calls
        return at once.

        Args:
            timeout: How long to wait for the listener thread. Defaults
                     to config.stop_timeout.

        Returns:
            True if the service stopped cleanly. False if the listener
            did not exit in time, or if this call did not do the stopping
            and the service is not (yet) cleanly stopped.
        """
        with self._lock:
            if self._state is not ServiceState.RUNNING:
                return self._state is ServiceState.STOPPED and self._stopped_cleanly
            self._state = ServiceState.STOP_REQUESTED
            listener = self._listener
            listener_thread = self._listener_thread

        timeout = self.config.stop_timeout if timeout is None else timeout
        logger.info("Stop requested, draining in-flight work")

        # ─────────────────────────────────────────────────────────────────
        # STEP 1: STOP ACCEPTING
        # ─────────────────────────────────────────────────────────────────
        listener.shutdown()
        exited = self._listener_exited.wait(timeout)

        if exited:
            listener_thread.join()

            # ─────────────────────────────────────────────────────────────
            # STEP 2: FINISH ACCEPTED WORK
            # ─────────────────────────────────────────────────────────────
            self._abort_unread()
            self._reader_pool.shutdown(wait=True)
            self._worker_pool.shutdown(wait=True)
        else:
            error = ShutdownTimeoutError(timeout)
            logger.warning(f"{error!r}; stopping the rest without waiting")
            self._abort_unread()
            self._reader_pool.shutdown(wait=False)
            self._worker_pool.shutdown(wait=False)

        # ─────────────────────────────────────────────────────────────────
        # STEP 3: RELEASE DATABASE CONNECTIONS
        # ─────────────────────────────────────────────────────────────────
        self._lease_pool.drain()

        with self._lock:
            self._state = ServiceState.STOPPED
            self._stopped_cleanly = exited

        if exited:
            logger.info("Service stopped")
        else:
            logger.warning("Service stopped with warnings")
        return exited

    def _abort_unread(self) -> None:
        with self._unread_lock:
            pending = list(self._unread.values())
        if pending:
            logger.info(f"Dropping {len(pending)} connections that sent no request")
        for conn in pending:
            conn.abort_read()

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def state(self) -> ServiceState:
        return self._state

    def is_running(self) -> bool:
        return self._state is ServiceState.RUNNING

    @property
    def stop_requested(self) -> bool:
        return self._state in (ServiceState.STOP_REQUESTED, ServiceState.STOPPED)

    @property
    def stopped_cleanly(self) -> bool:
        return self._stopped_cleanly

    def health_status(self) -> str:
        """Health word: ok while running, draining once stop() began, else down."""
        state = self._state
        if state is ServiceState.RUNNING:
            return "ok"
        if state is ServiceState.STOP_REQUESTED:
            return "draining"
        return "down"

    @property
    def address(self) -> Optional[Tuple[str, int]]:
        """Bound (host, port) once started."""
        return self._listener.address if self._listener else None

    @property
    def router(self) -> Router:
        return self._router

    @property
    def worker_pool(self) -> WorkerPool:
        return self._worker_pool

    @property
    def reader_pool(self) -> WorkerPool:
        return self._reader_pool

    @property
    def lease_pool(self) -> DatabaseLeasePool:
        return self._lease_pool

    # =========================================================================
    # WORK SUBMISSION
    # =========================================================================

    def submit(self, func: Callable[..., Any], *args, **kwargs) -> Task:
        """
        Queue a work item on the worker pool.

        Raises:
            WorkRejectedError: The service is not running.
        """
        if self._state is not ServiceState.RUNNING:
            raise WorkRejectedError(f"Service is {self._state.value}")
        return self._worker_pool.submit(func, *args, **kwargs)

    def _handoff(self, conn: ClientConnection) -> None:
        """Queue an accepted connection for reading (listener thread)."""
        with self._unread_lock:
            self._unread[id(conn)] = conn
        try:
            self._reader_pool.submit(self._read_connection, conn)
        except WorkRejectedError:
            with self._unread_lock:
                self._unread.pop(id(conn), None)
            self._respond(conn, service_unavailable())

    def _read_connection(self, conn: ClientConnection) -> None:
        try:
            self._listener.read_and_dispatch(conn, self._dispatch)
        finally:
            with self._unread_lock:
                self._unread.pop(id(conn), None)

    def _dispatch(self, request: HTTPRequest, conn: ClientConnection) -> None:
        """
        Route a parsed request (reader thread).

        Inline routes and routing failures are answered here. Everything
        else becomes a work item that owns the connection from now on.
        """
        match = self._router.match(request.method, request.path)
        if match is None:
            self._respond(conn, self._pipeline.wrap(self._router.no_match_response)(request))
            return

        request.path_params = match.params
        handler = self._pipeline.wrap(match.route.handler)

        if match.route.inline:
            self._respond(conn, handler(request))
            return

        if self.stop_requested:
            self._respond(conn, service_unavailable())
            return

        try:
            self._worker_pool.submit(self._run_work_item, handler, request, conn)
        except WorkRejectedError:
            self._respond(conn, service_unavailable())

    def _run_work_item(self, handler: NextHandler, request: HTTPRequest, conn: ClientConnection) -> None:
        """Run a handler on a worker thread and answer on its connection."""
        try:
            response = handler(request)
        except Exception as e:
            logger.exception(f"[{conn.id}] Unhandled error in {request.method} {request.path}: {e}")
            response = internal_error()
        self._respond(conn, response)

    def _respond(self, conn: ClientConnection, response: HTTPResponse) -> None:
        try:
            conn.send_response(response.to_bytes(self.config.server_name))
        finally:
            conn.close()

    # =========================================================================
    # CONTEXT MANAGER
    # =========================================================================

    def __enter__(self) -> "TakeawayService":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False
