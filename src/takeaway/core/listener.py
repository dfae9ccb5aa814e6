"""
=============================================================================
SOCKET LISTENER
=============================================================================

The listener owns the server socket and runs on its own thread. Its job
is deliberately narrow: accept and hand the connection off. It never
calls recv() and never touches the database, so a slow or silent client
cannot hold up the next accept.

=============================================================================
LISTENER THREAD
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      SocketListener                                  │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   bind()                 (caller's thread, errors surface directly) │
    │     └── socket(), setsockopt(), bind(), listen()                    │
    │                                                                      │
    │   serve_forever(handoff)           (listener thread)                │
    │     └── while running:                                              │
    │            accept()        ← wakes every poll_interval              │
    │            handoff(conn)   ← must not block                         │
    │                                                                      │
    │   read_and_dispatch(conn, dispatch)   (reader thread)               │
    │     └── read_request()                                              │
    │         parse()            ← 400 / 408 / 413 answered right here    │
    │         dispatch(request, conn)                                     │
    │                                                                      │
    │   shutdown()             (any thread)                               │
    │     └── running = False; loop notices within poll_interval          │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Binding happens in bind(), before the thread starts, so a port already
in use is reported to whoever called start() instead of dying silently
on a background thread.

Signal handling is NOT done here: signal handlers can only be installed
from the main thread, and this loop never runs there. The CLI installs
them and calls service.stop().

=============================================================================
"""

import socket
import logging
import threading
from typing import Callable, Optional, Tuple

from ..config import ServiceConfig
from ..http.request import HTTPRequest, HTTPParseError, RequestParser
from ..http.response import error_response
from .connection import ClientConnection, RequestTooLargeError


logger = logging.getLogger(__name__)

Dispatch = Callable[[HTTPRequest, ClientConnection], None]
Handoff = Callable[[ClientConnection], None]


class SocketListener:
    """
    TCP listener that accepts connections and hands them to a reader stage.

    Args:
        config: Service configuration (host, backlog, buffer sizes ...).
        port: Port to bind; overrides config.port. 0 picks a free port.
        poll_interval: accept() timeout, bounds how long shutdown() takes
                       to be noticed.
    """

    def __init__(
        self,
        config: ServiceConfig,
        port: Optional[int] = None,
        poll_interval: float = 0.5,
    ):
        self.config = config
        self.host = config.host
        self.port = config.port if port is None else port
        self.poll_interval = poll_interval

        self._parser = RequestParser(max_request_size=config.max_request_size)
        self._socket: Optional[socket.socket] = None
        self._running = threading.Event()

        self.connections_accepted = 0

    @property
    def is_running(self) -> bool:
        return self._running.is_set()

    @property
    def address(self) -> Tuple[str, int]:
        """The bound (host, port); the real port once bind() has run."""
        return (self.host, self.port)

    def _create_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)

        # Rebind right after a restart without waiting out TIME_WAIT
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

        sock.settimeout(self.poll_interval)
        return sock

    def bind(self) -> Tuple[str, int]:
        """
        Create, bind and listen.

        Raises:
            OSError: If the address cannot be bound.
        """
        sock = self._create_socket()
        try:
            sock.bind((self.host, self.port))
        except OSError as e:
            sock.close()
            logger.error(f"Failed to bind to {self.host}:{self.port}: {e}")
            raise

        sock.listen(self.config.backlog)
        self._socket = sock
        self.port = sock.getsockname()[1]
        self._running.set()

        logger.info(f"Listening on {self.host}:{self.port}")
        return self.address

    def serve_forever(self, handoff: Handoff) -> None:
        """
        Accept connections until shutdown() is called.

        Blocks; run it on its own thread. `handoff` receives every
        accepted connection and must return without reading from it,
        normally by queueing read_and_dispatch() on a reader pool.
        """
        if self._socket is None:
            self.bind()

        try:
            while self._running.is_set():
                try:
                    client_socket, client_address = self._socket.accept()
                except socket.timeout:
                    continue
                except OSError as e:
                    if self._running.is_set():
                        logger.error(f"Accept error: {e}")
                    break

                self.connections_accepted += 1
                conn = ClientConnection(
                    socket=client_socket,
                    address=client_address,
                    buffer_size=self.config.buffer_size,
                    timeout=self.config.read_timeout,
                    max_request_size=self.config.max_request_size,
                )
                try:
                    handoff(conn)
                except Exception as e:
                    # The listener must outlive any single bad connection
                    logger.exception(f"[{conn.id}] Handoff failed: {e}")
                    conn.close()
        finally:
            self._cleanup()

    def read_and_dispatch(self, conn: ClientConnection, dispatch: Dispatch) -> None:
        """
        Read and parse one request; answer protocol errors directly.

        Runs on a reader thread. Any failure here is confined to this
        one connection.
        """
        try:
            raw = conn.read_request()
            if raw is None:
                conn.close()
                return

            request = self._parser.parse(raw, conn.address)

        except TimeoutError:
            self._reject(conn, 408, "Request read timeout")
            return
        except RequestTooLargeError as e:
            self._reject(conn, 413, str(e))
            return
        except HTTPParseError as e:
            self._reject(conn, e.status_code, e.message)
            return
        except OSError as e:
            logger.debug(f"[{conn.id}] Read failed: {e}")
            conn.close()
            return

        try:
            dispatch(request, conn)
        except Exception as e:
            # A reader must outlive any single bad request
            logger.exception(f"Dispatch failed for {request.method} {request.path}: {e}")
            self._reject(conn, 500, "Internal Server Error")

    def _reject(self, conn: ClientConnection, status: int, message: str) -> None:
        logger.debug(f"[{conn.id}] Rejecting request: {status} {message}")
        response = error_response(message, status)
        conn.send_response(response.to_bytes(self.config.server_name))
        conn.close()

    def shutdown(self) -> None:
        """
        Ask the accept loop to stop. Safe from any thread, idempotent.

        Returns immediately; the loop exits within poll_interval.
        """
        if self._running.is_set():
            logger.info("Stopping listener...")
        self._running.clear()

    def _cleanup(self) -> None:
        self._running.clear()
        if self._socket:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None
        logger.info("Listener stopped")
