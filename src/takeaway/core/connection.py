"""
=============================================================================
CLIENT CONNECTION
=============================================================================

Wraps an accepted client socket. A reader thread uses it to read one
complete HTTP request; the work item that owns the request then uses it
as its RESPONSE SINK to write exactly one response and close.

=============================================================================
OWNERSHIP ACROSS THREADS
=============================================================================

    LISTENER THREAD       READER THREAD                 WORKER THREAD
    ───────────────       ─────────────                 ─────────────
    accept()
    conn = ClientConnection(sock)
    readers.submit(conn) ─► raw = conn.read_request()
    (never touches          request = parser.parse(raw)
     conn again)            workers.submit(item, ...) ─► item(request, conn):
                                                           response = handler(request)
                                                           conn.send_response(bytes)
                                                           conn.close()

The listener only accepts, so a client that connects and sends nothing
ties up one reader for at most `timeout` seconds and never the accept
loop. Once submitted, the work item owns both the parsed request (a
value) and the connection. send_response() is guarded by a lock and is
write-once, so if a reader ever has to answer on the connection itself
(for example a 503 when submit is rejected) the two writers can never
interleave bytes on the wire.

=============================================================================
READING A REQUEST
=============================================================================

1. Read until we see \r\n\r\n (end of headers)
2. Parse Content-Length from headers
3. Read exactly Content-Length more bytes (the body)

abort_read() ends a read early at shutdown: a reader blocked in recv()
wakes up with end-of-stream, and a read that has not started yet only
takes bytes the client already sent.

There is no keep-alive: every response carries `Connection: close`, so a
connection carries exactly one request.

=============================================================================
"""

import socket
import threading
import time
import logging
import uuid
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional


logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Connection lifecycle states."""
    NEW = "new"              # Just accepted
    READING = "reading"      # Reading request bytes (reader thread)
    PROCESSING = "processing"  # Request read, being handled
    WRITING = "writing"      # Sending the response
    CLOSED = "closed"        # Socket released


class RequestTooLargeError(ValueError):
    """The client sent more than max_request_size bytes."""


@dataclass
class ClientConnection:
    """
    A single accepted client connection.

    Attributes:
        socket: The client socket.
        address: Client's (ip, port) tuple.
        id: Short identifier for log lines.
        state: Current connection state.
        created_at: Timestamp when the connection was accepted.
    """

    socket: socket.socket
    address: tuple

    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    state: ConnectionState = ConnectionState.NEW
    created_at: float = field(default_factory=time.time)

    buffer_size: int = 8192
    timeout: Optional[float] = 30.0
    max_request_size: int = 1024 * 1024

    _buffer: bytes = field(default=b"", repr=False)
    _write_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _responded: bool = field(default=False, repr=False)
    _read_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _read_aborted: bool = field(default=False, repr=False)

    def __post_init__(self):
        self.socket.setblocking(True)
        self.socket.settimeout(self.timeout)

    @property
    def client_ip(self) -> str:
        return self.address[0] if self.address else ""

    @property
    def responded(self) -> bool:
        """True once a response has been written (or attempted)."""
        return self._responded

    @property
    def age(self) -> float:
        return time.time() - self.created_at

    # =========================================================================
    # READING
    # =========================================================================

    def read_request(self) -> Optional[bytes]:
        """
        Read one complete HTTP request from the socket.

        Returns:
            Complete request bytes, or None if the client closed the
            connection before sending anything.

        Returns None as well once abort_read() has been called and the
        client has not already sent a complete request.

        Raises:
            TimeoutError: If the client is too slow.
            RequestTooLargeError: If the request exceeds max_request_size.
        """
        with self._read_lock:
            if self._read_aborted:
                # Only take what is already buffered in the kernel
                self.socket.setblocking(False)
            self.state = ConnectionState.READING

        try:
            # ─────────────────────────────────────────────────────────────
            # STEP 1: Read until we have complete headers
            # ─────────────────────────────────────────────────────────────
            while b"\r\n\r\n" not in self._buffer:
                chunk = self._recv()
                if not chunk:
                    return None
                self._buffer += chunk
                self._check_size(len(self._buffer))

            header_end = self._buffer.find(b"\r\n\r\n")
            body_start = header_end + 4

            # ─────────────────────────────────────────────────────────────
            # STEP 2: Read the body announced by Content-Length
            # ─────────────────────────────────────────────────────────────
            content_length = self._parse_content_length(self._buffer[:header_end])
            self._check_size(body_start + content_length)

            while len(self._buffer) - body_start < content_length:
                chunk = self._recv()
                if not chunk:
                    break  # Client closed mid-body; parser sees a short body
                self._buffer += chunk

            request_end = body_start + content_length
            data, self._buffer = self._buffer[:request_end], self._buffer[request_end:]
            return data

        except socket.timeout:
            raise TimeoutError("Request read timeout")

        finally:
            with self._read_lock:
                self.state = ConnectionState.PROCESSING
                aborted = self._read_aborted
            if aborted:
                self._restore_timeout()

    def abort_read(self) -> None:
        """
        Stop waiting for request bytes. Safe from any thread, idempotent.

        A read in progress returns None (or a short request) at once; a
        read that has not started only consumes bytes already received.
        Writing is unaffected, so a request that was fully read still
        gets its response.
        """
        with self._read_lock:
            if self._read_aborted:
                return
            self._read_aborted = True
            reading = self.state == ConnectionState.READING

        if reading:
            try:
                # Wakes a recv() blocked on another thread with end-of-stream
                self.socket.shutdown(socket.SHUT_RD)
            except OSError:
                pass

    @property
    def read_aborted(self) -> bool:
        return self._read_aborted

    def _restore_timeout(self) -> None:
        try:
            self.socket.settimeout(self.timeout)
        except OSError:
            pass

    def _recv(self) -> bytes:
        try:
            return self.socket.recv(self.buffer_size)
        except BlockingIOError:
            return b""  # aborted and nothing buffered
        except (ConnectionResetError, BrokenPipeError):
            return b""

    def _check_size(self, size: int) -> None:
        if size > self.max_request_size:
            raise RequestTooLargeError(f"Request too large: {size} bytes")

    @staticmethod
    def _parse_content_length(headers: bytes) -> int:
        """
        Pull Content-Length out of raw header bytes.

        This runs before the request is parsed, so it does its own simple
        line scan. A malformed value is treated as 0; the parser reports
        the header problem properly later.
        """
        header_str = headers.decode("latin-1").lower()
        for line in header_str.split("\r\n"):
            if line.startswith("content-length:"):
                try:
                    return max(0, int(line.split(":", 1)[1].strip()))
                except ValueError:
                    return 0
        return 0

    # =========================================================================
    # WRITING (the response sink)
    # =========================================================================

    def send_response(self, data: bytes) -> bool:
        """
        Write the response. Only the first call writes anything.

        Args:
            data: Serialized response bytes.

        Returns:
            True if the bytes were sent, False if a response was already
            written or the client has gone away.
        """
        with self._write_lock:
            if self._responded:
                logger.debug(f"[{self.id}] Response already sent, dropping second write")
                return False
            self._responded = True

            self.state = ConnectionState.WRITING
            try:
                self.socket.sendall(data)
                return True
            except OSError as e:
                # Client disconnected
                logger.warning(f"[{self.id}] Send failed: {e}")
                return False

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self):
        """
        Close the connection gracefully.

        shutdown(SHUT_WR) sends FIN so the client sees the end of the
        response, then the socket is released.
        """
        with self._write_lock:
            if self.state == ConnectionState.CLOSED:
                return
            self.state = ConnectionState.CLOSED

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass  # Already disconnected

        try:
            self.socket.close()
        except OSError:
            pass

        logger.debug(f"[{self.id}] Connection closed after {self.age:.3f}s")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
