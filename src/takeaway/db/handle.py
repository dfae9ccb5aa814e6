"""
=============================================================================
DATABASE HANDLE
=============================================================================

A DatabaseHandle wraps exactly one physical MySQL connection (PyMySQL).
Handles are manufactured and recycled by the lease pool; a handle is
never shared between two callers while it is checked out.

=============================================================================
HANDLE LIFECYCLE
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                       HANDLE LIFECYCLE                               │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   created (no socket yet)                                           │
    │        │                                                             │
    │        │  first lease: ensure_connected()                            │
    │        ▼                                                             │
    │   connected ──── execute() ok ────► connected                       │
    │        │                                                             │
    │        │  execute() raised                                           │
    │        ▼                                                             │
    │   poisoned ──── ping() ok ────► connected                           │
    │        │                                                             │
    │        │  ping() failed                                              │
    │        ▼                                                             │
    │   disconnected ──── next lease reconnects ────► connected           │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The connection is opened lazily, so building a warm pool never blocks
on the network and a database that is down at startup only fails the
requests that actually need it.

=============================================================================
TRANSACTIONS
=============================================================================

Outside a transaction every execute() commits immediately. Inside
`with handle.transaction():` statements are committed together at the
end of the block, or rolled back if the block raises. No transaction
survives a release back to the pool.

=============================================================================
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Union

import pymysql
from pymysql.cursors import DictCursor

from ..config import DatabaseConfig
from ..errors import DatabaseConnectionError


logger = logging.getLogger(__name__)

Params = Optional[Union[Sequence[Any], Dict[str, Any]]]

# Driver-level failures we translate. OSError covers sockets that died
# underneath PyMySQL before it could wrap the error.
DRIVER_ERRORS = (pymysql.MySQLError, OSError)


class DatabaseHandle:
    """
    One live connection to the relational store.

    Args:
        config: Connection parameters.
        connect: Callable that opens a PyMySQL-compatible connection.
                 Tests pass a fake; production uses pymysql.connect.
        handle_id: Number used in log lines.
    """

    def __init__(
        self,
        config: DatabaseConfig,
        connect: Optional[Callable[..., Any]] = None,
        handle_id: int = 0,
    ):
        self.config = config
        self.handle_id = handle_id
        self._connect = connect or pymysql.connect
        self._conn = None
        self._in_transaction = False

        # Set when a statement fails; the pool validates poisoned handles
        # before handing them out again.
        self.poisoned = False

        self.queries_executed = 0
        self.connects = 0

        # Guards against accidental sharing. Acquired non-blocking, so a
        # second concurrent user fails loudly instead of interleaving.
        self._busy = threading.Lock()

    def __repr__(self) -> str:
        state = "connected" if self.connected else "idle"
        if self.poisoned:
            state = "poisoned"
        return f"<DatabaseHandle #{self.handle_id} {state}>"

    @property
    def connected(self) -> bool:
        return self._conn is not None

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    def ensure_connected(self):
        """
        Open the physical connection if it is not open yet.

        Raises:
            DatabaseConnectionError: If the server cannot be reached or
                                     refuses the credentials.
        """
        if self._conn is not None:
            return self._conn

        cfg = self.config
        try:
            self._conn = self._connect(
                host=cfg.host,
                port=cfg.port,
                user=cfg.user,
                password=cfg.password,
                database=cfg.name,
                charset="utf8mb4",
                cursorclass=DictCursor,
                autocommit=False,
                connect_timeout=cfg.connect_timeout,
            )
        except DRIVER_ERRORS as e:
            raise DatabaseConnectionError(
                f"Cannot connect to {cfg.host}:{cfg.port}/{cfg.name}: {e}"
            ) from e

        self.connects += 1
        self.poisoned = False
        logger.debug(f"Handle {self.handle_id} connected to {cfg.host}:{cfg.port}/{cfg.name}")
        return self._conn

    def execute(self, sql: str, params: Params = None) -> List[Dict[str, Any]]:
        """
        Run one statement and return its rows.

        Args:
            sql: Statement with %s / %(name)s placeholders.
            params: Values for the placeholders. Never format values
                    into `sql` yourself.

        Returns:
            Result rows as dicts (empty list for INSERT/UPDATE).

        Raises:
            DatabaseConnectionError: If the connection cannot be opened or
                                     the statement fails.
        """
        if not self._busy.acquire(blocking=False):
            raise RuntimeError(f"Handle {self.handle_id} used by two threads at once")

        try:
            conn = self.ensure_connected()
            try:
                with conn.cursor() as cursor:
                    cursor.execute(sql, params)
                    rows = cursor.fetchall()
                if not self._in_transaction:
                    conn.commit()
            except DRIVER_ERRORS as e:
                self.poisoned = True
                if not self._in_transaction:
                    self._rollback_after_error()
                raise DatabaseConnectionError(f"Statement failed: {e}") from e
        finally:
            self._busy.release()

        self.queries_executed += 1
        return list(rows) if rows else []

    @contextmanager
    def transaction(self) -> Iterator["DatabaseHandle"]:
        """
        Group several statements into one commit.

            with handle.transaction():
                handle.execute("INSERT INTO `ORDER` ...", (...))
                handle.execute("INSERT INTO ORDER_ITEM ...", (...))

        Raises:
            RuntimeError: On a nested transaction.
            DatabaseConnectionError: If the commit fails.
        """
        if self._in_transaction:
            raise RuntimeError("Nested transactions are not supported")

        conn = self.ensure_connected()
        self._in_transaction = True
        try:
            yield self
        except BaseException:
            self._rollback_after_error()
            raise
        else:
            try:
                conn.commit()
            except DRIVER_ERRORS as e:
                self.poisoned = True
                self._rollback_after_error()
                raise DatabaseConnectionError(f"Commit failed: {e}") from e
        finally:
            self._in_transaction = False

    def ping(self) -> bool:
        """
        Check that the connection is still usable.

        A successful ping clears the poisoned flag.
        """
        if self._conn is None:
            return False

        try:
            self._conn.ping(reconnect=False)
        except DRIVER_ERRORS as e:
            logger.debug(f"Handle {self.handle_id} failed ping: {e}")
            return False

        self.poisoned = False
        return True

    def close(self) -> None:
        """Close the physical connection. The handle can reconnect later."""
        conn, self._conn = self._conn, None
        self._in_transaction = False
        if conn is None:
            return

        try:
            conn.close()
        except DRIVER_ERRORS as e:
            # PyMySQL raises if the socket is already gone
            logger.debug(f"Handle {self.handle_id} close: {e}")

    def _rollback_after_error(self) -> None:
        if self._conn is None:
            return
        try:
            self._conn.rollback()
        except DRIVER_ERRORS as e:
            self.poisoned = True
            logger.warning(f"Handle {self.handle_id} rollback failed: {e}")
