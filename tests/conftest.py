"""
pytest configuration and fixtures.

The database is replaced by FakeDatabase, an in-memory stand-in that
speaks the small part of the PyMySQL connection API DatabaseHandle uses
(cursor(), commit(), rollback(), ping(), close()). Failures are raised as
real pymysql exceptions so the handle's error translation is exercised.
"""

import json
import socket
import threading
import time
from typing import Any, Dict, List, Optional, Tuple
import pytest

import pymysql

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from takeaway.config import DatabaseConfig, ServiceConfig
from takeaway.core.lease_pool import DatabaseLeasePool
from takeaway.db.handle import DatabaseHandle
from takeaway.http.request import HTTPRequest, parse_request


# =============================================================================
# FAKE DATABASE
# =============================================================================

class FakeCursor:
    def __init__(self, connection: "FakeConnection"):
        self.connection = connection
        self._rows: List[Dict[str, Any]] = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        return False

    def execute(self, sql: str, params=None) -> int:
        self._rows = self.connection.server.run(sql, params)
        return len(self._rows)

    def fetchall(self) -> List[Dict[str, Any]]:
        return list(self._rows)


class FakeConnection:
    def __init__(self, server: "FakeDatabase", options: Dict[str, Any]):
        self.server = server
        self.options = options
        self.open = True
        self.broken = False
        self.commits = 0
        self.rollbacks = 0

    def cursor(self) -> FakeCursor:
        if not self.open or self.broken:
            raise pymysql.err.OperationalError(2006, "MySQL server has gone away")
        return FakeCursor(self)

    def commit(self) -> None:
        self.commits += 1
        self.server.commits += 1

    def rollback(self) -> None:
        self.rollbacks += 1
        self.server.rollbacks += 1

    def ping(self, reconnect: bool = True) -> None:
        if self.broken or not self.open:
            raise pymysql.err.OperationalError(2013, "Lost connection to MySQL server")

    def close(self) -> None:
        if not self.open:
            raise pymysql.err.Error("Already closed")
        self.open = False


class FakeDatabase:
    """
    In-memory MySQL stand-in shared by every connection it opens.

        fake_db.returns("FROM DISH", [{"dishId": "d1"}])
        fake_db.fail("INSERT INTO ORDER_ITEM")
        fake_db.statements  # [(sql, params), ...]
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.statements: List[Tuple[str, Any]] = []
        self.connections: List[FakeConnection] = []
        self.commits = 0
        self.rollbacks = 0
        self.refuse_connections = False
        self.query_delay = 0.0
        self._results: List[Tuple[str, List[Dict[str, Any]]]] = []
        self._failures: Dict[str, Exception] = {}

    def connect(self, **options) -> FakeConnection:
        if self.refuse_connections:
            raise pymysql.err.OperationalError(2003, "Can't connect to MySQL server")
        conn = FakeConnection(self, options)
        with self._lock:
            self.connections.append(conn)
        return conn

    def returns(self, fragment: str, rows: List[Dict[str, Any]]) -> None:
        self._results.append((fragment, rows))

    def fail(self, fragment: str, error: Optional[Exception] = None) -> None:
        self._failures[fragment] = error or pymysql.err.IntegrityError(1062, "Duplicate entry")

    def run(self, sql: str, params) -> List[Dict[str, Any]]:
        if self.query_delay:
            time.sleep(self.query_delay)
        with self._lock:
            self.statements.append((sql, params))
        for fragment, error in self._failures.items():
            if fragment in sql:
                raise error
        for fragment, rows in self._results:
            if fragment in sql:
                return [dict(row) for row in rows]
        return []

    def executed(self, fragment: str) -> List[Any]:
        """Params of every statement containing `fragment`, in order."""
        with self._lock:
            return [params for sql, params in self.statements if fragment in sql]


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def fake_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def db_config() -> DatabaseConfig:
    return DatabaseConfig(host="db.test", name="takeaway_test", pool_size=2)


@pytest.fixture
def handle_factory(fake_db: FakeDatabase, db_config: DatabaseConfig):
    """Lease pool factory producing handles backed by fake_db."""
    def factory(handle_id: int) -> DatabaseHandle:
        return DatabaseHandle(db_config, connect=fake_db.connect, handle_id=handle_id)
    return factory


@pytest.fixture
def lease_pool(handle_factory) -> DatabaseLeasePool:
    pool = DatabaseLeasePool(handle_factory, warm_size=2)
    yield pool
    pool.drain()


@pytest.fixture
def config(db_config: DatabaseConfig) -> ServiceConfig:
    """Default test service configuration."""
    return ServiceConfig(
        host="127.0.0.1",
        port=0,  # Let OS pick a free port
        workers=2,
        readers=2,
        stop_timeout=2.0,
        read_timeout=2.0,
        log_level="WARNING",
        database=db_config,
    )


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


@pytest.fixture
def sample_get_request() -> bytes:
    """Sample HTTP GET request."""
    return (
        b"GET /merchant/m-1/dishes?onSale=1&page=2 HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"User-Agent: pytest\r\n"
        b"Accept: application/json\r\n"
        b"\r\n"
    )


@pytest.fixture
def sample_post_request() -> bytes:
    """Sample HTTP POST request with JSON body."""
    body = '{"name": "麻婆豆腐", "price": 18.5}'.encode("utf-8")
    head = (
        "POST /merchant/add_item HTTP/1.1\r\n"
        "Host: localhost:8080\r\n"
        "Content-Type: application/json\r\n"
        f"Content-Length: {len(body)}\r\n"
        "\r\n"
    )
    return head.encode("latin-1") + body


def json_request(method: str, path: str, data: Any = None, raw: Optional[bytes] = None) -> HTTPRequest:
    """Build a parsed request with a JSON body, as the listener would."""
    body = raw if raw is not None else (b"" if data is None else json.dumps(data).encode("utf-8"))
    head = (
        f"{method} {path} HTTP/1.1\r\n"
        "Host: test\r\n"
        "Content-Type: application/json\r\n"
        f"Content-Length: {len(body)}\r\n"
        "\r\n"
    ).encode("latin-1")
    return parse_request(head + body, ("127.0.0.1", 50000))


@pytest.fixture
def make_request():
    return json_request
