"""
Unit tests for DatabaseHandle.
"""

import threading

from pymysql.cursors import DictCursor
import pytest

from takeaway.db.handle import DatabaseHandle
from takeaway.errors import DatabaseConnectionError


@pytest.fixture
def handle(db_config, fake_db) -> DatabaseHandle:
    return DatabaseHandle(db_config, connect=fake_db.connect, handle_id=7)


class TestConnecting:

    def test_not_connected_until_needed(self, handle, fake_db):
        """Construction does no I/O."""
        assert not handle.connected
        assert fake_db.connections == []

    def test_connect_options(self, handle, fake_db):
        """Connection parameters come from DatabaseConfig."""
        handle.ensure_connected()
        options = fake_db.connections[0].options

        assert options["host"] == "db.test"
        assert options["port"] == 3306
        assert options["database"] == "takeaway_test"
        assert options["charset"] == "utf8mb4"
        assert options["autocommit"] is False
        assert options["cursorclass"] is DictCursor

    def test_ensure_connected_reuses_connection(self, handle, fake_db):
        handle.ensure_connected()
        handle.ensure_connected()
        assert len(fake_db.connections) == 1
        assert handle.connects == 1

    def test_connect_failure_translated(self, handle, fake_db):
        """Driver errors while connecting become DatabaseConnectionError."""
        fake_db.refuse_connections = True
        with pytest.raises(DatabaseConnectionError) as exc_info:
            handle.ensure_connected()
        assert "db.test:3306/takeaway_test" in str(exc_info.value)
        assert not handle.connected

    def test_repr(self, handle):
        assert repr(handle) == "<DatabaseHandle #7 idle>"
        handle.ensure_connected()
        assert repr(handle) == "<DatabaseHandle #7 connected>"


class TestExecute:

    def test_returns_rows_as_dicts(self, handle, fake_db):
        fake_db.returns("FROM DISH", [{"dishId": "d1", "name": "Noodles"}])
        rows = handle.execute("SELECT dishId, name FROM DISH")
        assert rows == [{"dishId": "d1", "name": "Noodles"}]

    def test_params_passed_to_driver(self, handle, fake_db):
        """Values travel as parameters, not inside the SQL text."""
        handle.execute("SELECT * FROM DISH WHERE merchantId = %s", ("m'1",))
        sql, params = fake_db.statements[0]
        assert "m'1" not in sql
        assert params == ("m'1",)

    def test_autocommit_outside_transaction(self, handle, fake_db):
        handle.execute("INSERT INTO USER_COMMENT VALUES (%s)", ("c1",))
        assert fake_db.commits == 1
        assert handle.queries_executed == 1

    def test_failure_poisons_and_rolls_back(self, handle, fake_db):
        fake_db.fail("INSERT")
        with pytest.raises(DatabaseConnectionError):
            handle.execute("INSERT INTO DISH VALUES (1)")

        assert handle.poisoned
        assert fake_db.rollbacks == 1
        assert fake_db.commits == 0
        assert handle.queries_executed == 0

    def test_concurrent_use_detected(self, handle, fake_db):
        """A handle used from two threads at once fails loudly."""
        entered = threading.Event()
        release = threading.Event()

        original_run = fake_db.run

        def slow_run(sql, params):
            entered.set()
            release.wait(2.0)
            return original_run(sql, params)

        fake_db.run = slow_run
        t = threading.Thread(target=handle.execute, args=("SELECT 1",))
        t.start()
        assert entered.wait(2.0)

        with pytest.raises(RuntimeError):
            handle.execute("SELECT 2")

        release.set()
        t.join(2.0)


class TestTransaction:

    def test_commits_once_at_end(self, handle, fake_db):
        with handle.transaction():
            handle.execute("INSERT INTO `ORDER` VALUES (1)")
            handle.execute("INSERT INTO ORDER_ITEM VALUES (1)")
            assert handle.in_transaction
            assert fake_db.commits == 0

        assert fake_db.commits == 1
        assert not handle.in_transaction

    def test_rolls_back_on_error(self, handle, fake_db):
        fake_db.fail("ORDER_ITEM")
        with pytest.raises(DatabaseConnectionError):
            with handle.transaction():
                handle.execute("INSERT INTO `ORDER` VALUES (1)")
                handle.execute("INSERT INTO ORDER_ITEM VALUES (1)")

        assert fake_db.commits == 0
        assert fake_db.rollbacks == 1
        assert not handle.in_transaction

    def test_rolls_back_on_application_error(self, handle, fake_db):
        with pytest.raises(ValueError):
            with handle.transaction():
                handle.execute("INSERT INTO `ORDER` VALUES (1)")
                raise ValueError("bad item")

        assert fake_db.commits == 0
        assert fake_db.rollbacks == 1

    def test_nested_transaction_rejected(self, handle):
        with handle.transaction():
            with pytest.raises(RuntimeError):
                with handle.transaction():
                    pass


class TestPingAndClose:

    def test_ping_clears_poison(self, handle, fake_db):
        fake_db.fail("SELECT")
        with pytest.raises(DatabaseConnectionError):
            handle.execute("SELECT 1")

        assert handle.ping() is True
        assert not handle.poisoned

    def test_ping_without_connection(self, handle):
        assert handle.ping() is False

    def test_ping_broken_connection(self, handle, fake_db):
        handle.ensure_connected()
        fake_db.connections[0].broken = True
        assert handle.ping() is False

    def test_close_allows_reconnect(self, handle, fake_db):
        handle.ensure_connected()
        handle.close()
        assert not handle.connected
        assert not fake_db.connections[0].open

        handle.execute("SELECT 1")
        assert len(fake_db.connections) == 2

    def test_close_twice(self, handle):
        handle.ensure_connected()
        handle.close()
        handle.close()
        assert not handle.connected
