"""
Unit tests for the TakeawayService lifecycle controller.

The socket listener is replaced with in-process fakes so the tests
control exactly when (and whether) the listener thread exits.
"""

import json
import threading
import time

import pymysql
import pytest

from takeaway.errors import WorkRejectedError
from takeaway.service import ServiceState, TakeawayService


class FakeListener:
    """Listener that serves nothing and exits when shut down."""

    def __init__(self, config, port=None):
        self.config = config
        self.port = 18080 if not port else port
        self.bound = False
        self.handoff = None
        self._stop = threading.Event()

    @property
    def address(self):
        return ("127.0.0.1", self.port)

    def bind(self):
        self.bound = True
        return self.address

    def serve_forever(self, handoff):
        self.handoff = handoff
        self._stop.wait()

    def read_and_dispatch(self, conn, dispatch):
        conn.wait_for_request()
        if conn.request is not None:
            dispatch(conn.request, conn)

    def shutdown(self):
        self._stop.set()


class WedgedListener(FakeListener):
    """Listener whose thread ignores shutdown() until the test releases it."""

    instances = []

    def __init__(self, config, port=None):
        super().__init__(config, port)
        self.release = threading.Event()
        WedgedListener.instances.append(self)

    def serve_forever(self, handoff):
        self.release.wait(10.0)

    def shutdown(self):
        pass


class UnbindableListener(FakeListener):
    def bind(self):
        raise OSError(98, "Address already in use")


class RecordingConnection:
    """Stands in for ClientConnection as a response sink."""

    def __init__(self):
        self.id = "test-conn"
        self.sent = []
        self.sent_from = None
        self.closed = threading.Event()
        self.request = None
        self.aborted = threading.Event()
        self._arrived = threading.Event()

    def deliver(self, request):
        self.request = request
        self._arrived.set()

    def wait_for_request(self):
        """Blocks like a silent client until deliver() or abort_read()."""
        self._arrived.wait(10.0)

    def abort_read(self):
        self.aborted.set()
        self._arrived.set()

    def send_response(self, data: bytes) -> bool:
        self.sent.append(data)
        self.sent_from = threading.current_thread().name
        return True

    def close(self):
        self.closed.set()

    @property
    def status(self) -> int:
        return int(self.sent[0].split(b" ", 2)[1])

    @property
    def body(self):
        return json.loads(self.sent[0].split(b"\r\n\r\n", 1)[1])


@pytest.fixture
def service(config, handle_factory):
    service = TakeawayService(config, handle_factory=handle_factory, listener_factory=FakeListener)
    yield service
    service.stop()


def wait_until(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class TestStart:

    def test_initial_state(self, service):
        """A new service is NOT_STARTED and reports down."""
        assert service.state is ServiceState.NOT_STARTED
        assert not service.is_running()
        assert not service.stop_requested
        assert service.health_status() == "down"
        assert service.address is None

    def test_warm_pool_built_at_construction(self, service, config):
        """The lease pool is warmed from config.database.pool_size."""
        assert service.lease_pool.total == config.database.pool_size

    def test_start(self, service):
        """start() binds, starts workers and the listener thread."""
        assert service.start() is True

        assert service.state is ServiceState.RUNNING
        assert service.is_running()
        assert service.health_status() == "ok"
        assert service.worker_pool.alive_workers == 2
        assert service.reader_pool.alive_workers == 2
        assert service.address == ("127.0.0.1", 18080)

    def test_start_port_override(self, service):
        service.start(port=9123)
        assert service.address == ("127.0.0.1", 9123)

    def test_double_start_logged_not_fatal(self, service, caplog):
        """A second start() is ignored and logged."""
        assert service.start() is True
        assert service.start() is False

        assert service.is_running()
        assert service.worker_pool.alive_workers == 2
        assert "DoubleStartError" in caplog.text

    def test_stopped_service_cannot_restart(self, service, caplog):
        service.start()
        service.stop()

        assert service.start() is False
        assert service.state is ServiceState.STOPPED
        assert "cannot be restarted" in caplog.text

    def test_bind_failure_leaves_service_not_started(self, config, handle_factory):
        """A bind error reaches the caller and nothing keeps running."""
        service = TakeawayService(config, handle_factory=handle_factory,
                                  listener_factory=UnbindableListener)

        with pytest.raises(OSError):
            service.start()

        assert service.state is ServiceState.NOT_STARTED
        assert service.worker_pool.alive_workers == 0
        assert service.reader_pool.alive_workers == 0

    def test_invalid_config_rejected(self, config, handle_factory):
        config.workers = 0
        with pytest.raises(ValueError):
            TakeawayService(config, handle_factory=handle_factory, listener_factory=FakeListener)


class TestStop:

    def test_stop_before_start_is_noop(self, service):
        """stop() on a service that never started changes nothing."""
        assert service.stop() is False
        assert service.state is ServiceState.NOT_STARTED
        assert not service.lease_pool.closed

    def test_clean_stop(self, service):
        """stop() joins the listener, the workers, then drains the pool."""
        service.start()
        assert service.stop() is True

        assert service.state is ServiceState.STOPPED
        assert service.stopped_cleanly
        assert service.worker_pool.alive_workers == 0
        assert service.reader_pool.alive_workers == 0
        assert service.lease_pool.closed
        assert service.health_status() == "down"

    def test_stop_is_idempotent(self, service):
        service.start()
        assert service.stop() is True
        assert service.stop() is True
        assert service.state is ServiceState.STOPPED

    def test_stop_drains_queued_and_running_items(self, config, handle_factory):
        """With 4 items executing and 10 queued, stop() completes all 14."""
        config.workers = 4
        service = TakeawayService(config, handle_factory=handle_factory, listener_factory=FakeListener)
        service.start()

        completed = []
        lock = threading.Lock()

        def item(i):
            time.sleep(0.2)
            with lock:
                completed.append(i)

        for i in range(14):
            service.submit(item, i)

        assert wait_until(lambda: service.worker_pool.busy_workers == 4)
        assert service.worker_pool.queue_size == 10

        assert service.stop() is True
        assert sorted(completed) == list(range(14))

    def test_items_use_leases_until_drained(self, config, handle_factory, fake_db):
        """Queued items can still lease handles while stop() drains them."""
        service = TakeawayService(config, handle_factory=handle_factory, listener_factory=FakeListener)
        service.start()
        fake_db.query_delay = 0.02
        errors = []

        def item():
            try:
                with service.lease_pool.lease() as db:
                    db.execute("SELECT 1")
            except Exception as e:
                errors.append(e)

        for _ in range(10):
            service.submit(item)

        assert service.stop() is True
        assert errors == []
        assert len(fake_db.executed("SELECT 1")) == 10
        assert all(not conn.open for conn in fake_db.connections)

    def test_health_reports_draining_during_stop(self, service):
        """Work still running after stop() began sees the draining state."""
        service.start()
        seen = []

        def item():
            wait_until(lambda: service.stop_requested)
            seen.append((service.health_status(), service.is_running()))

        service.submit(item)
        service.stop()

        assert seen == [("draining", False)]

    def test_submit_rejected_after_stop(self, service):
        service.start()
        service.stop()
        with pytest.raises(WorkRejectedError):
            service.submit(print)

    def test_submit_rejected_before_start(self, service):
        with pytest.raises(WorkRejectedError):
            service.submit(print)

    def test_wedged_listener_stop_times_out(self, config, handle_factory, caplog):
        """stop() returns within the timeout when the listener never exits."""
        config.stop_timeout = 0.3
        service = TakeawayService(config, handle_factory=handle_factory,
                                  listener_factory=WedgedListener)
        service.start()

        started = time.monotonic()
        result = service.stop()
        elapsed = time.monotonic() - started

        assert result is False
        assert elapsed < 0.3 + 1.0
        assert service.state is ServiceState.STOPPED
        assert not service.stopped_cleanly
        assert service.lease_pool.closed
        assert "Listener did not exit within 0.3s" in caplog.text

        WedgedListener.instances[-1].release.set()

    def test_stop_timeout_override(self, config, handle_factory):
        service = TakeawayService(config, handle_factory=handle_factory,
                                  listener_factory=WedgedListener)
        service.start()

        started = time.monotonic()
        assert service.stop(timeout=0.1) is False
        assert time.monotonic() - started < 1.0

        WedgedListener.instances[-1].release.set()

    def test_concurrent_stop_calls(self, service):
        """Only one caller does the stopping; the others return."""
        service.start()
        results = []
        threads = [threading.Thread(target=lambda: results.append(service.stop())) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5.0)

        assert service.state is ServiceState.STOPPED
        assert True in results
        assert service.worker_pool.alive_workers == 0

    def test_context_manager_stops(self, config, handle_factory):
        with TakeawayService(config, handle_factory=handle_factory,
                             listener_factory=FakeListener) as service:
            service.start()
        assert service.state is ServiceState.STOPPED


class TestDispatch:
    """Routing of parsed requests coming off the listener."""

    def test_health_answered_inline(self, service, make_request):
        service.start()
        conn = RecordingConnection()

        service._dispatch(make_request("GET", "/health"), conn)

        assert conn.sent_from == threading.current_thread().name
        assert conn.status == 200
        assert conn.body["status"] == "ok"
        assert conn.body["checks"]["database"]["status"] == "healthy"
        assert conn.closed.is_set()

    def test_index_text(self, service, make_request):
        service.start()
        conn = RecordingConnection()
        service._dispatch(make_request("GET", "/"), conn)
        assert conn.sent[0].endswith(b"TakeAwayPlatform is running!")

    def test_api_route_runs_on_worker(self, service, make_request, fake_db):
        service.start()
        fake_db.returns("FROM DISH", [{"dishId": "d1"}])
        conn = RecordingConnection()

        service._dispatch(make_request("GET", "/menu"), conn)

        assert conn.closed.wait(2.0)
        assert conn.sent_from.startswith("worker-")
        assert conn.status == 200
        assert conn.body == [{"dishId": "d1"}]

    def test_unknown_route_404(self, service, make_request):
        service.start()
        conn = RecordingConnection()
        service._dispatch(make_request("GET", "/nope"), conn)
        assert conn.status == 404

    def test_wrong_method_405(self, service, make_request):
        service.start()
        conn = RecordingConnection()
        service._dispatch(make_request("GET", "/order/create"), conn)
        assert conn.status == 405
        assert b"Allow: POST" in conn.sent[0]

    def test_new_work_rejected_while_draining(self, service, make_request):
        """Once stop() began, API requests get 503 and health says draining."""
        service.start()
        gate = threading.Event()
        service.submit(gate.wait, 2.0)

        stopper = threading.Thread(target=service.stop)
        stopper.start()
        assert wait_until(lambda: service.stop_requested)

        rejected = RecordingConnection()
        service._dispatch(make_request("POST", "/comment/add", {"userId": "u1"}), rejected)
        health = RecordingConnection()
        service._dispatch(make_request("GET", "/health"), health)

        gate.set()
        stopper.join(5.0)

        assert rejected.status == 503
        assert health.status == 503
        assert health.body["status"] == "draining"

    def test_handler_error_becomes_response(self, service, make_request, fake_db):
        """A database failure is answered 500 and the worker survives."""
        service.start()
        fake_db.fail("FROM DISH", pymysql.err.OperationalError(2013, "lost"))
        conn = RecordingConnection()

        service._dispatch(make_request("GET", "/menu"), conn)

        assert conn.closed.wait(2.0)
        assert conn.status == 500
        assert conn.body["status"] == "error"
        assert service.worker_pool.alive_workers == 2


class TestReaderStage:
    """Connections handed off by the listener and read on reader threads."""

    def test_handoff_reads_on_reader_thread(self, service, make_request):
        service.start()
        conn = RecordingConnection()

        service._handoff(conn)
        conn.deliver(make_request("GET", "/health"))

        assert conn.closed.wait(2.0)
        assert conn.sent_from.startswith("reader-")
        assert conn.status == 200

    def test_silent_clients_do_not_block_health(self, service, make_request):
        """Idle connections tie up at most the readers they occupy."""
        service.start()
        idle = RecordingConnection()
        service._handoff(idle)

        conn = RecordingConnection()
        service._handoff(conn)
        conn.deliver(make_request("GET", "/health"))

        assert conn.closed.wait(2.0)
        assert conn.status == 200
        assert not idle.sent

    def test_stop_aborts_unread_connections(self, service):
        """stop() does not wait for clients that never send a request."""
        service.start()
        idle = [RecordingConnection() for _ in range(3)]
        for conn in idle:
            service._handoff(conn)

        started = time.monotonic()
        assert service.stop() is True

        assert time.monotonic() - started < 2.0
        assert all(conn.aborted.is_set() for conn in idle)
        assert service.reader_pool.alive_workers == 0

    def test_read_connections_are_not_aborted(self, service, make_request):
        service.start()
        conn = RecordingConnection()
        service._handoff(conn)
        conn.deliver(make_request("GET", "/"))
        assert conn.closed.wait(2.0)

        service.stop()

        assert not conn.aborted.is_set()
        assert service._unread == {}

    def test_handoff_after_stop_answers_503(self, service):
        service.start()
        service.stop()
        conn = RecordingConnection()

        service._handoff(conn)

        assert conn.status == 503
        assert conn.closed.is_set()
        assert service._unread == {}
