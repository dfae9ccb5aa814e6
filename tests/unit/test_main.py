"""
Unit tests for the command-line entry point.
"""

import threading

from takeaway.__main__ import build_parser, load_config, run


class StubService:
    def __init__(self, clean: bool):
        self.clean = clean
        self.stop_calls = 0

    def stop(self) -> bool:
        self.stop_calls += 1
        return self.clean


class TestRun:

    def test_clean_stop_exits_zero(self):
        service = StubService(clean=True)
        stop_event = threading.Event()
        stop_event.set()

        assert run(service, stop_event) == 0
        assert service.stop_calls == 1

    def test_listener_timeout_still_exits_zero(self):
        """A stop that timed out on the listener is a warning, not a failure."""
        service = StubService(clean=False)
        stop_event = threading.Event()
        stop_event.set()

        assert run(service, stop_event) == 0
        assert service.stop_calls == 1


class TestLoadConfig:

    def test_flags_override_environment(self, monkeypatch):
        monkeypatch.setenv("TAKEAWAY_WORKERS", "3")
        monkeypatch.setenv("TAKEAWAY_READERS", "3")
        args = build_parser().parse_args(["--workers", "5", "--readers", "2", "--port", "9001"])

        config = load_config(args)

        assert config.workers == 5
        assert config.readers == 2
        assert config.port == 9001
