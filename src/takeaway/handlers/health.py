"""
=============================================================================
HEALTH CHECK HANDLER
=============================================================================

Health endpoints answered inline on the reader thread. They only read
in-memory state (lifecycle state, pool counters) so they stay fast and
keep answering even when every worker is busy on a slow query.

=============================================================================
ENDPOINTS
=============================================================================

    GET /              "TakeAwayPlatform is running!"
    GET /health        200 {"status": "ok", ...}
                       503 {"status": "degraded", ...} when a check fails
                       503 {"status": "draining", ...} once stop() began
    GET /health/live   200 while the process can answer at all

A load balancer should poll /health: the 503 during draining takes the
instance out of rotation while in-flight orders finish.

=============================================================================
"""

import time
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Callable, Dict

from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, ResponseBuilder, text_response


INDEX_TEXT = "TakeAwayPlatform is running!"


@dataclass
class HealthStatus:
    """
    Result of one component check.

        def check_workers():
            return HealthStatus(healthy=pool.alive_workers > 0,
                                details=pool.stats)
    """
    healthy: bool
    message: str = "OK"
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "status": "healthy" if self.healthy else "unhealthy",
            "message": self.message,
            **self.details,
        }


HealthCheck = Callable[[], HealthStatus]


class HealthHandler:
    """
    Health check endpoint handler.

    Args:
        state: Returns the service health word: "ok", "draining" or
               "down". Anything but "ok" answers 503.
        include_details: Include component checks in the body.
    """

    def __init__(self, state: Callable[[], str], include_details: bool = True):
        self._state = state
        self.include_details = include_details
        self._checks: Dict[str, HealthCheck] = {}
        self._start_time = time.monotonic()

    def add_check(self, name: str, check: HealthCheck) -> "HealthHandler":
        """Add a component check. Checks run on every /health request; keep them cheap."""
        self._checks[name] = check
        return self

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        state = self._state()
        healthy = state == "ok"

        results = {}
        for name, check in self._checks.items():
            try:
                status = check()
            except Exception as e:
                status = HealthStatus(healthy=False, message=str(e))
            results[name] = status.to_dict()
            if not status.healthy:
                healthy = False

        if state == "ok" and not healthy:
            state = "degraded"

        body: Dict[str, Any] = {
            "status": state,
            "uptime_seconds": int(time.monotonic() - self._start_time),
        }
        if self.include_details and results:
            body["checks"] = results

        http_status = HTTPStatus.OK if healthy else HTTPStatus.SERVICE_UNAVAILABLE
        return (ResponseBuilder()
            .status(http_status)
            .json(body)
            .no_cache()
            .build())

    def liveness(self, request: HTTPRequest) -> HTTPResponse:
        """Liveness check: answering at all means the process is alive."""
        return (ResponseBuilder()
            .json({"status": "alive"})
            .no_cache()
            .build())


def index(request: HTTPRequest) -> HTTPResponse:
    return text_response(INDEX_TEXT)
