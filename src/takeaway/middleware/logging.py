"""
=============================================================================
ACCESS LOGGING MIDDLEWARE
=============================================================================

One log line per request on the "takeaway.access" logger, in Apache-like
text or JSON. Configure that logger separately to ship access logs
somewhere else than the application log:

    logging.getLogger("takeaway.access").addHandler(file_handler)

The line records which thread answered, so it is easy to see whether a
request ran inline on the listener or on a worker.

=============================================================================
"""

import time
import json
import uuid
import logging
import threading
from typing import Optional, List
from dataclasses import dataclass, asdict

from .base import Middleware, NextHandler
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse


logger = logging.getLogger("takeaway.access")


@dataclass
class RequestLog:
    """Structured access log entry."""
    request_id: str
    method: str
    path: str
    client_ip: str
    status_code: int
    content_length: int
    duration_ms: float
    thread: str
    timestamp: str

    def to_dict(self) -> dict:
        data = asdict(self)
        data["duration_ms"] = round(self.duration_ms, 2)
        return data

    def to_text(self) -> str:
        return (
            f'{self.client_ip or "-"} - - [{self.timestamp}] '
            f'"{self.method} {self.path}" {self.status_code} '
            f'{self.content_length} {self.duration_ms:.2f}ms '
            f'{self.thread} {self.request_id}'
        )


class LoggingMiddleware(Middleware):
    """
    Request logging middleware.

    Put it FIRST in the pipeline so it times the whole request and sees
    the status produced by every layer below it.

    Args:
        log_format: "text" or "json".
        include_request_id: Echo X-Request-ID on the response. An incoming
                            X-Request-ID is reused instead of a new one.
        log_level: Level for the access lines.
        skip_paths: Paths not logged (health checks are noisy).
    """

    def __init__(
        self,
        log_format: str = "text",
        include_request_id: bool = True,
        log_level: int = logging.INFO,
        skip_paths: Optional[List[str]] = None,
    ):
        self.log_format = log_format
        self.include_request_id = include_request_id
        self.log_level = log_level
        self.skip_paths = set(skip_paths or [])

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        request_id = request.get_header("x-request-id") or uuid.uuid4().hex[:8]
        start_time = time.monotonic()

        try:
            response = next(request)
        except Exception as e:
            duration_ms = (time.monotonic() - start_time) * 1000
            logger.error(
                f"Request failed: {request.method} {request.path} "
                f"- {type(e).__name__}: {e} ({duration_ms:.2f}ms) {request_id}"
            )
            raise

        duration_ms = (time.monotonic() - start_time) * 1000

        if self.include_request_id:
            response.headers["X-Request-ID"] = request_id

        if request.path in self.skip_paths:
            return response

        log_entry = RequestLog(
            request_id=request_id,
            method=request.method,
            path=request.path,
            client_ip=request.client_address[0],
            status_code=int(response.status),
            content_length=len(response.body),
            duration_ms=duration_ms,
            thread=threading.current_thread().name,
            timestamp=time.strftime("%d/%b/%Y:%H:%M:%S %z"),
        )

        if self.log_format == "json":
            logger.log(self.log_level, json.dumps(log_entry.to_dict()))
        else:
            logger.log(self.log_level, log_entry.to_text())

        return response
