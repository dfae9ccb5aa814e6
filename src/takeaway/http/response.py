"""
=============================================================================
HTTP RESPONSE BUILDING
=============================================================================

HTTPResponse is the value a handler returns; ResponseBuilder is the fluent
way to make one. The work item serializes the response with to_bytes()
and writes it through the connection's response sink.

=============================================================================
RESPONSE BODIES IN THIS SERVICE
=============================================================================

    success:   {"status": "success", ...extra fields}
    failure:   {"status": "error", "message": "..."}

JSON is encoded with `default=str` so DECIMAL prices and DATETIME columns
coming straight out of PyMySQL serialize without per-handler conversion.

Every response carries `Connection: close`; one connection carries one
request.

=============================================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Optional, Dict, Any, Union
import json


DEFAULT_SERVER_NAME = "TakeAwayPlatform/1.0"


@dataclass
class HTTPResponse:
    """
    Represents an HTTP response to be sent to the client.

        Handler returns          to_bytes()              Sink sends
        HTTPResponse    ─────►   serializes    ─────►    raw bytes
    """

    status: HTTPStatus = HTTPStatus.OK
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    version: str = "HTTP/1.1"

    @property
    def status_line(self) -> str:
        """Example: "HTTP/1.1 200 OK"."""
        return f"{self.version} {int(self.status)} {self.status.phrase}"

    def set_header(self, name: str, value: str) -> "HTTPResponse":
        """Set a response header. Returns self for chaining."""
        self.headers[name] = value
        return self

    def get_header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Case-insensitive lookup of a header that has been set."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return default

    def to_bytes(self, server_name: str = DEFAULT_SERVER_NAME) -> bytes:
        """
        Serialize the response to bytes for sendall().

            HTTP/1.1 200 OK\\r\\n
            Content-Type: application/json; charset=utf-8\\r\\n
            Content-Length: 20\\r\\n       ← Auto-calculated
            Date: Mon, 19 Oct 2026 ...\\r\\n ← Auto-added
            Server: TakeAwayPlatform/1.0\\r\\n
            Connection: close\\r\\n
            \\r\\n
            {"status":"success"}
        """
        response_headers = dict(self.headers)

        response_headers.setdefault("Content-Length", str(len(self.body)))
        response_headers.setdefault("Date", format_http_date(datetime.now(timezone.utc)))
        response_headers.setdefault("Server", server_name)
        response_headers.setdefault("Connection", "close")

        lines = [self.status_line]
        for name, value in response_headers.items():
            lines.append(f"{name}: {value}")
        lines.append("")

        header_bytes = "\r\n".join(lines).encode("latin-1") + b"\r\n"
        return header_bytes + self.body


class ResponseBuilder:
    """
    Fluent builder for constructing HTTP responses.

        response = (ResponseBuilder()
            .status(HTTPStatus.CREATED)
            .json({"status": "success", "orderId": order_id})
            .build())
    """

    def __init__(self):
        self._status = HTTPStatus.OK
        self._headers: Dict[str, str] = {}
        self._body: bytes = b""

    def status(self, status: HTTPStatus) -> "ResponseBuilder":
        self._status = HTTPStatus(status)
        return self

    def header(self, name: str, value: str) -> "ResponseBuilder":
        self._headers[name] = value
        return self

    def body(self, body: Union[str, bytes]) -> "ResponseBuilder":
        self._body = body.encode("utf-8") if isinstance(body, str) else body
        return self

    def text(self, text: str) -> "ResponseBuilder":
        self._body = text.encode("utf-8")
        self._headers["Content-Type"] = "text/plain; charset=utf-8"
        return self

    def json(self, data: Any) -> "ResponseBuilder":
        """
        Set a JSON response body.

        ensure_ascii=False keeps Chinese dish and merchant names readable
        on the wire; default=str handles Decimal and datetime values.
        """
        self._body = json.dumps(data, ensure_ascii=False, default=str).encode("utf-8")
        self._headers["Content-Type"] = "application/json; charset=utf-8"
        return self

    def no_cache(self) -> "ResponseBuilder":
        self._headers["Cache-Control"] = "no-store"
        return self

    def build(self) -> HTTPResponse:
        return HTTPResponse(status=self._status, headers=dict(self._headers), body=self._body)


def format_http_date(dt: datetime) -> str:
    """
    Format a datetime as an HTTP-date (RFC 7231).

    Example: Mon, 19 Oct 2026 12:00:00 GMT
    """
    return dt.astimezone(timezone.utc).strftime("%a, %d %b %Y %H:%M:%S GMT")


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def json_response(data: Any, status: HTTPStatus = HTTPStatus.OK) -> HTTPResponse:
    return ResponseBuilder().status(status).json(data).build()


def text_response(text: str, status: HTTPStatus = HTTPStatus.OK) -> HTTPResponse:
    return ResponseBuilder().status(status).text(text).build()


def success(status: HTTPStatus = HTTPStatus.OK, **fields) -> HTTPResponse:
    """{"status": "success", **fields}."""
    return json_response({"status": "success", **fields}, status)


def error_response(message: str, status: HTTPStatus = HTTPStatus.INTERNAL_SERVER_ERROR) -> HTTPResponse:
    """{"status": "error", "message": message}."""
    return json_response({"status": "error", "message": message}, status)


def bad_request(message: str = "Bad Request") -> HTTPResponse:
    return error_response(message, HTTPStatus.BAD_REQUEST)


def not_found(message: str = "Not Found") -> HTTPResponse:
    return error_response(message, HTTPStatus.NOT_FOUND)


def method_not_allowed(allowed: list) -> HTTPResponse:
    response = error_response("Method Not Allowed", HTTPStatus.METHOD_NOT_ALLOWED)
    response.set_header("Allow", ", ".join(sorted(allowed)))
    return response


def internal_error(message: str = "Internal Server Error") -> HTTPResponse:
    return error_response(message, HTTPStatus.INTERNAL_SERVER_ERROR)


def service_unavailable(message: str = "Service is shutting down") -> HTTPResponse:
    response = error_response(message, HTTPStatus.SERVICE_UNAVAILABLE)
    response.set_header("Retry-After", "5")
    return response
