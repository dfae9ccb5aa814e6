"""
=============================================================================
HTTP REQUEST PARSING
=============================================================================

Turns the raw bytes a reader thread read into an HTTPRequest value.

The parsed request is a plain dataclass holding bytes and strings, with
no reference to the socket. That matters here: the request is handed
to a worker thread and must stay valid no matter what the reader does
next.

=============================================================================
HTTP REQUEST FORMAT
=============================================================================

    POST /order/create HTTP/1.1\r\n             ← request line
    Host: localhost:8080\r\n                    ← headers
    Content-Type: application/json\r\n
    Content-Length: 52\r\n
    \r\n                                        ← blank line
    {"userId": "u1", "merchantId": "m1", ...}   ← body

=============================================================================
"""

from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Tuple
from urllib.parse import parse_qs, urlparse, unquote
import re
import json


class HTTPParseError(Exception):
    """
    Raised when HTTP request parsing fails.

    Carries the status code to answer with:
        400 Bad Request     - Malformed request syntax or JSON body
        413 Payload Too Large - Request exceeds size limit
        501 Not Implemented - Unknown method
        505 HTTP Version Not Supported - Unknown HTTP version
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass
class HTTPRequest:
    """
    Represents a parsed HTTP request.

    Attributes:
        method:         The HTTP method (GET, POST, ...)
        path:           Request path WITHOUT query string
        version:        "HTTP/1.1" or "HTTP/1.0"
        headers:        Header dict with LOWERCASE keys
        query_params:   Query string as dict of lists
        body:           Raw body bytes
        path_params:    Filled in by the router for ":param" segments
        client_address: (ip, port) of the client
    """

    method: str
    path: str
    version: str = "HTTP/1.1"

    headers: Dict[str, str] = field(default_factory=dict)
    query_params: Dict[str, List[str]] = field(default_factory=dict)
    body: bytes = b""

    path_params: Dict[str, str] = field(default_factory=dict)

    client_address: Tuple[str, int] = ("", 0)

    _body_json: Optional[Any] = field(default=None, repr=False)
    _json_parsed: bool = field(default=False, repr=False)

    @property
    def content_type(self) -> Optional[str]:
        """Content-Type without parameters ("application/json")."""
        ct = self.headers.get("content-type", "")
        return ct.split(";")[0].strip().lower() or None

    @property
    def content_length(self) -> int:
        try:
            return int(self.headers.get("content-length", 0))
        except ValueError:
            return 0

    @property
    def json(self) -> Any:
        """
        Parse the request body as JSON.

        Parsed once and cached. An empty body gives None.

        Raises:
            HTTPParseError: If body is not valid JSON.
        """
        if not self._json_parsed:
            if self.body:
                try:
                    self._body_json = json.loads(self.body.decode("utf-8"))
                except (json.JSONDecodeError, UnicodeDecodeError) as e:
                    raise HTTPParseError(f"Invalid JSON body: {e}")
            self._json_parsed = True
        return self._body_json

    def get_header(self, name: str, default: str = "") -> str:
        """Case-insensitive header lookup."""
        return self.headers.get(name.lower(), default)

    def get_query(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """
        Get the first value of a query parameter.

        Example:
            # URL: /menu?merchantId=m1&merchantId=m2
            request.get_query("merchantId")  # Returns "m1"
        """
        values = self.query_params.get(name, [])
        return values[0] if values else default


class RequestParser:
    """
    Parses raw HTTP request bytes into HTTPRequest objects.

        Raw Request Bytes
              │
              ▼
        1. Size check             → HTTPParseError(413)
        2. Split at \\r\\n\\r\\n      → HTTPParseError("Incomplete")
        3. Parse request line     → HTTPParseError(400/501/505)
        4. Parse headers          (names lowercased)
        5. Cut body to Content-Length
              │
              ▼
        HTTPRequest dataclass
    """

    VALID_METHODS = {"GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"}

    REQUEST_LINE_PATTERN = re.compile(r"^([A-Z]+) ([^ ]+) (HTTP/\d\.\d)$")
    HEADER_PATTERN = re.compile(r"^([^:\s][^:]*):\s*(.*)$")

    def __init__(self, max_request_size: int = 1024 * 1024):
        self.max_request_size = max_request_size

    def parse(self, data: bytes, client_address: Tuple[str, int] = ("", 0)) -> HTTPRequest:
        """
        Parse raw HTTP request data into an HTTPRequest object.

        Args:
            data: Raw HTTP request bytes from socket.
            client_address: Client's (ip, port) tuple for logging.

        Raises:
            HTTPParseError: If the request is malformed.
        """
        if len(data) > self.max_request_size:
            raise HTTPParseError(f"Request too large: {len(data)} bytes", status_code=413)

        header_end = data.find(b"\r\n\r\n")
        if header_end == -1:
            raise HTTPParseError("Incomplete request: no header terminator")

        header_section = data[:header_end].decode("latin-1")
        body = data[header_end + 4:]

        lines = header_section.split("\r\n")
        method, path, query_params, version = self._parse_request_line(lines[0])
        headers = self._parse_headers(lines[1:])

        # ─────────────────────────────────────────────────────────────────
        # BODY: exactly Content-Length bytes
        # ─────────────────────────────────────────────────────────────────
        raw_length = headers.get("content-length", "0")
        try:
            content_length = int(raw_length)
        except ValueError:
            raise HTTPParseError(f"Invalid Content-Length: {raw_length}")
        if content_length < 0:
            raise HTTPParseError(f"Invalid Content-Length: {raw_length}")

        if len(body) < content_length:
            raise HTTPParseError(
                f"Incomplete body: expected {content_length} bytes, got {len(body)}"
            )

        return HTTPRequest(
            method=method,
            path=path,
            version=version,
            headers=headers,
            query_params=query_params,
            body=body[:content_length],
            client_address=client_address,
        )

    def _parse_request_line(self, line: str) -> Tuple[str, str, Dict[str, List[str]], str]:
        """
        Parse "METHOD SP REQUEST-URI SP HTTP-VERSION".

        Raises:
            HTTPParseError: If line is malformed
        """
        match = self.REQUEST_LINE_PATTERN.match(line)
        if not match:
            raise HTTPParseError(f"Invalid request line: {line!r}")

        method, uri, version = match.groups()

        if method not in self.VALID_METHODS:
            raise HTTPParseError(f"Unsupported method: {method}", status_code=501)

        if version not in ("HTTP/1.0", "HTTP/1.1"):
            raise HTTPParseError(f"Unsupported HTTP version: {version}", status_code=505)

        parsed = urlparse(uri)
        path = unquote(parsed.path) or "/"
        query_params = parse_qs(parsed.query, keep_blank_values=True)

        return method, path, query_params, version

    def _parse_headers(self, lines: List[str]) -> Dict[str, str]:
        """
        Parse "Name: value" lines into a dict with lowercase names.

        A header repeated on several lines is joined with ", ".
        """
        headers: Dict[str, str] = {}

        for line in lines:
            if not line:
                continue

            match = self.HEADER_PATTERN.match(line)
            if not match:
                raise HTTPParseError(f"Invalid header line: {line!r}")

            name, value = match.groups()
            name = name.strip().lower()
            value = value.strip()

            if name in headers:
                headers[name] = f"{headers[name]}, {value}"
            else:
                headers[name] = value

        return headers


def parse_request(data: bytes, client_address: Tuple[str, int] = ("", 0)) -> HTTPRequest:
    """Parse with a default RequestParser. Handy in tests."""
    return RequestParser().parse(data, client_address)
