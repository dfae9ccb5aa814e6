"""
HTTP protocol pieces: request parsing, response building and routing.

    ┌─────────────────────────────────────────────────────────────────────┐
    │ request.py   raw bytes  → HTTPRequest                               │
    │ router.py    HTTPRequest → handler (404 / 405 when nothing matches) │
    │ response.py  HTTPResponse → raw bytes                               │
    └─────────────────────────────────────────────────────────────────────┘
"""

from .request import HTTPRequest, HTTPParseError, RequestParser, parse_request
from .response import (
    HTTPResponse,
    ResponseBuilder,
    json_response,
    text_response,
    success,
    error_response,
    bad_request,
    not_found,
    internal_error,
    service_unavailable,
)
from .router import Router, Route, RouteMatch

__all__ = [
    "HTTPRequest",
    "HTTPParseError",
    "RequestParser",
    "parse_request",
    "HTTPResponse",
    "ResponseBuilder",
    "json_response",
    "text_response",
    "success",
    "error_response",
    "bad_request",
    "not_found",
    "internal_error",
    "service_unavailable",
    "Router",
    "Route",
    "RouteMatch",
]
