"""
Middleware wrapped around the router: access logging and error mapping.
"""

from .base import Middleware, MiddlewarePipeline, NextHandler
from .errors import ErrorMiddleware
from .logging import LoggingMiddleware, RequestLog

__all__ = [
    "Middleware",
    "MiddlewarePipeline",
    "NextHandler",
    "ErrorMiddleware",
    "LoggingMiddleware",
    "RequestLog",
]
