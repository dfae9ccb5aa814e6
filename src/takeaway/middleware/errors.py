"""
=============================================================================
ERROR MAPPING MIDDLEWARE
=============================================================================

The innermost error boundary of a work item. Whatever a handler raises
is turned into a response here, so nothing unwinds into the worker loop.

    ValidationError          → 400 {"status": "error", "message": ...}
    HTTPParseError           → its own status (bad JSON body → 400)
    DatabaseConnectionError  → 500, or 503 when the pool was drained
    anything else            → 500 (logged with traceback)

=============================================================================
"""

import logging
from http import HTTPStatus

from .base import Middleware, NextHandler
from ..errors import DatabaseConnectionError, PoolClosedError, PoolExhaustedError, ValidationError
from ..http.request import HTTPRequest, HTTPParseError
from ..http.response import HTTPResponse, error_response


logger = logging.getLogger(__name__)


class ErrorMiddleware(Middleware):
    """
    Convert handler exceptions into JSON error responses.

    Args:
        expose_errors: Include the exception text in 500 responses.
                       Existing clients display database errors verbatim;
                       turn this off to hide them.
    """

    def __init__(self, expose_errors: bool = True):
        self.expose_errors = expose_errors

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        try:
            return next(request)

        except ValidationError as e:
            return error_response(e.message, HTTPStatus.BAD_REQUEST)

        except HTTPParseError as e:
            return error_response(e.message, HTTPStatus(e.status_code))

        except (PoolClosedError, PoolExhaustedError) as e:
            logger.warning(f"{request.method} {request.path}: {e}")
            return error_response(str(e), HTTPStatus.SERVICE_UNAVAILABLE)

        except DatabaseConnectionError as e:
            logger.error(f"{request.method} {request.path}: {e}")
            return error_response(self._message(e, "Database error"))

        except Exception as e:
            logger.exception(f"Handler error for {request.method} {request.path}: {e}")
            return error_response(self._message(e, "Internal Server Error"))

    def _message(self, error: Exception, fallback: str) -> str:
        if self.expose_errors and str(error):
            return str(error)
        return fallback
