"""
=============================================================================
ENDPOINT HANDLER BASE
=============================================================================

Shared plumbing for the business endpoints: payload validation, id
generation and database leases.

Every endpoint runs as a work item on a worker thread:

    with self.pool.lease() as db:          ← one handle for the whole request
        db.execute("INSERT ...", params)   ← values always as params
    return success(...)

Handlers raise ValidationError for bad input; ErrorMiddleware turns it
into a 400. Database failures surface as DatabaseConnectionError → 500.

=============================================================================
"""

import uuid
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from ..core.lease_pool import DatabaseLeasePool
from ..errors import ValidationError
from ..http.request import HTTPRequest
from ..http.router import Router


def new_id() -> str:
    """A fresh 36-character id (fits the VARCHAR(36) key columns)."""
    return str(uuid.uuid4())


class Payload:
    """
    Typed access to a JSON request body.

        data = Payload.from_request(request)
        name = data.text("name", required=True)
        price = data.decimal("price", required=True, minimum=0)
        stock = data.integer("stock", default=0)

    Every accessor raises ValidationError naming the field.
    """

    def __init__(self, data: Dict[str, Any]):
        self.data = data

    @classmethod
    def from_request(cls, request: HTTPRequest) -> "Payload":
        body = request.json
        if body is None:
            raise ValidationError("Request body must be a JSON object")
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object")
        return cls(body)

    def __contains__(self, name: str) -> bool:
        return self.data.get(name) is not None

    def require_keys(self, *names: str) -> None:
        """Every name must be present as a key, even if its value is empty."""
        for name in names:
            if name not in self.data:
                raise ValidationError(f"Missing required field: {name}", name)

    def _raw(self, name: str, required: bool) -> Any:
        value = self.data.get(name)
        if value is None or value == "":
            if required:
                raise ValidationError(f"Missing required field: {name}", name)
            return None
        return value

    def text(self, name: str, default: Optional[str] = None, required: bool = False,
             max_length: Optional[int] = None) -> Optional[str]:
        value = self._raw(name, required)
        if value is None:
            return default
        if not isinstance(value, (str, int, float)) or isinstance(value, bool):
            raise ValidationError(f"Field {name} must be a string", name)
        value = str(value)
        if max_length is not None and len(value) > max_length:
            raise ValidationError(f"Field {name} is longer than {max_length} characters", name)
        return value

    def integer(self, name: str, default: Optional[int] = None, required: bool = False,
                minimum: Optional[int] = None, maximum: Optional[int] = None) -> Optional[int]:
        value = self._raw(name, required)
        if value is None:
            return default
        if isinstance(value, bool):
            raise ValidationError(f"Field {name} must be an integer", name)
        try:
            number = int(value)
        except (TypeError, ValueError):
            raise ValidationError(f"Field {name} must be an integer", name)
        if isinstance(value, float) and value != number:
            raise ValidationError(f"Field {name} must be an integer", name)
        self._check_range(name, number, minimum, maximum)
        return number

    def decimal(self, name: str, default: Optional[Decimal] = None, required: bool = False,
                minimum: Optional[int] = None, maximum: Optional[int] = None) -> Optional[Decimal]:
        value = self._raw(name, required)
        if value is None:
            return default
        if isinstance(value, bool):
            raise ValidationError(f"Field {name} must be a number", name)
        try:
            number = Decimal(str(value))
        except InvalidOperation:
            raise ValidationError(f"Field {name} must be a number", name)
        if not number.is_finite():
            raise ValidationError(f"Field {name} must be a number", name)
        self._check_range(name, number, minimum, maximum)
        return number

    def boolean(self, name: str, default: bool = False) -> bool:
        """Accepts true/false, 1/0 and "true"/"false"."""
        value = self._raw(name, False)
        if value is None:
            return default
        if isinstance(value, bool):
            return value
        if value in (0, 1):
            return bool(value)
        if isinstance(value, str) and value.lower() in ("true", "false", "1", "0"):
            return value.lower() in ("true", "1")
        raise ValidationError(f"Field {name} must be a boolean", name)

    def items(self, name: str, required: bool = False) -> list:
        value = self._raw(name, required)
        if value is None:
            return []
        if not isinstance(value, list):
            raise ValidationError(f"Field {name} must be a list", name)
        for entry in value:
            if not isinstance(entry, dict):
                raise ValidationError(f"Every entry of {name} must be an object", name)
        return value

    @staticmethod
    def _check_range(name, number, minimum, maximum) -> None:
        if minimum is not None and number < minimum:
            raise ValidationError(f"Field {name} must be >= {minimum}", name)
        if maximum is not None and number > maximum:
            raise ValidationError(f"Field {name} must be <= {maximum}", name)


class ApiHandler:
    """
    Base class for a group of endpoints sharing the lease pool.

    Subclasses implement register(router).
    """

    def __init__(self, pool: DatabaseLeasePool):
        self.pool = pool

    def register(self, router: Router) -> None:
        raise NotImplementedError
