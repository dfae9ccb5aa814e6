"""
=============================================================================
HANDLERS MODULE
=============================================================================

Request handlers, grouped by area. Each group registers its own routes.

    ┌─────────────────────────────────────────────────────────────────────┐
    │ Module       │ Routes                                 │ Runs on     │
    ├─────────────────────────────────────────────────────────────────────┤
    │ health.py    │ /, /health, /health/live               │ reader      │
    │ catalog.py   │ /menu, /merchant/...                   │ worker      │
    │ accounts.py  │ /user/register, /merchant/add_user_... │ worker      │
    │ orders.py    │ /order..., /delivery/create            │ worker      │
    │ reviews.py   │ /comment/add, /merchant/review         │ worker      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .accounts import AccountHandler
from .base import ApiHandler, Payload, new_id
from .catalog import CatalogHandler
from .health import HealthHandler, HealthStatus, index
from .orders import OrderHandler
from .reviews import ReviewHandler

API_HANDLERS = (CatalogHandler, AccountHandler, OrderHandler, ReviewHandler)

__all__ = [
    "AccountHandler",
    "ApiHandler",
    "CatalogHandler",
    "HealthHandler",
    "HealthStatus",
    "OrderHandler",
    "Payload",
    "ReviewHandler",
    "API_HANDLERS",
    "index",
    "new_id",
]
