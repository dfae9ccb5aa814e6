"""
=============================================================================
CATALOG ENDPOINTS
=============================================================================

Merchants, dish categories and dishes.

    GET  /menu                              every dish
    GET  /merchant/:merchant_id/dishes      dishes of one merchant
    POST /merchant/add                      register a merchant
    POST /merchant/add_category             add a dish category
    POST /merchant/add_item                 add a dish, id generated
    POST /merchant/add_dish                 add a dish, every column given

=============================================================================
"""

import logging
from decimal import Decimal
from http import HTTPStatus

from .base import ApiHandler, Payload, new_id
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, json_response, success
from ..http.router import Router


logger = logging.getLogger(__name__)

DISH_COLUMNS = (
    "dishId, merchantId, categoryId, name, description, price, "
    "imageUrl, stock, sales, rating, isOnSale"
)

INSERT_DISH = (
    f"INSERT INTO DISH ({DISH_COLUMNS}) "
    "VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)"
)


class CatalogHandler(ApiHandler):
    """Menu reads and merchant-side catalog writes."""

    def register(self, router: Router) -> None:
        router.get("/menu", name="menu")(self.menu)
        router.get("/merchant/:merchant_id/dishes", name="merchant_dishes")(self.merchant_dishes)
        router.post("/merchant/add", name="add_merchant")(self.add_merchant)
        router.post("/merchant/add_category", name="add_category")(self.add_category)
        router.post("/merchant/add_item", name="add_item")(self.add_item)
        router.post("/merchant/add_dish", name="add_dish")(self.add_dish)

    # =========================================================================
    # READS
    # =========================================================================

    def menu(self, request: HTTPRequest) -> HTTPResponse:
        """All dishes, as a JSON array of rows."""
        with self.pool.lease() as db:
            rows = db.execute(f"SELECT {DISH_COLUMNS} FROM DISH")
        return json_response(rows)

    def merchant_dishes(self, request: HTTPRequest) -> HTTPResponse:
        """
        Dishes of one merchant. `?onSale=1` limits to dishes on sale.
        """
        merchant_id = request.path_params["merchant_id"]
        sql = f"SELECT {DISH_COLUMNS} FROM DISH WHERE merchantId = %s"
        params = [merchant_id]

        if request.get_query("onSale") in ("1", "true"):
            sql += " AND isOnSale = 1"

        with self.pool.lease() as db:
            rows = db.execute(sql + " ORDER BY categoryId, name", params)
        return json_response(rows)

    # =========================================================================
    # WRITES
    # =========================================================================

    def add_merchant(self, request: HTTPRequest) -> HTTPResponse:
        """
        Register a merchant. New merchants start closed and "pending"
        unless the payload says otherwise.
        """
        data = Payload.from_request(request)
        merchant_id = new_id()
        params = (
            merchant_id,
            data.text("name", required=True, max_length=100),
            data.text("description", default=""),
            data.text("address", required=True, max_length=255),
            data.text("phoneNumber", required=True, max_length=20),
            data.text("logoUrl", default=""),
            int(data.boolean("isOpen", default=False)),
            data.text("status", default="pending", max_length=20),
        )

        with self.pool.lease() as db:
            db.execute(
                "INSERT INTO MERCHANT "
                "(merchantId, name, description, address, phoneNumber, logoUrl, isOpen, status) "
                "VALUES (%s, %s, %s, %s, %s, %s, %s, %s)",
                params,
            )

        logger.info(f"Merchant {merchant_id} registered")
        return success(HTTPStatus.CREATED, merchantId=merchant_id)

    def add_category(self, request: HTTPRequest) -> HTTPResponse:
        data = Payload.from_request(request)
        params = (
            data.text("categoryId", required=True, max_length=36),
            data.text("merchantId", required=True, max_length=36),
            data.text("categoryName", required=True, max_length=50),
            data.integer("sortOrder", required=True),
        )

        with self.pool.lease() as db:
            db.execute(
                "INSERT INTO DISH_CATEGORY (categoryId, merchantId, categoryName, sortOrder) "
                "VALUES (%s, %s, %s, %s)",
                params,
            )

        return success(HTTPStatus.CREATED, categoryId=params[0])

    def add_item(self, request: HTTPRequest) -> HTTPResponse:
        """
        Add a dish with a generated dishId. Only the identifying fields
        and price are required; the rest take the column defaults.
        """
        data = Payload.from_request(request)
        dish_id = new_id()
        params = (
            dish_id,
            data.text("merchantId", required=True, max_length=36),
            data.text("categoryId", required=True, max_length=36),
            self._dish_name(data),
            data.text("description", default=""),
            data.decimal("price", required=True, minimum=0),
            data.text("imageUrl", default=""),
            data.integer("stock", default=0, minimum=0),
            data.integer("sales", default=0, minimum=0),
            data.decimal("rating", default=Decimal("0.0"), minimum=0, maximum=5),
            int(data.boolean("isOnSale", default=True)),
        )

        with self.pool.lease() as db:
            db.execute(INSERT_DISH, params)

        return success(HTTPStatus.CREATED, dishId=dish_id)

    def add_dish(self, request: HTTPRequest) -> HTTPResponse:
        """Add a dish where the client supplies every column, dishId included."""
        data = Payload.from_request(request)
        data.require_keys("description", "imageUrl", "stock", "sales", "rating", "isOnSale")

        params = (
            data.text("dishId", required=True, max_length=36),
            data.text("merchantId", required=True, max_length=36),
            data.text("categoryId", required=True, max_length=36),
            self._dish_name(data),
            data.text("description", default=""),
            data.decimal("price", required=True, minimum=0),
            data.text("imageUrl", default=""),
            data.integer("stock", required=True, minimum=0),
            data.integer("sales", required=True, minimum=0),
            data.decimal("rating", required=True, minimum=0, maximum=5),
            int(data.boolean("isOnSale")),
        )

        with self.pool.lease() as db:
            db.execute(INSERT_DISH, params)

        return success(HTTPStatus.CREATED, dishId=params[0])

    @staticmethod
    def _dish_name(data: Payload) -> str:
        # Clients send either "name" (the column) or "dishName"
        if "name" in data:
            return data.text("name", max_length=100)
        return data.text("dishName", required=True, max_length=100)
