"""
=============================================================================
ORDER ENDPOINTS
=============================================================================

    POST /order/create      order header + items, one transaction
    POST /order             older path for /order/create
    POST /order/pay         payment record + order status, one transaction
    POST /delivery/create   delivery record for an order

=============================================================================
ORDER STATUS FLOW
=============================================================================

    PENDING_PAYMENT ──/order/pay──► PAID

Delivery records start in PENDING_PICKUP.

=============================================================================
"""

import logging
from decimal import Decimal
from http import HTTPStatus
from typing import List, Tuple

from .base import ApiHandler, Payload, new_id
from ..errors import ValidationError
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, error_response, success
from ..http.router import Router


logger = logging.getLogger(__name__)

STATUS_PENDING_PAYMENT = "PENDING_PAYMENT"
STATUS_PAID = "PAID"
DELIVERY_PENDING_PICKUP = "PENDING_PICKUP"


class OrderHandler(ApiHandler):

    def register(self, router: Router) -> None:
        router.post("/order/create", name="create_order")(self.create_order)
        router.post("/order", name="create_order_legacy")(self.create_order)
        router.post("/order/pay", name="pay_order")(self.pay_order)
        router.post("/delivery/create", name="create_delivery")(self.create_delivery)

    def create_order(self, request: HTTPRequest) -> HTTPResponse:
        """
        Create an order and its items atomically.

        orderId may come from the client (idempotent retries) or is
        generated. totalPrice defaults to the sum of price * quantity.
        """
        data = Payload.from_request(request)
        order_id = data.text("orderId", max_length=36) or new_id()
        user_id = data.text("userId", required=True, max_length=36)
        merchant_id = data.text("merchantId", required=True, max_length=36)
        address_id = data.text("addressId", required=True, max_length=36)
        remark = data.text("remark", default="")

        items = self._parse_items(data)
        if not items:
            raise ValidationError("An order needs at least one item", "items")

        total = data.decimal("totalPrice", minimum=0)
        if total is None:
            total = sum((price * quantity for _, _, price, quantity in items), Decimal("0"))

        with self.pool.lease() as db:
            with db.transaction():
                db.execute(
                    "INSERT INTO `ORDER` "
                    "(orderId, userId, merchantId, totalPrice, status, orderTime, addressId, remark) "
                    "VALUES (%s, %s, %s, %s, %s, NOW(), %s, %s)",
                    (order_id, user_id, merchant_id, total, STATUS_PENDING_PAYMENT, address_id, remark),
                )
                for dish_id, dish_name, price, quantity in items:
                    db.execute(
                        "INSERT INTO ORDER_ITEM "
                        "(orderItemId, orderId, dishId, dishName, price, quantity) "
                        "VALUES (%s, %s, %s, %s, %s, %s)",
                        (new_id(), order_id, dish_id, dish_name, price, quantity),
                    )

        logger.info(f"Order {order_id} created with {len(items)} items, total {total}")
        return success(HTTPStatus.CREATED, orderId=order_id, totalPrice=total)

    @staticmethod
    def _parse_items(data: Payload) -> List[Tuple[str, str, Decimal, int]]:
        parsed = []
        for entry in data.items("items", required=True):
            item = Payload(entry)
            parsed.append((
                item.text("dishId", required=True, max_length=36),
                item.text("dishName", required=True, max_length=100),
                item.decimal("price", required=True, minimum=0),
                item.integer("quantity", default=1, minimum=1),
            ))
        return parsed

    def pay_order(self, request: HTTPRequest) -> HTTPResponse:
        """
        Record a payment and mark the order PAID.

        The order row is locked (SELECT ... FOR UPDATE) so two concurrent
        payments for one order cannot both succeed.
        """
        data = Payload.from_request(request)
        order_id = data.text("orderId", required=True, max_length=36)
        method = data.text("paymentMethod", required=True, max_length=50)
        transaction_id = data.text("transactionId", default=None, max_length=100)
        amount = data.decimal("amount", minimum=0)
        payment_id = new_id()

        with self.pool.lease() as db:
            with db.transaction():
                rows = db.execute(
                    "SELECT totalPrice, status FROM `ORDER` WHERE orderId = %s FOR UPDATE",
                    (order_id,),
                )
                if not rows:
                    return error_response(f"Order {order_id} not found", HTTPStatus.NOT_FOUND)

                order = rows[0]
                if order["status"] != STATUS_PENDING_PAYMENT:
                    return error_response(
                        f"Order {order_id} is {order['status']}, not awaiting payment",
                        HTTPStatus.CONFLICT,
                    )

                if amount is None:
                    amount = order["totalPrice"]

                db.execute(
                    "INSERT INTO PAYMENT_RECORD "
                    "(paymentId, orderId, amount, paymentTime, paymentMethod, transactionId, status) "
                    "VALUES (%s, %s, %s, NOW(), %s, %s, 'SUCCESS')",
                    (payment_id, order_id, amount, method, transaction_id),
                )
                db.execute(
                    "UPDATE `ORDER` SET status = %s, paymentTime = NOW() WHERE orderId = %s",
                    (STATUS_PAID, order_id),
                )

        logger.info(f"Order {order_id} paid via {method}")
        return success(HTTPStatus.CREATED, paymentId=payment_id, orderId=order_id)

    def create_delivery(self, request: HTTPRequest) -> HTTPResponse:
        data = Payload.from_request(request)
        delivery_id = new_id()
        params = (
            delivery_id,
            data.text("orderId", required=True, max_length=36),
            DELIVERY_PENDING_PICKUP,
            data.text("estimatedDeliveryTime", default=None),
            data.text("deliveryPersonId", default=None, max_length=36),
            data.text("deliveryPersonName", default=None, max_length=50),
            data.text("deliveryPersonPhone", default=None, max_length=20),
        )

        with self.pool.lease() as db:
            db.execute(
                "INSERT INTO DELIVERY_INFO "
                "(deliveryId, orderId, deliveryStatus, estimatedDeliveryTime, "
                "deliveryPersonId, deliveryPersonName, deliveryPersonPhone) "
                "VALUES (%s, %s, %s, %s, %s, %s, %s)",
                params,
            )

        return success(HTTPStatus.CREATED, deliveryId=delivery_id)
