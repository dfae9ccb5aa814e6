"""
User accounts and delivery addresses.

    POST /user/register                 create a user
    POST /merchant/add_user_address     add a delivery address for a user
"""

import logging
from http import HTTPStatus

from .base import ApiHandler, Payload, new_id
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, success
from ..http.router import Router


logger = logging.getLogger(__name__)


class AccountHandler(ApiHandler):

    def register(self, router: Router) -> None:
        router.post("/user/register", name="register_user")(self.register_user)
        # Path kept for existing clients even though it is not merchant data
        router.post("/merchant/add_user_address", name="add_user_address")(self.add_user_address)

    def register_user(self, request: HTTPRequest) -> HTTPResponse:
        """
        Create a user. The client sends the password already hashed;
        the server stores passwordHash as given.
        """
        data = Payload.from_request(request)
        user_id = data.text("userId", required=True, max_length=36)
        params = (
            user_id,
            data.text("username", required=True, max_length=50),
            data.text("passwordHash", required=True, max_length=255),
            data.text("email", default="", max_length=100),
            data.text("phoneNumber", default="", max_length=20),
            data.text("status", default="active", max_length=20),
            data.text("avatarUrl", default="", max_length=255),
            data.text("gender", default="", max_length=10),
        )

        with self.pool.lease() as db:
            db.execute(
                "INSERT INTO `USER` "
                "(userId, username, passwordHash, email, phoneNumber, status, avatarUrl, gender) "
                "VALUES (%s, %s, %s, %s, %s, %s, %s, %s)",
                params,
            )

        logger.info(f"User {user_id} registered")
        return success(HTTPStatus.CREATED, userId=user_id)

    def add_user_address(self, request: HTTPRequest) -> HTTPResponse:
        data = Payload.from_request(request)
        address_id = new_id()
        params = (
            address_id,
            data.text("userId", required=True, max_length=36),
            data.text("recipientName", required=True, max_length=50),
            data.text("phoneNumber", required=True, max_length=20),
            data.text("fullAddress", required=True, max_length=255),
            int(data.boolean("isDefault", default=False)),
        )

        with self.pool.lease() as db:
            db.execute(
                "INSERT INTO USER_ADDRESS "
                "(addressId, userId, recipientName, phoneNumber, fullAddress, isDefault) "
                "VALUES (%s, %s, %s, %s, %s, %s)",
                params,
            )

        return success(HTTPStatus.CREATED, addressId=address_id, message="Address added")
