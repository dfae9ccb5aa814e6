"""
Dish comments and merchant reviews.

    POST /comment/add         comment on a dish (or a general comment)
    POST /merchant/review     rate a merchant
"""

from http import HTTPStatus

from .base import ApiHandler, Payload, new_id
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, success
from ..http.router import Router


class ReviewHandler(ApiHandler):

    def register(self, router: Router) -> None:
        router.post("/comment/add", name="add_comment")(self.add_comment)
        router.post("/merchant/review", name="add_merchant_review")(self.add_merchant_review)

    def add_comment(self, request: HTTPRequest) -> HTTPResponse:
        data = Payload.from_request(request)
        comment_id = new_id()
        params = (
            comment_id,
            data.text("userId", required=True, max_length=36),
            # dishId is a nullable FK; an empty value means "no dish"
            data.text("dishId", default=None, max_length=36),
            data.integer("rating", default=5, minimum=1, maximum=5),
            data.text("content", default=""),
        )

        with self.pool.lease() as db:
            db.execute(
                "INSERT INTO USER_COMMENT (commentId, userId, dishId, rating, content, commentTime) "
                "VALUES (%s, %s, %s, %s, %s, NOW())",
                params,
            )

        return success(HTTPStatus.CREATED, commentId=comment_id)

    def add_merchant_review(self, request: HTTPRequest) -> HTTPResponse:
        data = Payload.from_request(request)
        review_id = new_id()
        params = (
            review_id,
            data.text("userId", required=True, max_length=36),
            data.text("merchantId", required=True, max_length=36),
            data.integer("rating", default=5, minimum=1, maximum=5),
            data.text("content", default=""),
        )

        with self.pool.lease() as db:
            db.execute(
                "INSERT INTO MERCHANT_REVIEW (reviewId, userId, merchantId, rating, content, reviewTime) "
                "VALUES (%s, %s, %s, %s, %s, NOW())",
                params,
            )

        return success(HTTPStatus.CREATED, reviewId=review_id)
