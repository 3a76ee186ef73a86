"""Product-data AJAX action for add-to-cart tracking.

The browser listener posts the clicked product id here and receives the
Product Added payload back, since the page cannot know the cart id,
position or applied coupon on its own.

Usage::

    endpoint = ProductDataEndpoint(
        tracker, products=catalog.get, carts=cart_for, users=current_user
    )
    app = Starlette(routes=[endpoint.route("/kepixel/ajax")])
    app.add_middleware(KepixelScriptMiddleware, tracker=tracker, users=current_user)

Pass the same ``visitors`` / ``users`` resolvers to both, since the nonce
rendered into pages is bound to the visitor's session and user id.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import replace
from typing import Any, Awaitable, Callable, Optional, Tuple, Union

from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response
from starlette.routing import Route

from kepixel_analytics.models import Cart, Product, User, Visitor
from kepixel_analytics.nonce import ADD_TO_CART_ACTION
from kepixel_analytics.payloads import PayloadBuilder, to_int

logger = logging.getLogger(__name__)

PRODUCT_DATA_ACTION = "kepixel_get_product_data"
SESSION_COOKIE = "kepixel_session"

ProductLookup = Callable[[int], Union[Optional[Product], Awaitable[Optional[Product]]]]
CartProvider = Callable[[Request], Union[Optional[Cart], Awaitable[Optional[Cart]]]]
VisitorResolver = Callable[[Request], Visitor]
UserResolver = Callable[[Request], Union[Optional[User], Awaitable[Optional[User]]]]


def default_visitor(request: Request) -> Visitor:
    """Guest visitor keyed by the ``kepixel_session`` cookie."""
    return Visitor(session_id=request.cookies.get(SESSION_COOKIE, ""))


async def maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


async def resolve_visitor(
    request: Request,
    visitors: VisitorResolver = default_visitor,
    users: Optional[UserResolver] = None,
) -> Tuple[Visitor, Optional[User]]:
    """Visitor and logged-in user for a request.

    The user id is copied onto the visitor, so pages and the product-data
    action sign and check nonces (and build cart ids) for the same person.
    """
    visitor = visitors(request)
    user = await maybe_await(users(request)) if users else None
    if user is not None and not visitor.user_id:
        visitor.user_id = user.id
    return visitor, user


class ProductDataEndpoint:
    """Echoes Product Added data for a product id, gated by a nonce."""

    def __init__(
        self,
        tracker: Any,
        products: Optional[ProductLookup] = None,
        *,
        carts: Optional[CartProvider] = None,
        visitors: Optional[VisitorResolver] = None,
        users: Optional[UserResolver] = None,
    ):
        self.tracker = tracker
        self.products = products
        self.carts = carts
        self.visitors = visitors or default_visitor
        self.users = users

    def route(self, path: str = "/kepixel/ajax") -> Route:
        return Route(path, self.handle, methods=["POST"], name="kepixel_product_data")

    async def handle(self, request: Request) -> Response:
        settings = self.tracker.settings
        if self.products is None or not settings.commerce_enabled:
            return PlainTextResponse("WooCommerce not available", status_code=503)

        form = await request.form()
        if form.get("action", PRODUCT_DATA_ACTION) != PRODUCT_DATA_ACTION:
            return PlainTextResponse("Unknown action", status_code=400)

        visitor, _ = await resolve_visitor(request, self.visitors, self.users)
        if not self.tracker.nonces.verify(
            form.get("nonce"),
            ADD_TO_CART_ACTION,
            visitor.session_id,
            visitor.user_id or 0,
        ):
            logger.debug("Rejected product-data request with a bad nonce")
            return PlainTextResponse("Security check failed", status_code=403)

        product_id = to_int(form.get("product_id"))
        quantity = to_int(form.get("quantity"))
        variation_id = to_int(form.get("variation_id"))

        product = await maybe_await(self.products(variation_id or product_id))
        if product is None:
            return PlainTextResponse("Product not found", status_code=404)
        if not variation_id and product.is_variation:
            product = replace(product, is_variation=False)

        cart = await maybe_await(self.carts(request)) if self.carts else None
        data = PayloadBuilder.product_added(product, quantity, visitor, cart)
        return JSONResponse({"success": True, "data": data})
