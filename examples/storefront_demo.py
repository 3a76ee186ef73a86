#!/usr/bin/env python3
"""
Storefront Demo — rendered tracking + add-to-cart echo + donation webhook
=========================================================================

Exercises:
  1. A product page rendered through KepixelScriptMiddleware
     (loader, identify/page calls, Product Viewed, footer listeners)
  2. The product-data AJAX action the add-to-cart listener calls
  3. A registration followed by the CompleteRegistration page
  4. A server-side donation completion sent through the writer

The app runs in-process over httpx.ASGITransport. With KEPIXEL_WRITE_KEY
set, server-side events go to the collector; otherwise they are printed.

Run:
    python examples/storefront_demo.py
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re

import httpx
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import HTMLResponse
from starlette.routing import Route

from kepixel_analytics import (
    KepixelScriptMiddleware,
    KepixelSettings,
    KepixelTracker,
    MemoryWriter,
    ProductDataEndpoint,
)
from kepixel_analytics.endpoint import SESSION_COOKIE
from kepixel_analytics.models import Cart, CartItem, Donation, Product, User

CATALOG = {
    11: Product(
        id=11,
        sku="HD-1",
        name="Hoodie",
        price="45.00",
        categories=["Clothing", "Hoodies"],
        brands=["Acme"],
        image_url="https://shop.example.com/img/hoodie.jpg",
        url="https://shop.example.com/product/hoodie",
    ),
}
CART = Cart(items=[CartItem(CATALOG[11], 1)], coupons=["WELCOME"], total=45)

RENDERED_NONCE = re.compile(r'\}\)\("/kepixel/ajax", "([0-9a-f]{10})"\);')

PAGE = """<html>
<head><title>{title}</title></head>
<body>
<h1>{title}</h1>
<a class="button add_to_cart_button" data-product_id="11">Add to cart</a>
<a href="https://wa.me/15551234567">Chat with us</a>
<iframe src="https://docs.google.com/forms/d/e/demo/viewform?embedded=true"></iframe>
</body>
</html>"""


def current_user(request: Request):
    if request.cookies.get("logged_in"):
        return User(id=7, first_name="Ada", email="ada@example.com")
    return None


def build_app(tracker: KepixelTracker) -> Starlette:
    async def product(request: Request):
        tracker.on_product_page(request.state.kepixel, CATALOG[11])
        return HTMLResponse(PAGE.format(title="Hoodie"))

    async def register(request: Request):
        response = HTMLResponse(PAGE.format(title="Welcome"))
        tracker.on_registration(response)
        return response

    endpoint = ProductDataEndpoint(
        tracker, products=CATALOG.get, carts=lambda request: CART, users=current_user
    )
    app = Starlette(
        routes=[
            Route("/product/hoodie", product),
            Route("/register", register),
            endpoint.route("/kepixel/ajax"),
        ]
    )
    app.add_middleware(
        KepixelScriptMiddleware,
        tracker=tracker,
        users=current_user,
    )
    return app


async def main() -> None:
    logging.basicConfig(level=logging.INFO)

    write_key = os.environ.get("KEPIXEL_WRITE_KEY", "")
    settings = KepixelSettings.from_env()
    if not write_key:
        settings.write_key = "demo_write_key"
    settings.donations_enabled = True
    writer = None if write_key else MemoryWriter()
    tracker = KepixelTracker(settings, writer, site_name="Demo Shop")

    transport = httpx.ASGITransport(app=build_app(tracker))
    async with httpx.AsyncClient(
        transport=transport, base_url="http://shop.example.com"
    ) as client:
        client.cookies.set(SESSION_COOKIE, "demo-session")

        print("=" * 70)
        print("  1. Product page")
        print("=" * 70)
        page = await client.get("/product/hoodie")
        print(page.text)

        print("=" * 70)
        print("  2. Add-to-cart product data")
        print("=" * 70)
        nonce = RENDERED_NONCE.search(page.text).group(1)
        data = await client.post(
            "/kepixel/ajax",
            data={
                "action": "kepixel_get_product_data",
                "product_id": "11",
                "quantity": "2",
                "variation_id": "0",
                "nonce": nonce,
            },
        )
        print(json.dumps(data.json(), indent=2))

        print("=" * 70)
        print("  3. Registration, then the next page")
        print("=" * 70)
        await client.get("/register")
        client.cookies.set("logged_in", "1")
        after = await client.get("/product/hoodie")
        queued = "CompleteRegistration" in after.text
        print(f"   CompleteRegistration queued: {queued}")
        print(f"   set-cookie: {after.headers.get('set-cookie')}")

    print("=" * 70)
    print("  4. Donation webhook")
    print("=" * 70)
    donation = Donation(
        id=501,
        status="publish",
        form_id=12,
        form_title="Clean Water",
        total="25.00",
        currency="USD",
        email="donor@example.com",
        first_name="Grace",
        last_name="Hopper",
        date="2024-05-01 12:30:00",
        gateway_label="Credit Card",
    )
    await tracker.donations.track_server_side(donation)
    await tracker.close()

    if isinstance(writer, MemoryWriter):
        print(json.dumps(writer.messages, indent=2))


if __name__ == "__main__":
    asyncio.run(main())
