"""Tests for the product-data AJAX endpoint."""

import pytest
from starlette.applications import Starlette
from starlette.testclient import TestClient

from kepixel_analytics.config import KepixelSettings
from kepixel_analytics.endpoint import SESSION_COOKIE, ProductDataEndpoint
from kepixel_analytics.models import Cart, CartItem, Product, User
from kepixel_analytics.tracker import KepixelTracker
from kepixel_analytics.writer import MemoryWriter

CATALOG = {
    11: Product(
        id=11,
        sku="HD-1",
        name="Hoodie",
        price="45.00",
        categories=["Clothing"],
        brands=["Acme"],
        url="https://shop.example.com/product/hoodie",
    ),
    21: Product(
        id=21,
        sku="HD-1-RED",
        name="Hoodie - Red",
        price="47.00",
        is_variation=True,
        variation_attributes={"attribute_color": "Red"},
        url="https://shop.example.com/product/hoodie?color=red",
    ),
}


@pytest.fixture
def tracker():
    settings = KepixelSettings(write_key="wk", nonce_secret="secret")
    return KepixelTracker(settings, MemoryWriter())


def make_client(tracker, products=CATALOG.get, carts=None, users=None):
    endpoint = ProductDataEndpoint(tracker, products, carts=carts, users=users)
    app = Starlette(routes=[endpoint.route("/kepixel/ajax")])
    client = TestClient(app)
    client.cookies.set(SESSION_COOKIE, "sess")
    return client


def form(tracker, **overrides):
    data = {
        "action": "kepixel_get_product_data",
        "product_id": "11",
        "quantity": "2",
        "variation_id": "0",
        "nonce": tracker.nonces.create(token="sess"),
    }
    data.update(overrides)
    return data


class TestProductDataEndpoint:
    def test_returns_product_added_payload(self, tracker):
        cart = Cart(items=[CartItem(CATALOG[21], 3)], coupons=["SAVE10"])
        client = make_client(tracker, carts=lambda request: cart)

        response = client.post("/kepixel/ajax", data=form(tracker))

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        data = body["data"]
        assert data["cart_id"].startswith("cart_guest_sess_")
        assert data["product_id"] == "11"
        assert data["content_id"] == "11"
        assert data["brand"] == "Acme"
        assert data["price"] == 45.0
        assert data["quantity"] == 2
        assert data["coupon"] == "SAVE10"
        assert data["position"] == 4
        assert data["products"][0]["category"] == "Clothing"

    def test_variation_id_takes_precedence(self, tracker):
        client = make_client(tracker)
        response = client.post("/kepixel/ajax", data=form(tracker, variation_id="21"))

        data = response.json()["data"]
        assert data["product_id"] == "21"
        assert data["variant"] == "Red"

    def test_variant_only_for_variation_requests(self, tracker):
        client = make_client(tracker)
        response = client.post("/kepixel/ajax", data=form(tracker, product_id="21"))
        assert response.json()["data"]["variant"] == ""
        assert CATALOG[21].is_variation

    def test_async_lookup(self, tracker):
        async def lookup(product_id):
            return CATALOG.get(product_id)

        client = make_client(tracker, products=lookup)
        response = client.post("/kepixel/ajax", data=form(tracker))
        assert response.json()["data"]["name"] == "Hoodie"

    def test_bad_nonce(self, tracker):
        client = make_client(tracker)
        response = client.post("/kepixel/ajax", data=form(tracker, nonce="0000000000"))

        assert response.status_code == 403
        assert response.text == "Security check failed"

    def test_nonce_bound_to_session(self, tracker):
        client = make_client(tracker)
        client.cookies.set(SESSION_COOKIE, "someone-else")
        response = client.post("/kepixel/ajax", data=form(tracker))
        assert response.status_code == 403

    def test_product_not_found(self, tracker):
        client = make_client(tracker)
        response = client.post("/kepixel/ajax", data=form(tracker, product_id="999"))

        assert response.status_code == 404
        assert response.text == "Product not found"

    def test_commerce_unavailable(self):
        settings = KepixelSettings(write_key="wk", commerce_enabled=False)
        tracker = KepixelTracker(settings, MemoryWriter())
        client = make_client(tracker)

        response = client.post("/kepixel/ajax", data=form(tracker))

        assert response.status_code == 503
        assert response.text == "WooCommerce not available"

    def test_no_catalog(self, tracker):
        client = make_client(tracker, products=None)
        response = client.post("/kepixel/ajax", data=form(tracker))
        assert response.status_code == 503

    def test_get_not_allowed(self, tracker):
        client = make_client(tracker)
        assert client.get("/kepixel/ajax").status_code == 405

    def test_logged_in_user(self, tracker):
        client = make_client(tracker, users=lambda request: User(id=7))
        nonce = tracker.nonces.create(token="sess", user_id=7)

        response = client.post("/kepixel/ajax", data=form(tracker, nonce=nonce))

        assert response.status_code == 200
        assert response.json()["data"]["cart_id"].startswith("cart_user_7_")

    def test_async_user_resolver(self, tracker):
        async def current_user(request):
            return User(id=7)

        client = make_client(tracker, users=current_user)
        nonce = tracker.nonces.create(token="sess", user_id=7)
        response = client.post("/kepixel/ajax", data=form(tracker, nonce=nonce))
        assert response.status_code == 200

    def test_guest_nonce_rejected_for_logged_in_user(self, tracker):
        client = make_client(tracker, users=lambda request: User(id=7))
        response = client.post("/kepixel/ajax", data=form(tracker))
        assert response.status_code == 403
