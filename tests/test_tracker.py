"""Tests for KepixelTracker."""

import random
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from kepixel_analytics.config import KepixelSettings
from kepixel_analytics.events import Event
from kepixel_analytics.models import (
    Cart,
    CartItem,
    Category,
    Order,
    OrderItem,
    Product,
    Visitor,
)
from kepixel_analytics.page import REGISTRATION_COOKIE
from kepixel_analytics.tracker import KepixelTracker

NOW = 1_700_000_000


@pytest.fixture
def mock_writer():
    with patch("kepixel_analytics.tracker.AsyncHttpWriter") as MockWriter:
        instance = MockWriter.return_value
        instance.write = AsyncMock()
        instance.flush = AsyncMock()
        instance.close = AsyncMock()
        yield instance


@pytest.fixture
def settings():
    return KepixelSettings(write_key="wk_123", site_name="My Shop", nonce_secret="n")


@pytest.fixture
def tracker(mock_writer, settings):
    return KepixelTracker(settings)


@pytest.fixture
def hoodie():
    return Product(id=11, sku="HD-1", name="Hoodie", price="45", url="https://s/hoodie")


class TestServerSideCalls:
    async def test_track(self, tracker, mock_writer):
        event = await tracker.track("Order Completed", {"order_id": "1"}, user_id=42)

        assert event.type == "track"
        assert event.event == "Order Completed"
        assert event.user_id == "42"
        mock_writer.write.assert_awaited_once_with(event)

    async def test_identify(self, tracker, mock_writer):
        event = await tracker.identify("42", {"email": "a@example.com"})
        assert event.to_message()["traits"] == {"email": "a@example.com"}
        mock_writer.write.assert_awaited_once()

    async def test_page(self, tracker, mock_writer):
        event = await tracker.page("Home", anonymous_id="anon")
        assert event.to_message()["name"] == "Home"
        assert event.anonymous_id == "anon"

    async def test_explicit_timestamp(self, tracker):
        event = await tracker.track("X", timestamp="2024-01-01T00:00:00+00:00")
        assert event.timestamp == "2024-01-01T00:00:00+00:00"

    async def test_disabled_is_noop(self, mock_writer):
        tracker = KepixelTracker(KepixelSettings(write_key="wk", enable_tracking=False))
        assert await tracker.track("X") is None
        assert await tracker.identify("1") is None
        mock_writer.write.assert_not_awaited()

    async def test_missing_write_key_is_noop(self, mock_writer):
        tracker = KepixelTracker(KepixelSettings())
        assert await tracker.page() is None
        mock_writer.write.assert_not_awaited()

    async def test_custom_writer(self, settings):
        writer = MagicMock()
        writer.write = AsyncMock()
        tracker = KepixelTracker(settings, writer)
        event = Event(event="Custom")

        assert await tracker.record_event(event) is event
        writer.write.assert_awaited_once_with(event)

    async def test_flush_and_close(self, tracker, mock_writer):
        await tracker.flush()
        await tracker.close()
        mock_writer.flush.assert_awaited_once()
        mock_writer.close.assert_awaited_once()


class TestPIIRedaction:
    async def test_redacts_nested_fields(self, mock_writer, settings):
        tracker = KepixelTracker(settings, redact_pii=True)
        event = await tracker.identify(
            "42",
            {"email": "a@example.com", "plan": "pro", "address": {"city": "X"}},
            context={"traits": {"phone": "+1555"}},
        )

        assert event.traits == {
            "email": "[REDACTED]",
            "plan": "pro",
            "address": "[REDACTED]",
        }
        assert event.context == {"traits": {"phone": "[REDACTED]"}}

    async def test_custom_fields(self, mock_writer, settings):
        tracker = KepixelTracker(settings, redact_pii=True, pii_fields=["Coupon"])
        event = await tracker.track("X", {"coupon": "SECRET", "email": "a@b.c"})
        assert event.properties == {"coupon": "[REDACTED]", "email": "a@b.c"}


class TestPageContext:
    def test_nonce_created_for_ajax(self, tracker):
        visitor = Visitor(session_id="sess")
        page = tracker.page_context(visitor=visitor, ajax_url="/kepixel/ajax")
        assert tracker.nonces.verify(page.nonce, token="sess")

    def test_no_nonce_without_ajax(self, tracker):
        assert tracker.page_context().nonce == ""


class TestStorefrontPages:
    def test_product_page(self, tracker, hoodie):
        page = tracker.page_context(url="https://s/hoodie", ajax_url="/ajax")
        event = tracker.on_product_page(page, hoodie)

        assert event.event == "Product Viewed"
        assert event.properties["product_id"] == "11"
        assert len(page.listeners) == 1
        assert tracker.on_product_page(page, hoodie) is None

    def test_product_page_commerce_disabled(self, mock_writer, hoodie):
        tracker = KepixelTracker(KepixelSettings(write_key="wk", commerce_enabled=False))
        page = tracker.page_context()
        assert tracker.on_product_page(page, hoodie) is None
        assert page.head_events == []

    def test_cart_page(self, tracker, hoodie):
        page = tracker.page_context(visitor=Visitor(user_id=3))
        event = tracker.on_cart_page(page, Cart(items=[CartItem(hoodie, 1)]), now=NOW)
        assert event.properties["cart_id"] == f"cart_user_3_{NOW}"

    def test_empty_cart_skipped(self, tracker):
        page = tracker.page_context()
        assert tracker.on_cart_page(page, Cart()) is None
        assert page.head_events == []

    def test_checkout_page_order(self, tracker, hoodie):
        page = tracker.page_context(visitor=Visitor(session_id="g"))
        cart = Cart(items=[CartItem(hoodie, 1)], total=45)
        events = tracker.on_checkout_page(page, cart, now=NOW, rng=random.Random(3))

        assert [e.event for e in events] == [
            "Checkout Step Viewed",
            "Checkout Started",
            "Begin Checkout",
        ]
        assert events[0].properties["checkout_id"] == f"checkout_guest_g_{NOW}"
        assert events[1].properties["order_id"] == events[2].properties["order_id"]
        assert events[1].properties["affiliation"] == "My Shop"

    def test_checkout_page_empty_cart(self, tracker):
        page = tracker.page_context()
        events = tracker.on_checkout_page(page, Cart())
        assert [e.event for e in events] == ["Checkout Step Viewed"]

    def test_order_received(self, tracker, hoodie):
        page = tracker.page_context()
        order = Order(id=1001, items=[OrderItem(hoodie, "Hoodie", 90, 2)], total=90)
        events = tracker.on_order_received(page, order, now=NOW)

        assert [e.event for e in events] == ["Order Completed", "Checkout Step Completed"]
        assert events[0].properties["checkout_id"] == f"checkout_1001_{NOW}"
        assert events[0].properties["products"][0]["price"] == 45.0
        assert tracker.on_order_received(page, order) == []

    def test_order_without_items(self, tracker):
        events = tracker.on_order_received(tracker.page_context(), Order(id=7))
        assert [e.event for e in events] == ["Checkout Step Completed"]

    def test_category_page(self, tracker, hoodie):
        page = tracker.page_context()
        event = tracker.on_category_page(page, Category(4, "Clothing"), [hoodie])
        assert event.properties["list_id"] == "category_4"

    def test_empty_category_skipped(self, tracker):
        page = tracker.page_context()
        assert tracker.on_category_page(page, Category(4, "Clothing"), []) is None

    def test_search_page(self, tracker):
        page = tracker.page_context()
        event = tracker.on_search_page(page, "hoodie")
        assert event.properties == {
            "query": "hoodie",
            "content_type": "search",
            "content_id": "hoodie",
        }


class TestRegistration:
    def test_sets_cookie(self, tracker):
        response = MagicMock()
        tracker.on_registration(response)
        response.set_cookie.assert_called_once_with(
            REGISTRATION_COOKIE, "1", max_age=3600, path="/"
        )

    def test_next_page_reports_registration(self, tracker):
        page = tracker.page_context()
        event = tracker.on_page_after_registration(page, "1")
        assert event.event == "CompleteRegistration"
        assert page.clear_registration_cookie


class TestDonations:
    def test_donation_tracker_is_cached(self, tracker):
        assert tracker.donations is tracker.donations
