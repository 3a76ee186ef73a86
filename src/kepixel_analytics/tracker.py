"""KepixelTracker — the main entry point for Kepixel events.

Server-side calls (``track``/``identify``/``page``) go through a writer to
the collector. Page-level helpers describe storefront state on a
``PageContext`` so it is rendered into the response by the middleware.
"""

from __future__ import annotations

import logging
import random
from typing import Any, Dict, Iterable, List, Optional

from kepixel_analytics import browser
from kepixel_analytics.config import KepixelSettings
from kepixel_analytics.events import CallType, Event, EventName
from kepixel_analytics.models import (
    Cart,
    Category,
    Customer,
    Order,
    Product,
    User,
    Visitor,
)
from kepixel_analytics.nonce import ADD_TO_CART_ACTION, NonceManager
from kepixel_analytics.page import (
    REGISTRATION_COOKIE,
    REGISTRATION_COOKIE_MAX_AGE,
    PageContext,
)
from kepixel_analytics.payloads import PayloadBuilder
from kepixel_analytics.writer import AsyncHttpWriter, BufferedWriter

logger = logging.getLogger(__name__)

DEFAULT_PII_FIELDS = (
    "email",
    "phone",
    "firstname",
    "lastname",
    "first_name",
    "last_name",
    "street",
    "postalcode",
    "postal_code",
    "address",
    "birthday",
)


class KepixelTracker:
    """Records Kepixel events.

    Usage — server side::

        tracker = KepixelTracker(KepixelSettings(write_key="wk_123"))
        await tracker.track("Order Completed", {"order_id": "1001"}, user_id="42")
        await tracker.close()

    Usage — rendered pages::

        app.add_middleware(KepixelScriptMiddleware, tracker=tracker)

        async def product(request):
            page = request.state.kepixel
            tracker.on_product_page(page, product)
    """

    def __init__(
        self,
        settings: Optional[KepixelSettings] = None,
        writer: Optional[BufferedWriter] = None,
        *,
        redact_pii: bool = False,
        pii_fields: Optional[Iterable[str]] = None,
        site_name: str = "",
    ):
        self.settings = settings or KepixelSettings()
        self.site_name = site_name or self.settings.site_name
        self.redact_pii = redact_pii
        self.pii_fields = {f.lower() for f in (pii_fields or DEFAULT_PII_FIELDS)}

        if writer is None:
            writer = AsyncHttpWriter(
                write_key=self.settings.write_key,
                endpoint=self.settings.endpoint,
                batch_size=self.settings.batch_size,
                max_buffer_size=self.settings.max_buffer_size,
            )
        self._writer = writer
        self.nonces = NonceManager(self.settings.nonce_secret)
        self._donations = None

    @property
    def active(self) -> bool:
        return self.settings.tracking_active

    @property
    def donations(self):
        """Donation integration, created on first use."""
        if self._donations is None:
            from kepixel_analytics.donations import DonationTracker

            self._donations = DonationTracker(self)
        return self._donations

    # ------------------------------------------------------------------ #
    # Server-side calls
    # ------------------------------------------------------------------ #

    async def track(
        self,
        event: Any,
        properties: Optional[Dict[str, Any]] = None,
        *,
        user_id: Optional[str] = None,
        anonymous_id: Optional[str] = None,
        timestamp: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> Optional[Event]:
        name = event.value if isinstance(event, EventName) else str(event)
        return await self._record(
            Event(
                type=CallType.TRACK,
                event=name,
                properties=properties or {},
                context=context,
            ),
            user_id=user_id,
            anonymous_id=anonymous_id,
            timestamp=timestamp,
        )

    async def identify(
        self,
        user_id: str,
        traits: Optional[Dict[str, Any]] = None,
        *,
        anonymous_id: Optional[str] = None,
        timestamp: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> Optional[Event]:
        return await self._record(
            Event(type=CallType.IDENTIFY, traits=traits or {}, context=context),
            user_id=user_id,
            anonymous_id=anonymous_id,
            timestamp=timestamp,
        )

    async def page(
        self,
        name: Optional[str] = None,
        properties: Optional[Dict[str, Any]] = None,
        *,
        user_id: Optional[str] = None,
        anonymous_id: Optional[str] = None,
        timestamp: Optional[str] = None,
    ) -> Optional[Event]:
        return await self._record(
            Event(type=CallType.PAGE, event=name, properties=properties),
            user_id=user_id,
            anonymous_id=anonymous_id,
            timestamp=timestamp,
        )

    async def record_event(self, event: Event) -> Optional[Event]:
        """Record a manually constructed event."""
        return await self._record(event)

    async def _record(
        self,
        event: Event,
        *,
        user_id: Optional[str] = None,
        anonymous_id: Optional[str] = None,
        timestamp: Optional[str] = None,
    ) -> Optional[Event]:
        if not self.active:
            logger.debug("Tracking disabled; dropping %s %s", event.type, event.event or "")
            return None
        if user_id is not None:
            event.user_id = str(user_id)
        if anonymous_id is not None:
            event.anonymous_id = anonymous_id
        if timestamp:
            event.timestamp = timestamp
        if self.redact_pii:
            event.properties = self._redact(event.properties)
            event.traits = self._redact(event.traits)
            event.context = self._redact(event.context)

        await self._writer.write(event)
        return event

    async def flush(self):
        """Force flush buffered events."""
        await self._writer.flush()

    async def close(self):
        """Flush and release resources."""
        await self._writer.close()
        logger.info("KepixelTracker closed")

    # ------------------------------------------------------------------ #
    # Rendered pages
    # ------------------------------------------------------------------ #

    def page_context(
        self,
        *,
        url: str = "",
        visitor: Optional[Visitor] = None,
        user: Optional[User] = None,
        customer: Optional[Customer] = None,
        ajax_url: str = "",
    ) -> PageContext:
        if visitor is None:
            visitor = Visitor(user_id=user.id if user else None)
        nonce = ""
        if ajax_url:
            nonce = self.nonces.create(
                ADD_TO_CART_ACTION, visitor.session_id, visitor.user_id or 0
            )
        return PageContext(
            self.settings,
            url=url,
            visitor=visitor,
            user=user,
            customer=customer,
            ajax_url=ajax_url,
            nonce=nonce,
        )

    def _commerce_page(self, page: PageContext) -> bool:
        return page.active and self.settings.commerce_enabled

    def attach_add_to_cart(self, page: PageContext) -> None:
        """Listen for add-to-cart clicks on product, shop and archive pages."""
        if self._commerce_page(page) and page.ajax_url:
            page.add_listener(browser.add_to_cart_listener(page.ajax_url, page.nonce))

    def on_product_page(self, page: PageContext, product: Optional[Product]) -> Optional[Event]:
        if not self._commerce_page(page) or product is None:
            return None
        self.attach_add_to_cart(page)
        if not page.first_time("product", str(product.id)):
            return None
        return page.track(
            EventName.PRODUCT_VIEWED,
            PayloadBuilder.product_viewed(product, self.settings.currency, page.url),
        )

    def on_cart_page(
        self, page: PageContext, cart: Optional[Cart], now: Optional[float] = None
    ) -> Optional[Event]:
        if not self._commerce_page(page) or cart is None:
            return None
        if not page.first_time("cart", "viewed"):
            return None
        payload = PayloadBuilder.cart_viewed(
            cart, self.settings.currency, PayloadBuilder.cart_id(page.visitor, now)
        )
        if payload is None:
            logger.debug("Empty cart; skipping Cart Viewed")
            return None
        return page.track(EventName.CART_VIEWED, payload)

    def on_checkout_page(
        self,
        page: PageContext,
        cart: Optional[Cart],
        now: Optional[float] = None,
        rng: Optional[random.Random] = None,
    ) -> List[Event]:
        """Checkout Step Viewed, then Checkout Started and Begin Checkout."""
        if not self._commerce_page(page) or cart is None:
            return []
        if not page.first_time("checkout", "viewed"):
            return []

        queued = [
            page.track(
                EventName.CHECKOUT_STEP_VIEWED,
                PayloadBuilder.checkout_step_viewed(
                    cart, PayloadBuilder.checkout_id(page.visitor, now)
                ),
            )
        ]
        order_id = PayloadBuilder.temp_order_id(now, rng)
        started = PayloadBuilder.checkout_started(
            cart, self.settings.currency, order_id, self.site_name
        )
        if started is not None:
            queued.append(page.track(EventName.CHECKOUT_STARTED, started))
            queued.append(
                page.track(
                    EventName.BEGIN_CHECKOUT,
                    PayloadBuilder.begin_checkout(
                        cart, self.settings.currency, order_id, self.site_name
                    ),
                )
            )
        return [e for e in queued if e is not None]

    def on_order_received(
        self, page: PageContext, order: Optional[Order], now: Optional[float] = None
    ) -> List[Event]:
        """Order Completed (when it has items), then Checkout Step Completed."""
        if not self._commerce_page(page) or order is None or not order.id:
            return []
        if not page.first_time("order", str(order.id)):
            return []

        checkout_id = PayloadBuilder.order_checkout_id(order, now)
        queued = []
        completed = PayloadBuilder.order_completed(order, checkout_id, self.site_name)
        if completed is not None:
            queued.append(page.track(EventName.ORDER_COMPLETED, completed))
        queued.append(
            page.track(
                EventName.CHECKOUT_STEP_COMPLETED,
                PayloadBuilder.checkout_step_completed(order, checkout_id),
            )
        )
        return [e for e in queued if e is not None]

    def on_category_page(
        self, page: PageContext, category: Category, products: Iterable[Product]
    ) -> Optional[Event]:
        if not self._commerce_page(page):
            return None
        self.attach_add_to_cart(page)
        if not page.first_time("category", category.term_id):
            return None
        payload = PayloadBuilder.product_list_viewed(
            category, products, self.settings.currency
        )
        if payload is None:
            return None
        return page.track(EventName.PRODUCT_LIST_VIEWED, payload)

    def on_search_page(self, page: PageContext, query: str) -> Optional[Event]:
        if not page.active or not page.first_time("search", query):
            return None
        return page.track(
            EventName.PRODUCTS_SEARCHED, PayloadBuilder.products_searched(query)
        )

    def on_registration(self, response: Any) -> None:
        """Flag the browser so the next page reports CompleteRegistration."""
        if not self.active:
            return
        response.set_cookie(
            REGISTRATION_COOKIE, "1", max_age=REGISTRATION_COOKIE_MAX_AGE, path="/"
        )

    def on_page_after_registration(
        self, page: PageContext, cookie_value: Optional[str]
    ) -> Optional[Event]:
        return page.consume_registration_flag(cookie_value)

    def enable_listeners(self, page: PageContext) -> None:
        """WhatsApp and form listeners, present on every tracked page."""
        page.add_listener(browser.whatsapp_listener())
        page.add_listener(browser.form_listener())

    # ------------------------------------------------------------------ #
    # PII redaction
    # ------------------------------------------------------------------ #

    def _redact(self, data: Any) -> Any:
        if isinstance(data, dict):
            return {
                k: "[REDACTED]" if k.lower() in self.pii_fields else self._redact(v)
                for k, v in data.items()
            }
        if isinstance(data, list):
            return [self._redact(item) for item in data]
        return data
