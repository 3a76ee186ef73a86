"""Build Kepixel eCommerce payloads from storefront records.

Every builder mirrors what the browser-side snippet would send: keys are
fixed, and absent host values fall back the way JavaScript ``x || default``
does (``''``, ``0``, ``1``, ``'USD'``...). Builders that describe a
collection return None when there is nothing to report, matching the
"skip the event on an empty cart/list/order" rule.
"""

from __future__ import annotations

import random
import re
import time
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from kepixel_analytics.models import (
    Cart,
    Category,
    Order,
    Product,
    Visitor,
)

DEFAULT_CURRENCY = "USD"
DEFAULT_AFFILIATION = "Online Store"

_LEADING_FLOAT = re.compile(r"^\s*[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")
_LEADING_INT = re.compile(r"^\s*[-+]?\d+")


# ---------------------------------------------------------------------------
# Coercion helpers (JS / PHP loose semantics)
# ---------------------------------------------------------------------------


def or_default(value: Any, default: Any) -> Any:
    """Return ``default`` when ``value`` is JS-falsy (None, '', 0, False)."""
    if value is None or value is False or value == "" or value == 0:
        return default
    return value


def to_float(value: Any) -> float:
    """parseFloat-style coercion; unparseable input becomes 0.0."""
    if isinstance(value, bool) or value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    match = _LEADING_FLOAT.match(str(value))
    return float(match.group(0)) if match else 0.0


def to_int(value: Any) -> int:
    """parseInt-style coercion; unparseable input becomes 0."""
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    match = _LEADING_INT.match(str(value))
    return int(match.group(0)) if match else 0


def _timestamp(now: Optional[float]) -> int:
    return int(now if now is not None else time.time())


class PayloadBuilder:
    """Map storefront state onto Kepixel event payloads."""

    # ------------------------------------------------------------------ #
    # Identifiers
    # ------------------------------------------------------------------ #

    @classmethod
    def cart_id(cls, visitor: Visitor, now: Optional[float] = None) -> str:
        return cls._visitor_scoped_id("cart", visitor, now)

    @classmethod
    def checkout_id(cls, visitor: Visitor, now: Optional[float] = None) -> str:
        return cls._visitor_scoped_id("checkout", visitor, now)

    @classmethod
    def temp_order_id(
        cls, now: Optional[float] = None, rng: Optional[random.Random] = None
    ) -> str:
        suffix = (rng or random).randint(1000, 9999)
        return f"temp_order_{_timestamp(now)}_{suffix}"

    @classmethod
    def _visitor_scoped_id(
        cls, prefix: str, visitor: Visitor, now: Optional[float]
    ) -> str:
        ts = _timestamp(now)
        if visitor.logged_in:
            return f"{prefix}_user_{visitor.user_id}_{ts}"
        return f"{prefix}_guest_{visitor.session_id}_{ts}"

    # ------------------------------------------------------------------ #
    # Product records
    # ------------------------------------------------------------------ #

    @classmethod
    def category_list(cls, product: Product) -> str:
        return ", ".join(name for name in product.categories if name)

    @classmethod
    def product_record(
        cls,
        product: Product,
        position: int,
        *,
        name: Optional[str] = None,
        price: Optional[float] = None,
    ) -> Dict[str, Any]:
        """The shared product shape used in cart, checkout, list and order events."""
        return {
            "product_id": str(product.id),
            "sku": product.sku or "",
            "name": product.name if name is None else name,
            "price": to_float(product.price) if price is None else price,
            "position": position,
            "category": cls.category_list(product),
            "url": product.url,
            "image_url": product.image_url or "",
        }

    @classmethod
    def content_fields(
        cls, products: Iterable[Dict[str, Any]]
    ) -> Tuple[str, Union[str, List[str]]]:
        """Derive (content_type, content_id) from a product list."""
        ids = [p.get("product_id") for p in products if p.get("product_id")]
        if not ids:
            return "product", ""
        if len(ids) > 1:
            return "product_group", ids
        return "product", ids[0]

    @classmethod
    def cart_records(cls, cart: Cart) -> List[Dict[str, Any]]:
        records = []
        position = 1
        for item in cart.items:
            if not isinstance(item.product, Product):
                continue
            records.append(cls.product_record(item.product, position))
            position += 1
        return records

    # ------------------------------------------------------------------ #
    # Product pages
    # ------------------------------------------------------------------ #

    @classmethod
    def product_viewed(
        cls,
        product: Product,
        currency: str = "",
        page_url: str = "",
    ) -> Dict[str, Any]:
        """Product Viewed payload for a single product page."""
        product_id = str(product.id) if product.id else ""
        url = page_url or product.url
        item = {
            "product_id": product_id,
            "sku": product.sku or "",
            "category": cls.category_list(product),
            "name": product.name or "",
            "price": to_float(product.price),
            "quantity": 1,
            "currency": or_default(currency, DEFAULT_CURRENCY),
            "position": 1,
            "url": url,
            "image_url": product.image_url or "",
        }
        payload = {
            "product_id": product_id,
            "content_type": "product",
            "content_id": product_id,
        }
        payload.update({k: v for k, v in item.items() if k != "product_id"})
        payload["products"] = [item]
        return payload

    @classmethod
    def product_added(
        cls,
        product: Product,
        quantity: int,
        visitor: Visitor,
        cart: Optional[Cart] = None,
        page_url: str = "",
        now: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Product data returned by the add-to-cart AJAX action.

        ``quantity`` is echoed as received; the browser applies the
        ``|| 1`` fallback when it turns this into a Product Added event.
        """
        product_id = str(product.id)
        category = cls.category_list(product)
        brand = product.brands[0] if product.brands else ""
        variant = ""
        if product.is_variation:
            variant = ", ".join(product.variation_attributes.values())
        coupon = ""
        position = 1
        if cart is not None:
            if cart.coupons:
                coupon = cart.coupons[0]
            position = cart.contents_count + 1

        item = {
            "product_id": product_id,
            "sku": product.sku or "",
            "category": category,
            "name": product.name,
            "brand": brand,
            "variant": variant,
            "price": to_float(product.price),
            "quantity": quantity,
            "coupon": coupon,
            "position": position,
            "url": product.url or page_url,
            "image_url": product.image_url or "",
        }
        payload = {
            "cart_id": cls.cart_id(visitor, now),
            "product_id": product_id,
            "content_type": "product",
            "content_id": product_id,
        }
        payload.update({k: v for k, v in item.items() if k != "product_id"})
        payload["products"] = [item]
        return payload

    @classmethod
    def product_added_event(
        cls, data: Dict[str, Any], page_url: str = ""
    ) -> Dict[str, Any]:
        """Normalize (possibly partial) product data into a Product Added payload."""
        url = or_default(data.get("url"), page_url)
        item = {
            "product_id": or_default(data.get("product_id"), ""),
            "sku": or_default(data.get("sku"), ""),
            "category": or_default(data.get("category"), ""),
            "name": or_default(data.get("name"), ""),
            "brand": or_default(data.get("brand"), ""),
            "variant": or_default(data.get("variant"), ""),
            "price": to_float(data.get("price")),
            "quantity": or_default(to_int(data.get("quantity")), 1),
            "coupon": or_default(data.get("coupon"), ""),
            "position": or_default(to_int(data.get("position")), 1),
            "url": url,
            "image_url": or_default(data.get("image_url"), ""),
        }
        payload = {
            "cart_id": or_default(data.get("cart_id"), ""),
            "product_id": item["product_id"],
            "content_type": or_default(data.get("content_type"), "product"),
            "content_id": or_default(
                data.get("content_id"), or_default(data.get("product_id"), "")
            ),
        }
        payload.update({k: v for k, v in item.items() if k != "product_id"})
        payload["products"] = [item]
        return payload

    # ------------------------------------------------------------------ #
    # Cart & checkout
    # ------------------------------------------------------------------ #

    @classmethod
    def cart_viewed(
        cls, cart: Cart, currency: str, cart_id: str
    ) -> Optional[Dict[str, Any]]:
        products = cls.cart_records(cart)
        if not products:
            return None
        content_type, content_id = cls.content_fields(products)
        return {
            "cart_id": or_default(cart_id, ""),
            "currency": or_default(currency, DEFAULT_CURRENCY),
            "products": products,
            "content_type": content_type,
            "content_id": content_id,
        }

    @classmethod
    def checkout_step_viewed(
        cls, cart: Cart, checkout_id: str
    ) -> Dict[str, Any]:
        return {
            "checkout_id": or_default(checkout_id, ""),
            "step": 1,
            "shipping_method": "Standard",
            "payment_method": "Unknown",
            "content_type": "checkout",
            "content_id": or_default(checkout_id, ""),
            "products": cls.cart_records(cart),
        }

    @classmethod
    def checkout_started(
        cls,
        cart: Cart,
        currency: str,
        order_id: str,
        site_name: str = "",
    ) -> Optional[Dict[str, Any]]:
        """Checkout Started payload; also the body of Begin Checkout."""
        products = cls.cart_records(cart)
        if not products:
            return None
        total = to_float(cart.total)
        content_type, content_id = cls.content_fields(products)
        return {
            "order_id": or_default(order_id, ""),
            "affiliation": or_default(site_name, DEFAULT_AFFILIATION),
            "value": total,
            "revenue": total,
            "shipping": to_float(cart.shipping_total),
            "tax": to_float(cart.tax_total),
            "discount": to_float(cart.discount_total),
            "coupon": cart.coupons[0] if cart.coupons else "",
            "currency": or_default(currency, DEFAULT_CURRENCY),
            "products": products,
            "content_type": content_type,
            "content_id": content_id,
        }

    @classmethod
    def begin_checkout(
        cls,
        cart: Cart,
        currency: str,
        order_id: str,
        site_name: str = "",
    ) -> Optional[Dict[str, Any]]:
        return cls.checkout_started(cart, currency, order_id, site_name)

    # ------------------------------------------------------------------ #
    # Order received
    # ------------------------------------------------------------------ #

    @classmethod
    def order_records(cls, order: Order) -> List[Dict[str, Any]]:
        records = []
        position = 1
        for item in order.items:
            if item.product is None:
                continue
            quantity = item.quantity or 1
            records.append(
                cls.product_record(
                    item.product,
                    position,
                    name=item.name,
                    price=to_float(item.subtotal) / quantity,
                )
            )
            position += 1
        return records

    @classmethod
    def order_checkout_id(cls, order: Order, now: Optional[float] = None) -> str:
        return f"checkout_{order.id}_{_timestamp(now)}"

    @classmethod
    def order_completed(
        cls,
        order: Order,
        checkout_id: str,
        site_name: str = "",
    ) -> Optional[Dict[str, Any]]:
        products = cls.order_records(order)
        if not products:
            return None
        content_type, content_id = cls.content_fields(products)
        return {
            "checkout_id": checkout_id,
            "order_id": str(order.id),
            "affiliation": or_default(site_name, DEFAULT_AFFILIATION),
            "total": to_float(order.total),
            "subtotal": to_float(order.subtotal),
            "revenue": to_float(order.total),
            "shipping": to_float(order.shipping_total),
            "tax": to_float(order.tax_total),
            "discount": to_float(order.discount_total),
            "coupon": order.coupons[0] if order.coupons else "",
            "currency": or_default(order.currency, DEFAULT_CURRENCY),
            "products": products,
            "content_type": content_type,
            "content_id": content_id,
        }

    @classmethod
    def checkout_step_completed(
        cls, order: Order, checkout_id: str
    ) -> Dict[str, Any]:
        shipping_method = "Standard"
        if order.shipping_lines:
            shipping_method = order.shipping_lines[0].method_title
        return {
            "checkout_id": checkout_id,
            "step": 1,
            "shipping_method": or_default(shipping_method, ""),
            "payment_method": or_default(order.payment_method_title, "Unknown"),
            "content_type": "checkout",
            "content_id": checkout_id,
            "products": cls.order_records(order),
        }

    # ------------------------------------------------------------------ #
    # Listing & search
    # ------------------------------------------------------------------ #

    @classmethod
    def product_list_viewed(
        cls,
        category: Category,
        products: Iterable[Product],
        currency: str = "",
    ) -> Optional[Dict[str, Any]]:
        records = [
            cls.product_record(product, position)
            for position, product in enumerate(
                (p for p in products if isinstance(p, Product)), start=1
            )
        ]
        if not records:
            return None
        content_type, content_id = cls.content_fields(records)
        return {
            "list_id": f"category_{category.term_id}",
            "category": or_default(category.name, "Category"),
            "currency": or_default(currency, DEFAULT_CURRENCY),
            "products": records,
            "content_type": content_type,
            "content_id": content_id,
        }

    @classmethod
    def products_searched(cls, query: str) -> Dict[str, Any]:
        return {
            "query": query,
            "content_type": "search",
            "content_id": query,
        }
