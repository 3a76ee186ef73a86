"""Host-platform records consumed by the payload builders.

These stand in for the storefront, donation and user APIs of the host
application. Every field is optional and defaults to an empty value,
because host data is routinely incomplete; the builders decide the
per-field fallbacks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

Number = Union[int, float]


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


@dataclass
class Category:
    term_id: int = 0
    name: str = ""


@dataclass
class Product:
    """A catalog product or a single variation of a variable product."""

    id: Union[int, str] = 0
    sku: str = ""
    name: str = ""
    # Storefronts hand prices back as strings ("19.90") as often as numbers.
    price: Union[str, Number, None] = ""
    categories: List[str] = field(default_factory=list)
    brands: List[str] = field(default_factory=list)
    image_url: str = ""
    url: str = ""
    is_variation: bool = False
    variation_attributes: Dict[str, str] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Cart / order
# ---------------------------------------------------------------------------


@dataclass
class CartItem:
    product: Optional[Product] = None
    quantity: int = 1


@dataclass
class Cart:
    items: List[CartItem] = field(default_factory=list)
    coupons: List[str] = field(default_factory=list)
    total: Number = 0
    subtotal: Number = 0
    shipping_total: Number = 0
    tax_total: Number = 0
    discount_total: Number = 0

    @property
    def contents_count(self) -> int:
        return sum(item.quantity for item in self.items)


@dataclass
class OrderItem:
    product: Optional[Product] = None
    name: str = ""
    subtotal: Number = 0
    quantity: int = 1


@dataclass
class ShippingLine:
    method_title: str = ""


@dataclass
class Order:
    id: Union[int, str] = 0
    items: List[OrderItem] = field(default_factory=list)
    coupons: List[str] = field(default_factory=list)
    currency: str = ""
    total: Number = 0
    subtotal: Number = 0
    shipping_total: Number = 0
    tax_total: Number = 0
    discount_total: Number = 0
    payment_method_title: str = ""
    shipping_lines: List[ShippingLine] = field(default_factory=list)


# ---------------------------------------------------------------------------
# People
# ---------------------------------------------------------------------------


@dataclass
class Visitor:
    """Who the current request belongs to: a logged-in user or a session."""

    user_id: Optional[int] = None
    session_id: str = ""

    @property
    def logged_in(self) -> bool:
        return bool(self.user_id)


@dataclass
class Customer:
    is_paying_customer: bool = False
    total_spent: Number = 0
    order_count: int = 0


@dataclass
class User:
    """A registered site user.

    ``meta`` holds free-form profile fields (phone, billing_*, shipping_*,
    company_*, age, birthday, gender, title).
    """

    id: int = 0
    first_name: str = ""
    last_name: str = ""
    nicename: str = ""
    display_name: str = ""
    nickname: str = ""
    email: str = ""
    login: str = ""
    url: str = ""
    description: str = ""
    registered: str = ""
    avatar_url: str = ""
    meta: Dict[str, Any] = field(default_factory=dict)

    def get_meta(self, key: str) -> Any:
        return self.meta.get(key) or ""


# ---------------------------------------------------------------------------
# Donations
# ---------------------------------------------------------------------------


@dataclass
class DonationForm:
    id: Union[int, str] = 0
    title: str = ""
    url: str = ""
    image_url: str = ""
    categories: List[str] = field(default_factory=list)
    default_amount: Union[str, Number, None] = 0


@dataclass
class Donation:
    """A donation payment and its donor."""

    id: Union[int, str] = 0
    status: str = ""
    form_id: Union[int, str] = 0
    form_title: str = ""
    form_url: str = ""
    form_image_url: str = ""
    form_categories: List[str] = field(default_factory=list)
    total: Union[str, Number] = 0
    currency: str = ""
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    date: str = ""
    gateway: str = ""
    gateway_label: str = ""
    level_title: str = ""
    recurring: bool = False
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def completed(self) -> bool:
        return self.status == "publish"

    @property
    def donor_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    def get_meta(self, key: str) -> Any:
        return self.meta.get(key) or ""
