"""Donation tracking (GiveWP-style donation forms and payments).

Donations are reported with the eCommerce vocabulary so they land in the
same funnels as store orders: a donation form is a product (sku
``donation-<form id>``), submitting it is Checkout Started, and a
completed payment is Order Completed followed by an identify call for
the donor.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Union

from kepixel_analytics import browser
from kepixel_analytics.events import Event, EventName
from kepixel_analytics.models import Donation, DonationForm
from kepixel_analytics.page import PageContext
from kepixel_analytics.payloads import or_default, to_float

if TYPE_CHECKING:
    from kepixel_analytics.tracker import KepixelTracker

logger = logging.getLogger(__name__)

DEFAULT_DONATION_AFFILIATION = "Donation Site"
DEFAULT_DONATION_CATEGORY = "Donations"
MAX_TRACKED_DONATIONS = 10_000

DonationCallback = Callable[[Dict[str, Any], Donation], Any]


# ---------------------------------------------------------------------------
# Field extraction
# ---------------------------------------------------------------------------


def billing_address(donation: Donation) -> Dict[str, str]:
    """Donor billing address; empty when neither an address nor a name is known."""
    address1 = donation.get_meta("_give_donor_billing_address1")
    address2 = donation.get_meta("_give_donor_billing_address2")
    city = donation.get_meta("_give_donor_billing_city")
    state = donation.get_meta("_give_donor_billing_state")
    zip_code = donation.get_meta("_give_donor_billing_zip")
    country = donation.get_meta("_give_donor_billing_country")

    name = donation.donor_name
    has_address = any((address1, city, state, zip_code, country))
    if not has_address and not name:
        return {}

    address = {"name": name}
    if address1:
        address["street"] = f"{address1}, {address2}" if address2 else address1
    if city:
        address["city"] = city
    if state:
        address["state"] = state
    if zip_code:
        address["postal_code"] = zip_code
    if country:
        address["country"] = country
    return address


def donor_phone(donation: Donation) -> str:
    return donation.get_meta("_give_payment_donor_phone") or donation.get_meta(
        "give_phone"
    )


def donation_type(donation: Donation) -> str:
    return "recurring" if donation.recurring else "one-time"


def donation_timestamp(donation: Donation) -> str:
    """ISO-8601 timestamp for the payment date (now when unparseable)."""
    try:
        parsed = datetime.fromisoformat(str(donation.date).strip())
    except ValueError:
        logger.debug("Unparseable donation date %r", donation.date)
        parsed = datetime.now(timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.isoformat()


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------


def donation_product(donation: Donation, currency: str) -> Dict[str, Any]:
    category = ", ".join(c for c in donation.form_categories if c)
    product = {
        "product_id": str(donation.form_id),
        "sku": f"donation-{donation.form_id}",
        "name": donation.form_title,
        "price": to_float(donation.total),
        "currency": currency,
        "category": category or DEFAULT_DONATION_CATEGORY,
        "quantity": 1,
        "url": donation.form_url or "",
        "image_url": donation.form_image_url or "",
    }
    if donation.level_title:
        product["variant"] = donation.level_title
    return product


def order_completed(
    donation: Donation, currency: str, site_name: str = ""
) -> Dict[str, Any]:
    total = to_float(donation.total)
    payload: Dict[str, Any] = {
        "order_id": str(donation.id),
        "affiliation": or_default(site_name, DEFAULT_DONATION_AFFILIATION),
        "value": total,
        "revenue": total,
        "shipping": 0,
        "tax": 0,
        "discount": 0,
        "coupon": "",
        "currency": currency,
        "products": [donation_product(donation, currency)],
        "payment_method": donation.gateway_label or donation.gateway,
    }
    address = billing_address(donation)
    if address:
        payload["billing_address"] = address
    payload["donation_type"] = donation_type(donation)
    payload["form_id"] = str(donation.form_id)
    payload["form_title"] = donation.form_title
    return payload


def donor_traits(donation: Donation, currency: str) -> Dict[str, Any]:
    traits: Dict[str, Any] = {"email": donation.email}
    optional = (
        ("firstName", donation.first_name),
        ("lastName", donation.last_name),
        ("name", donation.donor_name),
        ("phone", donor_phone(donation)),
        ("address", billing_address(donation)),
    )
    for key, value in optional:
        if value:
            traits[key] = value
    traits.update(
        {
            "isDonor": True,
            "lastDonationAmount": to_float(donation.total),
            "lastDonationDate": donation.date,
            "lastDonationCurrency": currency,
            "lastDonationForm": donation.form_title,
        }
    )
    return traits


def form_viewed(form: DonationForm, currency: str) -> Dict[str, Any]:
    category = ", ".join(c for c in form.categories if c)
    payload: Dict[str, Any] = {
        "product_id": str(form.id),
        "sku": f"donation-{form.id}",
        "name": form.title,
        "price": to_float(form.default_amount),
        "currency": currency,
        "category": category or DEFAULT_DONATION_CATEGORY,
        "url": form.url,
    }
    if form.image_url:
        payload["image_url"] = form.image_url
    payload.update(
        {
            "content_type": "donation_form",
            "form_id": str(form.id),
            "form_title": form.title,
        }
    )
    return payload


def checkout_started(
    form_id: Union[int, str],
    amount: Any,
    currency: str,
    form_title: str = "",
    now_ms: Optional[int] = None,
) -> Dict[str, Any]:
    """Checkout Started for a submitted donation form."""
    if now_ms is None:
        now_ms = int(datetime.now(timezone.utc).timestamp() * 1000)
    value = to_float(amount)
    title = (form_title or "").strip()
    return {
        "order_id": f"pending_{form_id}_{now_ms}",
        "value": value,
        "revenue": value,
        "shipping": 0,
        "tax": 0,
        "discount": 0,
        "coupon": "",
        "currency": currency,
        "products": [
            {
                "product_id": str(form_id),
                "sku": f"donation-{form_id}",
                "name": title or f"Donation Form {form_id}",
                "price": value,
                "currency": currency,
                "category": DEFAULT_DONATION_CATEGORY,
                "quantity": 1,
            }
        ],
        "form_id": str(form_id),
        "form_title": title,
    }


def amount_selected(
    form_id: Union[int, str], amount: Any, currency: str
) -> Optional[Dict[str, Any]]:
    """Product Clicked for a chosen donation level; None for non-positive amounts."""
    value = to_float(amount)
    if value <= 0:
        return None
    return {
        "product_id": str(form_id),
        "price": value,
        "currency": currency,
        "category": DEFAULT_DONATION_CATEGORY,
    }


# ---------------------------------------------------------------------------
# Tracker
# ---------------------------------------------------------------------------


class DonationTracker:
    """Reports donation form views, receipts and webhook completions.

    ``tracked_events`` is a per-process guard against reporting a payment
    twice; it keeps the most recent ``max_tracked`` payments. Hosts that
    run several workers should persist their own flag alongside the payment.
    """

    def __init__(
        self, tracker: "KepixelTracker", max_tracked: int = MAX_TRACKED_DONATIONS
    ):
        self.tracker = tracker
        self.settings = tracker.settings
        self.max_tracked = max_tracked
        self.tracked_events: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        self._callbacks: List[DonationCallback] = []

    def on_tracked(self, callback: DonationCallback) -> DonationCallback:
        """Register a callback run after a server-side donation is reported."""
        self._callbacks.append(callback)
        return callback

    @property
    def enabled(self) -> bool:
        return self.settings.tracking_active and self.settings.donations_enabled

    def _currency(self, donation_currency: str = "") -> str:
        return donation_currency or self.settings.currency

    # -- browser side --

    def receipt_calls(self, donation: Donation, page: PageContext) -> List[Event]:
        """Queue Order Completed (and donor identify) on the receipt page."""
        if not (page.active and self.enabled) or not donation.id:
            return []
        if not page.first_time("donation", str(donation.id)):
            return []
        if not donation.completed:
            logger.debug("Donation %s not completed; skipping", donation.id)
            return []

        currency = self._currency(donation.currency)
        queued = [
            page.track(
                EventName.ORDER_COMPLETED,
                order_completed(donation, currency, self.settings.site_name),
            )
        ]
        if donation.email:
            queued.append(page.identify(donation.email, donor_traits(donation, currency)))
        return [e for e in queued if e is not None]

    def form_viewed(self, form: DonationForm, page: PageContext) -> Optional[Event]:
        """Queue Product Viewed once per donation form per page."""
        if not (page.active and self.enabled):
            return None
        if not page.first_time("donation_form", str(form.id)):
            return None
        page.add_listener(browser.donation_form_listener(self.settings.currency))
        return page.track(
            EventName.PRODUCT_VIEWED, form_viewed(form, self.settings.currency)
        )

    def checkout_started(
        self,
        form_id: Union[int, str],
        amount: Any,
        form_title: str = "",
        now_ms: Optional[int] = None,
    ) -> Dict[str, Any]:
        return checkout_started(
            form_id, amount, self.settings.currency, form_title, now_ms
        )

    def amount_selected(
        self, form_id: Union[int, str], amount: Any
    ) -> Optional[Dict[str, Any]]:
        return amount_selected(form_id, amount, self.settings.currency)

    # -- server side --

    async def track_server_side(self, donation: Donation) -> Optional[Event]:
        """Report a completed donation from a payment webhook, at most once."""
        if not self.enabled:
            return None
        key = str(donation.id)
        if not donation.id or key in self.tracked_events:
            return None

        currency = self._currency(donation.currency)
        total = to_float(donation.total)
        properties: Dict[str, Any] = {
            "order_id": key,
            "affiliation": or_default(
                self.settings.site_name, DEFAULT_DONATION_AFFILIATION
            ),
            "value": total,
            "revenue": total,
            "shipping": 0,
            "tax": 0,
            "discount": 0,
            "coupon": "",
            "currency": currency,
            "payment_method": donation.gateway_label or donation.gateway,
            "products": [
                {
                    "product_id": str(donation.form_id),
                    "sku": f"donation-{donation.form_id}",
                    "name": donation.form_title,
                    "price": total,
                    "currency": currency,
                    "category": DEFAULT_DONATION_CATEGORY,
                    "quantity": 1,
                }
            ],
            "donation_type": donation_type(donation),
            "form_id": str(donation.form_id),
            "form_title": donation.form_title,
        }
        traits: Dict[str, Any] = {
            "email": donation.email,
            "firstName": donation.first_name,
            "lastName": donation.last_name,
            "name": donation.donor_name,
            "isDonor": True,
        }
        address = billing_address(donation)
        if address:
            properties["billing_address"] = address
            traits["address"] = address
        phone = donor_phone(donation)
        if phone:
            traits["phone"] = phone

        timestamp = donation_timestamp(donation)
        user_id = donation.email or None
        anonymous_id = None if user_id else f"donation-{key}"
        event_data = {
            "event": EventName.ORDER_COMPLETED.value,
            "properties": properties,
            "userId": user_id,
            "anonymousId": anonymous_id,
            "traits": traits,
            "timestamp": timestamp,
        }
        self.tracked_events[key] = event_data
        while len(self.tracked_events) > self.max_tracked:
            self.tracked_events.popitem(last=False)

        event = await self.tracker.track(
            EventName.ORDER_COMPLETED,
            properties,
            user_id=user_id,
            anonymous_id=anonymous_id,
            timestamp=timestamp,
            context={"traits": traits},
        )
        for callback in self._callbacks:
            try:
                callback(event_data, donation)
            except Exception:
                logger.exception("Donation callback failed for %s", key)
        return event
