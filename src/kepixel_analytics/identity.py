"""Identify traits for logged-in users."""

from __future__ import annotations

import re
from typing import Any, Dict, Optional

from kepixel_analytics.models import Customer, User
from kepixel_analytics.payloads import to_float, to_int

_PHONE_IN_TEXT = re.compile(r"\+\d{7,15}")
_BARE_PHONE = re.compile(r"^\d{10,15}$")

_ADDRESS_PARTS = ("address_1", "address_2", "city", "state", "postcode", "country")


def extract_phone(traits: Optional[Dict[str, Any]]) -> Optional[str]:
    """Recover a phone number from traits that were not given one.

    Sites that log users in by phone number end up with it in the email
    (``+15551234567@example.com``) or the username.
    """
    if not isinstance(traits, dict):
        return None
    email = traits.get("email") or ""
    username = traits.get("username") or ""
    for text in (email, username):
        match = _PHONE_IN_TEXT.search(str(text))
        if match:
            return match.group(0)
    if _BARE_PHONE.match(str(username)):
        return str(username)
    return None


def _address(user: User, commerce_enabled: bool) -> Dict[str, str]:
    parts = {name: user.get_meta(f"billing_{name}") for name in _ADDRESS_PARTS}
    if not parts["address_1"] and commerce_enabled:
        shipping = {name: user.get_meta(f"shipping_{name}") for name in _ADDRESS_PARTS}
        if shipping["address_1"]:
            parts = shipping

    street = f"{parts['address_1']} {parts['address_2']}".strip()
    address = {
        "street": street,
        "city": parts["city"],
        "state": parts["state"],
        "postalCode": parts["postcode"],
        "country": parts["country"],
    }
    return {k: v for k, v in address.items() if v}


def _company(user: User, commerce_enabled: bool) -> Dict[str, Any]:
    name = user.get_meta("billing_company") or user.get_meta("company_name")
    if not name and commerce_enabled:
        name = user.get_meta("shipping_company")

    company: Dict[str, Any] = {}
    if name:
        company["name"] = name
    for key, meta_key in (("id", "company_id"), ("industry", "company_industry")):
        value = user.get_meta(meta_key)
        if value:
            company[key] = value
    employee_count = user.get_meta("company_employee_count")
    if employee_count:
        company["employee_count"] = to_int(employee_count)
    plan = user.get_meta("company_plan")
    if plan:
        company["plan"] = plan
    return company


def user_traits(
    user: User,
    customer: Optional[Customer] = None,
    commerce_enabled: bool = True,
) -> Dict[str, Any]:
    """Build identify traits for a logged-in user.

    Only ``id`` and ``email`` are always present; everything else is
    omitted when empty.
    """
    first_name = user.first_name
    last_name = user.last_name
    full_name = f"{first_name or ''} {last_name or ''}".strip()

    traits: Dict[str, Any] = {"id": str(user.id)}
    if first_name:
        traits["firstName"] = first_name
    if last_name:
        traits["lastName"] = last_name
    if full_name:
        traits["name"] = full_name

    age = user.get_meta("age")
    if age:
        traits["age"] = to_int(age)
    traits["email"] = user.email

    phone = user.get_meta("phone") or user.get_meta("billing_phone")
    if phone:
        traits["phone"] = phone

    address = _address(user, commerce_enabled)
    if address:
        traits["address"] = address

    birthday = user.get_meta("birthday")
    if birthday:
        traits["birthday"] = birthday

    company = _company(user, commerce_enabled)
    if company:
        traits["company"] = company

    optional = (
        ("createdAt", user.registered),
        ("description", user.description),
        ("gender", user.get_meta("gender")),
        ("title", user.get_meta("title")),
        ("username", user.login),
        ("website", user.url),
        ("avatar", user.avatar_url),
    )
    for key, value in optional:
        if value:
            traits[key] = value

    if commerce_enabled and customer is not None:
        if customer.is_paying_customer:
            traits["isPayingCustomer"] = True
        if to_float(customer.total_spent) > 0:
            traits["totalSpent"] = to_float(customer.total_spent)
        if customer.order_count > 0:
            traits["orderCount"] = int(customer.order_count)

    if not traits.get("phone"):
        extracted = extract_phone(traits)
        if extracted:
            traits["phone"] = extracted

    return traits
