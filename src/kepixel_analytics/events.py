"""Kepixel event names and the event data model.

Event names match the Kepixel SDK eCommerce event catalogue exactly, including the
odd ones out (``CompleteRegistration``) since the collector keys funnels
on the literal string.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class EventName(str, Enum):
    """Track event names emitted by the storefront integrations."""

    # Catalog
    PRODUCT_VIEWED = "Product Viewed"
    PRODUCT_CLICKED = "Product Clicked"
    PRODUCT_LIST_VIEWED = "Product List Viewed"
    PRODUCTS_SEARCHED = "Products Searched"

    # Cart
    PRODUCT_ADDED = "Product Added"
    CART_VIEWED = "Cart Viewed"

    # Checkout
    CHECKOUT_STEP_VIEWED = "Checkout Step Viewed"
    CHECKOUT_STARTED = "Checkout Started"
    BEGIN_CHECKOUT = "Begin Checkout"
    CHECKOUT_STEP_COMPLETED = "Checkout Step Completed"
    ORDER_COMPLETED = "Order Completed"

    # Engagement
    COMPLETE_REGISTRATION = "CompleteRegistration"
    FORM_SUBMITTED = "Form Submitted"
    WHATSAPP_CLICKED = "WhatsApp Clicked"


class CallType(str, Enum):
    """Analytics call types understood by the collector."""

    TRACK = "track"
    IDENTIFY = "identify"
    PAGE = "page"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Event data class
# ---------------------------------------------------------------------------


@dataclass
class Event:
    """A single analytics call.

    The same object serializes three ways: as a collector message for
    server-side delivery, as a browser call-queue entry for inline
    scripts, and as a flat archive row.
    """

    type: str = CallType.TRACK.value
    event: Optional[str] = None

    properties: Optional[Dict[str, Any]] = None
    user_id: Optional[str] = None
    anonymous_id: Optional[str] = None
    traits: Optional[Dict[str, Any]] = None
    options: Optional[Dict[str, Any]] = None
    context: Optional[Dict[str, Any]] = None

    message_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = field(default_factory=_now_iso)

    def __post_init__(self):
        if isinstance(self.type, CallType):
            self.type = self.type.value
        if isinstance(self.event, EventName):
            self.event = self.event.value

    def to_message(self) -> Dict[str, Any]:
        """Serialize to a collector message (drop None fields)."""
        message = {
            "type": self.type,
            "event": self.event,
            "properties": self.properties,
            "userId": self.user_id,
            "anonymousId": self.anonymous_id,
            "traits": self.traits,
            "context": self.context,
            "messageId": self.message_id,
            "timestamp": self.timestamp,
        }
        if self.type == CallType.PAGE.value:
            message["name"] = message.pop("event")
        return {k: v for k, v in message.items() if v is not None}

    def to_call(self) -> List[Any]:
        """Serialize to a ``window.kepixelAnalytics`` queue entry."""
        if self.type == CallType.TRACK.value:
            return ["track", self.event, self.properties or {}]
        if self.type == CallType.IDENTIFY.value:
            call: List[Any] = ["identify", self.user_id, self.traits or {}]
            if self.options is not None:
                call.append(self.options)
            return call
        call = ["page"]
        if self.event:
            call.append(self.event)
            if self.properties:
                call.append(self.properties)
        return call

    def to_bq_row(self) -> Dict[str, Any]:
        """Serialize to a BigQuery-insertable dict (drop None fields)."""
        row = {
            "message_id": self.message_id,
            "type": self.type,
            "event": self.event,
            "timestamp": self.timestamp,
            "user_id": self.user_id,
            "anonymous_id": self.anonymous_id,
            "properties_json": _dumps(self.properties),
            "traits_json": _dumps(self.traits),
            "context_json": _dumps(self.context),
        }
        return {k: v for k, v in row.items() if v is not None}


def _dumps(value: Optional[Dict[str, Any]]) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, default=str)
