"""Kepixel Analytics — storefront and donation event tracking for Kepixel.

Describes product, cart, checkout, order, donation, form and WhatsApp
activity as Kepixel SDK calls, either rendered into the page for the
browser SDK or sent server-side to the collector.

Integration points (pick any or combine):
    1. Starlette middleware — renders tracking into HTML responses
    2. AJAX endpoint        — product data for add-to-cart tracking
    3. Direct API           — tracker.track() / identify() / page()
"""

from kepixel_analytics.config import KepixelSettings
from kepixel_analytics.content import ContentEnhancer
from kepixel_analytics.donations import DonationTracker
from kepixel_analytics.events import CallType, Event, EventName
from kepixel_analytics.forms import EmbeddedForm, detect_embedded_forms
from kepixel_analytics.nonce import NonceManager
from kepixel_analytics.page import PageContext
from kepixel_analytics.payloads import PayloadBuilder
from kepixel_analytics.tracker import KepixelTracker
from kepixel_analytics.writer import AsyncBigQueryWriter, AsyncHttpWriter, MemoryWriter


def __getattr__(name: str):
    if name == "KepixelScriptMiddleware":
        from kepixel_analytics.middleware import KepixelScriptMiddleware

        return KepixelScriptMiddleware
    if name == "ProductDataEndpoint":
        from kepixel_analytics.endpoint import ProductDataEndpoint

        return ProductDataEndpoint
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "KepixelTracker",
    "KepixelSettings",
    "Event",
    "EventName",
    "CallType",
    "PayloadBuilder",
    "PageContext",
    "DonationTracker",
    "ContentEnhancer",
    "EmbeddedForm",
    "detect_embedded_forms",
    "NonceManager",
    "AsyncHttpWriter",
    "AsyncBigQueryWriter",
    "MemoryWriter",
    "KepixelScriptMiddleware",
    "ProductDataEndpoint",
]

__version__ = "0.1.0"
