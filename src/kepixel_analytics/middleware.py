"""Starlette middleware that renders Kepixel tracking into HTML pages.

Usage::

    from starlette.applications import Starlette
    from kepixel_analytics import KepixelScriptMiddleware, KepixelTracker

    tracker = KepixelTracker(KepixelSettings.from_env())
    app = Starlette(routes=[...])
    app.add_middleware(KepixelScriptMiddleware, tracker=tracker)

Handlers find the per-request ``PageContext`` on ``request.state.kepixel``
and describe storefront state on it through the tracker's page helpers.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from kepixel_analytics.content import ContentEnhancer
from kepixel_analytics.endpoint import (
    UserResolver,
    VisitorResolver,
    default_visitor,
    maybe_await,
    resolve_visitor,
)
from kepixel_analytics.page import REGISTRATION_COOKIE, PageContext

logger = logging.getLogger(__name__)

_HEAD_CLOSE = re.compile(r"</head\s*>", re.I)
_BODY_CLOSE = re.compile(r"</body\s*>", re.I)
_DOCUMENT_START = re.compile(r"\A(?:\s*<!doctype[^>]*>)?(?:\s*<html\b[^>]*>)?", re.I)


def inject_head(document: str, snippet: str) -> str:
    """Insert ``snippet`` before ``</head>``.

    Without a head the snippet goes after any leading doctype and ``<html>``
    tag, so the page stays out of quirks mode.
    """
    if not snippet:
        return document
    match = _HEAD_CLOSE.search(document)
    if match is None:
        start = _DOCUMENT_START.match(document).end()
        if start:
            return document[:start] + "\n" + snippet + document[start:]
        return snippet + "\n" + document
    return document[: match.start()] + snippet + "\n" + document[match.start():]


def inject_footer(document: str, snippet: str) -> str:
    """Insert ``snippet`` before the last ``</body>`` (or at the end)."""
    if not snippet:
        return document
    matches = list(_BODY_CLOSE.finditer(document))
    if not matches:
        return document + "\n" + snippet
    start = matches[-1].start()
    return document[:start] + snippet + "\n" + document[start:]


class KepixelScriptMiddleware(BaseHTTPMiddleware):
    """Attaches a ``PageContext`` to each request and renders it into HTML.

    For ``text/html`` responses the middleware:

    1. Marks WhatsApp links, add-to-cart buttons and form iframes
    2. Injects the loader, identify/page calls and head events before ``</head>``
    3. Injects footer events and listeners before ``</body>``
    4. Clears the registration cookie once it has been reported

    Other responses pass through untouched.
    """

    def __init__(
        self,
        app: Any,
        tracker: Any,
        *,
        ajax_path: str = "/kepixel/ajax",
        visitors: Optional[VisitorResolver] = None,
        users: Optional[UserResolver] = None,
        customers: Optional[Callable[[Request], Any]] = None,
    ) -> None:
        super().__init__(app)
        self.tracker = tracker
        self.ajax_path = ajax_path
        self.visitors = visitors or default_visitor
        self.users = users
        self.customers = customers
        self.enhancer = ContentEnhancer(tracker.settings)

    async def _page_context(self, request: Request) -> PageContext:
        visitor, user = await resolve_visitor(request, self.visitors, self.users)
        customer = await maybe_await(self.customers(request)) if self.customers else None

        page = self.tracker.page_context(
            url=str(request.url),
            visitor=visitor,
            user=user,
            customer=customer,
            ajax_url=self.ajax_path,
        )
        self.tracker.enable_listeners(page)
        self.tracker.on_page_after_registration(
            page, request.cookies.get(REGISTRATION_COOKIE)
        )
        return page

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        page = await self._page_context(request)
        request.state.kepixel = page

        response = await call_next(request)

        content_type = response.headers.get("content-type", "")
        if not page.active or not content_type.startswith("text/html"):
            return response

        body_bytes = b""
        async for chunk in response.body_iterator:
            if isinstance(chunk, str):
                body_bytes += chunk.encode("utf-8")
            else:
                body_bytes += chunk

        try:
            document = body_bytes.decode("utf-8")
        except UnicodeDecodeError:
            logger.warning("Non UTF-8 HTML response for %s; not injecting", request.url.path)
        else:
            document = self.enhancer.enhance(document)
            document = inject_head(document, page.head_html())
            document = inject_footer(document, page.footer_html())
            body_bytes = document.encode("utf-8")

        new_response = Response(
            content=body_bytes,
            status_code=response.status_code,
        )
        # Keep every original header (multi-value set-cookie included) but
        # the body length, which changed.
        new_response.raw_headers = [
            (key, value)
            for key, value in response.raw_headers
            if key.lower() != b"content-length"
        ] + [(b"content-length", str(len(body_bytes)).encode("latin-1"))]

        if page.clear_registration_cookie:
            new_response.delete_cookie(REGISTRATION_COOKIE, path="/")
        return new_response
