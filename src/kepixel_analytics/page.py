"""Per-request tracking context.

A ``PageContext`` lives for exactly one rendered response. Integrations
queue calls on it while the page is built; the middleware renders the
result into ``<head>`` and before ``</body>``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Hashable, List, Optional, Set

from kepixel_analytics import browser
from kepixel_analytics.config import KepixelSettings
from kepixel_analytics.events import CallType, Event, EventName
from kepixel_analytics.identity import user_traits
from kepixel_analytics.models import Customer, User, Visitor
from kepixel_analytics.snippet import QUEUE_INIT, loader_tag, render_calls

logger = logging.getLogger(__name__)

REGISTRATION_COOKIE = "kepixel_user_registered"
REGISTRATION_COOKIE_MAX_AGE = 3600


class PageContext:
    """Tracking calls and de-duplication state for one page render."""

    def __init__(
        self,
        settings: KepixelSettings,
        *,
        url: str = "",
        visitor: Optional[Visitor] = None,
        user: Optional[User] = None,
        customer: Optional[Customer] = None,
        ajax_url: str = "",
        nonce: str = "",
    ):
        self.settings = settings
        self.url = url
        self.user = user
        self.customer = customer
        if visitor is None:
            visitor = Visitor(user_id=user.id if user else None)
        self.visitor = visitor
        self.ajax_url = ajax_url
        self.nonce = nonce

        self.head_events: List[Event] = []
        self.footer_events: List[Event] = []
        self.listeners: List[str] = []
        self.clear_registration_cookie = False

        self._seen: Dict[str, Set[Hashable]] = {}

    @property
    def active(self) -> bool:
        return self.settings.tracking_active

    # ------------------------------------------------------------------ #
    # Queueing
    # ------------------------------------------------------------------ #

    def track(
        self,
        event: Any,
        properties: Optional[Dict[str, Any]] = None,
        *,
        footer: bool = False,
    ) -> Optional[Event]:
        """Queue a track call; returns None when tracking is off."""
        if not self.active:
            logger.debug("Tracking disabled; dropping %s", event)
            return None
        name = event.value if isinstance(event, EventName) else str(event)
        queued = Event(type=CallType.TRACK, event=name, properties=properties or {})
        (self.footer_events if footer else self.head_events).append(queued)
        return queued

    def identify(
        self,
        user_id: str,
        traits: Dict[str, Any],
        options: Optional[Dict[str, Any]] = None,
    ) -> Optional[Event]:
        if not self.active:
            return None
        queued = Event(
            type=CallType.IDENTIFY,
            user_id=str(user_id),
            traits=traits,
            options=options,
        )
        self.head_events.append(queued)
        return queued

    def add_listener(self, body: str) -> None:
        if self.active and body not in self.listeners:
            self.listeners.append(body)

    def first_time(self, scope: str, key: Hashable) -> bool:
        """True the first time ``key`` is seen in ``scope`` during this render."""
        seen = self._seen.setdefault(scope, set())
        if key in seen:
            return False
        seen.add(key)
        return True

    # ------------------------------------------------------------------ #
    # Registration flag
    # ------------------------------------------------------------------ #

    def consume_registration_flag(self, cookie_value: Optional[str]) -> Optional[Event]:
        """Turn the post-registration cookie into a CompleteRegistration event."""
        if not self.active or cookie_value != "1":
            return None
        self.clear_registration_cookie = True
        return self.track(EventName.COMPLETE_REGISTRATION, {})

    # ------------------------------------------------------------------ #
    # Rendering
    # ------------------------------------------------------------------ #

    def _bootstrap_calls(self) -> List[List[Any]]:
        calls: List[List[Any]] = []
        if self.user is not None and self.user.id:
            traits = user_traits(
                self.user,
                self.customer,
                commerce_enabled=self.settings.commerce_enabled,
            )
            calls.append(["identify", str(self.user.id), traits, {}])
        calls.append(["page"])
        return calls

    def head_html(self) -> str:
        if not self.active:
            return ""
        parts = [
            loader_tag(self.settings.write_key, self.settings.script_host),
            render_calls(self._bootstrap_calls(), prelude=QUEUE_INIT),
        ]
        events = render_calls(
            (e.to_call() for e in self.head_events), on_ready=True
        )
        if events:
            parts.append(events)
        return "\n".join(parts)

    def footer_html(self) -> str:
        if not self.active:
            return ""
        parts = []
        events = render_calls(
            (e.to_call() for e in self.footer_events), on_ready=True
        )
        if events:
            parts.append(events)
        listeners = browser.render_listeners(*self.listeners)
        if listeners:
            parts.append(listeners)
        return "\n".join(parts)
