"""Mark trackable elements in rendered HTML.

Regex rewriting over arbitrary markup: WhatsApp links, add-to-cart
buttons and embedded forms get a ``data-kepixel-*`` attribute that the
footer listeners key on. Script blocks are never rewritten.
"""

from __future__ import annotations

import re
from typing import Callable, Optional

from kepixel_analytics.config import KepixelSettings
from kepixel_analytics.forms import classify_iframe

WHATSAPP_ATTRIBUTE = "data-kepixel-whatsapp"
ADDTOCART_ATTRIBUTE = "data-kepixel-addtocart"
FORM_ATTRIBUTE = "data-kepixel-form"

_Q = "['\"]*"  # optional quote
_V = "[^'\">]*"  # attribute value characters

WHATSAPP_PATTERNS = (
    re.compile(rf"(<a\b[^>]*href={_Q}{_V}whatsapp\.com{_V}{_Q}[^>]*>)", re.I),
    re.compile(rf"(<a\b[^>]*href={_Q}{_V}wa\.me{_V}{_Q}[^>]*>)", re.I),
    re.compile(rf"(<[a-z][^>]*(?:class|id)={_Q}{_V}whatsapp{_V}{_Q}[^>]*>)", re.I),
)

ADDTOCART_PATTERNS = (
    re.compile(rf"(<[a-z][^>]*class={_Q}{_V}add_to_cart_button{_V}{_Q}[^>]*>)", re.I),
    re.compile(rf"(<[a-z][^>]*class={_Q}{_V}single_add_to_cart_button{_V}{_Q}[^>]*>)", re.I),
    re.compile(rf"(<[a-z][^>]*(?:class|id)={_Q}{_V}add{_V}cart{_V}{_Q}[^>]*>)", re.I),
)

_SCRIPT_BLOCK = re.compile(r"(<script\b.*?</script\s*>)", re.I | re.S)
_IFRAME_TAG = re.compile(r"<iframe\b[^>]*>", re.I)


def add_attribute(tag: str, name: str, value: str = "true") -> str:
    """Insert ``name="value"`` before the end of a start tag, once."""
    if name in tag:
        return tag
    attribute = f'{name}="{value}"'
    if tag.endswith("/>"):
        return f"{tag[:-2].rstrip()} {attribute} />"
    return f"{tag[:-1]} {attribute}>"


def outside_scripts(html: str, rewrite: Callable[[str], str]) -> str:
    """Apply ``rewrite`` to everything except ``<script>`` blocks."""
    parts = _SCRIPT_BLOCK.split(html)
    return "".join(
        part if index % 2 else rewrite(part) for index, part in enumerate(parts)
    )


def _mark_all(html: str, patterns, attribute: str) -> str:
    for pattern in patterns:
        html = pattern.sub(lambda m: add_attribute(m.group(1), attribute), html)
    return html


def enhance_whatsapp_links(html: str) -> str:
    return outside_scripts(
        html, lambda part: _mark_all(part, WHATSAPP_PATTERNS, WHATSAPP_ATTRIBUTE)
    )


def enhance_add_to_cart_buttons(html: str) -> str:
    return outside_scripts(
        html, lambda part: _mark_all(part, ADDTOCART_PATTERNS, ADDTOCART_ATTRIBUTE)
    )


def enhance_loop_button(button_html: str) -> str:
    """Mark a single product-loop add-to-cart button."""
    if ADDTOCART_ATTRIBUTE in button_html:
        return button_html
    return button_html.replace(">", f' {ADDTOCART_ATTRIBUTE}="true">', 1)


def enhance_embedded_forms(html: str) -> str:
    def mark(match: re.Match) -> str:
        embedded = classify_iframe(match.group(0))
        if embedded is None:
            return match.group(0)
        return add_attribute(match.group(0), FORM_ATTRIBUTE, embedded.provider)

    return outside_scripts(html, lambda part: _IFRAME_TAG.sub(mark, part))


class ContentEnhancer:
    """Applies every enabled rewrite; a no-op while tracking is disabled."""

    def __init__(self, settings: Optional[KepixelSettings] = None):
        self.settings = settings or KepixelSettings()

    def enhance(self, html: str) -> str:
        if not self.settings.enable_tracking:
            return html
        html = enhance_whatsapp_links(html)
        if self.settings.commerce_enabled:
            html = enhance_add_to_cart_buttons(html)
        return enhance_embedded_forms(html)

    def loop_button(self, button_html: str) -> str:
        if not self.settings.enable_tracking:
            return button_html
        return enhance_loop_button(button_html)
