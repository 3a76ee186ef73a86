"""Render inline ``<script>`` blocks for the browser-side Kepixel SDK.

The SDK may or may not have loaded when a block runs, so every call goes
through the same convention: invoke ``window.kepixelAnalytics.<method>``
if it is a function, otherwise push the call onto the queue array that
the SDK drains on load.
"""

from __future__ import annotations

import html
import json
from typing import Any, Iterable, List, Sequence
from urllib.parse import quote

from kepixel_analytics.events import CallType

DEFAULT_SCRIPT_HOST = "https://anubis.kepixel.com"

QUEUE_INIT = (
    "var kepixelAnalytics = window.kepixelAnalytics = "
    "window.kepixelAnalytics || [];"
)

_CALL_METHODS = {c.value for c in CallType}

# json.dumps output is valid JS, but "</script>", "<!--" and the two
# line separators still need escaping inside an inline script.
_SCRIPT_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


def script_json(value: Any) -> str:
    """Serialize ``value`` as JSON that is safe to embed in a script block."""
    text = json.dumps(value, ensure_ascii=False, default=str)
    for char, escaped in _SCRIPT_ESCAPES.items():
        text = text.replace(char, escaped)
    return text


def loader_tag(write_key: str, script_host: str = DEFAULT_SCRIPT_HOST) -> str:
    src = f"{script_host}?writeKey={quote(write_key, safe='')}"
    return f'<script src="{html.escape(src, quote=True)}"></script>'


def dispatch_statement(call: Sequence[Any]) -> str:
    """One call-or-queue statement for a call entry like ``["track", name, props]``."""
    method = call[0]
    if method not in _CALL_METHODS:
        raise ValueError(f"Unsupported analytics call {method!r}")
    args = ", ".join(script_json(arg) for arg in call[1:])
    return (
        f'if (window.kepixelAnalytics && typeof window.kepixelAnalytics.{method} === "function") {{\n'
        f"    window.kepixelAnalytics.{method}({args});\n"
        "} else {\n"
        "    window.kepixelAnalytics = window.kepixelAnalytics || [];\n"
        f"    window.kepixelAnalytics.push({script_json(list(call))});\n"
        "}"
    )


def render_calls(
    calls: Iterable[Sequence[Any]],
    *,
    on_ready: bool = False,
    prelude: str = "",
) -> str:
    """Render calls into a single ``<script>`` block ('' when there are none)."""
    statements: List[str] = [dispatch_statement(call) for call in calls]
    if not statements:
        return ""
    body = "\n".join(statements)
    if on_ready:
        body = (
            "document.addEventListener('DOMContentLoaded', function() {\n"
            f"{body}\n"
            "});"
        )
    if prelude:
        body = f"{prelude}\n{body}"
    return f"<script>\n{body}\n</script>"
