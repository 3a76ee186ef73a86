"""Form submission payloads and embedded-form detection.

Contact Form 7 and Elementor submissions are described the way their
DOM events expose them. Third-party forms embedded through an iframe
(or through a provider script that creates one at runtime) can't be read,
so they are only detected and marked; the browser listener reports the
submission when the frame posts a message.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union
from urllib.parse import urlparse

NOT_SET = "(not set)"

# host suffix -> provider label
FORM_PROVIDERS: Dict[str, str] = {
    "docs.google.com": "google_forms",
    "forms.gle": "google_forms",
    "typeform.com": "typeform",
    "jotform.com": "jotform",
    "jotfor.ms": "jotform",
    "hsforms.com": "hubspot",
    "hsforms.net": "hubspot",
    "hubspot.com": "hubspot",
    "forms.office.com": "microsoft_forms",
    "forms.microsoft.com": "microsoft_forms",
    "cognitoforms.com": "cognito",
    "wufoo.com": "wufoo",
    "formstack.com": "formstack",
    "tally.so": "tally",
    "zohopublic.com": "zoho",
    "forms.zohopublic.com": "zoho",
    "airtable.com": "airtable",
    "paperform.co": "paperform",
    "123formbuilder.com": "123formbuilder",
}

# Provider loader scripts that inject their iframe after page load.
EMBED_SCRIPTS: Dict[str, str] = {
    "embed.typeform.com": "typeform",
    "js.hsforms.net": "hubspot",
    "js-eu1.hsforms.net": "hubspot",
    "form.jotform.com/jsform": "jotform",
    "jotfor.ms/jsform": "jotform",
    "tally.so/widgets": "tally",
    "paperform.co/__embed": "paperform",
    "cognitoforms.com/f/seamless.js": "cognito",
}

# Provider placeholders that an embed script later fills with an iframe.
EMBED_CONTAINERS: Tuple[Tuple[re.Pattern, str], ...] = (
    (re.compile(r"<div\b[^>]*\bdata-tf-(?:widget|live|popup)\b[^>]*>", re.I), "typeform"),
    (re.compile(r"<div\b[^>]*\bclass=['\"][^'\"]*\bhs-form(?:-frame)?\b[^>]*>", re.I), "hubspot"),
    (re.compile(r"<div\b[^>]*\bdata-tally-(?:src|open)\b[^>]*>", re.I), "tally"),
    (re.compile(r"<div\b[^>]*\bdata-paperform-id\b[^>]*>", re.I), "paperform"),
)

IFRAME_TAG = re.compile(r"<iframe\b[^>]*>", re.I)
SCRIPT_SRC_TAG = re.compile(r"<script\b[^>]*\bsrc\s*=\s*['\"]([^'\"]+)['\"][^>]*>", re.I)
_ATTRIBUTE = re.compile(
    r"""([a-zA-Z_:][-a-zA-Z0-9_:.]*)\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s"'>]+))"""
)
_FORM_WORD = re.compile(r"form", re.I)
_SRC_ATTRIBUTES = ("src", "data-src", "data-lazy-src", "data-url")
_LABEL_ATTRIBUTES = ("id", "class", "title", "name")


@dataclass
class EmbeddedForm:
    provider: str
    src: str
    reason: str
    tag: str = ""


def tag_attributes(tag: str) -> Dict[str, str]:
    """Lower-cased attribute map for a single start tag."""
    attrs: Dict[str, str] = {}
    for match in _ATTRIBUTE.finditer(tag):
        name = match.group(1).lower()
        value = next((g for g in match.groups()[1:] if g is not None), "")
        attrs.setdefault(name, value)
    return attrs


def _provider_for_url(url: str) -> Optional[str]:
    if url.startswith("//"):
        url = "https:" + url
    host = (urlparse(url).hostname or "").lower()
    if not host:
        return None
    for suffix, provider in FORM_PROVIDERS.items():
        if host == suffix or host.endswith("." + suffix):
            if provider == "google_forms" and host == "docs.google.com":
                if "/forms/" not in urlparse(url).path:
                    continue
            return provider
    return None


def classify_iframe(tag: str) -> Optional[EmbeddedForm]:
    """Decide whether an ``<iframe>`` start tag embeds a form."""
    attrs = tag_attributes(tag)
    src = next((attrs[a] for a in _SRC_ATTRIBUTES if attrs.get(a)), "")

    provider = _provider_for_url(src) if src else None
    if provider:
        reason = "provider_host" if attrs.get("src") else "lazy_src"
        return EmbeddedForm(provider, src, reason, tag)

    if src and _FORM_WORD.search(urlparse(src).path or ""):
        return EmbeddedForm("generic", src, "src_path", tag)

    for name in _LABEL_ATTRIBUTES:
        if _FORM_WORD.search(attrs.get(name, "")):
            return EmbeddedForm("generic", src, f"{name}_attribute", tag)
    return None


def detect_embedded_forms(html: str) -> List[EmbeddedForm]:
    """Find iframe forms, including ones a provider script will create later."""
    found: List[EmbeddedForm] = []
    for match in IFRAME_TAG.finditer(html):
        embedded = classify_iframe(match.group(0))
        if embedded is not None:
            found.append(embedded)

    for match in SCRIPT_SRC_TAG.finditer(html):
        src = match.group(1)
        for needle, provider in EMBED_SCRIPTS.items():
            if needle in src:
                found.append(EmbeddedForm(provider, src, "embed_script", match.group(0)))
                break

    for pattern, provider in EMBED_CONTAINERS:
        for match in pattern.finditer(html):
            found.append(EmbeddedForm(provider, "", "embed_container", match.group(0)))
    return found


# ---------------------------------------------------------------------------
# Submission payloads
# ---------------------------------------------------------------------------


def cf7_submission(detail: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Form Submitted from a ``wpcf7submit`` event detail."""
    detail = detail or {}
    return {
        "formid": detail.get("contactFormId") or NOT_SET,
        "inputs": list(detail.get("inputs") or []),
    }


def serialize_fields(
    fields: Union[Mapping[str, Any], Iterable[Tuple[str, Any]]]
) -> Dict[str, Any]:
    """Submitted values minus internal (``_``-prefixed) and empty fields."""
    pairs = fields.items() if isinstance(fields, Mapping) else fields
    return {k: v for k, v in pairs if not k.startswith("_") and v != ""}


def cf7_form_submitted(
    fields: Union[Mapping[str, Any], Iterable[Tuple[str, Any]]],
    *,
    status: str = "",
    url: str = "",
    title: str = "",
    label: str = "",
    form_dom_id: str = "",
    action: str = "",
) -> Dict[str, Any]:
    """Form Submitted with CF7 hidden metadata and the visible fields.

    ``status`` is CF7's result (mail_sent, validation_failed, mail_failed,
    spam) or ``click`` for an early submit-button capture.
    """
    pairs = list(fields.items() if isinstance(fields, Mapping) else fields)
    hidden = dict(pairs)
    return {
        "status": status or "submitted",
        "form_id": str(hidden.get("_wpcf7") or ""),
        "form_unit_tag": str(hidden.get("_wpcf7_unit_tag") or ""),
        "form_locale": str(hidden.get("_wpcf7_locale") or ""),
        "form_label": label or form_dom_id or "wpcf7",
        "action": action,
        "url": url,
        "title": title,
        "fields": serialize_fields(pairs),
    }


def elementor_submission(
    fields: Union[Mapping[str, Any], Iterable[Tuple[str, Any]]]
) -> List[Dict[str, Any]]:
    """Elementor submissions are sent as the raw name/value list."""
    pairs = fields.items() if isinstance(fields, Mapping) else fields
    return [{"name": name, "value": value} for name, value in pairs]
