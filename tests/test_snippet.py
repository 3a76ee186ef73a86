"""Tests for inline script rendering."""

import json

import pytest

from kepixel_analytics.snippet import (
    QUEUE_INIT,
    dispatch_statement,
    loader_tag,
    render_calls,
    script_json,
)


class TestScriptJson:
    def test_escapes_script_breakouts(self):
        text = script_json({"name": "</script><!-- & more"})
        assert "</script>" not in text
        assert "<!--" not in text
        assert json.loads(text) == {"name": "</script><!-- & more"}

    def test_escapes_line_separators(self):
        text = script_json("a\u2028b\u2029c")
        assert "\u2028" not in text
        assert "\u2029" not in text
        assert json.loads(text) == "a\u2028b\u2029c"

    def test_keeps_unicode(self):
        assert script_json("café") == '"café"'


class TestLoaderTag:
    def test_default_host(self):
        assert loader_tag("wk_123") == (
            '<script src="https://anubis.kepixel.com?writeKey=wk_123"></script>'
        )

    def test_write_key_is_quoted(self):
        tag = loader_tag('a"b&c', "https://cdn.example.com")
        assert 'writeKey=a%22b%26c"' in tag


class TestDispatch:
    def test_track_statement(self):
        statement = dispatch_statement(["track", "Cart Viewed", {"cart_id": "c1"}])
        assert 'typeof window.kepixelAnalytics.track === "function"' in statement
        assert 'window.kepixelAnalytics.track("Cart Viewed", {"cart_id": "c1"});' in statement
        assert (
            'window.kepixelAnalytics.push(["track", "Cart Viewed", {"cart_id": "c1"}]);'
            in statement
        )

    def test_page_statement_without_args(self):
        statement = dispatch_statement(["page"])
        assert "window.kepixelAnalytics.page();" in statement
        assert 'window.kepixelAnalytics.push(["page"]);' in statement

    def test_unknown_method_rejected(self):
        with pytest.raises(ValueError):
            dispatch_statement(["alias", "x"])


class TestRenderCalls:
    def test_no_calls_renders_nothing(self):
        assert render_calls([]) == ""

    def test_single_script_block(self):
        html = render_calls([["page"], ["track", "X", {}]], prelude=QUEUE_INIT)
        assert html.startswith("<script>\n" + QUEUE_INIT)
        assert html.endswith("</script>")
        assert html.count("<script>") == 1

    def test_on_ready_wraps_in_dom_content_loaded(self):
        html = render_calls([["page"]], on_ready=True)
        assert "document.addEventListener('DOMContentLoaded', function() {" in html
