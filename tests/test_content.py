"""Tests for HTML rewriting."""

from kepixel_analytics.config import KepixelSettings
from kepixel_analytics.content import (
    ContentEnhancer,
    add_attribute,
    enhance_add_to_cart_buttons,
    enhance_embedded_forms,
    enhance_loop_button,
    enhance_whatsapp_links,
)


class TestAddAttribute:
    def test_inserts_before_closing_bracket(self):
        assert add_attribute('<a href="x">', "data-k") == '<a href="x" data-k="true">'

    def test_self_closing_tag(self):
        assert add_attribute('<img src="x"/>', "data-k") == '<img src="x" data-k="true" />'

    def test_already_marked(self):
        tag = '<a href="x" data-k="true">'
        assert add_attribute(tag, "data-k") == tag


class TestWhatsApp:
    def test_wa_me_link(self):
        html = '<a href="https://wa.me/15551234567">Chat</a>'
        assert enhance_whatsapp_links(html) == (
            '<a href="https://wa.me/15551234567" data-kepixel-whatsapp="true">Chat</a>'
        )

    def test_whatsapp_com_link(self):
        html = "<a class='btn' href='https://api.whatsapp.com/send?phone=1'>Chat</a>"
        assert 'data-kepixel-whatsapp="true">Chat' in enhance_whatsapp_links(html)

    def test_class_or_id(self):
        html = '<div id="whatsapp-widget"><span class="icon">x</span></div>'
        assert enhance_whatsapp_links(html) == (
            '<div id="whatsapp-widget" data-kepixel-whatsapp="true">'
            '<span class="icon">x</span></div>'
        )

    def test_idempotent(self):
        html = '<a href="https://wa.me/1">Chat</a>'
        once = enhance_whatsapp_links(html)
        assert enhance_whatsapp_links(once) == once
        assert once.count("data-kepixel-whatsapp") == 1

    def test_unrelated_links_untouched(self):
        html = '<a href="https://example.com">Home</a>'
        assert enhance_whatsapp_links(html) == html

    def test_scripts_untouched(self):
        html = '<script>var s = "<a href=\'https://wa.me/1\'>";</script>'
        assert enhance_whatsapp_links(html) == html


class TestAddToCart:
    def test_loop_button_class(self):
        html = (
            '<a href="?add-to-cart=11" data-product_id="11" '
            'class="button add_to_cart_button ajax_add_to_cart">Add</a>'
        )
        result = enhance_add_to_cart_buttons(html)
        assert result.count('data-kepixel-addtocart="true"') == 1
        assert result.endswith('data-kepixel-addtocart="true">Add</a>')

    def test_single_product_button(self):
        html = '<button type="submit" class="single_add_to_cart_button button alt">Add</button>'
        assert 'data-kepixel-addtocart="true"' in enhance_add_to_cart_buttons(html)

    def test_generic_add_cart_id(self):
        html = '<button id="add-to-cart-main">Buy</button>'
        assert enhance_add_to_cart_buttons(html) == (
            '<button id="add-to-cart-main" data-kepixel-addtocart="true">Buy</button>'
        )

    def test_does_not_span_tags(self):
        html = '<span class="add">a</span><span class="cart">b</span>'
        assert enhance_add_to_cart_buttons(html) == html

    def test_enhance_loop_button(self):
        html = '<a class="button" data-product_id="3">Add</a>'
        result = enhance_loop_button(html)
        assert result == '<a class="button" data-product_id="3" data-kepixel-addtocart="true">Add</a>'
        assert enhance_loop_button(result) == result


class TestEmbeddedForms:
    def test_marks_provider(self):
        html = '<iframe src="https://form.jotform.com/123" width="100%"></iframe>'
        assert enhance_embedded_forms(html) == (
            '<iframe src="https://form.jotform.com/123" width="100%" '
            'data-kepixel-form="jotform"></iframe>'
        )

    def test_ignores_non_forms(self):
        html = '<iframe src="https://player.vimeo.com/video/1"></iframe>'
        assert enhance_embedded_forms(html) == html


class TestContentEnhancer:
    HTML = (
        '<a href="https://wa.me/1">Chat</a>'
        '<a class="add_to_cart_button" data-product_id="1">Add</a>'
        '<iframe src="https://tally.so/embed/abc"></iframe>'
    )

    def test_enhance_all(self):
        result = ContentEnhancer(KepixelSettings(write_key="wk")).enhance(self.HTML)
        assert 'data-kepixel-whatsapp="true"' in result
        assert 'data-kepixel-addtocart="true"' in result
        assert 'data-kepixel-form="tally"' in result

    def test_disabled_tracking_is_noop(self):
        settings = KepixelSettings(write_key="wk", enable_tracking=False)
        assert ContentEnhancer(settings).enhance(self.HTML) == self.HTML
        assert ContentEnhancer(settings).loop_button("<a>Add</a>") == "<a>Add</a>"

    def test_commerce_disabled_skips_add_to_cart(self):
        settings = KepixelSettings(write_key="wk", commerce_enabled=False)
        result = ContentEnhancer(settings).enhance(self.HTML)
        assert "data-kepixel-addtocart" not in result
        assert 'data-kepixel-whatsapp="true"' in result
