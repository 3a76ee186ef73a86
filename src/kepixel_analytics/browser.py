"""Browser-side listeners injected into the page footer.

Server-side code can only describe what is known at render time. Clicks,
AJAX add-to-cart and form submissions happen later, so these small
listeners turn the ``data-kepixel-*`` markers added by
``kepixel_analytics.content`` into track calls.
"""

from __future__ import annotations

from kepixel_analytics.snippet import script_json

_TRACK_FN = """
function kepixelTrack(name, properties) {
    if (window.kepixelAnalytics && typeof window.kepixelAnalytics.track === "function") {
        window.kepixelAnalytics.track(name, properties);
    } else {
        window.kepixelAnalytics = window.kepixelAnalytics || [];
        window.kepixelAnalytics.push(["track", name, properties]);
    }
}
"""

WHATSAPP_SELECTORS = (
    '[data-kepixel-whatsapp="true"]',
    '[class*="whatsapp"]',
    '[id*="whatsapp"]',
    '[href*="whatsapp"]',
    '[href*="wa.me"]',
    "#ht-ctc-chat",
)


def whatsapp_listener() -> str:
    return (
        """
document.addEventListener('click', function(e) {
    var selectors = %s;
    for (var i = 0; i < selectors.length; i++) {
        var el = e.target.closest(selectors[i]);
        if (!el) { continue; }
        kepixelTrack("WhatsApp Clicked", {
            element_type: el.tagName.toLowerCase(),
            element_id: el.id || '',
            element_class: el.className || '',
            href: el.href || '',
            page_url: window.location.href,
            page_title: document.title,
            source: i === 0 ? 'enhanced_content' : 'selector_match',
            selector: selectors[i]
        });
        return;
    }
});
"""
        % script_json(list(WHATSAPP_SELECTORS))
    )


def add_to_cart_listener(ajax_url: str, nonce: str) -> str:
    """Posts clicked product ids to the product-data action, then tracks Product Added."""
    return (
        """
(function(ajaxUrl, nonce) {
    function send(productId, quantity, variationId) {
        if (!productId) { return; }
        var body = new FormData();
        body.append('action', 'kepixel_get_product_data');
        body.append('product_id', productId);
        body.append('quantity', quantity || 1);
        body.append('variation_id', variationId || 0);
        body.append('nonce', nonce);
        fetch(ajaxUrl, {method: 'POST', body: body})
            .then(function(r) { return r.json(); })
            .then(function(data) {
                if (data.success) {
                    var d = data.data;
                    d.url = d.url || window.location.href;
                    kepixelTrack("Product Added", d);
                }
            })
            .catch(function(err) { console.error('Kepixel: Error fetching product data:', err); });
    }
    document.addEventListener('click', function(e) {
        var button = e.target.closest('[data-kepixel-addtocart="true"], .add_to_cart_button, .single_add_to_cart_button');
        if (!button) { return; }
        var productId = button.getAttribute('data-product_id') || button.getAttribute('data-product-id');
        var quantity = button.getAttribute('data-quantity') || 1;
        var variationId = button.getAttribute('data-variation_id') || button.getAttribute('data-variation-id') || 0;
        var form = button.closest('form.cart');
        if (!productId && form) {
            var idInput = form.querySelector('[name="add-to-cart"]') || form.querySelector('[name="product_id"]');
            var qtyInput = form.querySelector('[name="quantity"]');
            var varInput = form.querySelector('[name="variation_id"]');
            productId = idInput ? idInput.value : productId;
            quantity = qtyInput ? qtyInput.value : quantity;
            variationId = varInput ? varInput.value : variationId;
        }
        send(productId, quantity, variationId);
    });
})(%s, %s);
"""
        % (script_json(ajax_url), script_json(nonce))
    )


def form_listener() -> str:
    """Contact Form 7, Elementor and embedded-form submissions."""
    return """
document.addEventListener('wpcf7submit', function(e) {
    var form = e.target;
    var fields = {};
    new FormData(form).forEach(function(v, k) {
        if (k.charAt(0) !== '_' && v !== '') { fields[k] = v; }
    });
    function hidden(name) {
        var input = form.querySelector('input[name="' + name + '"]');
        return input ? input.value : '';
    }
    kepixelTrack("Form Submitted", {
        status: (e.detail && e.detail.status) || 'submitted',
        form_id: hidden('_wpcf7'),
        form_unit_tag: hidden('_wpcf7_unit_tag'),
        form_locale: hidden('_wpcf7_locale'),
        form_label: form.getAttribute('aria-label') || form.id || 'wpcf7',
        action: form.getAttribute('action') || '',
        url: window.location.href,
        title: document.title,
        fields: fields
    });
}, false);
document.addEventListener('submit', function(e) {
    if (!e.target.matches('form.elementor-form')) { return; }
    var pairs = [];
    new FormData(e.target).forEach(function(v, k) { pairs.push({name: k, value: v}); });
    kepixelTrack("Form Submitted", pairs);
});
window.addEventListener('message', function(e) {
    var frames = document.querySelectorAll('iframe[data-kepixel-form]');
    for (var i = 0; i < frames.length; i++) {
        if (frames[i].contentWindow !== e.source) { continue; }
        var data = e.data;
        var text = typeof data === 'string' ? data : JSON.stringify(data || {});
        if (!/submit/i.test(text)) { return; }
        kepixelTrack("Form Submitted", {
            provider: frames[i].getAttribute('data-kepixel-form'),
            src: frames[i].src,
            url: window.location.href,
            title: document.title
        });
        return;
    }
});
"""


def donation_form_listener(currency: str) -> str:
    """Checkout Started on donation submit, Product Clicked on amount change."""
    return (
        """
(function(currency) {
    document.querySelectorAll('form.give-form').forEach(function(form) {
        form.addEventListener('submit', function() {
            var idInput = form.querySelector('input[name="give-form-id"]');
            if (!idInput) { return; }
            var amountInput = form.querySelector('input[name="give-amount"]');
            var wrap = form.closest('.give-form-wrap');
            var titleEl = wrap ? wrap.querySelector('.give-form-title') : null;
            var title = titleEl ? titleEl.textContent.trim() : '';
            var formId = idInput.value;
            var amount = amountInput ? (parseFloat(amountInput.value) || 0) : 0;
            kepixelTrack("Checkout Started", {
                order_id: "pending_" + formId + "_" + Date.now(),
                value: amount, revenue: amount, shipping: 0, tax: 0, discount: 0,
                coupon: "", currency: currency,
                products: [{
                    product_id: formId, sku: "donation-" + formId,
                    name: title || "Donation Form " + formId,
                    price: amount, currency: currency, category: "Donations", quantity: 1
                }],
                form_id: formId, form_title: title
            });
        });
    });
    document.querySelectorAll('.give-donation-levels-wrap input, .give-donation-amount input').forEach(function(input) {
        input.addEventListener('change', function() {
            var form = this.closest('form.give-form');
            if (!form) { return; }
            var idInput = form.querySelector('input[name="give-form-id"]');
            var amount = parseFloat(this.value) || 0;
            if (idInput && amount > 0) {
                kepixelTrack("Product Clicked", {
                    product_id: idInput.value, price: amount,
                    currency: currency, category: "Donations"
                });
            }
        });
    });
})(%s);
"""
        % script_json(currency)
    )


def render_listeners(*bodies: str) -> str:
    """Wrap listener bodies in one DOMContentLoaded script block."""
    parts = [body for body in bodies if body]
    if not parts:
        return ""
    joined = "\n".join(parts)
    return (
        "<script>\n"
        f"{_TRACK_FN}\n"
        "document.addEventListener('DOMContentLoaded', function() {\n"
        f"{joined}\n"
        "});\n"
        "</script>"
    )
