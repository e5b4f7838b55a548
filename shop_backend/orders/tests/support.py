# orders/tests/support.py

"""
Shared fixtures for order/payment tests.

FakeGateway stands in for RazorpayGateway: same operations, no network.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from decimal import Decimal

from django.contrib.auth import get_user_model

from cart.models import Cart, CartItem
from payments.services.exceptions import PaymentGatewayError
from payments.services.gateway import GatewayConfig
from products.models import Product
from users.models import Address

User = get_user_model()

TEST_CONFIG = GatewayConfig(
    key_id="rzp_test_key",
    key_secret="test_key_secret",
    webhook_secret="test_webhook_secret",
    base_url="https://gateway.invalid/v1",
    currency="INR",
)


class FakeGateway:
    def __init__(self, *, fail_intent: bool = False, fail_refund: bool = False, config: GatewayConfig = TEST_CONFIG):
        self.config = config
        self.fail_intent = fail_intent
        self.fail_refund = fail_refund
        self.intents = []
        self.refunds = []
        self.statuses = {}

    def create_intent(self, amount_minor, currency, receipt_ref, notes=None):
        if self.fail_intent:
            raise PaymentGatewayError("Gateway URLError: connection refused")
        self.intents.append(
            {"amount_minor": amount_minor, "currency": currency, "receipt_ref": receipt_ref, "notes": notes}
        )
        return f"order_fake{len(self.intents):04d}"

    def fetch_status(self, payment_id):
        return self.statuses.get(payment_id, "captured")

    def refund(self, payment_id, amount_minor, reason=""):
        if self.fail_refund:
            raise PaymentGatewayError("Gateway HTTPError: 400 refund rejected")
        self.refunds.append({"payment_id": payment_id, "amount_minor": amount_minor, "reason": reason})
        return f"rfnd_fake{len(self.refunds):04d}"


# --------------------------------------------------
# builders
# --------------------------------------------------

def make_user(email="customer@example.com", **extra):
    extra.setdefault("role", "customer")
    return User.objects.create_user(email=email, password="pass", **extra)


def make_address(user, *, postal_code="712248", **extra):
    defaults = {
        "full_name": "Asha Roy",
        "address_line1": "12 Lake Road",
        "city": "Hooghly",
        "state": "West Bengal",
        "postal_code": postal_code,
        "phone": "9000000000",
    }
    defaults.update(extra)
    return Address.objects.create(user=user, **defaults)


def make_product(sku="SKU-1", *, price="100.00", stock=5, **extra):
    return Product.objects.create(
        sku=sku,
        name=extra.pop("name", f"Product {sku}"),
        unit_price=Decimal(price),
        stock=stock,
        **extra,
    )


def fill_cart(user, *lines):
    """
    lines: (product, quantity) pairs
    """
    cart, _ = Cart.objects.get_or_create(user=user)
    for product, quantity in lines:
        CartItem.objects.create(cart=cart, product=product, quantity=quantity)
    return cart


# --------------------------------------------------
# signatures
# --------------------------------------------------

def sign_payment(gateway_order_id, gateway_payment_id, secret=TEST_CONFIG.key_secret):
    message = f"{gateway_order_id}|{gateway_payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def webhook_body(event, entity_kind, entity):
    payload = {"event": event, "payload": {entity_kind: {"entity": entity}}}
    return json.dumps(payload).encode("utf-8")


def sign_webhook(raw_body, secret=TEST_CONFIG.webhook_secret):
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


# --------------------------------------------------
# order placement
# --------------------------------------------------

def place_order(user, address, *lines, payment_method="upi", gateway=None):
    from orders.services.order_creation import create_order

    fill_cart(user, *lines)
    return create_order(
        user=user,
        shipping_address_id=address.id,
        payment_method=payment_method,
        gateway=gateway or FakeGateway(),
    ).order


def mark_paid(order, payment_id="pay_test0001"):
    from django.db import transaction

    from orders.models import Order
    from payments.services.reconciliation import apply_payment_captured

    with transaction.atomic():
        locked = Order.objects.select_for_update().get(pk=order.pk)
        apply_payment_captured(locked, gateway_payment_id=payment_id, source="test")
    return locked
