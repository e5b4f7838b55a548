# orders/services/pricing.py

"""
ORDER PRICING

    subtotal = sum(line totals)
    tax      = subtotal * TAX_RATE
    shipping = 0 if subtotal > FREE_SHIPPING_THRESHOLD else SHIPPING_FEE
    discount = coupon discount (never above subtotal)
    total    = subtotal + tax + shipping - discount

All money is Decimal quantized to 2dp (ROUND_HALF_UP).
Rules come from settings.ORDERS.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from django.conf import settings
from django.db.models import F, Q

from orders.models import Coupon
from orders.services.exceptions import InvalidCouponError

TWOPLACES = Decimal("0.01")


def _money(value) -> Decimal:
    if value is None or value == "":
        return Decimal("0.00")
    return Decimal(str(value)).quantize(TWOPLACES, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PricingRules:
    tax_rate: Decimal
    shipping_fee: Decimal
    free_shipping_threshold: Decimal


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    discount: Decimal
    total: Decimal


def get_pricing_rules() -> PricingRules:
    cfg = getattr(settings, "ORDERS", {}) or {}
    return PricingRules(
        tax_rate=Decimal(str(cfg.get("TAX_RATE", "0.18"))),
        shipping_fee=_money(cfg.get("SHIPPING_FEE", "99.00")),
        free_shipping_threshold=_money(cfg.get("FREE_SHIPPING_THRESHOLD", "999.00")),
    )


def compute_totals(*, line_totals, discount=Decimal("0.00"), rules: PricingRules | None = None) -> OrderTotals:
    rules = rules or get_pricing_rules()

    subtotal = _money(sum((_money(t) for t in line_totals), Decimal("0.00")))
    tax = _money(subtotal * rules.tax_rate)
    shipping = Decimal("0.00") if subtotal > rules.free_shipping_threshold else rules.shipping_fee
    discount = min(_money(discount), subtotal)

    return OrderTotals(
        subtotal=subtotal,
        tax=tax,
        shipping=shipping,
        discount=discount,
        total=subtotal + tax + shipping - discount,
    )


# ============================================================
# COUPONS
# ============================================================

def resolve_coupon(*, code: str, subtotal) -> tuple[Coupon | None, Decimal]:
    """
    Returns (coupon, discount). An empty code means no coupon.
    """
    code = (code or "").strip().upper()
    if not code:
        return None, Decimal("0.00")

    coupon = Coupon.objects.filter(code=code).first()
    if coupon is None or not coupon.is_valid():
        raise InvalidCouponError(f"Coupon {code} is invalid or expired.")

    subtotal = _money(subtotal)
    if subtotal < _money(coupon.min_purchase_amount):
        raise InvalidCouponError(
            f"Coupon {code} requires a minimum purchase of {_money(coupon.min_purchase_amount)}."
        )

    return coupon, coupon.calculate_discount(subtotal)


def claim_coupon(*, coupon: Coupon) -> None:
    """
    Increment used_count only while still under the usage limit.
    Two concurrent orders cannot both take the last use.
    """
    under_limit = Q(usage_limit__isnull=True) | Q(used_count__lt=F("usage_limit"))
    updated = (
        Coupon.objects.filter(pk=coupon.pk, is_active=True)
        .filter(under_limit)
        .update(used_count=F("used_count") + 1)
    )
    if updated != 1:
        raise InvalidCouponError(f"Coupon {coupon.code} has reached its usage limit.")


def return_coupon(*, code: str) -> None:
    code = (code or "").strip().upper()
    if not code:
        return
    Coupon.objects.filter(code=code, used_count__gt=0).update(used_count=F("used_count") - 1)
