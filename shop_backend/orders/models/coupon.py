# orders/models/coupon.py

"""
COUPON

Rules:
- Codes are stored upper-case and are unique.
- Discount never exceeds the subtotal it applies to.
- used_count is only ever incremented with a conditional UPDATE
  (see orders.services.pricing.claim_coupon).
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone

TWOPLACES = Decimal("0.01")


class Coupon(models.Model):
    TYPE_PERCENTAGE = "percentage"
    TYPE_FIXED = "fixed"

    DISCOUNT_TYPE_CHOICES = [
        (TYPE_PERCENTAGE, "Percentage"),
        (TYPE_FIXED, "Fixed amount"),
    ]

    code = models.CharField(max_length=32, unique=True)
    description = models.CharField(max_length=255, blank=True, default="")

    discount_type = models.CharField(max_length=20, choices=DISCOUNT_TYPE_CHOICES)
    discount_value = models.DecimalField(max_digits=12, decimal_places=2)

    min_purchase_amount = models.DecimalField(
        max_digits=12, decimal_places=2, default=Decimal("0.00")
    )
    max_discount_amount = models.DecimalField(
        max_digits=12, decimal_places=2, null=True, blank=True
    )

    expiry_date = models.DateTimeField()
    usage_limit = models.PositiveIntegerField(null=True, blank=True)
    used_count = models.PositiveIntegerField(default=0)

    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["is_active", "expiry_date"], name="coupon_active_expiry_idx"),
        ]

    def clean(self):
        self.code = (self.code or "").strip().upper()
        if not self.code:
            raise ValidationError({"code": "Coupon code is required"})

        value = Decimal(str(self.discount_value or "0"))
        if value <= Decimal("0.00"):
            raise ValidationError({"discount_value": "Discount value must be greater than zero"})
        if self.discount_type == self.TYPE_PERCENTAGE and value > Decimal("100.00"):
            raise ValidationError({"discount_value": "Percentage cannot exceed 100"})

    def save(self, *args, **kwargs):
        self.code = (self.code or "").strip().upper()
        super().save(*args, **kwargs)

    def is_valid(self, *, now=None) -> bool:
        now = now or timezone.now()
        if not self.is_active:
            return False
        if self.expiry_date and self.expiry_date <= now:
            return False
        if self.usage_limit is not None and self.used_count >= self.usage_limit:
            return False
        return True

    def calculate_discount(self, subtotal) -> Decimal:
        subtotal = Decimal(str(subtotal or "0.00"))
        if subtotal < Decimal(str(self.min_purchase_amount or "0.00")):
            return Decimal("0.00")

        value = Decimal(str(self.discount_value))
        if self.discount_type == self.TYPE_PERCENTAGE:
            discount = subtotal * value / Decimal("100")
            if self.max_discount_amount is not None:
                discount = min(discount, Decimal(str(self.max_discount_amount)))
        else:
            discount = value

        discount = min(discount, subtotal)
        return discount.quantize(TWOPLACES, rounding=ROUND_HALF_UP)

    def __str__(self):
        return f"{self.code} ({self.discount_type} {self.discount_value})"
