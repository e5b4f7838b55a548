"""
INVENTORY LEDGER AUDIT

Immutable inventory movement entry.

GUARANTEES:
- Append-only (no updates, no deletes)
- One row per reserve/release/adjust applied to Product.stock
- Order-linked movements carry the order reference for reconciliation audits
"""

import uuid

from django.core.exceptions import ValidationError
from django.db import models

from .product import Product


class StockMovement(models.Model):
    class MovementType(models.TextChoices):
        IN = "IN", "Stock In"
        OUT = "OUT", "Stock Out"

    class Reason(models.TextChoices):
        RESERVE = "RESERVE", "Order Reservation"
        RELEASE = "RELEASE", "Order Release"
        ADJUSTMENT = "ADJUSTMENT", "Manual Adjustment"

    REASON_TO_MOVEMENT = {
        Reason.RESERVE: MovementType.OUT,
        Reason.RELEASE: MovementType.IN,
        Reason.ADJUSTMENT: None,
    }

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    product = models.ForeignKey(
        Product, on_delete=models.CASCADE, related_name="stock_movements"
    )

    movement_type = models.CharField(max_length=3, choices=MovementType.choices)
    reason = models.CharField(max_length=20, choices=Reason.choices)

    quantity = models.PositiveIntegerField()

    order = models.ForeignKey(
        "orders.Order",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="stock_movements",
    )

    note = models.CharField(max_length=255, blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at"]
        indexes = [
            models.Index(fields=["product", "created_at"], name="stockmv_product_created_idx"),
            models.Index(fields=["order", "reason"], name="stockmv_order_reason_idx"),
        ]

    def clean(self):
        if self.quantity is None or int(self.quantity) <= 0:
            raise ValidationError("quantity must be >= 1")

        expected = self.REASON_TO_MOVEMENT.get(self.reason)
        if expected is not None and self.movement_type != expected:
            raise ValidationError(
                f"Reason {self.reason} requires movement type {expected}"
            )

    def save(self, *args, **kwargs):
        if self.pk and self.__class__.objects.filter(pk=self.pk).exists():
            raise ValidationError("Stock movements are immutable")
        self.full_clean()
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("Stock movements cannot be deleted")

    def __str__(self):
        return f"{self.reason} {self.movement_type} {self.quantity} x {self.product_id}"
