# orders/models/order_item.py

from decimal import Decimal

from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models

from products.models import Product


class OrderItem(models.Model):
    """
    Immutable line snapshot: name, sku and unit price are copied from the
    catalogue when the order is created.
    """

    order = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="items",
    )

    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,
        related_name="order_items",
    )

    product_name = models.CharField(max_length=255)
    sku = models.CharField(max_length=128)

    quantity = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    unit_price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.01"))],
    )

    line_total = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.01"))],
        help_text="quantity * unit_price (server computed)",
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at"]
        indexes = [
            models.Index(fields=["order"], name="orderitem_order_idx"),
            models.Index(fields=["product"], name="orderitem_product_idx"),
        ]

    def clean(self):
        if self.quantity is None or int(self.quantity) <= 0:
            raise ValidationError("quantity must be >= 1")

        if self.unit_price is None or Decimal(self.unit_price) <= Decimal("0.00"):
            raise ValidationError("unit_price must be > 0")

        self.line_total = (Decimal(self.quantity) * Decimal(self.unit_price)).quantize(
            Decimal("0.01")
        )

    def save(self, *args, **kwargs):
        # full_clean validates line_total
        if self.quantity is not None and self.unit_price is not None:
            self.line_total = (Decimal(self.quantity) * Decimal(self.unit_price)).quantize(Decimal("0.01"))
        self.full_clean()
        return super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.product_name} x{self.quantity}"
