# products/models/product.py

import uuid
from decimal import Decimal, ROUND_HALF_UP

from django.core.exceptions import ValidationError
from django.db import models


class Product(models.Model):
    """
    Represents a sellable product.

    STOCK MODEL (IMPORTANT):
    - `stock` is the single available-units counter (non-negative at DB level).
    - It is ONLY mutated through products.services.inventory, which issues one
      conditional UPDATE per change (never read-modify-write in Python).
    - unit_price / discount_percent are the live catalogue price; orders snapshot
      `selling_price` into their line items at creation time.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    sku = models.CharField(max_length=128, unique=True, db_index=True)
    name = models.CharField(max_length=255, db_index=True)

    unit_price = models.DecimalField(max_digits=10, decimal_places=2)

    discount_percent = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text="Catalogue discount (0-100). selling_price = unit_price minus this percent.",
    )

    stock = models.PositiveIntegerField(default=0)

    low_stock_threshold = models.PositiveIntegerField(default=10)

    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["sku"], name="products_sku_idx"),
            models.Index(fields=["name"], name="products_name_idx"),
        ]

    def __str__(self):
        return f"{self.name} ({self.sku})"

    def clean(self):
        if self.unit_price is None or Decimal(self.unit_price) <= 0:
            raise ValidationError("Unit price must be greater than zero")

        pct = Decimal(str(self.discount_percent or "0.00"))
        if pct < Decimal("0.00") or pct >= Decimal("100.00"):
            raise ValidationError("discount_percent must be between 0 and 100")

    @property
    def selling_price(self) -> Decimal:
        price = Decimal(str(self.unit_price or "0.00"))
        pct = Decimal(str(self.discount_percent or "0.00"))
        if pct > Decimal("0.00"):
            price = price * (Decimal("100.00") - pct) / Decimal("100.00")
        return price.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    @property
    def is_low_stock(self) -> bool:
        return int(self.stock or 0) <= int(self.low_stock_threshold or 0)
