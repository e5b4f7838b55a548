# products/tests/test_products.py

from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import IntegrityError
from django.test import TestCase

from products.models import Product


class ProductModelTests(TestCase):
    """
    Product model tests.

    GUARANTEES:
    - SKU uniqueness is enforced
    - selling_price applies the catalogue discount
    - Pricing is sane
    """

    def test_sku_must_be_unique(self):
        Product.objects.create(name="Mug", sku="MUG-1", unit_price=Decimal("200.00"))

        with self.assertRaises(IntegrityError):
            Product.objects.create(name="Mug copy", sku="MUG-1", unit_price=Decimal("150.00"))

    def test_selling_price_without_discount(self):
        product = Product(name="Lamp", sku="LMP-1", unit_price=Decimal("499.00"))
        self.assertEqual(product.selling_price, Decimal("499.00"))

    def test_selling_price_with_discount_rounds_half_up(self):
        product = Product(
            name="Lamp",
            sku="LMP-2",
            unit_price=Decimal("99.99"),
            discount_percent=Decimal("15.00"),
        )
        # 99.99 * 0.85 = 84.9915
        self.assertEqual(product.selling_price, Decimal("84.99"))

    def test_non_positive_price_is_rejected(self):
        product = Product(name="Free", sku="FREE-1", unit_price=Decimal("0.00"))
        with self.assertRaises(ValidationError):
            product.full_clean()

    def test_discount_must_stay_below_hundred_percent(self):
        product = Product(
            name="Lamp",
            sku="LMP-3",
            unit_price=Decimal("10.00"),
            discount_percent=Decimal("100.00"),
        )
        with self.assertRaises(ValidationError):
            product.full_clean()

    def test_low_stock_flag(self):
        product = Product(name="Pen", sku="PEN-1", unit_price=Decimal("10.00"), stock=3, low_stock_threshold=5)
        self.assertTrue(product.is_low_stock)
