# products/tests/test_inventory.py

from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db.models import F
from django.test import TestCase

from products.models import Product, StockMovement
from products.services.inventory import (
    InsufficientStockError,
    available_stock,
    release_lines,
    release_stock,
    reserve_lines,
    reserve_stock,
)


class InventoryLedgerTests(TestCase):
    """
    Inventory ledger tests.

    GUARANTEES:
    - Reservations never drive stock negative
    - Every applied change leaves a StockMovement row
    - A failed multi-line reservation changes nothing
    """

    def setUp(self):
        self.product = Product.objects.create(
            sku="SKU-100",
            name="Cotton Shirt",
            unit_price=Decimal("100.00"),
            stock=5,
        )
        self.other = Product.objects.create(
            sku="SKU-101",
            name="Denim Jacket",
            unit_price=Decimal("250.00"),
            stock=1,
        )

    def _stock(self, product):
        return Product.objects.get(pk=product.pk).stock

    def test_reserve_decrements_stock_and_audits(self):
        reserve_stock(product_id=self.product.id, quantity=2)

        self.assertEqual(self._stock(self.product), 3)
        movement = StockMovement.objects.get(product=self.product)
        self.assertEqual(movement.reason, StockMovement.Reason.RESERVE)
        self.assertEqual(movement.movement_type, StockMovement.MovementType.OUT)
        self.assertEqual(movement.quantity, 2)

    def test_reserve_more_than_available_is_rejected(self):
        with self.assertRaises(InsufficientStockError) as ctx:
            reserve_stock(product_id=self.product.id, quantity=6)

        self.assertEqual(ctx.exception.requested, 6)
        self.assertEqual(ctx.exception.available, 5)
        self.assertEqual(self._stock(self.product), 5)
        self.assertFalse(StockMovement.objects.exists())

    def test_release_increments_stock(self):
        reserve_stock(product_id=self.product.id, quantity=4)
        release_stock(product_id=self.product.id, quantity=4, note="test release")

        self.assertEqual(self._stock(self.product), 5)
        self.assertEqual(
            StockMovement.objects.filter(reason=StockMovement.Reason.RELEASE).count(), 1
        )

    def test_multi_line_reservation_is_all_or_nothing(self):
        with self.assertRaises(InsufficientStockError):
            reserve_lines(lines=[(self.product.id, 2), (self.other.id, 2)])

        self.assertEqual(self._stock(self.product), 5)
        self.assertEqual(self._stock(self.other), 1)
        self.assertFalse(StockMovement.objects.exists())

    def test_duplicate_lines_are_aggregated(self):
        reserve_lines(lines=[(self.product.id, 2), (self.product.id, 3)])
        self.assertEqual(self._stock(self.product), 0)

        with self.assertRaises(InsufficientStockError):
            reserve_lines(lines=[(self.product.id, 1)])

    def test_stock_is_conserved_across_reserve_and_release(self):
        lines = [(self.product.id, 3), (self.other.id, 1)]
        reserve_lines(lines=lines)
        release_lines(lines=lines)

        self.assertEqual(self._stock(self.product), 5)
        self.assertEqual(self._stock(self.other), 1)

    def test_last_unit_has_exactly_one_winner(self):
        """Two reservations racing for the final unit: one wins, one fails."""
        reserve_stock(product_id=self.other.id, quantity=1)

        with self.assertRaises(InsufficientStockError):
            reserve_stock(product_id=self.other.id, quantity=1)

        self.assertEqual(available_stock(self.other.id), 0)

    def test_conditional_update_guards_against_stale_reads(self):
        """A caller holding a stale stock value still cannot oversell."""
        stale = Product.objects.get(pk=self.other.pk)
        self.assertEqual(stale.stock, 1)

        Product.objects.filter(pk=self.other.pk).update(stock=F("stock") - 1)

        updated = Product.objects.filter(pk=stale.pk, stock__gte=1).update(stock=F("stock") - 1)
        self.assertEqual(updated, 0)
        self.assertEqual(self._stock(self.other), 0)

    def test_quantities_must_be_positive_integers(self):
        for bad in (0, -1, "1.5", True):
            with self.assertRaises(ValueError):
                reserve_stock(product_id=self.product.id, quantity=bad)

    def test_movements_are_append_only(self):
        reserve_stock(product_id=self.product.id, quantity=1)
        movement = StockMovement.objects.get()

        with self.assertRaises(ValidationError):
            movement.note = "edited"
            movement.save()

        with self.assertRaises(ValidationError):
            movement.delete()
