# products/services/inventory.py

"""
======================================================
PATH: products/services/inventory.py
======================================================
INVENTORY LEDGER

Purpose:
- Reserve (decrement) and release (increment) Product.stock for order lines.
- Append a StockMovement audit row for every applied change.

Rules:
- Quantities are integer units >= 1.
- Every change is ONE conditional UPDATE against the stored value:
    reserve: UPDATE ... SET stock = stock - q WHERE id = p AND stock >= q
    release: UPDATE ... SET stock = stock + q WHERE id = p
  so concurrent requests cannot lose updates or drive stock negative.
- Callers own the transaction boundary: reserve_lines() raises on the first
  short line and the caller's atomic block rolls back the earlier ones.
"""

from __future__ import annotations

import logging
from collections import defaultdict

from django.db import transaction
from django.db.models import F

from products.models import Product, StockMovement

logger = logging.getLogger(__name__)


# ============================================================
# DOMAIN ERRORS
# ============================================================

class InventoryError(Exception):
    pass


class InsufficientStockError(InventoryError):
    def __init__(self, message: str, *, product_id=None, requested: int = 0, available: int = 0):
        super().__init__(message)
        self.product_id = product_id
        self.requested = requested
        self.available = available


def _to_int_qty(value) -> int:
    """
    Quantity normalizer.
    HARD RULE: quantities are integer units in this system.
    """
    if isinstance(value, bool):
        raise ValueError("quantity must be a whole integer unit")

    if isinstance(value, int):
        return value

    if isinstance(value, str):
        s = value.strip()
        if s.isdigit():
            return int(s)

    raise ValueError("quantity must be a whole integer unit")


def _aggregate_lines(lines) -> dict:
    """
    lines: iterable of (product_id, quantity)
    Returns {product_id: total_qty}; ordered by product id so row locks are
    always taken in the same order (no lock-order deadlocks between requests).
    """
    totals = defaultdict(int)
    for product_id, quantity in lines:
        qty = _to_int_qty(quantity)
        if qty <= 0:
            raise ValueError("quantity must be at least 1")
        totals[product_id] += qty
    return dict(sorted(totals.items(), key=lambda kv: str(kv[0])))


# ============================================================
# SINGLE-PRODUCT PRIMITIVES
# ============================================================

def reserve_stock(*, product_id, quantity, order=None) -> None:
    qty = _to_int_qty(quantity)
    if qty <= 0:
        raise ValueError("quantity must be at least 1")

    updated = Product.objects.filter(pk=product_id, stock__gte=qty).update(
        stock=F("stock") - qty
    )

    if updated != 1:
        available = (
            Product.objects.filter(pk=product_id).values_list("stock", flat=True).first()
        )
        name = (
            Product.objects.filter(pk=product_id).values_list("name", flat=True).first()
            or str(product_id)
        )
        raise InsufficientStockError(
            f"Insufficient stock for {name}. Requested: {qty}, Available: {int(available or 0)}",
            product_id=product_id,
            requested=qty,
            available=int(available or 0),
        )

    StockMovement.objects.create(
        product_id=product_id,
        movement_type=StockMovement.MovementType.OUT,
        reason=StockMovement.Reason.RESERVE,
        quantity=qty,
        order=order,
    )


def release_stock(*, product_id, quantity, order=None, note: str = "") -> None:
    qty = _to_int_qty(quantity)
    if qty <= 0:
        raise ValueError("quantity must be at least 1")

    updated = Product.objects.filter(pk=product_id).update(stock=F("stock") + qty)
    if updated != 1:
        # Product removed from the catalogue; nothing to give the units back to.
        logger.warning(
            "Stock release skipped: product missing",
            extra={"product_id": str(product_id), "quantity": qty},
        )
        return

    StockMovement.objects.create(
        product_id=product_id,
        movement_type=StockMovement.MovementType.IN,
        reason=StockMovement.Reason.RELEASE,
        quantity=qty,
        order=order,
        note=(note or "")[:255],
    )


# ============================================================
# MULTI-LINE OPERATIONS (ORDER LEVEL)
# ============================================================

@transaction.atomic
def reserve_lines(*, lines, order=None) -> None:
    for product_id, qty in _aggregate_lines(lines).items():
        reserve_stock(product_id=product_id, quantity=qty, order=order)


@transaction.atomic
def release_lines(*, lines, order=None, note: str = "") -> None:
    for product_id, qty in _aggregate_lines(lines).items():
        release_stock(product_id=product_id, quantity=qty, order=order, note=note)

    logger.info(
        "Stock released",
        extra={"order_id": str(getattr(order, "id", "") or ""), "note": note},
    )


def available_stock(product_id) -> int:
    value = Product.objects.filter(pk=product_id).values_list("stock", flat=True).first()
    return int(value or 0)
