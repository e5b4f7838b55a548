# cart/services/snapshot.py

"""
CART SNAPSHOT

Purpose:
- Read a user's cart under a row lock at order-creation time.
- Validate each line against the CURRENT catalogue (active product, stock, price).
- Clear the cart (only called once the order row exists, same transaction).
- Restore a cart from order lines (compensation when the gateway is down).

Rules:
- Price is always Product.selling_price read now; never a cached cart value.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from cart.models import Cart, CartItem
from products.models import Product


class CartError(Exception):
    pass


class CartEmptyError(CartError):
    pass


class CartLineUnavailableError(CartError):
    def __init__(self, message: str, *, product_id=None):
        super().__init__(message)
        self.product_id = product_id


class CartLineStockError(CartError):
    def __init__(self, message: str, *, product_id=None, requested: int = 0, available: int = 0):
        super().__init__(message)
        self.product_id = product_id
        self.requested = requested
        self.available = available


@dataclass(frozen=True)
class CartLine:
    product_id: object
    product_name: str
    sku: str
    quantity: int
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return (self.unit_price * Decimal(self.quantity)).quantize(Decimal("0.01"))


def lock_cart(*, user) -> Cart | None:
    """
    Row-lock the user's cart (prevents double-checkout clicks racing each other).
    Must be called inside transaction.atomic().
    """
    return Cart.objects.select_for_update().filter(user=user).first()


def snapshot_cart(*, cart: Cart | None) -> list[CartLine]:
    if cart is None:
        raise CartEmptyError("Cart is empty")

    items = list(
        CartItem.objects.filter(cart=cart).select_related("product").order_by("created_at")
    )
    if not items:
        raise CartEmptyError("Cart is empty")

    product_ids = sorted({item.product_id for item in items}, key=str)
    products = {
        p.id: p
        for p in Product.objects.select_for_update().filter(id__in=product_ids)
    }

    lines: list[CartLine] = []
    for item in items:
        product = products.get(item.product_id)
        if product is None or not product.is_active:
            raise CartLineUnavailableError(
                f"Product {item.product_id} is no longer available.",
                product_id=item.product_id,
            )

        qty = int(item.quantity or 0)
        if qty <= 0:
            raise CartLineUnavailableError(
                f"Invalid quantity for {product.name}. Quantity must be at least 1.",
                product_id=product.id,
            )

        available = int(product.stock or 0)
        if available < qty:
            raise CartLineStockError(
                f"Insufficient stock for {product.name}. Requested: {qty}, Available: {available}",
                product_id=product.id,
                requested=qty,
                available=available,
            )

        unit_price = product.selling_price
        if unit_price <= Decimal("0.00"):
            raise CartLineUnavailableError(
                f"Invalid unit price for {product.name}. Must be > 0.",
                product_id=product.id,
            )

        lines.append(
            CartLine(
                product_id=product.id,
                product_name=product.name,
                sku=product.sku,
                quantity=qty,
                unit_price=unit_price,
            )
        )

    return lines


def clear_cart(*, cart: Cart) -> int:
    deleted, _ = CartItem.objects.filter(cart=cart).delete()
    return deleted


def restore_cart(*, user, lines) -> None:
    """
    lines: iterable of (product_id, quantity). Quantities are merged into any
    items the user added meanwhile.
    """
    cart, _ = Cart.objects.get_or_create(user=user)
    for product_id, quantity in lines:
        item = CartItem.objects.filter(cart=cart, product_id=product_id).first()
        if item is None:
            CartItem.objects.create(cart=cart, product_id=product_id, quantity=int(quantity))
        else:
            item.quantity = int(item.quantity) + int(quantity)
            item.save(update_fields=["quantity"])
