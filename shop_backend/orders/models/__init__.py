"""
PATH: orders/models/__init__.py

Orders models export surface.
"""

from .coupon import Coupon
from .order import Order
from .order_item import OrderItem

__all__ = [
    "Coupon",
    "Order",
    "OrderItem",
]
