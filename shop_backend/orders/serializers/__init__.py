from .order import (
    OrderCancelSerializer,
    OrderCreateResponseSerializer,
    OrderCreateSerializer,
    OrderItemSerializer,
    OrderRefundSerializer,
    OrderSerializer,
    OrderStatusUpdateSerializer,
)

__all__ = [
    "OrderCancelSerializer",
    "OrderCreateResponseSerializer",
    "OrderCreateSerializer",
    "OrderItemSerializer",
    "OrderRefundSerializer",
    "OrderSerializer",
    "OrderStatusUpdateSerializer",
]
