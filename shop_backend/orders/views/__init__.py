from .orders import (
    OrderCancelView,
    OrderDetailView,
    OrderListCreateView,
    OrderRefundView,
    OrderStatusUpdateView,
)

__all__ = [
    "OrderCancelView",
    "OrderDetailView",
    "OrderListCreateView",
    "OrderRefundView",
    "OrderStatusUpdateView",
]
