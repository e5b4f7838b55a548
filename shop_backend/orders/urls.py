# orders/urls.py

from django.urls import path

from orders.views import (
    OrderCancelView,
    OrderDetailView,
    OrderListCreateView,
    OrderRefundView,
    OrderStatusUpdateView,
)

app_name = "orders"

urlpatterns = [
    path("", OrderListCreateView.as_view(), name="order-list"),
    path("<uuid:order_id>/", OrderDetailView.as_view(), name="order-detail"),
    path("<uuid:order_id>/cancel/", OrderCancelView.as_view(), name="order-cancel"),
    path("<uuid:order_id>/status/", OrderStatusUpdateView.as_view(), name="order-status"),
    path("<uuid:order_id>/refund/", OrderRefundView.as_view(), name="order-refund"),
]
