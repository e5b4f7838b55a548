# orders/serializers/order.py

"""
ORDER SERIALIZERS

Transport layer only: they validate request/response shapes.
Money, stock and status rules live in orders.services.
"""

from __future__ import annotations

from rest_framework import serializers

from orders.models import Order, OrderItem
from orders.services.fulfillment import STAFF_TARGET_STATUSES


# ======================================================
# READ
# ======================================================

class OrderItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = OrderItem
        fields = [
            "id",
            "product_id",
            "product_name",
            "sku",
            "quantity",
            "unit_price",
            "line_total",
        ]
        read_only_fields = fields


class PaymentInfoSerializer(serializers.Serializer):
    method = serializers.CharField(source="payment_method")
    gateway_order_id = serializers.CharField()
    transaction_id = serializers.CharField(source="gateway_payment_id")
    status = serializers.CharField(source="payment_status")
    failure_reason = serializers.CharField(source="payment_failure_reason")
    verified_at = serializers.DateTimeField(source="payment_verified_at")
    refund_id = serializers.CharField()
    refund_status = serializers.CharField()
    refund_amount = serializers.DecimalField(max_digits=12, decimal_places=2, allow_null=True)
    refund_failure_reason = serializers.CharField()


class OrderSerializer(serializers.ModelSerializer):
    items = OrderItemSerializer(many=True, read_only=True)
    payment_info = PaymentInfoSerializer(source="*", read_only=True)

    class Meta:
        model = Order
        fields = [
            "id",
            "order_no",
            "user_id",
            "status",
            "items",
            "shipping_address",
            "billing_address",
            "subtotal_amount",
            "tax_amount",
            "shipping_amount",
            "discount_amount",
            "total_amount",
            "coupon_code",
            "notes",
            "tracking_number",
            "cancellation_reason",
            "payment_info",
            "created_at",
            "updated_at",
            "confirmed_at",
            "delivered_at",
            "cancelled_at",
        ]
        read_only_fields = fields


# ======================================================
# WRITE COMMANDS
# ======================================================

class OrderCreateSerializer(serializers.Serializer):
    shipping_address_id = serializers.UUIDField()
    billing_address_id = serializers.UUIDField(required=False, allow_null=True)
    payment_method = serializers.ChoiceField(choices=Order.PAYMENT_METHOD_CHOICES)
    notes = serializers.CharField(required=False, allow_blank=True, max_length=500, default="")
    coupon_code = serializers.CharField(required=False, allow_blank=True, max_length=32, default="")
    payment_data = serializers.DictField(required=False, default=dict)


class PaymentParamsSerializer(serializers.Serializer):
    key_id = serializers.CharField()
    gateway_order_id = serializers.CharField()
    amount = serializers.IntegerField(help_text="Minor currency units (paise)")
    currency = serializers.CharField()
    order_no = serializers.CharField()


class OrderCreateResponseSerializer(serializers.Serializer):
    order = OrderSerializer()
    payment_required = serializers.BooleanField()
    payment = PaymentParamsSerializer(required=False, allow_null=True)


class OrderCancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255, default="")


class OrderStatusUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=sorted(STAFF_TARGET_STATUSES))
    tracking_number = serializers.CharField(required=False, allow_blank=True, max_length=100)
    notes = serializers.CharField(required=False, allow_blank=True, max_length=500)


class OrderRefundSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255, default="")
