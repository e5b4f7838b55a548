# payments/serializers.py

"""
PAYMENT SERIALIZERS (transport layer only)
"""

from __future__ import annotations

from rest_framework import serializers


class PaymentVerifySerializer(serializers.Serializer):
    """
    Client callback after the gateway checkout widget reports success.
    """

    order_id = serializers.UUIDField()
    gateway_order_id = serializers.CharField(max_length=100)
    gateway_payment_id = serializers.CharField(max_length=100)
    signature = serializers.CharField(max_length=256)


class PaymentMethodSerializer(serializers.Serializer):
    id = serializers.CharField()
    name = serializers.CharField()
    description = serializers.CharField()


class PaymentMethodsQuerySerializer(serializers.Serializer):
    address_id = serializers.UUIDField()


class WebhookAckSerializer(serializers.Serializer):
    ok = serializers.BooleanField()
    status = serializers.CharField()
    detail = serializers.CharField(required=False, allow_blank=True)
