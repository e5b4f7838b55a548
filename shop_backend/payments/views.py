# payments/views.py

"""
======================================================
PATH: payments/views.py
======================================================
PAYMENT API

- GET  /api/payments/methods/?address_id=   methods for a shipping address
- POST /api/payments/verify/                client callback (signed)
- POST /api/payments/webhook/               gateway webhook (signed, AllowAny)

Webhook contract with the gateway:
- 400 ONLY when the signature does not verify
- 500 when the delivery could not even be recorded (the gateway retries)
- 200 for everything else (processed, duplicate, unknown order, per-event
  failure) so one bad event never blocks redelivery of the rest
"""

from __future__ import annotations

from drf_spectacular.utils import OpenApiParameter, OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.parsers import JSONParser
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import AnonRateThrottle, UserRateThrottle
from rest_framework.views import APIView

from orders.serializers import OrderSerializer
from orders.services.exceptions import OrderError
from orders.services.order_creation import available_payment_methods, get_user_address
from orders.views.errors import domain_error_response, internal_error_response
from payments.serializers import (
    PaymentMethodSerializer,
    PaymentMethodsQuerySerializer,
    PaymentVerifySerializer,
    WebhookAckSerializer,
)
from payments.services.exceptions import PaymentError, WebhookSignatureError
from payments.services.reconciliation import confirm_client_payment, handle_webhook


class WebhookThrottle(AnonRateThrottle):
    scope = "webhook"


class PaymentVerifyThrottle(UserRateThrottle):
    scope = "order_write"


class PaymentMethodsView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(
        parameters=[OpenApiParameter("address_id", str, OpenApiParameter.QUERY, required=True)],
        responses={200: PaymentMethodSerializer(many=True), 404: OpenApiResponse(description="Address not found")},
        description="Payment methods available for a shipping address. Cash on delivery is location restricted.",
        tags=["Payments"],
    )
    def get(self, request):
        q = PaymentMethodsQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)

        try:
            address = get_user_address(user=request.user, address_id=q.validated_data["address_id"])
        except OrderError as exc:
            return domain_error_response(exc)

        methods = available_payment_methods(address=address)
        return Response(PaymentMethodSerializer(methods, many=True).data, status=status.HTTP_200_OK)


class PaymentVerifyView(APIView):
    permission_classes = [IsAuthenticated]
    parser_classes = [JSONParser]
    throttle_classes = [PaymentVerifyThrottle]

    @extend_schema(
        request=PaymentVerifySerializer,
        responses={
            200: OrderSerializer,
            400: OpenApiResponse(description="Invalid signature"),
            404: OpenApiResponse(description="Order not found"),
        },
        description=(
            "Client callback. The signature is verified with the gateway key secret; "
            "a mismatch fails the order and releases its stock."
        ),
        tags=["Payments"],
    )
    def post(self, request):
        s = PaymentVerifySerializer(data=request.data)
        s.is_valid(raise_exception=True)
        data = s.validated_data

        try:
            order = confirm_client_payment(
                user=request.user,
                order_id=data["order_id"],
                gateway_order_id=data["gateway_order_id"],
                gateway_payment_id=data["gateway_payment_id"],
                signature=data["signature"],
            )
        except (OrderError, PaymentError) as exc:
            return domain_error_response(exc)
        except Exception:
            return internal_error_response(context="payment verification", order_id=str(data["order_id"]))

        return Response(OrderSerializer(order).data, status=status.HTTP_200_OK)


class PaymentWebhookView(APIView):
    authentication_classes = []
    permission_classes = [AllowAny]
    parser_classes = [JSONParser]
    throttle_classes = [WebhookThrottle]

    @extend_schema(
        request=None,
        responses={
            200: WebhookAckSerializer,
            400: OpenApiResponse(description="Invalid signature"),
            500: OpenApiResponse(description="Delivery not recorded; the gateway retries"),
        },
        description="Gateway webhook. Signature over the raw body is always verified.",
        tags=["Payments"],
    )
    def post(self, request):
        raw_body = request.body or b""
        signature = request.headers.get("X-Razorpay-Signature")
        event_id = request.headers.get("X-Razorpay-Event-Id", "")

        try:
            outcome = handle_webhook(raw_body=raw_body, signature=signature, event_id=event_id)
        except WebhookSignatureError as exc:
            return domain_error_response(exc)
        except Exception:
            # Not recorded: a 5xx makes the gateway deliver it again.
            return internal_error_response(context="payment webhook", event_id=event_id)

        return Response(
            {"ok": True, "status": outcome.status, "detail": outcome.detail},
            status=status.HTTP_200_OK,
        )
