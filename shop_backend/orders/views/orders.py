# orders/views/orders.py

"""
======================================================
PATH: orders/views/orders.py
======================================================
ORDER API

Customer:
- POST   /api/orders/                  create from cart
- GET    /api/orders/                  own orders, staff: all (filter: status, payment_status)
- GET    /api/orders/<id>/             own order (staff: any order)
- POST   /api/orders/<id>/cancel/      cancel (pending/confirmed only)

Staff (admin / manager / support):
- PATCH  /api/orders/<id>/status/      fulfilment status + tracking number
- POST   /api/orders/<id>/refund/      gateway refund
- DELETE /api/orders/<id>/             cancelled/failed unpaid orders only

Views stay thin: validation via serializers, rules via orders.services,
errors via the canonical error_response().
"""

from __future__ import annotations

from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import generics, status
from rest_framework.parsers import JSONParser
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import UserRateThrottle
from rest_framework.views import APIView

from orders.models import Order
from orders.serializers import (
    OrderCancelSerializer,
    OrderCreateResponseSerializer,
    OrderCreateSerializer,
    OrderRefundSerializer,
    OrderSerializer,
    OrderStatusUpdateSerializer,
)
from orders.services.cancellation import cancel_order
from orders.services.exceptions import OrderError, OrderNotFoundError
from orders.services.fulfillment import delete_order, request_refund, update_order_status
from orders.services.order_creation import create_order
from orders.views.errors import domain_error_response, internal_error_response
from payments.services.exceptions import PaymentError
from payments.services.gateway import get_payment_gateway
from users.permissions import IsOrderStaff

ERROR_RESPONSES = {
    400: OpenApiResponse(description="Validation error / domain rule violated"),
    404: OpenApiResponse(description="Order or address not found"),
    409: OpenApiResponse(description="Stock or status conflict"),
    502: OpenApiResponse(description="Payment gateway unavailable (retryable)"),
}


class OrderWriteThrottle(UserRateThrottle):
    """
    Uses REST_FRAMEWORK['DEFAULT_THROTTLE_RATES']['order_write'].
    """

    scope = "order_write"


def _visible_orders(user):
    qs = Order.objects.select_related("user").prefetch_related("items")
    if getattr(user, "is_order_staff", False):
        return qs
    return qs.filter(user=user)


class OrderListCreateView(generics.ListAPIView):
    permission_classes = [IsAuthenticated]
    serializer_class = OrderSerializer
    filterset_fields = ["status", "payment_status", "payment_method"]

    def get_queryset(self):
        return _visible_orders(self.request.user)

    def get_throttles(self):
        if self.request.method == "POST":
            return [OrderWriteThrottle()]
        return super().get_throttles()

    @extend_schema(
        request=OrderCreateSerializer,
        responses={201: OrderCreateResponseSerializer, **ERROR_RESPONSES},
        description=(
            "Create an order from the caller's cart. Stock is reserved immediately. "
            "Gateway methods return client checkout parameters; cash on delivery is "
            "confirmed right away."
        ),
        tags=["Orders"],
    )
    def post(self, request):
        s = OrderCreateSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        data = s.validated_data

        gateway = None
        if data["payment_method"] != Order.PAYMENT_COD:
            gateway = get_payment_gateway()

        try:
            result = create_order(
                user=request.user,
                shipping_address_id=data["shipping_address_id"],
                billing_address_id=data.get("billing_address_id"),
                payment_method=data["payment_method"],
                notes=data.get("notes", ""),
                coupon_code=data.get("coupon_code", ""),
                payment_data=data.get("payment_data") or {},
                gateway=gateway,
            )
        except (OrderError, PaymentError) as exc:
            return domain_error_response(exc)
        except Exception:
            return internal_error_response(context="order creation", user_id=str(request.user.id))

        body = {
            "order": OrderSerializer(result.order).data,
            "payment_required": result.payment_required,
        }
        if result.payment is not None:
            body["payment"] = result.payment
        return Response(body, status=status.HTTP_201_CREATED)


class OrderDetailView(APIView):
    permission_classes = [IsAuthenticated]

    def get_permissions(self):
        if self.request.method == "DELETE":
            return [IsAuthenticated(), IsOrderStaff()]
        return super().get_permissions()

    @extend_schema(responses={200: OrderSerializer, 404: ERROR_RESPONSES[404]}, tags=["Orders"])
    def get(self, request, order_id):
        order = _visible_orders(request.user).filter(pk=order_id).first()
        if order is None:
            return domain_error_response(OrderNotFoundError())
        return Response(OrderSerializer(order).data, status=status.HTTP_200_OK)

    @extend_schema(
        responses={204: None, 404: ERROR_RESPONSES[404], 409: ERROR_RESPONSES[409]},
        description="Staff only. Deletes cancelled/failed orders without a completed payment.",
        tags=["Orders"],
    )
    def delete(self, request, order_id):
        try:
            delete_order(order_id=order_id, actor=request.user)
        except OrderError as exc:
            return domain_error_response(exc)
        except Exception:
            return internal_error_response(context="order deletion", order_id=str(order_id))
        return Response(status=status.HTTP_204_NO_CONTENT)


class OrderCancelView(APIView):
    permission_classes = [IsAuthenticated]
    parser_classes = [JSONParser]
    throttle_classes = [OrderWriteThrottle]

    @extend_schema(
        request=OrderCancelSerializer,
        responses={200: OrderSerializer, **ERROR_RESPONSES},
        description="Cancel an own order while it is pending or confirmed. Reserved stock is released.",
        tags=["Orders"],
    )
    def post(self, request, order_id):
        s = OrderCancelSerializer(data=request.data)
        s.is_valid(raise_exception=True)

        try:
            order = cancel_order(
                user=request.user,
                order_id=order_id,
                reason=s.validated_data.get("reason", ""),
                gateway=get_payment_gateway(),
            )
        except (OrderError, PaymentError) as exc:
            return domain_error_response(exc)
        except Exception:
            return internal_error_response(context="order cancellation", order_id=str(order_id))

        return Response(OrderSerializer(order).data, status=status.HTTP_200_OK)


class OrderStatusUpdateView(APIView):
    permission_classes = [IsAuthenticated, IsOrderStaff]
    parser_classes = [JSONParser]

    @extend_schema(
        request=OrderStatusUpdateSerializer,
        responses={200: OrderSerializer, **ERROR_RESPONSES},
        description="Staff only. Moves an order through fulfilment.",
        tags=["Orders"],
    )
    def patch(self, request, order_id):
        s = OrderStatusUpdateSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        data = s.validated_data

        try:
            order = update_order_status(
                order_id=order_id,
                target_status=data["status"],
                actor=request.user,
                tracking_number=data.get("tracking_number"),
                notes=data.get("notes"),
                gateway=get_payment_gateway(),
            )
        except (OrderError, PaymentError) as exc:
            return domain_error_response(exc)
        except Exception:
            return internal_error_response(context="order status update", order_id=str(order_id))

        return Response(OrderSerializer(order).data, status=status.HTTP_200_OK)


class OrderRefundView(APIView):
    permission_classes = [IsAuthenticated, IsOrderStaff]
    parser_classes = [JSONParser]

    @extend_schema(
        request=OrderRefundSerializer,
        responses={202: OrderSerializer, **ERROR_RESPONSES},
        description=(
            "Staff only. Requests a full gateway refund. The order is marked refunded "
            "when the gateway confirms it via webhook."
        ),
        tags=["Orders"],
    )
    def post(self, request, order_id):
        s = OrderRefundSerializer(data=request.data)
        s.is_valid(raise_exception=True)

        try:
            order = request_refund(
                order_id=order_id,
                actor=request.user,
                reason=s.validated_data.get("reason", ""),
                gateway=get_payment_gateway(),
            )
        except (OrderError, PaymentError) as exc:
            return domain_error_response(exc)
        except Exception:
            return internal_error_response(context="order refund", order_id=str(order_id))

        return Response(OrderSerializer(order).data, status=status.HTTP_202_ACCEPTED)
