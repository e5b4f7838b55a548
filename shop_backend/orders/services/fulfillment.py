# orders/services/fulfillment.py

"""
STAFF OPERATIONS

- update_order_status: move an order through fulfilment (+ tracking, notes)
- request_refund / initiate_gateway_refund: ask the gateway to refund a
  completed payment; the refund.processed webhook completes it
- delete_order: only cancelled/failed orders without a completed payment

Gateway calls happen outside any transaction; results are written back
under a fresh row lock.
"""

from __future__ import annotations

import logging

from django.db import transaction
from django.utils import timezone

from orders.models import Order
from orders.services.cancellation import lock_order, release_order_stock
from orders.services.exceptions import (
    InvalidOrderTransitionError,
    OrderDeletionError,
    RefundNotAllowedError,
)
from orders.services.lifecycle import transition_order
from payments.services.exceptions import PaymentGatewayError
from payments.services.gateway import get_payment_gateway, to_minor_units

logger = logging.getLogger(__name__)

STAFF_TARGET_STATUSES = {
    Order.STATUS_CONFIRMED,
    Order.STATUS_PROCESSING,
    Order.STATUS_SHIPPED,
    Order.STATUS_DELIVERED,
    Order.STATUS_CANCELLED,
}

REFUNDABLE_STATES = {
    Order.STATUS_DELIVERED,
    Order.STATUS_CANCELLED,
}


def update_order_status(
    *,
    order_id,
    target_status: str,
    actor=None,
    tracking_number: str | None = None,
    notes: str | None = None,
    gateway=None,
) -> Order:
    target_status = (target_status or "").strip().lower()
    if target_status not in STAFF_TARGET_STATUSES:
        raise InvalidOrderTransitionError(f"Status '{target_status}' cannot be set manually.")

    with transaction.atomic():
        order = lock_order(order_id=order_id)
        previous = order.status

        fields = transition_order(order, target_status)

        if tracking_number is not None:
            order.tracking_number = tracking_number.strip()[:100]
            fields.append("tracking_number")
        if notes is not None:
            order.notes = notes.strip()[:500]
            fields.append("notes")

        # Cash is collected on delivery.
        if target_status == Order.STATUS_DELIVERED and order.is_cash_on_delivery:
            order.payment_status = Order.PAYMENT_STATUS_COMPLETED
            order.payment_verified_at = timezone.now()
            fields += ["payment_status", "payment_verified_at"]

        needs_refund = False
        if target_status == Order.STATUS_CANCELLED:
            order.cancellation_reason = "cancelled by staff"
            fields.append("cancellation_reason")
            needs_refund = order.is_payment_completed and not order.is_cash_on_delivery
            if needs_refund:
                order.refund_status = Order.REFUND_STATUS_PENDING
                fields.append("refund_status")

        order.save(update_fields=list(dict.fromkeys(fields)))

        if target_status == Order.STATUS_CANCELLED:
            release_order_stock(order, note=f"staff cancel {order.order_no}")

    logger.info(
        "Order status updated",
        extra={
            "order_id": str(order.id),
            "from_status": previous,
            "to_status": target_status,
            "actor_id": str(getattr(actor, "id", "") or ""),
        },
    )

    if needs_refund:
        order = initiate_gateway_refund(
            order_id=order.id,
            reason="cancelled by staff",
            gateway=gateway,
            raise_on_error=False,
        )
    return order


# ============================================================
# REFUNDS
# ============================================================

def initiate_gateway_refund(*, order_id, reason: str = "", gateway=None, raise_on_error: bool = True) -> Order:
    gateway = gateway or get_payment_gateway()
    order = Order.objects.get(pk=order_id)
    amount_minor = to_minor_units(order.total_amount)

    try:
        refund_id = gateway.refund(order.gateway_payment_id, amount_minor, reason)
    except PaymentGatewayError as exc:
        logger.error(
            "Gateway refund request failed",
            extra={"order_id": str(order.id), "payment_id": order.gateway_payment_id, "error": str(exc)},
        )
        with transaction.atomic():
            order = lock_order(order_id=order_id)
            if order.refund_status != Order.REFUND_STATUS_COMPLETED:
                order.refund_status = Order.REFUND_STATUS_FAILED
                order.refund_failure_reason = str(exc)[:255]
                order.save(update_fields=["refund_status", "refund_failure_reason", "updated_at"])
        if raise_on_error:
            raise
        return order

    with transaction.atomic():
        order = lock_order(order_id=order_id)
        fields = []
        if not order.refund_id:
            order.refund_id = refund_id
            fields.append("refund_id")
        # refund.processed may already have been reconciled.
        if order.refund_status != Order.REFUND_STATUS_COMPLETED:
            order.refund_status = Order.REFUND_STATUS_PENDING
            order.refund_failure_reason = ""
            fields += ["refund_status", "refund_failure_reason"]
        if fields:
            order.save(update_fields=fields + ["updated_at"])

    return order


def request_refund(*, order_id, actor=None, reason: str = "", gateway=None) -> Order:
    with transaction.atomic():
        order = lock_order(order_id=order_id)

        if order.is_cash_on_delivery or not order.gateway_payment_id:
            raise RefundNotAllowedError("Only gateway payments can be refunded through the gateway.")
        if not order.is_payment_completed:
            raise RefundNotAllowedError(f"Payment for order {order.order_no} is not completed.")
        if order.status not in REFUNDABLE_STATES:
            raise RefundNotAllowedError(
                f"Order {order.order_no} in status '{order.status}' cannot be refunded."
            )
        if order.refund_status in {Order.REFUND_STATUS_PENDING, Order.REFUND_STATUS_COMPLETED} and order.refund_id:
            raise RefundNotAllowedError(f"Refund already {order.refund_status} for order {order.order_no}.")

        order.refund_status = Order.REFUND_STATUS_PENDING
        order.save(update_fields=["refund_status", "updated_at"])

    logger.info(
        "Refund requested",
        extra={"order_id": str(order.id), "actor_id": str(getattr(actor, "id", "") or "")},
    )
    return initiate_gateway_refund(order_id=order.id, reason=reason or "refund requested", gateway=gateway)


# ============================================================
# DELETION
# ============================================================

def delete_order(*, order_id, actor=None) -> None:
    with transaction.atomic():
        order = lock_order(order_id=order_id)
        if not order.can_be_deleted:
            raise OrderDeletionError(
                f"Order {order.order_no} in status '{order.status}' cannot be deleted."
            )

        release_order_stock(order, note=f"delete {order.order_no}")
        order_no = order.order_no
        order.delete()

    logger.info(
        "Order deleted",
        extra={"order_no": order_no, "actor_id": str(getattr(actor, "id", "") or "")},
    )
