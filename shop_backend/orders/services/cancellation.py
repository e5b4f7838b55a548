# orders/services/cancellation.py

"""
CANCELLATION, STOCK RELEASE & EXPIRY

release_order_stock() is the single way reserved units (and the coupon use)
go back. It is exactly-once per order: the stock_released_at marker is
claimed with a conditional UPDATE before any unit is returned, so a late
webhook, a double click and the expiry sweep cannot release twice.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from orders.models import Order
from orders.services.exceptions import InvalidOrderTransitionError, OrderNotFoundError
from orders.services.lifecycle import CANCELLABLE_STATES, transition_order
from orders.services.pricing import return_coupon
from products.services.inventory import release_lines
from users.models import UserActivity
from users.services.activity import log_activity

logger = logging.getLogger(__name__)

EXPIRY_REASON = "payment window expired"


def release_order_stock(order: Order, *, note: str = "") -> bool:
    """
    Return the order's reserved units and its coupon use.
    Must run inside transaction.atomic().
    Returns False when the stock was already released.
    """
    now = timezone.now()
    claimed = Order.objects.filter(pk=order.pk, stock_released_at__isnull=True).update(
        stock_released_at=now
    )
    if claimed != 1:
        logger.info(
            "Stock already released for order",
            extra={"order_id": str(order.pk), "order_no": order.order_no},
        )
        return False

    order.stock_released_at = now
    lines = list(order.items.values_list("product_id", "quantity"))
    if lines:
        release_lines(lines=lines, order=order, note=note or f"release {order.order_no}")
    return_coupon(code=order.coupon_code)
    return True


def lock_order(*, order_id, user=None) -> Order:
    qs = Order.objects.select_for_update().filter(pk=order_id)
    if user is not None:
        qs = qs.filter(user=user)
    order = qs.first()
    if order is None:
        raise OrderNotFoundError()
    return order


def _save(order: Order, fields) -> None:
    order.save(update_fields=list(dict.fromkeys(fields)))


# ============================================================
# CUSTOMER CANCELLATION
# ============================================================

def cancel_order(*, user, order_id, reason: str = "", gateway=None) -> Order:
    """
    Customer cancellation from pending/confirmed.

    Stock goes back in the same transaction. A completed gateway payment
    is refunded after the commit; a refund failure is recorded on the order
    and does not undo the cancellation.
    """
    with transaction.atomic():
        order = lock_order(order_id=order_id, user=user)

        if order.status not in CANCELLABLE_STATES:
            raise InvalidOrderTransitionError(
                f"Order {order.order_no} cannot be cancelled in status '{order.status}'."
            )

        fields = transition_order(order, Order.STATUS_CANCELLED)
        order.cancellation_reason = (reason or "cancelled by customer").strip()[:255]
        fields.append("cancellation_reason")

        needs_refund = (
            order.is_payment_completed
            and not order.is_cash_on_delivery
            and bool(order.gateway_payment_id)
        )
        if needs_refund:
            order.refund_status = Order.REFUND_STATUS_PENDING
            fields.append("refund_status")

        _save(order, fields)
        release_order_stock(order, note=f"cancel {order.order_no}")

        user_id = order.user_id
        metadata = {"order_id": str(order.id), "order_no": order.order_no, "reason": order.cancellation_reason}
        transaction.on_commit(
            lambda: log_activity(
                user_id=user_id,
                activity_type=UserActivity.ActivityType.CANCEL,
                metadata=metadata,
            )
        )

    logger.info(
        "Order cancelled by customer",
        extra={"order_id": str(order.id), "order_no": order.order_no, "refund": needs_refund},
    )

    if needs_refund:
        from orders.services.fulfillment import initiate_gateway_refund

        order = initiate_gateway_refund(
            order_id=order.id,
            reason=order.cancellation_reason,
            gateway=gateway,
            raise_on_error=False,
        )

    return order


# ============================================================
# HOUSEKEEPING: STALE PENDING ORDERS
# ============================================================

def expire_pending_orders(*, older_than_minutes: int | None = None, now=None) -> int:
    """
    Cancel pending, unpaid orders older than the TTL and release their stock.
    Each order is handled in its own transaction under a row lock.
    """
    if older_than_minutes is None:
        older_than_minutes = int(settings.ORDERS.get("PENDING_ORDER_TTL_MINUTES", 60))

    cutoff = (now or timezone.now()) - timedelta(minutes=older_than_minutes)
    candidate_ids = list(
        Order.objects.filter(status=Order.STATUS_PENDING, created_at__lt=cutoff)
        .exclude(payment_status=Order.PAYMENT_STATUS_COMPLETED)
        .values_list("id", flat=True)
    )

    expired = 0
    for order_id in candidate_ids:
        with transaction.atomic():
            order = Order.objects.select_for_update().filter(pk=order_id).first()
            if (
                order is None
                or order.status != Order.STATUS_PENDING
                or order.is_payment_completed
            ):
                continue

            fields = transition_order(order, Order.STATUS_CANCELLED)
            order.cancellation_reason = EXPIRY_REASON
            order.payment_status = Order.PAYMENT_STATUS_FAILED
            order.payment_failure_reason = EXPIRY_REASON
            fields += ["cancellation_reason", "payment_status", "payment_failure_reason"]
            _save(order, fields)

            release_order_stock(order, note=f"expire {order.order_no}")
            expired += 1

    if expired:
        logger.info("Expired stale pending orders", extra={"count": expired, "cutoff": cutoff.isoformat()})
    return expired
