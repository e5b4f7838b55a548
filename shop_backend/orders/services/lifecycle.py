# orders/services/lifecycle.py

"""
ORDER LIFECYCLE DOMAIN RULES

This module defines the ONLY allowed lifecycle transitions
for Order entities.

    pending    -> confirmed | cancelled | failed
    confirmed  -> processing | cancelled
    processing -> shipped
    shipped    -> delivered
    delivered  -> refunded   (gateway refund reconciliation only)

can_transition / validate_transition have no side effects.
transition_order mutates the instance (status + timestamps) without saving;
callers save inside their own transaction.
"""

from django.utils import timezone

from orders.models import Order
from orders.services.exceptions import InvalidOrderTransitionError

# ============================================================
# STATE DEFINITIONS
# ============================================================

TERMINAL_STATES = {
    Order.STATUS_DELIVERED,
    Order.STATUS_CANCELLED,
    Order.STATUS_REFUNDED,
    Order.STATUS_FAILED,
}

ALLOWED_TRANSITIONS = {
    Order.STATUS_PENDING: {
        Order.STATUS_CONFIRMED,
        Order.STATUS_CANCELLED,
        Order.STATUS_FAILED,
    },
    Order.STATUS_CONFIRMED: {
        Order.STATUS_PROCESSING,
        Order.STATUS_CANCELLED,
    },
    Order.STATUS_PROCESSING: {
        Order.STATUS_SHIPPED,
    },
    Order.STATUS_SHIPPED: {
        Order.STATUS_DELIVERED,
    },
}

# Reachable from a terminal state, and only by the refund reconciliation.
REFUND_TRANSITIONS = {
    Order.STATUS_DELIVERED: {
        Order.STATUS_REFUNDED,
    },
}

CANCELLABLE_STATES = {
    Order.STATUS_PENDING,
    Order.STATUS_CONFIRMED,
}


# ============================================================
# DOMAIN RULES
# ============================================================

def can_transition(*, from_status: str, to_status: str, via_refund: bool = False) -> bool:
    if via_refund and to_status in REFUND_TRANSITIONS.get(from_status, set()):
        return True

    if from_status in TERMINAL_STATES:
        return False

    return to_status in ALLOWED_TRANSITIONS.get(from_status, set())


def validate_transition(*, order: Order, target_status: str, via_refund: bool = False):
    if not can_transition(
        from_status=order.status,
        to_status=target_status,
        via_refund=via_refund,
    ):
        raise InvalidOrderTransitionError(
            f"Order {order.order_no} cannot transition from "
            f"'{order.status}' to '{target_status}'"
        )


def next_statuses(status: str) -> set:
    if status in TERMINAL_STATES:
        return set()
    return set(ALLOWED_TRANSITIONS.get(status, set()))


def transition_order(order: Order, target_status: str, *, via_refund: bool = False) -> list[str]:
    """
    Apply a validated transition. Returns the changed field names for
    save(update_fields=...).
    """
    validate_transition(order=order, target_status=target_status, via_refund=via_refund)

    now = timezone.now()
    order.status = target_status
    fields = ["status", "updated_at"]

    if target_status == Order.STATUS_CONFIRMED and not order.confirmed_at:
        order.confirmed_at = now
        fields.append("confirmed_at")
    elif target_status == Order.STATUS_DELIVERED and not order.delivered_at:
        order.delivered_at = now
        fields.append("delivered_at")
    elif target_status == Order.STATUS_CANCELLED and not order.cancelled_at:
        order.cancelled_at = now
        fields.append("cancelled_at")

    return fields
