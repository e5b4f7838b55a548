# users/services/activity.py

"""
ACTIVITY LOGGER (COLLABORATOR)

Fire-and-forget: failures are logged and ignored so they can never
roll back or block an order flow.
"""

from __future__ import annotations

import logging

from django.db import DatabaseError, transaction

from users.models import UserActivity

logger = logging.getLogger(__name__)


def log_activity(*, user_id, activity_type: str, metadata: dict | None = None) -> None:
    try:
        UserActivity.objects.create(
            user_id=user_id,
            activity_type=activity_type,
            metadata=metadata or {},
        )
    except DatabaseError:
        logger.warning(
            "Activity log write failed",
            extra={"user_id": str(user_id), "activity_type": activity_type},
            exc_info=True,
        )


def log_purchase_on_commit(*, order) -> None:
    """
    Schedule a purchase event for after the surrounding transaction commits.
    """
    user_id = order.user_id
    metadata = {
        "order_id": str(order.id),
        "order_no": order.order_no,
        "total_amount": str(order.total_amount),
        "payment_method": order.payment_method,
        "product_ids": [str(pid) for pid in order.items.values_list("product_id", flat=True)],
    }

    transaction.on_commit(
        lambda: log_activity(
            user_id=user_id,
            activity_type=UserActivity.ActivityType.PURCHASE,
            metadata=metadata,
        )
    )
