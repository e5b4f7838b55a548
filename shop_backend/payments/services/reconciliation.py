# payments/services/reconciliation.py

"""
======================================================
PATH: payments/services/reconciliation.py
======================================================
PAYMENT RECONCILIATION

Two channels report the same payment and may race:
- the client callback (confirm_client_payment)
- the gateway webhook (handle_webhook)

Both end in the same apply_* functions, each called with the order row
locked (select_for_update) and each idempotent:
- a captured payment is applied once; a repeat is a no-op
- the transaction id is never overwritten
- reserved stock is released at most once (orders.services.cancellation)

Signatures are ALWAYS verified before anything is read or written.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from django.db import transaction
from django.utils import timezone

from orders.models import Order
from orders.services.cancellation import release_order_stock
from orders.services.exceptions import OrderNotFoundError
from orders.services.lifecycle import can_transition, transition_order
from payments.models import WebhookEvent
from payments.services.exceptions import PaymentSignatureError, WebhookSignatureError
from payments.services.gateway import GatewayConfig, from_minor_units, get_gateway_config
from payments.services.signatures import verify_payment_signature, verify_webhook_signature

logger = logging.getLogger(__name__)

SIGNATURE_MISMATCH_REASON = "signature mismatch"

UNSETTLED_PAYMENT_STATUSES = (Order.PAYMENT_STATUS_PENDING, Order.PAYMENT_STATUS_FAILED)

# Stock for these orders has shipped and is never released.
SHIPPED_OUT_STATUSES = (Order.STATUS_DELIVERED, Order.STATUS_REFUNDED)


def _save(order: Order, fields) -> None:
    order.save(update_fields=list(dict.fromkeys(fields + ["updated_at"])))


# ============================================================
# SHARED OUTCOMES (caller holds the order row lock)
# ============================================================

def apply_payment_captured(order: Order, *, gateway_payment_id: str, source: str) -> bool:
    """
    Mark the payment completed and confirm a pending order.
    Returns False when the same capture was already applied or the
    payment has been refunded.
    """
    if order.is_payment_completed and order.gateway_payment_id == gateway_payment_id:
        logger.info(
            "Payment already captured",
            extra={"order_id": str(order.id), "payment_id": gateway_payment_id, "source": source},
        )
        return False

    if (
        order.payment_status == Order.PAYMENT_STATUS_REFUNDED
        or order.refund_status == Order.REFUND_STATUS_COMPLETED
    ):
        logger.warning(
            "Ignoring capture for refunded payment",
            extra={"order_id": str(order.id), "payment_id": gateway_payment_id, "source": source},
        )
        return False

    order.assign_gateway_payment_id(gateway_payment_id)
    order.payment_status = Order.PAYMENT_STATUS_COMPLETED
    order.payment_verified_at = timezone.now()
    order.payment_failure_reason = ""
    fields = ["gateway_payment_id", "payment_status", "payment_verified_at", "payment_failure_reason"]

    if order.status == Order.STATUS_PENDING:
        fields += transition_order(order, Order.STATUS_CONFIRMED)
    else:
        # Money arrived for an order that is no longer waiting for it.
        logger.warning(
            "Payment captured for order not awaiting payment; refund required",
            extra={
                "order_id": str(order.id),
                "status": order.status,
                "payment_id": gateway_payment_id,
                "source": source,
            },
        )

    _save(order, fields)
    logger.info(
        "Payment captured",
        extra={"order_id": str(order.id), "payment_id": gateway_payment_id, "source": source},
    )
    return True


def apply_payment_failed(order: Order, *, reason: str, target_status: str = Order.STATUS_CANCELLED) -> bool:
    """
    Record a failed payment, close the order and release its stock once.
    Only unsettled payments (pending or failed) are touched: a completed
    or refunded payment is never downgraded.
    """
    if order.payment_status not in UNSETTLED_PAYMENT_STATUSES:
        logger.warning(
            "Ignoring payment failure for settled payment",
            extra={"order_id": str(order.id), "reason": reason, "payment_status": order.payment_status},
        )
        return False

    changed = False
    if order.payment_status != Order.PAYMENT_STATUS_FAILED:
        order.payment_status = Order.PAYMENT_STATUS_FAILED
        order.payment_failure_reason = (reason or "payment failed")[:255]
        fields = ["payment_status", "payment_failure_reason"]

        if can_transition(from_status=order.status, to_status=target_status):
            fields += transition_order(order, target_status)
            if target_status == Order.STATUS_CANCELLED:
                order.cancellation_reason = order.payment_failure_reason
                fields.append("cancellation_reason")

        _save(order, fields)
        changed = True

    if order.status in SHIPPED_OUT_STATUSES:
        return changed

    released = release_order_stock(order, note=f"payment failed {order.order_no}")
    return changed or released


def apply_refund_processed(order: Order, *, refund_id: str, amount_minor) -> bool:
    if order.refund_status == Order.REFUND_STATUS_COMPLETED and order.refund_id == refund_id:
        return False

    order.refund_id = refund_id
    order.refund_status = Order.REFUND_STATUS_COMPLETED
    order.refund_failure_reason = ""
    order.refund_amount = from_minor_units(amount_minor) if amount_minor is not None else order.total_amount
    order.payment_status = Order.PAYMENT_STATUS_REFUNDED
    fields = ["refund_id", "refund_status", "refund_failure_reason", "refund_amount", "payment_status"]

    if can_transition(from_status=order.status, to_status=Order.STATUS_REFUNDED, via_refund=True):
        fields += transition_order(order, Order.STATUS_REFUNDED, via_refund=True)

    _save(order, fields)
    logger.info(
        "Refund processed",
        extra={"order_id": str(order.id), "refund_id": refund_id, "amount": str(order.refund_amount)},
    )
    return True


def apply_refund_failed(order: Order, *, refund_id: str, reason: str) -> bool:
    if order.refund_status == Order.REFUND_STATUS_COMPLETED:
        logger.warning(
            "Ignoring refund failure for completed refund",
            extra={"order_id": str(order.id), "refund_id": refund_id},
        )
        return False

    order.refund_status = Order.REFUND_STATUS_FAILED
    order.refund_failure_reason = (reason or "Refund failed")[:255]
    fields = ["refund_status", "refund_failure_reason"]
    if refund_id and not order.refund_id:
        order.refund_id = refund_id
        fields.append("refund_id")

    _save(order, fields)
    logger.error(
        "Refund failed",
        extra={"order_id": str(order.id), "refund_id": refund_id, "reason": order.refund_failure_reason},
    )
    return True


# ============================================================
# CLIENT CALLBACK CHANNEL
# ============================================================

def confirm_client_payment(
    *,
    user,
    order_id,
    gateway_order_id: str,
    gateway_payment_id: str,
    signature: str,
    config: GatewayConfig | None = None,
) -> Order:
    config = config or get_gateway_config()

    with transaction.atomic():
        order = Order.objects.select_for_update().filter(pk=order_id, user=user).first()
        if order is None:
            raise OrderNotFoundError()

        if not order.gateway_order_id or order.gateway_order_id != gateway_order_id:
            logger.warning(
                "Client callback for a different gateway order",
                extra={"order_id": str(order.id), "gateway_order_id": gateway_order_id},
            )
            verified = None
        else:
            verified = verify_payment_signature(
                gateway_order_id=gateway_order_id,
                gateway_payment_id=gateway_payment_id,
                signature=signature,
                secret=config.key_secret,
            )

        if verified:
            apply_payment_captured(order, gateway_payment_id=gateway_payment_id, source="client")
            return order

        if verified is False and order.payment_status in UNSETTLED_PAYMENT_STATUSES:
            logger.warning(
                "Payment signature mismatch",
                extra={"order_id": str(order.id), "payment_id": gateway_payment_id},
            )
            apply_payment_failed(order, reason=SIGNATURE_MISMATCH_REASON, target_status=Order.STATUS_FAILED)

    # Raised after commit: the failed state above must persist.
    raise PaymentSignatureError()


# ============================================================
# WEBHOOK CHANNEL
# ============================================================

@dataclass(frozen=True)
class WebhookOutcome:
    status: str
    detail: str = ""


def _entity(payload: dict, kind: str) -> dict:
    return ((payload.get("payload") or {}).get(kind) or {}).get("entity") or {}


def _on_payment_captured(payload: dict) -> str:
    payment = _entity(payload, "payment")
    gateway_order_id = str(payment.get("order_id") or "").strip()
    payment_id = str(payment.get("id") or "").strip()
    if not gateway_order_id or not payment_id:
        raise ValueError("payment.captured without order_id/id")

    order = Order.objects.select_for_update().filter(gateway_order_id=gateway_order_id).first()
    if order is None:
        logger.warning("Order not found for captured payment", extra={"gateway_order_id": gateway_order_id})
        return "order not found"

    changed = apply_payment_captured(order, gateway_payment_id=payment_id, source="webhook")
    return "captured" if changed else "already captured"


def _on_payment_failed(payload: dict) -> str:
    payment = _entity(payload, "payment")
    gateway_order_id = str(payment.get("order_id") or "").strip()
    if not gateway_order_id:
        raise ValueError("payment.failed without order_id")

    order = Order.objects.select_for_update().filter(gateway_order_id=gateway_order_id).first()
    if order is None:
        logger.warning("Order not found for failed payment", extra={"gateway_order_id": gateway_order_id})
        return "order not found"

    reason = str(payment.get("error_description") or "payment failed")
    changed = apply_payment_failed(order, reason=reason)
    return "failed" if changed else "already failed"


def _refund_order(refund: dict) -> Order | None:
    payment_id = str(refund.get("payment_id") or "").strip()
    if not payment_id:
        raise ValueError("refund event without payment_id")
    return Order.objects.select_for_update().filter(gateway_payment_id=payment_id).first()


def _on_refund_processed(payload: dict) -> str:
    refund = _entity(payload, "refund")
    order = _refund_order(refund)
    if order is None:
        logger.warning("Order not found for refund", extra={"refund_id": refund.get("id")})
        return "order not found"

    changed = apply_refund_processed(
        order,
        refund_id=str(refund.get("id") or ""),
        amount_minor=refund.get("amount"),
    )
    return "refunded" if changed else "already refunded"


def _on_refund_failed(payload: dict) -> str:
    refund = _entity(payload, "refund")
    order = _refund_order(refund)
    if order is None:
        logger.warning("Order not found for failed refund", extra={"refund_id": refund.get("id")})
        return "order not found"

    apply_refund_failed(
        order,
        refund_id=str(refund.get("id") or ""),
        reason=str(refund.get("error_description") or ""),
    )
    return "refund failed"


EVENT_HANDLERS = {
    "payment.captured": _on_payment_captured,
    "payment.failed": _on_payment_failed,
    "refund.processed": _on_refund_processed,
    "refund.failed": _on_refund_failed,
}


def _finish(event: WebhookEvent, *, status: str, detail: str = "", error: str = "") -> WebhookOutcome:
    event.status = status
    event.detail = detail[:255]
    event.error = error
    event.processed_at = timezone.now()
    event.save(update_fields=["status", "detail", "error", "processed_at"])
    return WebhookOutcome(status=status, detail=detail)


def handle_webhook(
    *,
    raw_body: bytes,
    signature: str | None,
    event_id: str = "",
    config: GatewayConfig | None = None,
) -> WebhookOutcome:
    config = config or get_gateway_config()

    if not verify_webhook_signature(raw_body=raw_body, signature=signature, secret=config.webhook_secret):
        logger.warning("Invalid webhook signature", extra={"event_id": event_id})
        raise WebhookSignatureError()

    try:
        payload = json.loads((raw_body or b"").decode("utf-8"))
    except ValueError:
        payload = None
    if not isinstance(payload, dict):
        logger.warning("Malformed webhook payload", extra={"event_id": event_id})
        payload = {}

    event_name = str(payload.get("event") or "").strip()
    event_id = (event_id or "").strip() or None

    event = None
    if event_id:
        event = WebhookEvent.objects.filter(event_id=event_id).first()
        if event is not None:
            if event.status in {WebhookEvent.STATUS_PROCESSED, WebhookEvent.STATUS_IGNORED}:
                logger.info("Duplicate webhook delivery skipped", extra={"event_id": event_id})
                return WebhookOutcome(status="duplicate", detail=event.detail)
            event.attempts += 1
            event.status = WebhookEvent.STATUS_RECEIVED
            event.save(update_fields=["attempts", "status"])

    if event is None:
        event = WebhookEvent.objects.create(event_id=event_id, event=event_name, payload=payload)

    handler = EVENT_HANDLERS.get(event_name)
    if handler is None:
        logger.info("Unhandled webhook event", extra={"event": event_name, "event_id": event_id})
        return _finish(event, status=WebhookEvent.STATUS_IGNORED, detail=f"unhandled event {event_name or '(none)'}")

    try:
        with transaction.atomic():
            detail = handler(payload)
    except Exception as exc:
        logger.exception("Webhook event processing failed", extra={"event": event_name, "event_id": event_id})
        return _finish(event, status=WebhookEvent.STATUS_FAILED, detail="processing error", error=str(exc))

    logger.info("Webhook processed", extra={"event": event_name, "event_id": event_id, "detail": detail})
    return _finish(event, status=WebhookEvent.STATUS_PROCESSED, detail=detail)
