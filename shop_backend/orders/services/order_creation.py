# orders/services/order_creation.py

"""
======================================================
PATH: orders/services/order_creation.py
======================================================
ORDER CREATION ORCHESTRATOR

Flow:
1) Fail-fast preconditions (no side effects):
   cart non-empty -> address owned by user -> COD allow-list
2) One transaction:
   lock cart + products, price lines from the CURRENT catalogue,
   persist order (pending), reserve stock, claim coupon, clear cart.
   Cash on delivery is confirmed right here.
3) After commit (gateway methods only):
   create the gateway order and store its id on the order.
   If the gateway call raises anything the order is compensated in a
   new transaction (cancelled, stock + coupon + cart given back) and
   the error is re-raised.

The gateway is never called while a transaction holds row locks.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from django.conf import settings
from django.db import transaction

from cart.models import CartItem
from cart.services.snapshot import (
    CartEmptyError,
    CartLineStockError,
    CartLineUnavailableError,
    clear_cart,
    lock_cart,
    restore_cart,
    snapshot_cart,
)
from orders.models import Order, OrderItem
from orders.services.cancellation import lock_order, release_order_stock
from orders.services.exceptions import (
    AddressNotFoundError,
    CodUnavailableError,
    EmptyCartError,
    InsufficientStockError,
    OrderError,
    ProductUnavailableError,
)
from orders.services.lifecycle import transition_order
from orders.services.pricing import claim_coupon, compute_totals, resolve_coupon
from payments.services.gateway import get_payment_gateway, to_minor_units
from products.services import inventory
from users.models import Address
from users.services.activity import log_purchase_on_commit

logger = logging.getLogger(__name__)

GATEWAY_UNAVAILABLE_REASON = "payment gateway unavailable"

GATEWAY_METHODS = {
    Order.PAYMENT_UPI,
    Order.PAYMENT_CREDIT_CARD,
    Order.PAYMENT_DEBIT_CARD,
    Order.PAYMENT_NETBANKING,
    Order.PAYMENT_WALLET,
}


@dataclass
class OrderCreationResult:
    order: Order
    payment_required: bool
    payment: dict | None = field(default=None)


# ============================================================
# PRECONDITION HELPERS
# ============================================================

def cod_allowed_postal_codes() -> set[str]:
    codes = settings.ORDERS.get("COD_ALLOWED_POSTAL_CODES") or []
    return {str(c).strip() for c in codes if str(c).strip()}


def is_cod_available(postal_code: str) -> bool:
    return (postal_code or "").strip() in cod_allowed_postal_codes()


def available_payment_methods(*, address: Address) -> list[dict]:
    methods = [
        {"id": Order.PAYMENT_UPI, "name": "UPI", "description": "Pay using UPI apps"},
        {"id": Order.PAYMENT_CREDIT_CARD, "name": "Credit Card", "description": "Visa, Mastercard, RuPay, American Express"},
        {"id": Order.PAYMENT_DEBIT_CARD, "name": "Debit Card", "description": "Visa, Mastercard, RuPay"},
        {"id": Order.PAYMENT_NETBANKING, "name": "Net Banking", "description": "Pay using your bank account"},
        {"id": Order.PAYMENT_WALLET, "name": "Wallets", "description": "Paytm, PhonePe, Amazon Pay, etc."},
    ]
    if is_cod_available(address.postal_code):
        methods.append(
            {
                "id": Order.PAYMENT_COD,
                "name": "Cash on Delivery",
                "description": "Pay when you receive the order",
            }
        )
    return methods


def get_user_address(*, user, address_id) -> Address:
    address = Address.objects.filter(pk=address_id, user=user).first() if address_id else None
    if address is None:
        raise AddressNotFoundError()
    return address


def _normalize_payment_method(method) -> str:
    m = str(method or "").strip().lower()
    if m not in GATEWAY_METHODS and m != Order.PAYMENT_COD:
        raise OrderError(f"Unsupported payment method: {m or '(empty)'}", code="INVALID_PAYMENT_METHOD")
    return m


# ============================================================
# ORCHESTRATOR
# ============================================================

def create_order(
    *,
    user,
    shipping_address_id,
    payment_method: str,
    billing_address_id=None,
    notes: str = "",
    coupon_code: str = "",
    payment_data: dict | None = None,
    gateway=None,
) -> OrderCreationResult:
    payment_method = _normalize_payment_method(payment_method)

    # 1) fail fast
    if not CartItem.objects.filter(cart__user=user).exists():
        raise EmptyCartError()

    shipping = get_user_address(user=user, address_id=shipping_address_id)
    billing = (
        get_user_address(user=user, address_id=billing_address_id)
        if billing_address_id
        else shipping
    )

    if payment_method == Order.PAYMENT_COD and not is_cod_available(shipping.postal_code):
        raise CodUnavailableError()

    # 2) durable order
    with transaction.atomic():
        cart = lock_cart(user=user)
        try:
            lines = snapshot_cart(cart=cart)
        except CartEmptyError as exc:
            raise EmptyCartError() from exc
        except CartLineUnavailableError as exc:
            raise ProductUnavailableError(str(exc), product_id=exc.product_id) from exc
        except CartLineStockError as exc:
            raise InsufficientStockError(
                str(exc),
                product_id=exc.product_id,
                requested=exc.requested,
                available=exc.available,
            ) from exc

        subtotal_hint = sum((line.line_total for line in lines))
        coupon, discount = resolve_coupon(code=coupon_code, subtotal=subtotal_hint)
        totals = compute_totals(line_totals=[line.line_total for line in lines], discount=discount)

        order = Order(
            user=user,
            shipping_address=shipping.as_snapshot(),
            billing_address=billing.as_snapshot(),
            subtotal_amount=totals.subtotal,
            tax_amount=totals.tax,
            shipping_amount=totals.shipping,
            discount_amount=totals.discount,
            total_amount=totals.total,
            status=Order.STATUS_PENDING,
            payment_method=payment_method,
            payment_status=Order.PAYMENT_STATUS_PENDING,
            coupon_code=coupon.code if coupon else "",
            notes=(notes or "").strip()[:500],
        )
        order.save()

        for line in lines:
            OrderItem.objects.create(
                order=order,
                product_id=line.product_id,
                product_name=line.product_name,
                sku=line.sku,
                quantity=line.quantity,
                unit_price=line.unit_price,
            )

        try:
            inventory.reserve_lines(
                lines=[(line.product_id, line.quantity) for line in lines],
                order=order,
            )
        except inventory.InsufficientStockError as exc:
            raise InsufficientStockError(
                str(exc),
                product_id=exc.product_id,
                requested=exc.requested,
                available=exc.available,
            ) from exc

        if coupon is not None:
            claim_coupon(coupon=coupon)

        clear_cart(cart=cart)

        if payment_method == Order.PAYMENT_COD:
            fields = transition_order(order, Order.STATUS_CONFIRMED)
            order.assign_gateway_payment_id(f"COD-{order.order_no}")
            fields.append("gateway_payment_id")
            order.save(update_fields=fields)

        log_purchase_on_commit(order=order)

    logger.info(
        "Order created",
        extra={
            "order_id": str(order.id),
            "order_no": order.order_no,
            "payment_method": payment_method,
            "total_amount": str(order.total_amount),
        },
    )

    if payment_method == Order.PAYMENT_COD:
        return OrderCreationResult(order=order, payment_required=False)

    # 3) gateway order, outside the transaction
    gateway = gateway or get_payment_gateway()
    config = gateway.config
    amount_minor = to_minor_units(order.total_amount)

    try:
        gateway_order_id = gateway.create_intent(
            amount_minor,
            config.currency,
            order.order_no,
            notes=_intent_notes(order, payment_data),
        )
    except Exception:
        logger.exception(
            "Gateway order creation failed; compensating",
            extra={"order_id": str(order.id), "order_no": order.order_no},
        )
        compensate_failed_intent(order_id=order.id)
        raise

    with transaction.atomic():
        order = lock_order(order_id=order.id)
        order.gateway_order_id = gateway_order_id
        order.save(update_fields=["gateway_order_id", "updated_at"])

    return OrderCreationResult(
        order=order,
        payment_required=True,
        payment={
            "key_id": config.key_id,
            "gateway_order_id": gateway_order_id,
            "amount": amount_minor,
            "currency": config.currency,
            "order_no": order.order_no,
        },
    )


def _intent_notes(order: Order, payment_data: dict | None) -> dict:
    notes = {"order_id": str(order.id), "payment_method": order.payment_method}
    for key, value in (payment_data or {}).items():
        if isinstance(value, (str, int)) and not isinstance(value, bool):
            notes[f"client_{key}"] = value
    return notes


def compensate_failed_intent(*, order_id) -> Order:
    """
    Undo a committed order whose gateway order could not be created:
    cancelled, payment failed, stock + coupon released, cart restored.
    """
    with transaction.atomic():
        order = lock_order(order_id=order_id)
        if order.status != Order.STATUS_PENDING:
            logger.warning(
                "Skipping compensation: order no longer pending",
                extra={"order_id": str(order.id), "status": order.status},
            )
            return order

        fields = transition_order(order, Order.STATUS_CANCELLED)
        order.payment_status = Order.PAYMENT_STATUS_FAILED
        order.payment_failure_reason = GATEWAY_UNAVAILABLE_REASON
        order.cancellation_reason = GATEWAY_UNAVAILABLE_REASON
        fields += ["payment_status", "payment_failure_reason", "cancellation_reason"]
        order.save(update_fields=list(dict.fromkeys(fields)))

        release_order_stock(order, note=f"compensate {order.order_no}")
        restore_cart(
            user=order.user,
            lines=list(order.items.values_list("product_id", "quantity")),
        )

    return order
