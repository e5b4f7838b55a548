# orders/models/order.py

"""
ORDER (AGGREGATE ROOT)

GUARANTEES:
- total_amount == subtotal + tax + shipping - discount on every save()
- gateway_payment_id is written at most once
- shipping/billing addresses are snapshots, never references
- status only moves through orders.services.lifecycle

Payment information lives on the same row (no separate payment ledger):
reconciliation locks ONE row to decide the outcome of both channels.
"""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone

from orders.services.exceptions import TransactionIdConflictError

logger = logging.getLogger(__name__)

TWOPLACES = Decimal("0.01")


def _q(value) -> Decimal:
    return Decimal(str(value if value is not None else "0.00")).quantize(TWOPLACES)


class Order(models.Model):
    # ---------------- ORDER STATUS ----------------
    STATUS_PENDING = "pending"
    STATUS_CONFIRMED = "confirmed"
    STATUS_PROCESSING = "processing"
    STATUS_SHIPPED = "shipped"
    STATUS_DELIVERED = "delivered"
    STATUS_CANCELLED = "cancelled"
    STATUS_REFUNDED = "refunded"
    STATUS_FAILED = "failed"

    STATUS_CHOICES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_CONFIRMED, "Confirmed"),
        (STATUS_PROCESSING, "Processing"),
        (STATUS_SHIPPED, "Shipped"),
        (STATUS_DELIVERED, "Delivered"),
        (STATUS_CANCELLED, "Cancelled"),
        (STATUS_REFUNDED, "Refunded"),
        (STATUS_FAILED, "Failed"),
    ]

    # ---------------- PAYMENT METHOD ----------------
    PAYMENT_UPI = "upi"
    PAYMENT_CREDIT_CARD = "credit_card"
    PAYMENT_DEBIT_CARD = "debit_card"
    PAYMENT_NETBANKING = "netbanking"
    PAYMENT_WALLET = "wallet"
    PAYMENT_COD = "cash_on_delivery"

    PAYMENT_METHOD_CHOICES = [
        (PAYMENT_UPI, "UPI"),
        (PAYMENT_CREDIT_CARD, "Credit Card"),
        (PAYMENT_DEBIT_CARD, "Debit Card"),
        (PAYMENT_NETBANKING, "Net Banking"),
        (PAYMENT_WALLET, "Wallet"),
        (PAYMENT_COD, "Cash on Delivery"),
    ]

    # ---------------- PAYMENT STATUS ----------------
    PAYMENT_STATUS_PENDING = "pending"
    PAYMENT_STATUS_COMPLETED = "completed"
    PAYMENT_STATUS_FAILED = "failed"
    PAYMENT_STATUS_REFUNDED = "refunded"

    PAYMENT_STATUS_CHOICES = [
        (PAYMENT_STATUS_PENDING, "Pending"),
        (PAYMENT_STATUS_COMPLETED, "Completed"),
        (PAYMENT_STATUS_FAILED, "Failed"),
        (PAYMENT_STATUS_REFUNDED, "Refunded"),
    ]

    # ---------------- REFUND STATUS ----------------
    REFUND_STATUS_NONE = ""
    REFUND_STATUS_PENDING = "pending"
    REFUND_STATUS_COMPLETED = "completed"
    REFUND_STATUS_FAILED = "failed"

    REFUND_STATUS_CHOICES = [
        (REFUND_STATUS_NONE, "None"),
        (REFUND_STATUS_PENDING, "Pending"),
        (REFUND_STATUS_COMPLETED, "Completed"),
        (REFUND_STATUS_FAILED, "Failed"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    order_no = models.CharField(
        max_length=64,
        unique=True,
        blank=True,
        help_text="System-generated public order number",
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="orders",
    )

    shipping_address = models.JSONField(default=dict)
    billing_address = models.JSONField(default=dict)

    # Money fields (server authoritative)
    subtotal_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    tax_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    shipping_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    discount_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    total_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING)

    coupon_code = models.CharField(max_length=32, blank=True, default="")
    notes = models.CharField(max_length=500, blank=True, default="")
    tracking_number = models.CharField(max_length=100, blank=True, default="")
    cancellation_reason = models.CharField(max_length=255, blank=True, default="")

    # ---------------- PAYMENT INFO ----------------
    payment_method = models.CharField(max_length=20, choices=PAYMENT_METHOD_CHOICES)
    gateway_order_id = models.CharField(max_length=100, blank=True, default="", db_index=True)
    gateway_payment_id = models.CharField(max_length=100, blank=True, default="", db_index=True)
    payment_status = models.CharField(
        max_length=20, choices=PAYMENT_STATUS_CHOICES, default=PAYMENT_STATUS_PENDING
    )
    payment_failure_reason = models.CharField(max_length=255, blank=True, default="")
    payment_verified_at = models.DateTimeField(null=True, blank=True)

    refund_id = models.CharField(max_length=100, blank=True, default="")
    refund_status = models.CharField(
        max_length=20, choices=REFUND_STATUS_CHOICES, blank=True, default=REFUND_STATUS_NONE
    )
    refund_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    refund_failure_reason = models.CharField(max_length=255, blank=True, default="")

    # ---------------- TIMESTAMPS ----------------
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    confirmed_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    stock_released_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Set once when reserved stock went back to the catalogue",
    )

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["user", "created_at"], name="orders_user_created_idx"),
            models.Index(fields=["status"], name="orders_status_idx"),
            models.Index(fields=["status", "created_at"], name="orders_status_created_idx"),
            models.Index(fields=["payment_status"], name="orders_payment_status_idx"),
        ]

    # --------------------------------------------------
    # INVARIANTS
    # --------------------------------------------------

    def expected_total(self) -> Decimal:
        return (
            _q(self.subtotal_amount)
            + _q(self.tax_amount)
            + _q(self.shipping_amount)
            - _q(self.discount_amount)
        )

    def check_money_invariant(self) -> None:
        for field in ("subtotal_amount", "tax_amount", "shipping_amount", "discount_amount"):
            if _q(getattr(self, field)) < Decimal("0.00"):
                raise ValidationError({field: "Amount cannot be negative"})

        if _q(self.discount_amount) > _q(self.subtotal_amount):
            raise ValidationError({"discount_amount": "Discount cannot exceed subtotal"})

        if _q(self.total_amount) != self.expected_total():
            raise ValidationError(
                {
                    "total_amount": (
                        f"Total {_q(self.total_amount)} does not equal "
                        f"subtotal + tax + shipping - discount ({self.expected_total()})"
                    )
                }
            )

    def save(self, *args, **kwargs):
        if not self.order_no:
            prefix = timezone.now().strftime("ORD%Y%m%d")
            self.order_no = f"{prefix}-{uuid.uuid4().hex[:8].upper()}"

        self.check_money_invariant()
        super().save(*args, **kwargs)

    # --------------------------------------------------
    # PAYMENT HELPERS
    # --------------------------------------------------

    @property
    def is_cash_on_delivery(self) -> bool:
        return self.payment_method == self.PAYMENT_COD

    @property
    def is_payment_completed(self) -> bool:
        return self.payment_status == self.PAYMENT_STATUS_COMPLETED

    @property
    def is_stock_released(self) -> bool:
        return self.stock_released_at is not None

    def assign_gateway_payment_id(self, payment_id: str) -> bool:
        """
        Set-once transaction id.
        Returns True when the field changed, False for an identical value.
        """
        payment_id = (payment_id or "").strip()
        if not payment_id:
            raise ValueError("gateway payment id is required")

        current = (self.gateway_payment_id or "").strip()
        if current == payment_id:
            return False

        if current:
            logger.error(
                "Refusing to overwrite gateway payment id",
                extra={"order_id": str(self.id), "current": current, "incoming": payment_id},
            )
            raise TransactionIdConflictError(
                f"Order {self.order_no} already has transaction id {current}."
            )

        self.gateway_payment_id = payment_id
        return True

    @property
    def payment_info(self) -> dict:
        return {
            "method": self.payment_method,
            "gateway_order_id": self.gateway_order_id,
            "transaction_id": self.gateway_payment_id,
            "status": self.payment_status,
            "failure_reason": self.payment_failure_reason,
            "verified_at": self.payment_verified_at,
            "refund_id": self.refund_id,
            "refund_status": self.refund_status,
            "refund_amount": self.refund_amount,
            "refund_failure_reason": self.refund_failure_reason,
        }

    @property
    def can_be_deleted(self) -> bool:
        return (
            self.status in {self.STATUS_CANCELLED, self.STATUS_FAILED}
            and self.payment_status != self.PAYMENT_STATUS_COMPLETED
        )

    def __str__(self):
        return f"{self.order_no} | {self.total_amount} | {self.status}"
