# orders/admin.py
"""
PATH: orders/admin.py

Admin rules:
- Orders are read-mostly here: money, payment and stock markers are
  read-only (they only change through orders/payments services).
- Coupons are fully editable.
"""

from django.contrib import admin

from orders.models import Coupon, Order, OrderItem


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    can_delete = False
    readonly_fields = ("product", "product_name", "sku", "quantity", "unit_price", "line_total")

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = (
        "order_no",
        "user",
        "status",
        "payment_method",
        "payment_status",
        "total_amount",
        "created_at",
    )
    list_filter = ("status", "payment_status", "payment_method")
    search_fields = ("order_no", "user__email", "gateway_order_id", "gateway_payment_id")
    date_hierarchy = "created_at"
    inlines = [OrderItemInline]
    readonly_fields = (
        "order_no",
        "user",
        "status",
        "subtotal_amount",
        "tax_amount",
        "shipping_amount",
        "discount_amount",
        "total_amount",
        "payment_method",
        "gateway_order_id",
        "gateway_payment_id",
        "payment_status",
        "payment_failure_reason",
        "payment_verified_at",
        "refund_id",
        "refund_status",
        "refund_amount",
        "refund_failure_reason",
        "stock_released_at",
        "created_at",
        "updated_at",
        "confirmed_at",
        "delivered_at",
        "cancelled_at",
    )

    def has_delete_permission(self, request, obj=None):
        return bool(obj is not None and obj.can_be_deleted)


@admin.register(Coupon)
class CouponAdmin(admin.ModelAdmin):
    list_display = ("code", "discount_type", "discount_value", "used_count", "usage_limit", "expiry_date", "is_active")
    list_filter = ("discount_type", "is_active")
    search_fields = ("code",)
    readonly_fields = ("used_count",)
