# products/admin.py
"""
PATH: products/admin.py

Admin rules (audit-safe stock):
- Initial stock may be entered when the product is created.
- After creation, `stock` is read-only here: it only changes through
  products.services.inventory (reservations, releases) so every change
  has a StockMovement row.
- StockMovement rows are shown read-only (append-only ledger).
"""

from __future__ import annotations

from django.contrib import admin

from products.models import Product, StockMovement


class StockMovementInline(admin.TabularInline):
    model = StockMovement
    extra = 0
    can_delete = False
    fields = ("created_at", "reason", "movement_type", "quantity", "order", "note")
    readonly_fields = fields
    ordering = ("-created_at",)

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ("name", "sku", "unit_price", "discount_percent", "stock", "is_active")
    list_filter = ("is_active",)
    search_fields = ("name", "sku")
    inlines = [StockMovementInline]

    def get_readonly_fields(self, request, obj=None):
        if obj is not None:
            return ("stock", "created_at", "updated_at")
        return ("created_at", "updated_at")


@admin.register(StockMovement)
class StockMovementAdmin(admin.ModelAdmin):
    list_display = ("product", "reason", "movement_type", "quantity", "order", "created_at")
    list_filter = ("reason", "movement_type")
    search_fields = ("product__name", "product__sku", "order__order_no")
    readonly_fields = ("product", "reason", "movement_type", "quantity", "order", "note", "created_at")

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
