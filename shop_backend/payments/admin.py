# payments/admin.py

from django.contrib import admin

from payments.models import WebhookEvent


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    list_display = ("event", "event_id", "status", "attempts", "received_at", "processed_at")
    list_filter = ("event", "status")
    search_fields = ("event_id",)
    readonly_fields = (
        "event_id",
        "event",
        "payload",
        "status",
        "detail",
        "error",
        "attempts",
        "received_at",
        "processed_at",
    )

    def has_add_permission(self, request):
        return False
