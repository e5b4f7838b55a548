# payments/models/webhook_event.py

import uuid

from django.db import models


class WebhookEvent(models.Model):
    """
    Durable log of every signature-verified gateway webhook delivery.

    - event_id is the provider's delivery id (X-Razorpay-Event-Id); a
      redelivery of an already processed id is skipped.
    - status records what reconciliation did with it.
    """

    STATUS_RECEIVED = "received"
    STATUS_PROCESSED = "processed"
    STATUS_IGNORED = "ignored"
    STATUS_FAILED = "failed"

    STATUS_CHOICES = [
        (STATUS_RECEIVED, "Received"),
        (STATUS_PROCESSED, "Processed"),
        (STATUS_IGNORED, "Ignored"),
        (STATUS_FAILED, "Failed"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    event_id = models.CharField(max_length=100, unique=True, null=True, blank=True)
    event = models.CharField(max_length=64, blank=True, default="")
    payload = models.JSONField(default=dict, blank=True)

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_RECEIVED)
    detail = models.CharField(max_length=255, blank=True, default="")
    error = models.TextField(blank=True, default="")
    attempts = models.PositiveIntegerField(default=1)

    received_at = models.DateTimeField(auto_now_add=True)
    processed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-received_at"]
        indexes = [
            models.Index(fields=["event", "received_at"], name="webhook_event_received_idx"),
            models.Index(fields=["status"], name="webhook_status_idx"),
        ]

    def __str__(self):
        return f"{self.event} {self.event_id or '-'} [{self.status}]"
