# users/models/activity.py

import uuid

from django.conf import settings
from django.db import models


class UserActivity(models.Model):
    """
    Append-only user activity event (purchase, cancellation, ...).
    Written fire-and-forget; never part of an order transaction.
    """

    class ActivityType(models.TextChoices):
        PURCHASE = "purchase", "Purchase"
        CANCEL = "cancel", "Cancel"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="activities",
    )
    activity_type = models.CharField(max_length=20, choices=ActivityType.choices)
    metadata = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["user", "created_at"], name="users_activity_user_idx"),
            models.Index(fields=["activity_type"], name="users_activity_type_idx"),
        ]

    def __str__(self):
        return f"{self.user_id} {self.activity_type}"
