# users/models/address.py

import uuid

from django.conf import settings
from django.db import models


class Address(models.Model):
    """
    Address book entry.

    Orders never reference an Address row: checkout copies `as_snapshot()`
    into the order so later edits cannot rewrite order history.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="addresses",
    )

    full_name = models.CharField(max_length=120)
    address_line1 = models.CharField(max_length=255)
    address_line2 = models.CharField(max_length=255, blank=True, default="")
    city = models.CharField(max_length=100)
    state = models.CharField(max_length=100)
    postal_code = models.CharField(max_length=20, db_index=True)
    country = models.CharField(max_length=100, default="India")
    phone = models.CharField(max_length=32)

    is_default = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-is_default", "-created_at"]
        indexes = [
            models.Index(fields=["user", "is_default"], name="users_addr_user_default_idx"),
        ]

    def as_snapshot(self) -> dict:
        return {
            "full_name": self.full_name,
            "address_line1": self.address_line1,
            "address_line2": self.address_line2,
            "city": self.city,
            "state": self.state,
            "postal_code": (self.postal_code or "").strip(),
            "country": self.country,
            "phone": self.phone,
        }

    def __str__(self):
        return f"{self.full_name}, {self.city} {self.postal_code}"
