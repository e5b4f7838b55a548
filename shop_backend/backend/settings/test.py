# backend/settings/test.py
"""
PATH: backend/settings/test.py

TEST SETTINGS
- In-memory SQLite unless TEST_DATABASE_URL points elsewhere
  (row-locking tests need a database with SELECT ... FOR UPDATE)
- Fixed gateway credentials so signatures can be computed in tests
- Throttling relaxed (tests hammer the same endpoints)
"""

from __future__ import annotations

from .base import *  # noqa: F403
from .base import PAYMENTS, REST_FRAMEWORK, env

DEBUG = False
TESTING = True

SECRET_KEY = "test-secret-key-not-for-production"

DATABASES = {
    "default": env.db("TEST_DATABASE_URL", default="sqlite://:memory:"),
}

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

PAYMENTS["RAZORPAY"].update(
    {
        "KEY_ID": "rzp_test_key",
        "KEY_SECRET": "test_key_secret",
        "WEBHOOK_SECRET": "test_webhook_secret",
        "BASE_URL": "https://gateway.invalid/v1",
        "CURRENCY": "INR",
    }
)

ORDERS = {
    "TAX_RATE": "0.18",
    "SHIPPING_FEE": "99.00",
    "FREE_SHIPPING_THRESHOLD": "999.00",
    "COD_ALLOWED_POSTAL_CODES": ["712248", "700001", "110001"],
    "PENDING_ORDER_TTL_MINUTES": 60,
}

REST_FRAMEWORK = {
    **REST_FRAMEWORK,
    "DEFAULT_THROTTLE_CLASSES": (),
}
