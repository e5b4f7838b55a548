# payments/services/signatures.py

"""
SIGNATURE VERIFIER

Pure functions, no state:
- client callback: HMAC-SHA256(key_secret, "<gateway_order_id>|<gateway_payment_id>")
- webhook:         HMAC-SHA256(webhook_secret, <raw request body>)

Both compare hex digests in constant time. A missing signature or secret
never verifies.
"""

from __future__ import annotations

import hashlib
import hmac


def compute_hmac_sha256(*, message: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def _matches(*, expected: str, signature) -> bool:
    provided = str(signature or "").strip()
    if not provided:
        return False
    return hmac.compare_digest(expected, provided)


def verify_payment_signature(
    *,
    gateway_order_id: str,
    gateway_payment_id: str,
    signature: str | None,
    secret: str | None,
) -> bool:
    if not secret or not gateway_order_id or not gateway_payment_id:
        return False

    message = f"{gateway_order_id}|{gateway_payment_id}".encode("utf-8")
    expected = compute_hmac_sha256(message=message, secret=secret)
    return _matches(expected=expected, signature=signature)


def verify_webhook_signature(*, raw_body: bytes, signature: str | None, secret: str | None) -> bool:
    if not secret:
        return False

    expected = compute_hmac_sha256(message=raw_body or b"", secret=secret)
    return _matches(expected=expected, signature=signature)
