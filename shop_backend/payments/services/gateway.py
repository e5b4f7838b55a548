# payments/services/gateway.py

"""
PAYMENT GATEWAY ADAPTER (Razorpay-style REST API)

The only component that talks to the outside world.

- Amounts cross the boundary as integer minor units (paise).
- Basic auth with key_id:key_secret, JSON in / JSON out.
- Any transport, HTTP or decoding problem raises PaymentGatewayError.
- Configuration is read once from settings.PAYMENTS["RAZORPAY"] into an
  immutable GatewayConfig and injected into the adapter.
"""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from functools import lru_cache
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

from django.conf import settings

from payments.services.exceptions import PaymentGatewayError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.razorpay.com/v1"


# ============================================================
# CONFIG
# ============================================================

@dataclass(frozen=True)
class GatewayConfig:
    key_id: str
    key_secret: str = field(repr=False)
    webhook_secret: str = field(repr=False)
    base_url: str = DEFAULT_BASE_URL
    timeout: int = 25
    currency: str = "INR"

    @classmethod
    def from_settings(cls) -> GatewayConfig:
        payments = getattr(settings, "PAYMENTS", {}) or {}
        cfg = payments.get("RAZORPAY") or {}
        return cls(
            key_id=(cfg.get("KEY_ID") or "").strip(),
            key_secret=(cfg.get("KEY_SECRET") or "").strip(),
            webhook_secret=(cfg.get("WEBHOOK_SECRET") or "").strip(),
            base_url=(cfg.get("BASE_URL") or DEFAULT_BASE_URL).strip().rstrip("/"),
            timeout=int(cfg.get("TIMEOUT") or 25),
            currency=(cfg.get("CURRENCY") or "INR").strip().upper(),
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.key_id and self.key_secret)


@lru_cache(maxsize=1)
def get_gateway_config() -> GatewayConfig:
    return GatewayConfig.from_settings()


# ============================================================
# MONEY CONVERSION
# ============================================================

def to_minor_units(amount) -> int:
    try:
        major = Decimal(str(amount))
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise ValueError("amount must be a valid Decimal") from exc
    minor = (major * Decimal("100")).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(minor)


def from_minor_units(amount_minor) -> Decimal:
    try:
        minor = int(amount_minor)
    except (ValueError, TypeError) as exc:
        raise ValueError("amount_minor must be an integer") from exc
    return (Decimal(minor) / Decimal("100")).quantize(Decimal("0.01"))


# ============================================================
# HTTP
# ============================================================

def _safe_preview(text: str, limit: int = 500) -> str:
    text = (text or "").strip()
    if len(text) <= limit:
        return text
    return text[:limit] + "...(truncated)"


def _decode_json(raw: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(raw or "")
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


class RazorpayGateway:
    def __init__(self, config: GatewayConfig):
        self.config = config

    def _auth_header(self) -> str:
        token = f"{self.config.key_id}:{self.config.key_secret}".encode("utf-8")
        return "Basic " + base64.b64encode(token).decode("ascii")

    def _request_json(self, method: str, path: str, *, body: dict | None = None) -> dict[str, Any]:
        if not self.config.is_configured:
            raise PaymentGatewayError("Payment gateway credentials are not configured.")

        url = f"{self.config.base_url}{path}"
        data = None
        if body is not None:
            data = json.dumps(body, ensure_ascii=False).encode("utf-8")

        req = Request(
            url,
            data=data,
            headers={
                "Authorization": self._auth_header(),
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            method=method,
        )

        try:
            with urlopen(req, timeout=self.config.timeout) as resp:
                raw = resp.read().decode("utf-8", errors="replace")
        except HTTPError as exc:
            raw = exc.read().decode("utf-8", errors="replace") if exc.fp else ""
            parsed = _decode_json(raw) or {}
            error = parsed.get("error") or {}
            description = error.get("description") if isinstance(error, dict) else None
            logger.warning(
                "Gateway rejected request",
                extra={"path": path, "status_code": exc.code, "body": _safe_preview(raw)},
            )
            raise PaymentGatewayError(
                f"Gateway HTTPError: {exc.code} {description or _safe_preview(raw) or exc.reason}"
            ) from exc
        except URLError as exc:
            logger.warning("Gateway unreachable", extra={"path": path, "reason": str(exc.reason)})
            raise PaymentGatewayError(f"Gateway URLError: {exc.reason}") from exc
        except OSError as exc:
            logger.warning("Gateway request failed", extra={"path": path, "error": str(exc)})
            raise PaymentGatewayError(f"Gateway request failed: {exc}") from exc

        parsed = _decode_json(raw)
        if parsed is None:
            raise PaymentGatewayError(f"Gateway returned non-JSON: {_safe_preview(raw)}")
        return parsed

    # --------------------------------------------------
    # OPERATIONS
    # --------------------------------------------------

    def create_intent(self, amount_minor: int, currency: str, receipt_ref: str, notes: dict | None = None) -> str:
        """
        Create a gateway-side order; returns its id for the client checkout.
        """
        payload: dict = {
            "amount": int(amount_minor),
            "currency": (currency or self.config.currency).upper(),
            "receipt": str(receipt_ref),
            "payment_capture": 1,
        }
        if notes:
            payload["notes"] = {str(k): str(v) for k, v in notes.items()}

        parsed = self._request_json("POST", "/orders", body=payload)
        gateway_order_id = str(parsed.get("id") or "").strip()
        if not gateway_order_id:
            raise PaymentGatewayError("Gateway did not return an order id.")

        logger.info(
            "Gateway order created",
            extra={"receipt": receipt_ref, "gateway_order_id": gateway_order_id, "amount_minor": amount_minor},
        )
        return gateway_order_id

    def fetch_status(self, payment_id: str) -> str:
        parsed = self._request_json("GET", f"/payments/{quote(str(payment_id), safe='')}")
        return str(parsed.get("status") or "").strip().lower()

    def refund(self, payment_id: str, amount_minor: int, reason: str = "") -> str:
        payload: dict = {"amount": int(amount_minor)}
        if reason:
            payload["notes"] = {"reason": str(reason)[:255]}

        parsed = self._request_json(
            "POST", f"/payments/{quote(str(payment_id), safe='')}/refund", body=payload
        )
        refund_id = str(parsed.get("id") or "").strip()
        if not refund_id:
            raise PaymentGatewayError("Gateway did not return a refund id.")

        logger.info(
            "Gateway refund requested",
            extra={"payment_id": payment_id, "refund_id": refund_id, "amount_minor": amount_minor},
        )
        return refund_id


@lru_cache(maxsize=1)
def get_payment_gateway() -> RazorpayGateway:
    return RazorpayGateway(get_gateway_config())
