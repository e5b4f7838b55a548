# payments/services/exceptions.py

"""
PAYMENT DOMAIN ERRORS

Same shape as orders.services.exceptions.OrderError:
a stable `code` plus the `http_status` the API answers with.
"""

from rest_framework import status


class PaymentError(Exception):
    code = "PAYMENT_ERROR"
    http_status = status.HTTP_400_BAD_REQUEST
    default_message = "Payment could not be processed."

    def __init__(self, message: str = "", *, code: str | None = None, http_status: int | None = None):
        super().__init__(message or self.default_message)
        if code:
            self.code = code
        if http_status:
            self.http_status = http_status

    @property
    def message(self) -> str:
        return str(self)


class PaymentGatewayError(PaymentError):
    """
    Outbound gateway call failed (network, HTTP error, unreadable body,
    missing credentials). Safe for the client to retry.
    """

    code = "PAYMENT_GATEWAY_UNAVAILABLE"
    http_status = status.HTTP_502_BAD_GATEWAY
    default_message = "Payment gateway is unavailable. Please try again."
    retryable = True


class PaymentSignatureError(PaymentError):
    code = "INVALID_SIGNATURE"
    default_message = "Payment signature verification failed."


class WebhookSignatureError(PaymentError):
    code = "INVALID_WEBHOOK_SIGNATURE"
    default_message = "Webhook signature verification failed."
