# orders/services/exceptions.py

"""
ORDER DOMAIN ERRORS

Every error carries:
- code: stable machine-readable string (API contract)
- http_status: status the API layer answers with

Views translate these through orders.views.errors.error_response().
"""

from rest_framework import status


class OrderError(Exception):
    code = "ORDER_ERROR"
    http_status = status.HTTP_400_BAD_REQUEST
    default_message = "Order request could not be processed."

    def __init__(self, message: str = "", *, code: str | None = None, http_status: int | None = None):
        super().__init__(message or self.default_message)
        if code:
            self.code = code
        if http_status:
            self.http_status = http_status

    @property
    def message(self) -> str:
        return str(self)


# ------------------------------------------------------------
# Order creation preconditions
# ------------------------------------------------------------

class EmptyCartError(OrderError):
    code = "CART_EMPTY"
    default_message = "Cart is empty."


class AddressNotFoundError(OrderError):
    code = "ADDRESS_NOT_FOUND"
    http_status = status.HTTP_404_NOT_FOUND
    default_message = "Shipping address not found."


class CodUnavailableError(OrderError):
    code = "COD_UNAVAILABLE"
    default_message = "Cash on delivery is not available for this address."


class ProductUnavailableError(OrderError):
    code = "PRODUCT_UNAVAILABLE"
    http_status = status.HTTP_409_CONFLICT
    default_message = "A product in the cart is no longer available."

    def __init__(self, message: str = "", *, product_id=None):
        super().__init__(message)
        self.product_id = product_id


class InsufficientStockError(OrderError):
    code = "INSUFFICIENT_STOCK"
    http_status = status.HTTP_409_CONFLICT
    default_message = "Insufficient stock."

    def __init__(self, message: str = "", *, product_id=None, requested: int = 0, available: int = 0):
        super().__init__(message)
        self.product_id = product_id
        self.requested = requested
        self.available = available


class InvalidCouponError(OrderError):
    code = "INVALID_COUPON"
    default_message = "Coupon is invalid or expired."


# ------------------------------------------------------------
# Existing orders
# ------------------------------------------------------------

class OrderNotFoundError(OrderError):
    code = "ORDER_NOT_FOUND"
    http_status = status.HTTP_404_NOT_FOUND
    default_message = "Order not found."


class InvalidOrderTransitionError(OrderError):
    code = "INVALID_STATUS_TRANSITION"
    http_status = status.HTTP_409_CONFLICT
    default_message = "Order status transition is not allowed."


class TransactionIdConflictError(OrderError):
    code = "TRANSACTION_ID_CONFLICT"
    http_status = status.HTTP_409_CONFLICT
    default_message = "Order already carries a different gateway transaction id."


class OrderDeletionError(OrderError):
    code = "ORDER_NOT_DELETABLE"
    http_status = status.HTTP_409_CONFLICT
    default_message = "Only cancelled or failed orders without a completed payment can be deleted."


class RefundNotAllowedError(OrderError):
    code = "REFUND_NOT_ALLOWED"
    http_status = status.HTTP_409_CONFLICT
    default_message = "Order is not eligible for a refund."
