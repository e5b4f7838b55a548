# orders/views/errors.py

"""
API ERROR NORMALIZATION

Every error leaves the API as:
    {"error": {"code": "<STABLE_CODE>", "message": "<human text>"}}
"""

import logging

from rest_framework import status
from rest_framework.response import Response

logger = logging.getLogger(__name__)

INTERNAL_ERROR_MESSAGE = "An unexpected error occurred. Please try again later."


def error_response(*, code: str, message: str, http_status: int):
    """
    Canonical API error response.
    """
    return Response(
        {"error": {"code": code, "message": message}},
        status=http_status,
    )


def domain_error_response(exc):
    """
    OrderError / PaymentError -> canonical response.
    """
    return error_response(code=exc.code, message=exc.message, http_status=exc.http_status)


def internal_error_response(*, context: str, **extra):
    logger.exception("Unexpected error in %s", context, extra=extra)
    return error_response(
        code="INTERNAL_ERROR",
        message=INTERNAL_ERROR_MESSAGE,
        http_status=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
