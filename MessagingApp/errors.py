# MessagingApp/errors.py
"""
Error taxonomy shared by the REST views and the WebSocket consumer.

Every error is a DRF ``APIException`` so views can simply raise it; the
consumer turns the same exceptions into named error events.
"""
from __future__ import annotations

import logging

from rest_framework import exceptions, status
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)


class MessagingError(exceptions.APIException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Messaging error."
    default_code = "INTERNAL"

    @property
    def code(self) -> str:
        return self.default_code

    @property
    def message(self) -> str:
        return str(self.detail)


class Unauthenticated(MessagingError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Authentication credentials are missing or invalid."
    default_code = "UNAUTHENTICATED"


class Forbidden(MessagingError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "You are not allowed to perform this action."
    default_code = "FORBIDDEN"


class NotFound(MessagingError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found."
    default_code = "NOT_FOUND"


class InvalidArgument(MessagingError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid request."
    default_code = "INVALID_ARGUMENT"


class Conflict(MessagingError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Conflicting concurrent update."
    default_code = "CONFLICT"


class Internal(MessagingError):
    default_detail = "Internal error."
    default_code = "INTERNAL"


# DRF's own exceptions mapped onto the taxonomy codes
_DRF_CODES = {
    exceptions.NotAuthenticated: Unauthenticated.default_code,
    exceptions.AuthenticationFailed: Unauthenticated.default_code,
    exceptions.PermissionDenied: Forbidden.default_code,
    exceptions.NotFound: NotFound.default_code,
    exceptions.ValidationError: InvalidArgument.default_code,
    exceptions.ParseError: InvalidArgument.default_code,
}


def flatten_detail(detail) -> str:
    if isinstance(detail, dict):
        parts = []
        for field, value in detail.items():
            text = flatten_detail(value)
            parts.append(text if field == "non_field_errors" else f"{field}: {text}")
        return "; ".join(parts)
    if isinstance(detail, (list, tuple)):
        return " ".join(flatten_detail(v) for v in detail)
    return str(detail)


def error_code_for(exc: Exception) -> str:
    if isinstance(exc, MessagingError):
        return exc.code
    for exc_type, code in _DRF_CODES.items():
        if isinstance(exc, exc_type):
            return code
    return Internal.default_code


def exception_handler(exc, context):
    """
    DRF EXCEPTION_HANDLER: renders every error as
    ``{"success": false, "message": ..., "code": ...}``.
    """
    response = drf_exception_handler(exc, context)
    if response is None:
        return None

    if isinstance(exc, MessagingError):
        message = exc.message
    else:
        message = flatten_detail(response.data.get("detail", response.data)) if isinstance(response.data, dict) else flatten_detail(response.data)

    if response.status_code >= 500:
        logger.error("request failed: %s", message)

    response.data = {"success": False, "message": message, "code": error_code_for(exc)}
    return response
