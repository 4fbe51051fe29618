"""
Centralized error handling for dispatch/API failures.
Exception types plus a rule table so routes stay thin and new error types are easy to add.
"""
from __future__ import annotations

from typing import Callable

from fastapi import HTTPException

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class NotificationError(Exception):
    """Base for errors raised by the notification subsystem."""


class DeliveryError(NotificationError):
    """Transient channel failure (email/push provider). Retryable; stored in outbox.last_error."""


class AuthorizationError(NotificationError):
    """No identity or wrong role. Hard failure, never retried."""

    def __init__(self, message: str = "Unauthorized", status_code: int = 401):
        super().__init__(message)
        self.status_code = status_code


class InvalidInputError(NotificationError):
    """Invalid user input. Returned as 4xx, never retried or propagated further."""


class PreferenceValidationError(InvalidInputError):
    """Unknown preference field, malformed HH:MM or bad timezone."""


class NotFoundError(NotificationError):
    """Requested row does not exist (or does not belong to the caller)."""


# ---------------------------------------------------------------------------
# Constants: status codes and user-facing messages
# ---------------------------------------------------------------------------

STATUS_BAD_REQUEST = 422
STATUS_NOT_FOUND = 404
STATUS_SERVICE_UNAVAILABLE = 503  # email/push provider down or not configured
STATUS_INTERNAL_ERROR = 500

MSG_DELIVERY_UNAVAILABLE = "Notification provider unavailable: {msg}"


# ---------------------------------------------------------------------------
# Error rules: (predicate, status_code, detail_formatter)
# Add new rules here instead of scattering checks in routes.
# ---------------------------------------------------------------------------


def _is_type(*types: type[BaseException]) -> Callable[[Exception], bool]:
    return lambda exc: isinstance(exc, types)


# List of (predicate, status_code, detail). First match wins.
ERROR_RULES: list[tuple[Callable[[Exception], bool], int, Callable[[Exception], str]]] = [
    (_is_type(InvalidInputError), STATUS_BAD_REQUEST, str),
    (_is_type(NotFoundError), STATUS_NOT_FOUND, str),
    (_is_type(DeliveryError), STATUS_SERVICE_UNAVAILABLE, lambda e: MSG_DELIVERY_UNAVAILABLE.format(msg=e)),
]


def error_to_http(exc: Exception) -> HTTPException:
    """
    Map an exception from a service call into an HTTPException.
    AuthorizationError carries its own status; ERROR_RULES cover known types;
    otherwise returns 500 with the exception message.
    """
    if isinstance(exc, AuthorizationError):
        return HTTPException(status_code=exc.status_code, detail=str(exc))
    for predicate, status_code, detail in ERROR_RULES:
        if predicate(exc):
            return HTTPException(status_code=status_code, detail=detail(exc))
    return HTTPException(status_code=STATUS_INTERNAL_ERROR, detail=str(exc))
