# =============================================================================
# Chat Gateway -- Error Types
# =============================================================================

from typing import Any


class GatewayError(Exception):
    """Base exception for errors reported to the acting connection."""

    can_retry = False

    def __init__(self, message: str, can_retry: bool | None = None) -> None:
        super().__init__(message)
        self.message = message
        if can_retry is not None:
            self.can_retry = can_retry


class ValidationError(GatewayError):
    """Malformed or missing input."""


class AuthorizationError(GatewayError):
    """Acting user lacks permission (blocked, not a member, not the sender)."""


class NotFoundError(AuthorizationError):
    """Target record does not exist."""


class StoreError(GatewayError):
    """Durable store operation failed (transient)."""

    can_retry = True


class AuthenticationError(Exception):
    """Credential rejected at connection time. Never surfaced as an event."""


# Fallback messages for infrastructure errors that are not GatewayErrors
GENERIC_ERROR_MESSAGE = "An error occurred. Please try again."
_BUILTIN_ERROR_MESSAGES: tuple[tuple[type[BaseException], str], ...] = (
    (TimeoutError, "Connection timed out. Please check your internet connection."),
    (ConnectionError, "Connection refused. Please try again later."),
)


def error_payload(error: BaseException, context: str) -> dict[str, Any]:
    """Translate any exception into the ``error`` event payload."""
    if isinstance(error, GatewayError):
        return {"message": error.message, "context": context, "canRetry": error.can_retry}

    for error_type, message in _BUILTIN_ERROR_MESSAGES:
        if isinstance(error, error_type):
            return {"message": message, "context": context, "canRetry": True}

    return {"message": GENERIC_ERROR_MESSAGE, "context": context, "canRetry": True}
