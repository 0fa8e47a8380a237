"""Typed exceptions for auth failures.

Remote failures are one ApiError subclass per kind so callers can handle
them exhaustively. Local refusals (cooldowns, bad input, illegal state
changes) never reach the network and derive from AuthError directly.
"""

import math
from enum import Enum


class AuthError(Exception):
    """Base class for authentication client errors."""


class ApiErrorKind(Enum):
    """Failure kinds produced by the API gateway."""

    VALIDATION = "validation"
    RATE_LIMITED = "rate_limited"
    SESSION_INVALID = "session_invalid"
    CSRF_MISMATCH = "csrf_mismatch"
    DEVICE_VERIFICATION_REQUIRED = "device_verification_required"
    REJECTED = "rejected"
    SERVER = "server"
    NETWORK = "network"


class ApiError(AuthError):
    """A request to the remote API failed."""

    kind: ApiErrorKind = ApiErrorKind.REJECTED

    def __init__(self, message: str, status: int):
        self.message = message
        self.status = status
        super().__init__(message)


class FieldValidationError(ApiError):
    """
    HTTP 422: one or more fields were rejected.

    errors maps field name to messages. Recovered locally; in-progress
    verification state is left intact.
    """

    kind = ApiErrorKind.VALIDATION

    def __init__(
        self,
        message: str = "Validation failed",
        errors: dict[str, list[str]] | None = None,
        status: int = 422,
    ):
        self.errors = errors or {}
        super().__init__(message, status)

    def first(self, field: str) -> str | None:
        """First message for field, if any."""
        messages = self.errors.get(field)
        return messages[0] if messages else None


class RateLimitedError(ApiError):
    """
    HTTP 429: too many attempts.

    The server may express the cooldown three ways (and the Retry-After
    header a fourth); available_at() resolves them with one precedence.
    """

    kind = ApiErrorKind.RATE_LIMITED

    def __init__(
        self,
        message: str = "Too many requests",
        retry_after: int | None = None,
        resend_available_at: int | None = None,
        remaining_seconds: int | None = None,
        retry_after_header: int | None = None,
        errors: dict[str, list[str]] | None = None,
    ):
        self.retry_after = retry_after
        self.resend_available_at = resend_available_at
        self.remaining_seconds = remaining_seconds
        self.retry_after_header = retry_after_header
        self.errors = errors or {}
        super().__init__(message, 429)

    def available_at(self, now: float, default_cooldown: int) -> int:
        """
        Absolute epoch second at which the action may be retried.

        Precedence: retry_after (absolute), resend_available_at (absolute),
        remaining_seconds (relative), Retry-After header (relative), then
        now + default_cooldown.
        """
        if self.retry_after:
            return int(self.retry_after)
        if self.resend_available_at:
            return int(self.resend_available_at)
        if self.remaining_seconds:
            return math.ceil(now) + int(self.remaining_seconds)
        if self.retry_after_header:
            return math.ceil(now) + int(self.retry_after_header)
        return math.ceil(now) + default_cooldown


class SessionInvalidError(ApiError):
    """HTTP 401: token missing, expired or revoked. Fatal to the session."""

    kind = ApiErrorKind.SESSION_INVALID

    def __init__(self, message: str = "Session expired. Please login again."):
        super().__init__(message, 401)


class CsrfMismatchError(ApiError):
    """HTTP 419: anti-forgery token rejected. Recover with a fresh handshake."""

    kind = ApiErrorKind.CSRF_MISMATCH

    def __init__(self, message: str = "Security token expired. Please refresh the page."):
        super().__init__(message, 419)


class DeviceVerificationRequiredError(ApiError):
    """
    The request came from a device the server does not recognise.

    Raised for any non-2xx response flagged requires_device_verification.
    """

    kind = ApiErrorKind.DEVICE_VERIFICATION_REQUIRED

    def __init__(
        self,
        message: str = "Device verification required",
        status: int = 403,
        fingerprint: str | None = None,
        user_id: int | str | None = None,
        resend_available_at: int | None = None,
    ):
        self.fingerprint = fingerprint
        self.user_id = user_id
        self.resend_available_at = resend_available_at
        super().__init__(message, status)


class RequestRejectedError(ApiError):
    """Any other 4xx response."""

    kind = ApiErrorKind.REJECTED


class ServerError(ApiError):
    """HTTP 5xx. Never retried automatically for auth flows."""

    kind = ApiErrorKind.SERVER

    def __init__(self, message: str = "Server error. Please try again later.", status: int = 500):
        super().__init__(message, status)


class NetworkError(ApiError):
    """Transport failure - no HTTP response was received."""

    kind = ApiErrorKind.NETWORK

    def __init__(self, message: str = "Network error. Please check your connection."):
        super().__init__(message, 0)


class InvalidInputError(AuthError):
    """Client-side validation failed before any request was sent."""

    def __init__(self, errors: dict[str, list[str]]):
        self.errors = errors
        fields = ", ".join(sorted(errors))
        super().__init__(f"Invalid input: {fields}")


class ResendCooldownError(AuthError):
    """A resend was attempted before the server-provided availability time."""

    def __init__(self, remaining_seconds: int):
        self.remaining_seconds = remaining_seconds
        super().__init__(f"Resend available in {remaining_seconds} seconds.")


class NoActiveSessionError(AuthError):
    """A flow step was called with no verification session in progress."""


class FlowMismatchError(AuthError):
    """A verification session or code was presented to a flow it does not belong to."""


class ConfirmationRequiredError(AuthError):
    """A logout needs the user's confirmation but no callback was configured to ask."""


class IllegalTransitionError(AuthError):
    """The step-up state machine was asked to make a transition it forbids."""

    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"Illegal auth state transition: {current.value} -> {target.value}")


class StaleResponseError(AuthError):
    """A response arrived for an attempt that has since been superseded."""
