"""
Service Errors

Every error raised by the service layer carries a stable error code and the
HTTP status it maps to. Routers turn them into HTTPExceptions with
to_http_exception(); the message never contains token values.
"""

from fastapi import HTTPException


class ServiceError(Exception):
    """Base exception for service errors."""

    def __init__(self, message: str, error_code: str, status_code: int = 400):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        super().__init__(message)


class InvalidCredentialsError(ServiceError):
    """Raised for an unknown email or a wrong password."""

    def __init__(self):
        super().__init__(
            message="Invalid email or password.",
            error_code="INVALID_CREDENTIALS",
            status_code=401,
        )


class UnauthenticatedError(ServiceError):
    """Raised when a request carries no usable access token."""

    def __init__(self, message: str = "Authentication required."):
        super().__init__(
            message=message,
            error_code="UNAUTHENTICATED",
            status_code=401,
        )


class SessionSupersededError(ServiceError):
    """Raised when the token belongs to a session replaced by a newer login."""

    def __init__(self):
        super().__init__(
            message="Your session has ended because you logged in from another device.",
            error_code="SESSION_SUPERSEDED",
            status_code=401,
        )


class InvalidTokenError(ServiceError):
    """Raised by the token codec for bad signatures, expiry or malformed tokens."""

    def __init__(self, message: str = "Invalid or expired token."):
        super().__init__(
            message=message,
            error_code="INVALID_TOKEN",
            status_code=401,
        )


class InvalidOrExpiredTokenError(ServiceError):
    """Raised when a verification, setup or reset token does not resolve."""

    def __init__(self, message: str = "This link is invalid or has expired."):
        super().__init__(
            message=message,
            error_code="INVALID_OR_EXPIRED_TOKEN",
            status_code=400,
        )


class InvalidOrExpiredOtpError(ServiceError):
    """Raised when an OTP does not match or has expired."""

    def __init__(self):
        super().__init__(
            message="Invalid or expired OTP.",
            error_code="INVALID_OR_EXPIRED_OTP",
            status_code=400,
        )


class TooManyAttemptsError(ServiceError):
    """Raised when an attempt counter has reached its cap."""

    def __init__(self, message: str = "Too many attempts."):
        super().__init__(
            message=message,
            error_code="TOO_MANY_ATTEMPTS",
            status_code=429,
        )


class AlreadyRegisteredError(ServiceError):
    """Raised when a verified account already owns the email."""

    def __init__(self):
        super().__init__(
            message="An account with this email is already registered. Please log in.",
            error_code="ALREADY_REGISTERED",
            status_code=409,
        )


class EmailExistsError(ServiceError):
    """Raised when inviting an email that already has an account."""

    def __init__(self, email: str):
        super().__init__(
            message=f"A user with email {email} already exists.",
            error_code="EMAIL_EXISTS",
            status_code=409,
        )


class EmailNotVerifiedError(ServiceError):
    """Raised when logging in before the email address is verified."""

    def __init__(self):
        super().__init__(
            message="Please verify your email before logging in.",
            error_code="EMAIL_NOT_VERIFIED",
            status_code=403,
        )


class PendingApprovalError(ServiceError):
    """Raised when a teacher logs in before an admin approved the account."""

    def __init__(self):
        super().__init__(
            message="Your account is waiting for admin approval.",
            error_code="PENDING_APPROVAL",
            status_code=403,
        )


class RateLimitedError(ServiceError):
    """Raised when a request must wait before it can be repeated."""

    def __init__(self, retry_after_seconds: int, message: str | None = None):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            message=message or f"Please wait {retry_after_seconds} seconds before trying again.",
            error_code="RATE_LIMITED",
            status_code=429,
        )


class NotFoundError(ServiceError):
    """Raised when a record does not exist."""

    def __init__(self, message: str = "Not found."):
        super().__init__(
            message=message,
            error_code="NOT_FOUND",
            status_code=404,
        )


class AccessDeniedError(ServiceError):
    """Raised when the caller may not act on a resource."""

    def __init__(self, message: str = "You do not have permission to perform this action."):
        super().__init__(
            message=message,
            error_code="ACCESS_DENIED",
            status_code=403,
        )


class StorageUnavailableError(ServiceError):
    """Raised when the blob store cannot be reached or refuses an operation."""

    def __init__(self, message: str = "File storage is currently unavailable."):
        super().__init__(
            message=message,
            error_code="STORAGE_UNAVAILABLE",
            status_code=503,
        )


class InternalError(ServiceError):
    """Raised when a primary state change could not be completed."""

    def __init__(self, message: str = "An unexpected error occurred. Please try again later."):
        super().__init__(
            message=message,
            error_code="INTERNAL_ERROR",
            status_code=500,
        )


def to_http_exception(e: ServiceError) -> HTTPException:
    """Convert a service error to an HTTPException."""
    detail: dict[str, object] = {
        "error": e.error_code,
        "message": e.message,
    }
    headers = None

    if isinstance(e, RateLimitedError):
        detail["retry_after_seconds"] = e.retry_after_seconds
        headers = {"Retry-After": str(e.retry_after_seconds)}
    elif e.status_code == 401:
        headers = {"WWW-Authenticate": "Bearer"}

    return HTTPException(status_code=e.status_code, detail=detail, headers=headers)


__all__ = [
    "ServiceError",
    "InvalidCredentialsError",
    "UnauthenticatedError",
    "SessionSupersededError",
    "InvalidTokenError",
    "InvalidOrExpiredTokenError",
    "InvalidOrExpiredOtpError",
    "TooManyAttemptsError",
    "AlreadyRegisteredError",
    "EmailExistsError",
    "EmailNotVerifiedError",
    "PendingApprovalError",
    "RateLimitedError",
    "NotFoundError",
    "AccessDeniedError",
    "StorageUnavailableError",
    "InternalError",
    "to_http_exception",
]
