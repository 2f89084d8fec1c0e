"""
Authentication and Authorization Module

Session guard for protected endpoints.

For every protected request:
1. The access token is read from the `accessToken` cookie, falling back to
   an `Authorization: Bearer` header for non-browser clients.
2. The token is verified with the access secret.
3. If the token carries a session version, it must equal the user's stored
   session version. A newer login elsewhere rotates the stored value, so
   older tokens stop working immediately rather than at expiry.

The stored-version lookup runs on every request.
"""

import logging
from dataclasses import dataclass

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from school_sms.core.exceptions import (
    AccessDeniedError,
    InvalidTokenError,
    ServiceError,
    SessionSupersededError,
    UnauthenticatedError,
    to_http_exception,
)
from school_sms.core.security import TokenKind, decode_token
from school_sms.modules.users.repository import UserRepository, get_user_repository

logger = logging.getLogger(__name__)

ACCESS_TOKEN_COOKIE = "accessToken"
REFRESH_TOKEN_COOKIE = "refreshToken"

# Security scheme for OpenAPI documentation
security = HTTPBearer(
    auto_error=False,
    description="JWT access token (the accessToken cookie takes precedence)",
)


@dataclass
class CurrentUser:
    """
    The authenticated caller, resolved from access token claims.

    Attributes:
        id: User ID
        email: User's email address
        role: admin, teacher or student
        session_version: Session version embedded at login, if any
    """

    id: str
    email: str
    role: str
    session_version: str | None = None

    def __str__(self) -> str:
        return f"CurrentUser(id={self.id}, email={self.email}, role={self.role})"


def extract_access_token(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None,
) -> str | None:
    """Return the access token from the cookie, or from the bearer header."""
    token = request.cookies.get(ACCESS_TOKEN_COOKIE)
    if token:
        return token
    if credentials and credentials.credentials:
        return credentials.credentials
    return None


async def authenticate(token: str | None, store: UserRepository) -> CurrentUser:
    """
    Resolve an access token to the current user.

    Raises:
        UnauthenticatedError: If the token is missing, invalid or expired
        SessionSupersededError: If a newer login replaced this session
    """
    if not token:
        raise UnauthenticatedError()

    try:
        payload = decode_token(token, TokenKind.ACCESS)
    except InvalidTokenError as e:
        raise UnauthenticatedError("Invalid or expired authentication token.") from e

    user = CurrentUser(
        id=str(payload["sub"]),
        email=payload.get("email", ""),
        role=payload.get("role", ""),
        session_version=payload.get("sv"),
    )

    if user.session_version:
        current_version = await store.get_session_version(user.id)
        if not current_version or current_version != user.session_version:
            logger.info(f"Rejected superseded session for user {user.id}")
            raise SessionSupersededError()

    return user


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    store: UserRepository = Depends(get_user_repository),
) -> CurrentUser:
    """
    FastAPI dependency that validates the caller's session.

    Usage:
        @router.get("/me")
        async def me(user: CurrentUser = Depends(get_current_user)):
            ...

    Raises:
        HTTPException 401: Missing, invalid, expired or superseded token
    """
    try:
        user = await authenticate(extract_access_token(request, credentials), store)
    except ServiceError as e:
        raise to_http_exception(e) from e

    request.state.user_id = user.id
    logger.debug(f"Authenticated {user}")
    return user


def require_roles(*roles: str):
    """
    Build a dependency that admits only the given roles.

    Usage:
        @router.post("/approve")
        async def approve(admin: CurrentUser = Depends(require_roles("admin"))):
            ...
    """
    allowed = frozenset(roles)

    async def dependency(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in allowed:
            logger.warning(
                f"Access denied: user {user.id} has role '{user.role}', "
                f"requires one of {sorted(allowed)}"
            )
            raise to_http_exception(AccessDeniedError())
        return user

    return dependency


__all__ = [
    "ACCESS_TOKEN_COOKIE",
    "REFRESH_TOKEN_COOKIE",
    "CurrentUser",
    "authenticate",
    "extract_access_token",
    "get_current_user",
    "require_roles",
]
