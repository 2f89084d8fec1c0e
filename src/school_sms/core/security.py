"""
Security Utilities

Password hashing, random credential generation and the JWT codec.

Access and refresh tokens are signed with different secrets so a leaked
refresh secret cannot forge access tokens (and vice versa). Every decode
failure, whether a bad signature, expiry or malformed input, surfaces as the
same InvalidTokenError.
"""

import secrets
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

import bcrypt
import jwt

from school_sms.core.config import settings
from school_sms.core.exceptions import InvalidTokenError

# bcrypt only looks at the first 72 bytes of the password
BCRYPT_MAX_BYTES = 72

TOKEN_BYTES = 32  # 256 bits, hex encoded
SESSION_VERSION_BYTES = 16
OTP_MIN = 100000
OTP_MAX = 999999


class TokenKind(str, Enum):
    """JWT token kinds."""

    ACCESS = "access"
    REFRESH = "refresh"


def _password_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    """Hash a password with bcrypt using the configured cost factor."""
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return bcrypt.hashpw(_password_bytes(password), salt).decode("utf-8")


def verify_password(password: str, password_hash: str | None) -> bool:
    """Check a password against a stored bcrypt hash."""
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(_password_bytes(password), password_hash.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash
        return False


def generate_token() -> str:
    """Generate a 256-bit random token, hex encoded."""
    return secrets.token_hex(TOKEN_BYTES)


def generate_otp() -> str:
    """Generate a 6-digit numeric OTP, uniform over 100000-999999."""
    return str(OTP_MIN + secrets.randbelow(OTP_MAX - OTP_MIN + 1))


def generate_session_version() -> str:
    """Generate an opaque session version."""
    return secrets.token_hex(SESSION_VERSION_BYTES)


def _secret_for(kind: TokenKind) -> str:
    if kind == TokenKind.ACCESS:
        return settings.jwt_secret
    return settings.jwt_refresh_secret


def _encode(claims: dict[str, Any], kind: TokenKind, expires_delta: timedelta) -> str:
    now = datetime.now(UTC)
    payload = {
        **claims,
        "type": kind.value,
        "iat": now,
        "exp": now + expires_delta,
    }
    return jwt.encode(payload, _secret_for(kind), algorithm=settings.jwt_algorithm)


def create_access_token(
    user_id: str,
    email: str,
    role: str,
    session_version: str | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """
    Create a short-lived access token.

    Args:
        user_id: User ID (becomes the `sub` claim)
        email: User's email
        role: User's role
        session_version: Session version captured at login, if any
        expires_delta: Override the configured lifetime

    Returns:
        Encoded JWT
    """
    claims: dict[str, Any] = {"sub": str(user_id), "email": email, "role": role}
    if session_version:
        claims["sv"] = session_version

    return _encode(
        claims,
        TokenKind.ACCESS,
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes),
    )


def create_refresh_token(
    user_id: str,
    email: str,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a long-lived refresh token carrying only the user's identity."""
    return _encode(
        {"sub": str(user_id), "email": email},
        TokenKind.REFRESH,
        expires_delta or timedelta(days=settings.refresh_token_expire_days),
    )


def decode_token(token: str, kind: TokenKind = TokenKind.ACCESS) -> dict[str, Any]:
    """
    Verify and decode a token of the given kind.

    Raises:
        InvalidTokenError: If the token is malformed, expired, signed with the
            wrong secret or of the wrong kind
    """
    try:
        payload = jwt.decode(
            token,
            _secret_for(kind),
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub", "exp", "type"]},
        )
    except jwt.PyJWTError as e:
        raise InvalidTokenError() from e

    if payload.get("type") != kind.value:
        raise InvalidTokenError()

    return payload
