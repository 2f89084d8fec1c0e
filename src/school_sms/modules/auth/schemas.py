"""
Authentication Schemas

Pydantic schemas for request validation and response serialization.
"""

import re
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from school_sms.modules.users.models import UserRole

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128
OTP_PATTERN = r"^\d{6}$"


def _check_password_strength(value: str) -> str:
    if not re.search(r"[A-Z]", value):
        raise ValueError("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", value):
        raise ValueError("Password must contain at least one lowercase letter")
    if not re.search(r"\d", value):
        raise ValueError("Password must contain at least one digit")
    return value


# ============================================
# Requests
# ============================================


class RegisterRequest(BaseModel):
    """Request body for POST /auth/register."""

    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)
    role: UserRole

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        value = value.strip()
        if len(value) < 2:
            raise ValueError("Name must be at least 2 characters")
        return value

    @field_validator("password")
    @classmethod
    def validate_password(cls, value: str) -> str:
        return _check_password_strength(value)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=PASSWORD_MAX_LENGTH)


class RefreshRequest(BaseModel):
    """Optional body for POST /auth/refresh; the refreshToken cookie wins."""

    refresh_token: str | None = None


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class VerifyOtpRequest(BaseModel):
    email: EmailStr
    otp: str = Field(..., pattern=OTP_PATTERN)


class ResetPasswordRequest(BaseModel):
    email: EmailStr
    reset_token: str = Field(..., min_length=1, max_length=128)
    new_password: str = Field(
        ..., min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH
    )

    @field_validator("new_password")
    @classmethod
    def validate_password(cls, value: str) -> str:
        return _check_password_strength(value)


class CompleteSetupRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=128)
    password: str = Field(..., min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)

    @field_validator("password")
    @classmethod
    def validate_password(cls, value: str) -> str:
        return _check_password_strength(value)


class InviteTeacherRequest(BaseModel):
    """Request body for POST /auth/invite-teacher (admin only)."""

    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr


class InviteStudentRequest(BaseModel):
    """Request body for POST /auth/invite-student (admin or teacher)."""

    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    class_id: UUID | None = None
    section_id: UUID | None = None
    roll_number: str | None = Field(None, max_length=50)


# ============================================
# Responses
# ============================================


class UserResponse(BaseModel):
    """Public view of a user account."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    email: str
    role: UserRole
    email_verified: bool
    created_at: datetime | None = None


class LoginResponse(BaseModel):
    """
    Login response.

    Tokens are also set as httpOnly cookies; the body copy is for clients
    that cannot use cookies.
    """

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    user: UserResponse


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class RegisterResponse(BaseModel):
    message: str
    user: UserResponse
    requires_approval: bool = False


class MessageResponse(BaseModel):
    message: str


class VerifyOtpResponse(BaseModel):
    message: str
    reset_token: str


class PendingTeacherListResponse(BaseModel):
    teachers: list[UserResponse]
    total: int
