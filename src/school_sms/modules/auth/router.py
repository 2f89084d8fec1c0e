"""
Authentication Router

Endpoints:
- POST /auth/register - Self-registration (student or teacher)
- GET  /auth/verify-email - Confirm an email address
- POST /auth/login - Start a session
- POST /auth/refresh - Mint a new access token
- POST /auth/logout - Clear session cookies
- GET  /auth/me - Current user's profile
- POST /auth/forgot-password - Request a reset OTP
- POST /auth/verify-otp - Exchange an OTP for a reset token
- POST /auth/reset-password - Set a new password
- POST /auth/complete-setup - First password for invited users
- POST /auth/invite-student - Admin or teacher invites a student
- POST /auth/invite-teacher - Admin invites a teacher

Security:
- Tokens are set as httpOnly, SameSite=Strict cookies (Secure in production)
- Login is rate limited per client IP and email
- Service errors map to structured {"error", "message"} responses
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from school_sms.core.auth import (
    ACCESS_TOKEN_COOKIE,
    REFRESH_TOKEN_COOKIE,
    CurrentUser,
    get_current_user,
    require_roles,
)
from school_sms.core.config import settings
from school_sms.core.exceptions import ServiceError, UnauthenticatedError, to_http_exception
from school_sms.core.rate_limit import client_ip, enforce_rate_limit
from school_sms.core.security import create_access_token, create_refresh_token
from school_sms.modules.auth.dependencies import get_auth_service
from school_sms.modules.auth.schemas import (
    CompleteSetupRequest,
    ForgotPasswordRequest,
    InviteStudentRequest,
    InviteTeacherRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    RegisterResponse,
    ResetPasswordRequest,
    TokenResponse,
    UserResponse,
    VerifyOtpRequest,
    VerifyOtpResponse,
)
from school_sms.modules.auth.service import AuthService
from school_sms.modules.users.models import UserRole

logger = logging.getLogger(__name__)

router = APIRouter()


def _internal_error(action: str, e: Exception) -> HTTPException:
    logger.exception(f"Unexpected error {action}: {e}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred. Please try again later.",
        },
    )


def _set_cookie(response: Response, key: str, value: str, max_age: int) -> None:
    response.set_cookie(
        key=key,
        value=value,
        max_age=max_age,
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
        path="/",
    )


def set_access_cookie(response: Response, token: str) -> None:
    _set_cookie(response, ACCESS_TOKEN_COOKIE, token, settings.access_token_expire_minutes * 60)


def set_refresh_cookie(response: Response, token: str) -> None:
    _set_cookie(
        response, REFRESH_TOKEN_COOKIE, token, settings.refresh_token_expire_days * 24 * 60 * 60
    )


# ============================================
# Registration
# ============================================


@router.post(
    "/register",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register",
)
async def register(
    data: RegisterRequest,
    service: AuthService = Depends(get_auth_service),
) -> RegisterResponse:
    """
    Register a student or teacher account.

    Students receive a verification email right away. Teachers wait for an
    administrator to approve them before the verification email is sent.

    Raises:
        HTTPException 403: Admin accounts cannot self-register
        HTTPException 409: Email already registered and verified
        HTTPException 429: Registration attempts exhausted
    """
    if data.role == UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": "ACCESS_DENIED",
                "message": "Administrator accounts cannot be self-registered.",
            },
        )

    try:
        user = await service.register(data.name, data.email, data.password, data.role)
    except ServiceError as e:
        raise to_http_exception(e) from e
    except Exception as e:
        raise _internal_error("during registration", e) from e

    requires_approval = data.role == UserRole.TEACHER
    message = (
        "Registration received. You will get a verification email once an administrator "
        "approves your account."
        if requires_approval
        else "Registration successful. Please check your email to verify your account."
    )
    return RegisterResponse(
        message=message,
        user=UserResponse.model_validate(user),
        requires_approval=requires_approval,
    )


@router.get("/verify-email", response_model=MessageResponse, summary="Verify Email")
async def verify_email(
    token: str = Query(..., min_length=1, max_length=128),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    try:
        await service.verify_email(token)
    except ServiceError as e:
        raise to_http_exception(e) from e
    except Exception as e:
        raise _internal_error("verifying email", e) from e

    return MessageResponse(message="Email verified successfully. You can now log in.")


@router.post("/complete-setup", response_model=MessageResponse, summary="Complete Account Setup")
async def complete_setup(
    data: CompleteSetupRequest,
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    try:
        await service.complete_setup(data.token, data.password)
    except ServiceError as e:
        raise to_http_exception(e) from e
    except Exception as e:
        raise _internal_error("completing setup", e) from e

    return MessageResponse(message="Account setup complete. You can now log in.")


# ============================================
# Sessions
# ============================================


@router.post("/login", response_model=LoginResponse, summary="Log In")
async def login(
    credentials: LoginRequest,
    request: Request,
    response: Response,
    service: AuthService = Depends(get_auth_service),
) -> LoginResponse:
    """
    Authenticate and start a new session.

    A successful login ends every earlier session of the same user.

    Raises:
        HTTPException 401: Invalid credentials
        HTTPException 403: Email not verified, or teacher pending approval
        HTTPException 429: Too many login attempts
    """
    try:
        await enforce_rate_limit(
            f"login:{client_ip(request)}:{credentials.email.lower()}",
            settings.login_rate_limit,
            settings.login_rate_window_seconds,
        )
        result = await service.login(credentials.email, credentials.password)
    except ServiceError as e:
        raise to_http_exception(e) from e
    except Exception as e:
        raise _internal_error("during login", e) from e

    user = result.user
    access_token = create_access_token(
        user_id=user.id,
        email=user.email,
        role=user.role.value,
        session_version=result.session_version,
    )
    refresh_token = create_refresh_token(user_id=user.id, email=user.email)

    set_access_cookie(response, access_token)
    set_refresh_cookie(response, refresh_token)

    return LoginResponse(
        access_token=access_token,
        refresh_token=refresh_token,
        user=UserResponse.model_validate(user),
    )


@router.post("/refresh", response_model=TokenResponse, summary="Refresh Access Token")
async def refresh(
    request: Request,
    response: Response,
    body: RefreshRequest | None = None,
    service: AuthService = Depends(get_auth_service),
) -> TokenResponse:
    """
    Mint a new access token from a refresh token.

    The refresh token is read from the refreshToken cookie, or from the body.
    The new access token carries the user's current session version.
    """
    token = request.cookies.get(REFRESH_TOKEN_COOKIE) or (body.refresh_token if body else None)

    try:
        if not token:
            raise UnauthenticatedError("Refresh token required.")
        user = await service.refresh(token)
    except ServiceError as e:
        raise to_http_exception(e) from e
    except Exception as e:
        raise _internal_error("refreshing token", e) from e

    access_token = create_access_token(
        user_id=user.id,
        email=user.email,
        role=user.role.value,
        session_version=user.session_version,
    )
    set_access_cookie(response, access_token)
    return TokenResponse(access_token=access_token)


@router.post("/logout", response_model=MessageResponse, summary="Log Out")
async def logout(response: Response) -> MessageResponse:
    response.delete_cookie(ACCESS_TOKEN_COOKIE, path="/")
    response.delete_cookie(REFRESH_TOKEN_COOKIE, path="/")
    return MessageResponse(message="Logged out.")


@router.get("/me", response_model=UserResponse, summary="Current User")
async def me(
    current_user: CurrentUser = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> UserResponse:
    try:
        user = await service.get_profile(current_user.id)
    except ServiceError as e:
        raise to_http_exception(e) from e

    return UserResponse.model_validate(user)


# ============================================
# Password reset
# ============================================


@router.post("/forgot-password", response_model=MessageResponse, summary="Request Password Reset")
async def forgot_password(
    data: ForgotPasswordRequest,
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """
    Email a 6-digit reset code.

    The response is the same whether or not the account exists.

    Raises:
        HTTPException 429: A code was requested less than 60 seconds ago
    """
    try:
        message = await service.request_password_reset(data.email)
    except ServiceError as e:
        raise to_http_exception(e) from e
    except Exception as e:
        raise _internal_error("requesting password reset", e) from e

    return MessageResponse(message=message)


@router.post("/verify-otp", response_model=VerifyOtpResponse, summary="Verify Reset Code")
async def verify_otp(
    data: VerifyOtpRequest,
    service: AuthService = Depends(get_auth_service),
) -> VerifyOtpResponse:
    try:
        reset_token = await service.verify_otp(data.email, data.otp)
    except ServiceError as e:
        raise to_http_exception(e) from e
    except Exception as e:
        raise _internal_error("verifying OTP", e) from e

    return VerifyOtpResponse(message="Code verified.", reset_token=reset_token)


@router.post("/reset-password", response_model=MessageResponse, summary="Reset Password")
async def reset_password(
    data: ResetPasswordRequest,
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    try:
        await service.reset_password(data.email, data.reset_token, data.new_password)
    except ServiceError as e:
        raise to_http_exception(e) from e
    except Exception as e:
        raise _internal_error("resetting password", e) from e

    return MessageResponse(message="Password reset successfully. You can now log in.")


# ============================================
# Invitations
# ============================================


@router.post(
    "/invite-student",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Invite Student",
)
async def invite_student(
    data: InviteStudentRequest,
    inviter: CurrentUser = Depends(require_roles(UserRole.ADMIN.value, UserRole.TEACHER.value)),
    service: AuthService = Depends(get_auth_service),
) -> UserResponse:
    try:
        user = await service.invite_student(
            data.name,
            data.email,
            class_id=str(data.class_id) if data.class_id else None,
            section_id=str(data.section_id) if data.section_id else None,
            roll_number=data.roll_number,
        )
    except ServiceError as e:
        raise to_http_exception(e) from e
    except Exception as e:
        raise _internal_error("inviting student", e) from e

    logger.info(f"User {inviter.id} invited student {user.id}")
    return UserResponse.model_validate(user)


@router.post(
    "/invite-teacher",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Invite Teacher",
)
async def invite_teacher(
    data: InviteTeacherRequest,
    admin: CurrentUser = Depends(require_roles(UserRole.ADMIN.value)),
    service: AuthService = Depends(get_auth_service),
) -> UserResponse:
    try:
        user = await service.invite_teacher(data.name, data.email)
    except ServiceError as e:
        raise to_http_exception(e) from e
    except Exception as e:
        raise _internal_error("inviting teacher", e) from e

    logger.info(f"Admin {admin.id} invited teacher {user.id}")
    return UserResponse.model_validate(user)
