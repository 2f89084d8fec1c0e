"""
Auth Service Layer

Business logic for accounts and sessions. The service is built from three
collaborators so each can be swapped for a fake in tests:
- a credential store (UserRepository)
- a notifier that sends account emails (ResendNotifier)
- an event publisher for live admin notifications (EventBus)

This module implements:
1. Registration:
   - New emails get an unverified account and a 24-hour verification token
   - Unverified accounts may re-register (to fix a typo) up to 3 times
   - Teachers get an inactive profile; their verification email waits for
     admin approval
2. Verification and setup:
   - verify_email confirms a self-registered address
   - complete_setup lets invited users choose their password
3. Teacher approval:
   - approve activates the profile and (re)sends verification
   - reject deletes the profile so the email can register again
4. Login and refresh:
   - Each login rotates the user's session version, ending older sessions
5. Password reset:
   - 6-digit OTP, one request per 60 seconds, 10-minute lifetime
   - 5 wrong codes lock the OTP until a new one is requested
   - A correct code yields a 15-minute reset token

Transactions:
- Each public method is one unit of work and commits once.
- Rows that are checked and then changed (registration, OTP) are read with
  SELECT ... FOR UPDATE so concurrent requests serialize on the user row.
- Emails and events go out after the commit; their failures are logged only.

Security considerations:
- Unknown emails and wrong passwords produce the same error
- Password reset requests do not reveal whether an account exists
- bcrypt runs in a worker thread so it does not block the event loop
- No token, OTP or password is ever logged
"""

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Protocol

from school_sms.core.config import settings
from school_sms.core.exceptions import (
    AlreadyRegisteredError,
    EmailExistsError,
    EmailNotVerifiedError,
    InternalError,
    InvalidCredentialsError,
    InvalidOrExpiredOtpError,
    InvalidOrExpiredTokenError,
    NotFoundError,
    PendingApprovalError,
    RateLimitedError,
    SessionSupersededError,
    TooManyAttemptsError,
)
from school_sms.core.security import (
    TokenKind,
    decode_token,
    generate_otp,
    generate_session_version,
    generate_token,
    hash_password,
    verify_password,
)
from school_sms.modules.users.models import Student, Teacher, User, UserRole

logger = logging.getLogger(__name__)

# Constants
VERIFICATION_TOKEN_TTL = timedelta(hours=24)
SETUP_TOKEN_TTL = timedelta(days=7)
OTP_TTL = timedelta(minutes=10)
OTP_COOLDOWN = timedelta(seconds=60)
RESET_TOKEN_TTL = timedelta(minutes=15)
MAX_REGISTRATION_ATTEMPTS = 3
MAX_OTP_ATTEMPTS = 5

PASSWORD_RESET_REQUESTED_MESSAGE = (
    "If an account exists for this email, a password reset code has been sent."
)


class CredentialStore(Protocol):
    """Persistence operations the auth service relies on."""

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...

    async def create(self, **fields) -> User: ...

    async def update(self, user: User, **fields) -> User: ...

    async def get_by_id(self, user_id: str) -> User | None: ...

    async def get_by_email(self, email: str, *, for_update: bool = False) -> User | None: ...

    async def get_by_verification_token(self, token: str) -> User | None: ...

    async def get_by_email_and_otp(self, email: str, otp: str) -> User | None: ...

    async def get_by_email_and_reset_token(self, email: str, token: str) -> User | None: ...

    async def increment_otp_attempts(self, user_id: str) -> int: ...

    async def get_teacher_profile(self, user_id: str) -> Teacher | None: ...

    async def create_teacher_profile(self, user_id: str, *, is_active: bool) -> Teacher: ...

    async def delete_teacher_profile(self, user_id: str) -> bool: ...

    async def activate_teacher_profile(self, user_id: str) -> bool: ...

    async def create_student_profile(
        self,
        user_id: str,
        *,
        roll_number: str | None,
        class_id: str | None,
        section_id: str | None,
    ) -> Student: ...

    async def list_pending_teachers(self) -> list[User]: ...


class Notifier(Protocol):
    """Account emails. Every method returns False instead of raising on failure."""

    async def send_verification_email(self, to_email: str, name: str, token: str) -> bool: ...

    async def send_setup_email(self, to_email: str, name: str, role: str, token: str) -> bool: ...

    async def send_teacher_approved_email(self, to_email: str, name: str) -> bool: ...

    async def send_otp_email(self, to_email: str, otp: str) -> bool: ...

    async def send_password_reset_confirmation(self, to_email: str) -> bool: ...


class EventPublisher(Protocol):
    async def publish_user_signup(self, user_id: str, name: str, email: str, role: str) -> None: ...


@dataclass
class LoginResult:
    """
    Outcome of a successful login.

    session_version is None only when the session could not be stored and
    the lenient policy let the login through anyway.
    """

    user: User
    session_version: str | None


def _utcnow() -> datetime:
    return datetime.now(UTC)


def normalize_email(email: str) -> str:
    return email.strip().lower()


class AuthService:
    """Registration, verification, login and password reset flows."""

    def __init__(
        self,
        store: CredentialStore,
        notifier: Notifier,
        events: EventPublisher,
        *,
        clock: Callable[[], datetime] = _utcnow,
        strict_session_version: bool | None = None,
    ):
        self.store = store
        self.notifier = notifier
        self.events = events
        self.clock = clock
        self.strict_session_version = (
            settings.session_version_strict
            if strict_session_version is None
            else strict_session_version
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _best_effort(self, description: str, send: Awaitable[bool]) -> None:
        """Await a notification, logging instead of raising on failure."""
        try:
            sent = await send
            if not sent:
                logger.error(f"Failed to send {description}")
        except Exception as e:
            logger.error(f"Exception sending {description}: {e}")

    async def _send_verification(self, user: User, token: str) -> None:
        await self._best_effort(
            f"verification email to user {user.id}",
            self.notifier.send_verification_email(user.email, user.name, token),
        )

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register(self, name: str, email: str, password: str, role: UserRole) -> User:
        """
        Register a new account, or retry registration for an unverified email.

        Args:
            name: Display name
            email: Email address
            password: Plain password
            role: Requested role

        Returns:
            The created or updated user

        Raises:
            AlreadyRegisteredError: If the email is already verified
            TooManyAttemptsError: If the email has used all registration attempts
        """
        email = normalize_email(email)
        password_hash = await asyncio.to_thread(hash_password, password)
        token = generate_token()
        expires_at = self.clock() + VERIFICATION_TOKEN_TTL

        existing = await self.store.get_by_email(email, for_update=True)

        if existing is None:
            user = await self.store.create(
                name=name,
                email=email,
                password_hash=password_hash,
                role=role,
                verification_token=token,
                verification_token_expires_at=expires_at,
                registration_attempts=1,
            )
            if role == UserRole.TEACHER:
                await self.store.create_teacher_profile(user.id, is_active=False)
            await self.store.commit()

            logger.info(f"Registered user {user.id} ({role.value})")
            await self.events.publish_user_signup(user.id, user.name, user.email, role.value)
        else:
            # Rollback expires loaded rows, so read what the logs need first
            existing_id = existing.id
            if existing.email_verified:
                await self.store.rollback()
                logger.warning(f"Registration attempt for verified account {existing_id}")
                raise AlreadyRegisteredError()

            if existing.registration_attempts >= MAX_REGISTRATION_ATTEMPTS:
                await self.store.rollback()
                logger.warning(f"Registration attempts exhausted for user {existing_id}")
                raise TooManyAttemptsError(
                    "Maximum registration attempts reached. Please contact support."
                )

            user = await self.store.update(
                existing,
                name=name,
                password_hash=password_hash,
                role=role,
                verification_token=token,
                verification_token_expires_at=expires_at,
                email_verified=False,
                email_verified_at=None,
                registration_attempts=existing.registration_attempts + 1,
            )
            # Replace any profile left over from the previous attempt
            await self.store.delete_teacher_profile(user.id)
            if role == UserRole.TEACHER:
                await self.store.create_teacher_profile(user.id, is_active=False)
            await self.store.commit()

            logger.info(
                f"Re-registered user {user.id} ({role.value}), "
                f"attempt {user.registration_attempts}/{MAX_REGISTRATION_ATTEMPTS}"
            )

        # Teachers are verified after admin approval
        if role != UserRole.TEACHER:
            await self._send_verification(user, token)

        return user

    async def verify_email(self, token: str) -> User:
        """
        Confirm an email address.

        Raises:
            InvalidOrExpiredTokenError: If the token is unknown or expired
        """
        user = await self.store.get_by_verification_token(token)
        if user is None:
            raise InvalidOrExpiredTokenError("Invalid or expired verification link.")

        await self.store.update(
            user,
            email_verified=True,
            email_verified_at=self.clock(),
            verification_token=None,
            verification_token_expires_at=None,
            registration_attempts=0,
        )
        await self.store.commit()

        logger.info(f"Email verified for user {user.id}")
        return user

    async def approve_teacher(self, user_id: str) -> User:
        """
        Activate a pending teacher.

        If the teacher has not verified their email yet, the verification
        email is sent now with the stored token (its expiry is renewed if it
        lapsed while the account waited for approval). Already verified
        teachers get an approval notice instead.

        Raises:
            NotFoundError: If no teacher profile exists for the user
        """
        user = await self.store.get_by_id(user_id)
        if user is None or user.role != UserRole.TEACHER:
            raise NotFoundError("Teacher not found.")

        if not await self.store.activate_teacher_profile(user.id):
            await self.store.rollback()
            raise NotFoundError("No pending teacher profile found.")

        fields: dict = {"registration_attempts": 0}
        resend_token = None
        if not user.email_verified and user.verification_token:
            resend_token = user.verification_token
            expires_at = user.verification_token_expires_at
            if expires_at is None or expires_at <= self.clock():
                fields["verification_token_expires_at"] = self.clock() + VERIFICATION_TOKEN_TTL

        await self.store.update(user, **fields)
        await self.store.commit()

        logger.info(f"Teacher {user.id} approved")

        if resend_token:
            await self._send_verification(user, resend_token)
        elif user.email_verified:
            await self._best_effort(
                f"approval email to teacher {user.id}",
                self.notifier.send_teacher_approved_email(user.email, user.name),
            )

        return user

    async def reject_teacher(self, user_id: str) -> None:
        """
        Reject a pending teacher by deleting the teacher profile.

        The user row is kept so the same email can register again.

        Raises:
            NotFoundError: If no teacher profile exists for the user
        """
        user = await self.store.get_by_id(user_id)
        if user is None or user.role != UserRole.TEACHER:
            raise NotFoundError("Teacher not found.")

        if not await self.store.delete_teacher_profile(user.id):
            await self.store.rollback()
            raise NotFoundError("No pending teacher profile found.")

        await self.store.commit()
        logger.info(f"Teacher {user.id} rejected")

    async def list_pending_teachers(self) -> list[User]:
        return await self.store.list_pending_teachers()

    # ------------------------------------------------------------------
    # Invitations
    # ------------------------------------------------------------------

    async def _create_invited_user(self, name: str, email: str, role: UserRole) -> tuple[User, str]:
        email = normalize_email(email)
        if await self.store.get_by_email(email) is not None:
            raise EmailExistsError(email)

        # Nobody knows this password; the user sets a real one in complete_setup
        unusable_hash = await asyncio.to_thread(hash_password, generate_token())
        token = generate_token()

        user = await self.store.create(
            name=name,
            email=email,
            password_hash=unusable_hash,
            role=role,
            verification_token=token,
            verification_token_expires_at=self.clock() + SETUP_TOKEN_TTL,
            registration_attempts=0,
        )
        return user, token

    async def invite_student(
        self,
        name: str,
        email: str,
        *,
        class_id: str | None = None,
        section_id: str | None = None,
        roll_number: str | None = None,
    ) -> User:
        """
        Create a student account with a placement and email a setup link.

        Raises:
            EmailExistsError: If the email already has an account
        """
        user, token = await self._create_invited_user(name, email, UserRole.STUDENT)
        await self.store.create_student_profile(
            user.id,
            roll_number=roll_number,
            class_id=class_id,
            section_id=section_id,
        )
        await self.store.commit()

        logger.info(f"Invited student {user.id}")
        await self._best_effort(
            f"setup email to student {user.id}",
            self.notifier.send_setup_email(user.email, user.name, UserRole.STUDENT.value, token),
        )
        return user

    async def invite_teacher(self, name: str, email: str) -> User:
        """
        Create an already-approved teacher account and email a setup link.

        Raises:
            EmailExistsError: If the email already has an account
        """
        user, token = await self._create_invited_user(name, email, UserRole.TEACHER)
        await self.store.create_teacher_profile(user.id, is_active=True)
        await self.store.commit()

        logger.info(f"Invited teacher {user.id}")
        await self._best_effort(
            f"setup email to teacher {user.id}",
            self.notifier.send_setup_email(user.email, user.name, UserRole.TEACHER.value, token),
        )
        return user

    async def complete_setup(self, token: str, new_password: str) -> User:
        """
        Set the first real password for an invited user.

        Raises:
            InvalidOrExpiredTokenError: If the setup token is unknown or expired
        """
        user = await self.store.get_by_verification_token(token)
        if user is None:
            raise InvalidOrExpiredTokenError("Invalid or expired setup link.")

        password_hash = await asyncio.to_thread(hash_password, new_password)
        await self.store.update(
            user,
            password_hash=password_hash,
            email_verified=True,
            email_verified_at=self.clock(),
            verification_token=None,
            verification_token_expires_at=None,
            registration_attempts=0,
        )
        await self.store.commit()

        logger.info(f"Account setup completed for user {user.id}")
        return user

    # ------------------------------------------------------------------
    # Login and refresh
    # ------------------------------------------------------------------

    async def login(self, email: str, password: str) -> LoginResult:
        """
        Check credentials and start a new session.

        Starting a session rotates the stored session version, which ends
        every session started before it.

        Raises:
            InvalidCredentialsError: Unknown email or wrong password
            PendingApprovalError: Teacher not yet approved
            EmailNotVerifiedError: Email not verified
            InternalError: Session could not be stored (strict policy only)
        """
        email = normalize_email(email)
        user = await self.store.get_by_email(email)

        if user is None:
            logger.warning("Login attempt for unknown email")
            raise InvalidCredentialsError()

        # Unapproved teachers have not been sent a verification email yet
        if user.role == UserRole.TEACHER:
            profile = await self.store.get_teacher_profile(user.id)
            if profile is None or not profile.is_active:
                raise PendingApprovalError()

        if not user.email_verified:
            raise EmailNotVerifiedError()

        if not await asyncio.to_thread(verify_password, password, user.password_hash):
            logger.warning(f"Invalid password for user {user.id}")
            raise InvalidCredentialsError()

        user_id = user.id
        session_version: str | None = generate_session_version()
        try:
            await self.store.update(user, session_version=session_version)
            await self.store.commit()
        except Exception as e:
            await self.store.rollback()
            if self.strict_session_version:
                logger.error(f"Could not store session for user {user_id}: {e}")
                raise InternalError("Could not start a new session. Please try again.") from e
            logger.error(f"Could not store session for user {user_id}, continuing: {e}")
            session_version = None
            # The rollback expired the row; load it again in a fresh transaction
            user = await self.store.get_by_id(user_id)
            if user is None:
                raise InternalError("Could not start a new session. Please try again.") from e

        logger.info(f"User logged in: {user_id} (role: {user.role.value})")
        return LoginResult(user=user, session_version=session_version)

    async def refresh(self, refresh_token: str) -> User:
        """
        Resolve a refresh token to its user.

        The refresh token itself is not rotated; the caller mints a new access
        token carrying the user's current session version.

        Raises:
            InvalidTokenError: Bad or expired refresh token
            NotFoundError: The user no longer exists
            SessionSupersededError: The token captured an outdated session version
        """
        claims = decode_token(refresh_token, TokenKind.REFRESH)

        user = await self.store.get_by_id(claims["sub"])
        if user is None:
            raise NotFoundError("User not found.")

        captured_version = claims.get("sv")
        if captured_version and captured_version != user.session_version:
            raise SessionSupersededError()

        return user

    async def get_profile(self, user_id: str) -> User:
        user = await self.store.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found.")
        return user

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    async def request_password_reset(self, email: str) -> str:
        """
        Issue a password reset OTP.

        Returns:
            A message that does not reveal whether the account exists

        Raises:
            RateLimitedError: If an OTP was issued less than 60 seconds ago
        """
        email = normalize_email(email)
        user = await self.store.get_by_email(email, for_update=True)

        if user is None:
            await self.store.rollback()
            return PASSWORD_RESET_REQUESTED_MESSAGE

        user_id = user.id
        now = self.clock()
        if user.otp_expires_at is not None:
            # OTPs have a fixed lifetime, so the expiry tells us when it was issued
            elapsed = now - (user.otp_expires_at - OTP_TTL)
            if elapsed < OTP_COOLDOWN:
                await self.store.rollback()
                retry_after = max(1, math.ceil((OTP_COOLDOWN - elapsed).total_seconds()))
                logger.info(f"OTP request for user {user_id} throttled ({retry_after}s)")
                raise RateLimitedError(
                    retry_after_seconds=retry_after,
                    message=f"Please wait {retry_after} seconds before requesting a new code.",
                )

        otp = generate_otp()
        await self.store.update(
            user,
            otp=otp,
            otp_expires_at=now + OTP_TTL,
            otp_attempts=0,
        )
        await self.store.commit()

        logger.info(f"Password reset OTP issued for user {user.id}")
        await self._best_effort(
            f"OTP email to user {user.id}",
            self.notifier.send_otp_email(user.email, otp),
        )
        return PASSWORD_RESET_REQUESTED_MESSAGE

    async def verify_otp(self, email: str, otp: str) -> str:
        """
        Exchange a correct OTP for a reset token.

        The user row stays locked from the attempt check to the final write,
        so one OTP can be redeemed at most once.

        Returns:
            The reset token (valid for 15 minutes)

        Raises:
            InvalidOrExpiredOtpError: Wrong, expired or missing OTP
            TooManyAttemptsError: 5 wrong codes were entered for this OTP
        """
        email = normalize_email(email)
        user = await self.store.get_by_email(email, for_update=True)

        if user is None or user.otp is None:
            await self.store.rollback()
            raise InvalidOrExpiredOtpError()

        if user.otp_attempts >= MAX_OTP_ATTEMPTS:
            await self.store.rollback()
            raise TooManyAttemptsError("Too many invalid attempts. Please request a new code.")

        match = await self.store.get_by_email_and_otp(email, otp)
        if match is None:
            attempts = await self.store.increment_otp_attempts(user.id)
            await self.store.commit()
            logger.warning(f"Invalid OTP for user {user.id} ({attempts}/{MAX_OTP_ATTEMPTS})")
            if attempts >= MAX_OTP_ATTEMPTS:
                raise TooManyAttemptsError(
                    "Too many invalid attempts. Please request a new code."
                )
            raise InvalidOrExpiredOtpError()

        reset_token = generate_token()
        await self.store.update(
            user,
            password_reset_token=reset_token,
            password_reset_token_expires_at=self.clock() + RESET_TOKEN_TTL,
            otp=None,
            otp_expires_at=None,
            otp_attempts=0,
        )
        await self.store.commit()

        logger.info(f"OTP verified for user {user.id}")
        return reset_token

    async def reset_password(self, email: str, reset_token: str, new_password: str) -> None:
        """
        Set a new password using a reset token.

        Existing sessions end because the stored session version is cleared.

        Raises:
            InvalidOrExpiredTokenError: If the email/token pair is unknown or expired
        """
        email = normalize_email(email)
        user = await self.store.get_by_email_and_reset_token(email, reset_token)
        if user is None:
            raise InvalidOrExpiredTokenError("Invalid or expired reset token.")

        password_hash = await asyncio.to_thread(hash_password, new_password)
        await self.store.update(
            user,
            password_hash=password_hash,
            password_reset_token=None,
            password_reset_token_expires_at=None,
            session_version=None,
        )
        await self.store.commit()

        logger.info(f"Password reset for user {user.id}")
        await self._best_effort(
            f"password reset confirmation to user {user.id}",
            self.notifier.send_password_reset_confirmation(user.email),
        )
