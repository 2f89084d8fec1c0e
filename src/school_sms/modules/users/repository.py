"""
User Repository

Credential store for users and their teacher/student profiles.

Methods flush but never commit; the calling service owns the unit of work
and commits once per operation. Expiry checks run in the database
(`expires_at > now()`) so a stale application clock cannot revive a token.
"""

import logging
from typing import Any

from fastapi import Depends
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from school_sms.core.database import get_db
from school_sms.modules.users.models import Student, Teacher, User, UserRole

logger = logging.getLogger(__name__)


class UserRepository:
    """Repository for user database operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def create(
        self,
        *,
        name: str,
        email: str,
        password_hash: str,
        role: UserRole,
        verification_token: str | None = None,
        verification_token_expires_at=None,
        registration_attempts: int = 0,
        email_verified: bool = False,
    ) -> User:
        """
        Create a new user record.

        Args:
            name: Display name
            email: Email address (unique, lower-cased by the caller)
            password_hash: bcrypt hash
            role: User's role
            verification_token: Email verification / setup token
            verification_token_expires_at: When the token stops working
            registration_attempts: Initial attempt counter
            email_verified: Whether the email starts out verified

        Returns:
            Created User instance
        """
        user = User(
            name=name,
            email=email,
            password_hash=password_hash,
            role=role,
            verification_token=verification_token,
            verification_token_expires_at=verification_token_expires_at,
            registration_attempts=registration_attempts,
            email_verified=email_verified,
            otp_attempts=0,
        )

        self.db.add(user)
        await self.db.flush()
        await self.db.refresh(user)

        logger.info(f"Created user: {user.id} - {user.email} ({user.role.value})")
        return user

    async def update(self, user: User, **fields: Any) -> User:
        """Set the given columns on a user and flush."""
        for key, value in fields.items():
            setattr(user, key, value)
        await self.db.flush()
        return user

    async def get_by_id(self, user_id: str) -> User | None:
        result = await self.db.execute(select(User).where(User.id == str(user_id)))
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str, *, for_update: bool = False) -> User | None:
        """
        Get a user by email address.

        Args:
            email: Email address
            for_update: Lock the row until the current transaction ends

        Returns:
            User instance or None if not found
        """
        query = select(User).where(User.email == email)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_by_verification_token(self, token: str) -> User | None:
        result = await self.db.execute(
            select(User).where(
                User.verification_token == token,
                User.verification_token_expires_at > func.now(),
            )
        )
        return result.scalar_one_or_none()

    async def get_by_email_and_otp(self, email: str, otp: str) -> User | None:
        result = await self.db.execute(
            select(User).where(
                User.email == email,
                User.otp == otp,
                User.otp_expires_at > func.now(),
            )
        )
        return result.scalar_one_or_none()

    async def get_by_email_and_reset_token(self, email: str, token: str) -> User | None:
        result = await self.db.execute(
            select(User).where(
                User.email == email,
                User.password_reset_token == token,
                User.password_reset_token_expires_at > func.now(),
            )
        )
        return result.scalar_one_or_none()

    async def increment_otp_attempts(self, user_id: str) -> int:
        """Atomically increment otp_attempts and return the new count."""
        result = await self.db.execute(
            update(User)
            .where(User.id == str(user_id))
            .values(otp_attempts=User.otp_attempts + 1)
            .returning(User.otp_attempts)
        )
        return result.scalar_one()

    async def get_session_version(self, user_id: str) -> str | None:
        result = await self.db.execute(
            select(User.session_version).where(User.id == str(user_id))
        )
        return result.scalar_one_or_none()

    async def purge_expired_credentials(self) -> int:
        """
        Clear OTP and reset-token fields whose expiry has passed.

        Runs in its own session, so loaded objects are not synchronized.

        Returns:
            Number of users touched
        """
        now = func.now()
        otp_result = await self.db.execute(
            update(User)
            .where(User.otp_expires_at.is_not(None), User.otp_expires_at <= now)
            .values(otp=None, otp_expires_at=None)
            .execution_options(synchronize_session=False)
        )
        reset_result = await self.db.execute(
            update(User)
            .where(
                User.password_reset_token_expires_at.is_not(None),
                User.password_reset_token_expires_at <= now,
            )
            .values(password_reset_token=None, password_reset_token_expires_at=None)
            .execution_options(synchronize_session=False)
        )
        return (otp_result.rowcount or 0) + (reset_result.rowcount or 0)

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    async def get_teacher_profile(self, user_id: str) -> Teacher | None:
        result = await self.db.execute(select(Teacher).where(Teacher.user_id == str(user_id)))
        return result.scalar_one_or_none()

    async def create_teacher_profile(self, user_id: str, *, is_active: bool) -> Teacher:
        teacher = Teacher(user_id=str(user_id), is_active=is_active)
        self.db.add(teacher)
        await self.db.flush()
        logger.info(f"Created teacher profile for user {user_id} (active={is_active})")
        return teacher

    async def delete_teacher_profile(self, user_id: str) -> bool:
        """Delete a teacher profile. Returns True if a row was removed."""
        result = await self.db.execute(delete(Teacher).where(Teacher.user_id == str(user_id)))
        return (result.rowcount or 0) > 0

    async def activate_teacher_profile(self, user_id: str) -> bool:
        """Mark a teacher profile active. Returns False if there is no profile."""
        result = await self.db.execute(
            update(Teacher).where(Teacher.user_id == str(user_id)).values(is_active=True)
        )
        return (result.rowcount or 0) > 0

    async def create_student_profile(
        self,
        user_id: str,
        *,
        roll_number: str | None,
        class_id: str | None,
        section_id: str | None,
    ) -> Student:
        student = Student(
            user_id=str(user_id),
            roll_number=roll_number,
            class_id=class_id,
            section_id=section_id,
        )
        self.db.add(student)
        await self.db.flush()
        return student

    async def list_pending_teachers(self) -> list[User]:
        """Users with a teacher profile that is not yet active, oldest first."""
        result = await self.db.execute(
            select(User)
            .join(Teacher, Teacher.user_id == User.id)
            .where(Teacher.is_active.is_(False))
            .order_by(User.created_at)
        )
        return list(result.scalars().all())


async def get_user_repository(db: AsyncSession = Depends(get_db)) -> UserRepository:
    """FastAPI dependency providing the credential store for a request."""
    return UserRepository(db)
