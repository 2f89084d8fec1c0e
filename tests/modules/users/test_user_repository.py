"""
Tests for the credential store on a real SQLAlchemy session.

Expiry filters compare against the database clock (now()), so expiry
timestamps here are relative to the real current time.
"""

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import select

from school_sms.modules.users.models import User, UserRole
from school_sms.modules.users.repository import UserRepository

EMAIL = "sam@springfield.edu"


def _utc_now() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


@pytest.fixture
def repo(sqlite_session):
    return UserRepository(sqlite_session)


async def _create(repo: UserRepository, email: str = EMAIL, **fields) -> User:
    fields.setdefault("role", UserRole.STUDENT)
    user = await repo.create(name="Sam Kamara", email=email, password_hash="hash", **fields)
    await repo.commit()
    return user


class TestUserLookup:
    @pytest.mark.asyncio
    async def test_get_by_email(self, repo):
        user = await _create(repo)

        found = await repo.get_by_email(EMAIL)

        assert found.id == user.id
        assert found.role == UserRole.STUDENT
        assert await repo.get_by_email("nobody@springfield.edu") is None

    @pytest.mark.asyncio
    async def test_get_by_email_for_update(self, repo):
        user = await _create(repo)

        found = await repo.get_by_email(EMAIL, for_update=True)

        assert found.id == user.id

    @pytest.mark.asyncio
    async def test_get_by_id(self, repo):
        user = await _create(repo)
        assert (await repo.get_by_id(user.id)).email == EMAIL


class TestExpiryFilters:
    @pytest.mark.asyncio
    async def test_verification_token_honours_expiry(self, repo):
        await _create(
            repo,
            verification_token="live-token",
            verification_token_expires_at=_utc_now() + timedelta(hours=1),
        )
        await _create(
            repo,
            email="old@springfield.edu",
            verification_token="stale-token",
            verification_token_expires_at=_utc_now() - timedelta(hours=1),
        )

        assert (await repo.get_by_verification_token("live-token")).email == EMAIL
        assert await repo.get_by_verification_token("stale-token") is None
        assert await repo.get_by_verification_token("unknown") is None

    @pytest.mark.asyncio
    async def test_otp_needs_matching_email_code_and_expiry(self, repo):
        user = await _create(repo)
        await repo.update(user, otp="482913", otp_expires_at=_utc_now() + timedelta(minutes=10))
        await repo.commit()

        assert (await repo.get_by_email_and_otp(EMAIL, "482913")).id == user.id
        assert await repo.get_by_email_and_otp(EMAIL, "000000") is None
        assert await repo.get_by_email_and_otp("other@springfield.edu", "482913") is None

        await repo.update(user, otp_expires_at=_utc_now() - timedelta(minutes=1))
        await repo.commit()

        assert await repo.get_by_email_and_otp(EMAIL, "482913") is None

    @pytest.mark.asyncio
    async def test_reset_token_bound_to_email(self, repo):
        user = await _create(repo)
        await _create(repo, email="other@springfield.edu")
        await repo.update(
            user,
            password_reset_token="reset-token",
            password_reset_token_expires_at=_utc_now() + timedelta(minutes=15),
        )
        await repo.commit()

        assert (await repo.get_by_email_and_reset_token(EMAIL, "reset-token")).id == user.id
        assert await repo.get_by_email_and_reset_token("other@springfield.edu", "reset-token") is None


class TestOtpAttempts:
    @pytest.mark.asyncio
    async def test_increment_returns_running_count(self, repo, sqlite_session):
        user = await _create(repo)

        counts = [await repo.increment_otp_attempts(user.id) for _ in range(3)]
        await repo.commit()

        assert counts == [1, 2, 3]
        stored = await sqlite_session.scalar(select(User.otp_attempts).where(User.id == user.id))
        assert stored == 3


class TestSessionVersion:
    @pytest.mark.asyncio
    async def test_reads_current_version(self, repo):
        user = await _create(repo)
        assert await repo.get_session_version(user.id) is None

        await repo.update(user, session_version="v-1")
        await repo.commit()

        assert await repo.get_session_version(user.id) == "v-1"


class TestPurgeExpiredCredentials:
    @pytest.mark.asyncio
    async def test_clears_only_lapsed_fields(self, repo):
        lapsed_otp = await _create(repo, email="a@springfield.edu")
        live_otp = await _create(repo, email="b@springfield.edu")
        lapsed_reset = await _create(repo, email="c@springfield.edu")
        await repo.update(lapsed_otp, otp="111111", otp_expires_at=_utc_now() - timedelta(hours=1))
        await repo.update(live_otp, otp="222222", otp_expires_at=_utc_now() + timedelta(hours=1))
        await repo.update(
            lapsed_reset,
            password_reset_token="gone",
            password_reset_token_expires_at=_utc_now() - timedelta(hours=1),
        )
        await repo.commit()

        cleared = await repo.purge_expired_credentials()
        await repo.commit()

        assert cleared == 2
        assert await repo.get_by_email_and_otp("b@springfield.edu", "222222") is not None


class TestTeacherProfiles:
    @pytest.mark.asyncio
    async def test_pending_until_activated(self, repo):
        teacher = await _create(repo, role=UserRole.TEACHER)
        await repo.create_teacher_profile(teacher.id, is_active=False)
        await repo.commit()

        assert [u.id for u in await repo.list_pending_teachers()] == [teacher.id]

        assert await repo.activate_teacher_profile(teacher.id) is True
        await repo.commit()

        assert await repo.list_pending_teachers() == []
        assert (await repo.get_teacher_profile(teacher.id)).is_active is True

    @pytest.mark.asyncio
    async def test_activate_without_profile(self, repo):
        user = await _create(repo)
        assert await repo.activate_teacher_profile(user.id) is False

    @pytest.mark.asyncio
    async def test_delete_reports_whether_a_row_went(self, repo):
        teacher = await _create(repo, role=UserRole.TEACHER)
        await repo.create_teacher_profile(teacher.id, is_active=False)
        await repo.commit()

        assert await repo.delete_teacher_profile(teacher.id) is True
        assert await repo.delete_teacher_profile(teacher.id) is False
        assert await repo.get_teacher_profile(teacher.id) is None

    @pytest.mark.asyncio
    async def test_student_profile_placement(self, repo):
        user = await _create(repo)

        student = await repo.create_student_profile(
            user.id,
            roll_number="12",
            class_id="0b8f5a1e-3c7d-4e29-9f61-2a4d8c6b0e13",
            section_id=None,
        )
        await repo.commit()

        assert student.user_id == user.id
        assert student.roll_number == "12"
