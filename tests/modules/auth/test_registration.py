"""
Unit tests for registration, email verification, teacher approval and invitations.
"""

from unittest.mock import AsyncMock, patch

import pytest

from school_sms.core.exceptions import (
    AlreadyRegisteredError,
    EmailExistsError,
    InvalidOrExpiredTokenError,
    NotFoundError,
    TooManyAttemptsError,
)
from school_sms.core.security import verify_password
from school_sms.modules.auth.service import MAX_REGISTRATION_ATTEMPTS
from school_sms.modules.users.models import UserRole


class TestRegister:
    """Tests for AuthService.register"""

    @pytest.mark.asyncio
    async def test_new_student_gets_verification_email(self, auth_service, store, notifier, clock):
        user = await auth_service.register("Sam", "  Sam@School.Test ", "Passw0rd!", UserRole.STUDENT)

        assert user.email == "sam@school.test"
        assert user.email_verified is False
        assert user.registration_attempts == 1
        assert (user.verification_token_expires_at - clock.now).total_seconds() == 24 * 3600
        assert verify_password("Passw0rd!", user.password_hash)
        assert store.locked_emails == ["sam@school.test"]
        assert store.commits == 1

        [email] = notifier.of_kind("verification")
        assert email["to_email"] == "sam@school.test"
        assert email["token"] == user.verification_token

    @pytest.mark.asyncio
    async def test_new_teacher_waits_for_approval(self, auth_service, store, notifier):
        user = await auth_service.register("Amy", "amy@school.test", "Passw0rd!", UserRole.TEACHER)

        assert store.teachers[user.id].is_active is False
        assert notifier.of_kind("verification") == []

    @pytest.mark.asyncio
    async def test_signup_event_published_for_new_account(self, auth_service, event_bus):
        admin = event_bus.subscribe("admin-1", "admin")

        user = await auth_service.register("Sam", "sam@school.test", "Passw0rd!", UserRole.STUDENT)

        event = admin.queue.get_nowait()
        assert event.data["user_id"] == user.id
        assert event.data["role"] == "student"

    @pytest.mark.asyncio
    async def test_verified_email_rejected(self, auth_service, store, make_verified_user):
        await make_verified_user(email="sam@school.test", password_hash="h")

        with pytest.raises(AlreadyRegisteredError):
            await auth_service.register("Sam", "sam@school.test", "Passw0rd!", UserRole.STUDENT)
        assert store.rollbacks == 1

    @pytest.mark.asyncio
    async def test_retry_replaces_details_and_token(self, auth_service, store, notifier):
        first = await auth_service.register("Sam", "sam@school.test", "Passw0rd!", UserRole.STUDENT)
        first_token = first.verification_token

        second = await auth_service.register("Samuel", "sam@school.test", "Better1!", UserRole.STUDENT)

        assert second.id == first.id
        assert second.name == "Samuel"
        assert second.registration_attempts == 2
        assert second.verification_token != first_token
        assert verify_password("Better1!", second.password_hash)
        assert len(store.users) == 1
        assert len(notifier.of_kind("verification")) == 2

    @pytest.mark.asyncio
    async def test_retry_does_not_publish_signup(self, auth_service):
        publish = AsyncMock()
        auth_service.events.publish_user_signup = publish

        await auth_service.register("Sam", "sam@school.test", "Passw0rd!", UserRole.STUDENT)
        await auth_service.register("Sam", "sam@school.test", "Passw0rd!", UserRole.STUDENT)

        publish.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_fourth_attempt_refused(self, auth_service, store):
        for _ in range(MAX_REGISTRATION_ATTEMPTS):
            await auth_service.register("Sam", "sam@school.test", "Passw0rd!", UserRole.STUDENT)

        with pytest.raises(TooManyAttemptsError):
            await auth_service.register("Sam", "sam@school.test", "Passw0rd!", UserRole.STUDENT)

        [user] = store.users.values()
        assert user.registration_attempts == MAX_REGISTRATION_ATTEMPTS

    @pytest.mark.asyncio
    async def test_retry_switching_role_rebuilds_teacher_profile(self, auth_service, store):
        user = await auth_service.register("Amy", "amy@school.test", "Passw0rd!", UserRole.TEACHER)
        assert user.id in store.teachers

        await auth_service.register("Amy", "amy@school.test", "Passw0rd!", UserRole.STUDENT)
        assert user.id not in store.teachers

        await auth_service.register("Amy", "amy@school.test", "Passw0rd!", UserRole.TEACHER)
        assert store.teachers[user.id].is_active is False

    @pytest.mark.asyncio
    async def test_email_failure_does_not_fail_registration(self, auth_service, store, notifier):
        notifier.fail = True

        user = await auth_service.register("Sam", "sam@school.test", "Passw0rd!", UserRole.STUDENT)

        assert user.id in store.users
        assert store.commits == 1


class TestVerifyEmail:
    @pytest.mark.asyncio
    async def test_verifies_and_resets_attempts(self, auth_service, clock):
        user = await auth_service.register("Sam", "sam@school.test", "Passw0rd!", UserRole.STUDENT)
        await auth_service.register("Sam", "sam@school.test", "Passw0rd!", UserRole.STUDENT)

        verified = await auth_service.verify_email(user.verification_token)

        assert verified.email_verified is True
        assert verified.email_verified_at == clock.now
        assert verified.registration_attempts == 0
        assert verified.verification_token is None

    @pytest.mark.asyncio
    async def test_old_token_invalid_after_retry(self, auth_service):
        first = await auth_service.register("Sam", "sam@school.test", "Passw0rd!", UserRole.STUDENT)
        old_token = first.verification_token
        await auth_service.register("Sam", "sam@school.test", "Passw0rd!", UserRole.STUDENT)

        with pytest.raises(InvalidOrExpiredTokenError):
            await auth_service.verify_email(old_token)

    @pytest.mark.asyncio
    async def test_expired_token(self, auth_service, clock):
        user = await auth_service.register("Sam", "sam@school.test", "Passw0rd!", UserRole.STUDENT)
        clock.advance(hours=24, seconds=1)

        with pytest.raises(InvalidOrExpiredTokenError):
            await auth_service.verify_email(user.verification_token)

    @pytest.mark.asyncio
    async def test_token_single_use(self, auth_service):
        user = await auth_service.register("Sam", "sam@school.test", "Passw0rd!", UserRole.STUDENT)
        token = user.verification_token
        await auth_service.verify_email(token)

        with pytest.raises(InvalidOrExpiredTokenError):
            await auth_service.verify_email(token)


class TestTeacherApproval:
    @pytest.mark.asyncio
    async def test_approve_activates_and_sends_verification(self, auth_service, store, notifier):
        user = await auth_service.register("Amy", "amy@school.test", "Passw0rd!", UserRole.TEACHER)

        await auth_service.approve_teacher(user.id)

        assert store.teachers[user.id].is_active is True
        [email] = notifier.of_kind("verification")
        assert email["token"] == user.verification_token

    @pytest.mark.asyncio
    async def test_approve_renews_lapsed_verification_token(self, auth_service, notifier, clock):
        user = await auth_service.register("Amy", "amy@school.test", "Passw0rd!", UserRole.TEACHER)
        clock.advance(days=3)

        await auth_service.approve_teacher(user.id)
        await auth_service.verify_email(notifier.of_kind("verification")[0]["token"])

        assert user.email_verified is True

    @pytest.mark.asyncio
    async def test_approve_verified_teacher_sends_notice(
        self, auth_service, store, notifier, make_verified_user
    ):
        user = await make_verified_user(
            email="amy@school.test", password_hash="h", role=UserRole.TEACHER
        )
        store.teachers[user.id].is_active = False

        await auth_service.approve_teacher(user.id)

        assert notifier.of_kind("verification") == []
        assert notifier.of_kind("approved") == [{"to_email": "amy@school.test", "name": "Test User"}]

    @pytest.mark.asyncio
    async def test_approve_unknown_user(self, auth_service):
        with pytest.raises(NotFoundError):
            await auth_service.approve_teacher("missing")

    @pytest.mark.asyncio
    async def test_approve_student_not_found(self, auth_service, make_verified_user):
        user = await make_verified_user(email="sam@school.test", password_hash="h")
        with pytest.raises(NotFoundError):
            await auth_service.approve_teacher(user.id)

    @pytest.mark.asyncio
    async def test_reject_removes_profile_and_frees_email(self, auth_service, store):
        user = await auth_service.register("Amy", "amy@school.test", "Passw0rd!", UserRole.TEACHER)

        await auth_service.reject_teacher(user.id)

        assert user.id not in store.teachers
        assert user.id in store.users
        again = await auth_service.register("Amy", "amy@school.test", "Passw0rd!", UserRole.TEACHER)
        assert again.id == user.id
        assert store.teachers[user.id].is_active is False

    @pytest.mark.asyncio
    async def test_reject_without_profile(self, auth_service, store):
        user = await auth_service.register("Amy", "amy@school.test", "Passw0rd!", UserRole.TEACHER)
        await auth_service.reject_teacher(user.id)

        with pytest.raises(NotFoundError):
            await auth_service.reject_teacher(user.id)
        assert store.rollbacks == 1

    @pytest.mark.asyncio
    async def test_list_pending(self, auth_service, make_verified_user):
        pending = await auth_service.register("Amy", "amy@school.test", "Passw0rd!", UserRole.TEACHER)
        await make_verified_user(email="bob@school.test", password_hash="h", role=UserRole.TEACHER)

        assert await auth_service.list_pending_teachers() == [pending]


class TestInvitations:
    @pytest.mark.asyncio
    async def test_invite_student_creates_placement(self, auth_service, store, notifier):
        user = await auth_service.invite_student(
            "Sam", "Sam@School.Test", class_id="c1", section_id="s1", roll_number="12"
        )

        student = store.students[user.id]
        assert (student.class_id, student.section_id, student.roll_number) == ("c1", "s1", "12")
        assert user.email_verified is False
        [email] = notifier.of_kind("setup")
        assert email["role"] == "student"
        assert email["token"] == user.verification_token
        assert (user.verification_token_expires_at - store.clock()).days == 7

    @pytest.mark.asyncio
    async def test_invite_teacher_is_preapproved(self, auth_service, store):
        user = await auth_service.invite_teacher("Amy", "amy@school.test")
        assert store.teachers[user.id].is_active is True

    @pytest.mark.asyncio
    async def test_invite_existing_email(self, auth_service, make_verified_user):
        await make_verified_user(email="sam@school.test", password_hash="h")
        with pytest.raises(EmailExistsError):
            await auth_service.invite_student("Sam", "sam@school.test")

    @pytest.mark.asyncio
    async def test_invite_does_not_publish_signup(self, auth_service):
        with patch.object(auth_service.events, "publish_user_signup", AsyncMock()) as publish:
            await auth_service.invite_teacher("Amy", "amy@school.test")
        publish.assert_not_awaited()


class TestCompleteSetup:
    @pytest.mark.asyncio
    async def test_sets_password_and_verifies(self, auth_service):
        user = await auth_service.invite_student("Sam", "sam@school.test")

        await auth_service.complete_setup(user.verification_token, "Passw0rd!")

        assert user.email_verified is True
        assert user.verification_token is None
        assert verify_password("Passw0rd!", user.password_hash)
        result = await auth_service.login("sam@school.test", "Passw0rd!")
        assert result.user.id == user.id

    @pytest.mark.asyncio
    async def test_expired_setup_link(self, auth_service, clock):
        user = await auth_service.invite_student("Sam", "sam@school.test")
        clock.advance(days=7, seconds=1)

        with pytest.raises(InvalidOrExpiredTokenError):
            await auth_service.complete_setup(user.verification_token, "Passw0rd!")
