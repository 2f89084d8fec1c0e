"""
Shared test fixtures.

Environment variables are set before any school_sms import so settings load
with test secrets, cheap bcrypt rounds and rate limiting off.
"""

import os

os.environ.setdefault("JWT_SECRET", "test-access-secret-0123456789")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret-9876543210")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("PYTHON_ENV", "test")

from datetime import UTC, datetime, timedelta  # noqa: E402
from unittest.mock import AsyncMock, MagicMock  # noqa: E402
from uuid import uuid4  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool, StaticPool  # noqa: E402

from school_sms.core.database import Base  # noqa: E402
from school_sms.core.events import EventBus  # noqa: E402
from school_sms.core.exceptions import StorageUnavailableError  # noqa: E402
from school_sms.modules.auth.service import AuthService  # noqa: E402
from school_sms.modules.users.models import Student, Teacher, User, UserRole  # noqa: E402

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL")


class FakeClock:
    """Controllable time source."""

    def __init__(self, now: datetime | None = None):
        self.now = now or datetime(2026, 9, 1, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeUserStore:
    """
    In-memory credential store with the same interface as UserRepository.

    Expiry checks use the shared clock the way the database uses now().
    """

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.users: dict[str, User] = {}
        self.teachers: dict[str, Teacher] = {}
        self.students: dict[str, Student] = {}
        self.commits = 0
        self.rollbacks = 0
        self.locked_emails: list[str] = []
        # Column names whose update raises, to simulate a failing write
        self.failing_fields: set[str] = set()

    async def commit(self) -> None:
        self.commits += 1

    async def rollback(self) -> None:
        self.rollbacks += 1

    async def create(
        self,
        *,
        name,
        email,
        password_hash,
        role,
        verification_token=None,
        verification_token_expires_at=None,
        registration_attempts=0,
        email_verified=False,
    ) -> User:
        if any(u.email == email for u in self.users.values()):
            raise RuntimeError(f"duplicate key value violates unique constraint: {email}")
        user = User(
            id=str(uuid4()),
            name=name,
            email=email,
            password_hash=password_hash,
            role=role,
            email_verified=email_verified,
            email_verified_at=None,
            verification_token=verification_token,
            verification_token_expires_at=verification_token_expires_at,
            registration_attempts=registration_attempts,
            otp=None,
            otp_expires_at=None,
            otp_attempts=0,
            password_reset_token=None,
            password_reset_token_expires_at=None,
            session_version=None,
            created_at=self.clock(),
            updated_at=self.clock(),
        )
        self.users[user.id] = user
        return user

    async def update(self, user: User, **fields) -> User:
        failing = self.failing_fields.intersection(fields)
        if failing:
            raise RuntimeError(f"could not update {sorted(failing)}")
        for key, value in fields.items():
            setattr(user, key, value)
        return user

    async def get_by_id(self, user_id):
        return self.users.get(str(user_id))

    async def get_by_email(self, email, *, for_update=False):
        if for_update:
            self.locked_emails.append(email)
        return next((u for u in self.users.values() if u.email == email), None)

    async def get_by_verification_token(self, token):
        now = self.clock()
        return next(
            (
                u
                for u in self.users.values()
                if u.verification_token == token
                and u.verification_token_expires_at is not None
                and u.verification_token_expires_at > now
            ),
            None,
        )

    async def get_by_email_and_otp(self, email, otp):
        user = await self.get_by_email(email)
        if user and user.otp == otp and user.otp_expires_at and user.otp_expires_at > self.clock():
            return user
        return None

    async def get_by_email_and_reset_token(self, email, token):
        user = await self.get_by_email(email)
        if (
            user
            and user.password_reset_token == token
            and user.password_reset_token_expires_at
            and user.password_reset_token_expires_at > self.clock()
        ):
            return user
        return None

    async def increment_otp_attempts(self, user_id) -> int:
        user = self.users[str(user_id)]
        user.otp_attempts += 1
        return user.otp_attempts

    async def get_session_version(self, user_id):
        user = self.users.get(str(user_id))
        return user.session_version if user else None

    async def purge_expired_credentials(self) -> int:
        now = self.clock()
        cleared = 0
        for user in self.users.values():
            if user.otp_expires_at is not None and user.otp_expires_at <= now:
                user.otp = None
                user.otp_expires_at = None
                cleared += 1
        return cleared

    async def get_teacher_profile(self, user_id):
        return self.teachers.get(str(user_id))

    async def create_teacher_profile(self, user_id, *, is_active):
        teacher = Teacher(id=str(uuid4()), user_id=str(user_id), is_active=is_active)
        self.teachers[str(user_id)] = teacher
        return teacher

    async def delete_teacher_profile(self, user_id) -> bool:
        return self.teachers.pop(str(user_id), None) is not None

    async def activate_teacher_profile(self, user_id) -> bool:
        teacher = self.teachers.get(str(user_id))
        if teacher is None:
            return False
        teacher.is_active = True
        return True

    async def create_student_profile(self, user_id, *, roll_number, class_id, section_id):
        student = Student(
            id=str(uuid4()),
            user_id=str(user_id),
            roll_number=roll_number,
            class_id=class_id,
            section_id=section_id,
        )
        self.students[str(user_id)] = student
        return student

    async def list_pending_teachers(self):
        return [
            self.users[user_id]
            for user_id, teacher in self.teachers.items()
            if not teacher.is_active
        ]


class FakeNotifier:
    """Records every email the service asks to send."""

    def __init__(self):
        self.sent: list[tuple[str, dict]] = []
        self.fail = False

    async def _record(self, kind: str, **kwargs) -> bool:
        if self.fail:
            raise ConnectionError("email provider unreachable")
        self.sent.append((kind, kwargs))
        return True

    async def send_verification_email(self, to_email, name, token):
        return await self._record("verification", to_email=to_email, name=name, token=token)

    async def send_setup_email(self, to_email, name, role, token):
        return await self._record("setup", to_email=to_email, name=name, role=role, token=token)

    async def send_teacher_approved_email(self, to_email, name):
        return await self._record("approved", to_email=to_email, name=name)

    async def send_otp_email(self, to_email, otp):
        return await self._record("otp", to_email=to_email, otp=otp)

    async def send_password_reset_confirmation(self, to_email):
        return await self._record("reset_confirmation", to_email=to_email)

    def of_kind(self, kind: str) -> list[dict]:
        return [kwargs for sent_kind, kwargs in self.sent if sent_kind == kind]


class FakeBlobStore:
    """In-memory blob store. Set fail_deletes to make deletes raise."""

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.fail_deletes = False
        self.signed: list[tuple[str, str, timedelta]] = []

    async def sign_upload(self, bucket, path, ttl, content_type=None):
        self.signed.append(("PUT", path, ttl))
        return f"https://storage.test/{bucket}/{path}?method=PUT"

    async def sign_download(self, bucket, path, ttl):
        self.signed.append(("GET", path, ttl))
        return f"https://storage.test/{bucket}/{path}?method=GET"

    async def delete(self, bucket, path):
        if self.fail_deletes:
            raise StorageUnavailableError(f"Could not delete {path}.")
        self.objects.pop(path, None)

    async def delete_prefix(self, bucket, prefix):
        if self.fail_deletes:
            raise StorageUnavailableError(f"Could not delete files under {prefix}.")
        doomed = [p for p in self.objects if p.startswith(prefix)]
        for path in doomed:
            del self.objects[path]
        return len(doomed)

    async def upload(self, bucket, path, data, content_type=None):
        self.objects[path] = data.read()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return FakeUserStore(clock)


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def auth_service(store, notifier, event_bus, clock):
    return AuthService(store, notifier, event_bus, clock=clock, strict_session_version=False)


@pytest.fixture
def blob_store():
    return FakeBlobStore()


@pytest.fixture
def mock_db():
    """Create a mock database session."""
    db = AsyncMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.execute = AsyncMock()
    db.add = MagicMock()
    return db


@pytest.fixture
def make_verified_user(store):
    """Factory inserting a verified user directly into the store."""

    async def _make(
        *,
        email: str,
        password_hash: str,
        role: UserRole = UserRole.STUDENT,
        name: str = "Test User",
    ) -> User:
        user = await store.create(
            name=name,
            email=email,
            password_hash=password_hash,
            role=role,
            email_verified=True,
        )
        if role == UserRole.TEACHER:
            await store.create_teacher_profile(user.id, is_active=True)
        return user

    return _make


# ============================================
# Real database sessions
# ============================================


@pytest_asyncio.fixture
async def sqlite_session():
    """
    AsyncSession on an in-memory SQLite database holding the user tables.

    Configured like the application's session factory (no expiry on commit),
    so rollback behaves as it does in a request.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    tables = [User.__table__, Teacher.__table__, Student.__table__]
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all, tables=tables)

    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_maker() as session:
        yield session

    await engine.dispose()


@pytest_asyncio.fixture
async def pg_session_maker():
    """Session factory on a fresh schema in the PostgreSQL test database."""
    engine = create_async_engine(TEST_DATABASE_URL, poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()
