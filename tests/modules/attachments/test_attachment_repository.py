"""
Attachment repository tests on PostgreSQL.

The path lists are JSONB and the submission upsert relies on ON CONFLICT,
so these run only when TEST_DATABASE_URL points at a PostgreSQL database.
"""

import os

import pytest
import pytest_asyncio
from sqlalchemy import select

from school_sms.modules.attachments import repository
from school_sms.modules.attachments.schemas import AttachmentKind
from school_sms.modules.coursework.models import Assignment, LearningModule, Submission
from school_sms.modules.users.models import Student, Teacher, User, UserRole

pytestmark = pytest.mark.skipif(
    not os.environ.get("TEST_DATABASE_URL"),
    reason="TEST_DATABASE_URL (postgresql+asyncpg) is not set",
)


@pytest_asyncio.fixture
async def db(pg_session_maker):
    async with pg_session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def coursework(db):
    """A teacher with one assignment and one module, and a student."""
    teacher_user = User(
        name="Amy Conteh", email="amy@springfield.edu", password_hash="x", role=UserRole.TEACHER
    )
    student_user = User(
        name="Sam Kamara", email="sam@springfield.edu", password_hash="x", role=UserRole.STUDENT
    )
    db.add_all([teacher_user, student_user])
    await db.flush()

    teacher = Teacher(user_id=teacher_user.id, is_active=True)
    student = Student(user_id=student_user.id)
    db.add_all([teacher, student])
    await db.flush()

    assignment = Assignment(teacher_id=teacher.id, title="Essay")
    module = LearningModule(teacher_id=teacher.id, title="Week 1")
    db.add_all([assignment, module])
    await db.commit()

    return {
        "teacher_user_id": teacher_user.id,
        "student_user_id": student_user.id,
        "student_id": student.id,
        "assignment_id": assignment.id,
        "module_id": module.id,
    }


async def _files(db, model, column, record_id) -> list[str]:
    return await db.scalar(
        select(column).where(model.id == record_id).execution_options(populate_existing=True)
    )


class TestOwners:
    @pytest.mark.asyncio
    async def test_assignment_owner(self, db, coursework):
        owner = await repository.get_owner(
            db, AttachmentKind.ASSIGNMENT, coursework["assignment_id"]
        )

        assert owner.owner_user_id == coursework["teacher_user_id"]
        assert owner.prefix == f"assignments/{coursework['assignment_id']}/"

    @pytest.mark.asyncio
    async def test_missing_record(self, db, coursework):
        owner = await repository.get_owner(
            db, AttachmentKind.MODULE, "3f2b6c1d-8e4a-4d7f-b9c0-5a1e2d3f4b6c"
        )
        assert owner is None

    @pytest.mark.asyncio
    async def test_assignment_teacher_and_student_lookup(self, db, coursework):
        teacher_user_id = await repository.get_assignment_teacher_user_id(
            db, coursework["assignment_id"]
        )
        student_id = await repository.get_student_id(db, coursework["student_user_id"])

        assert teacher_user_id == coursework["teacher_user_id"]
        assert student_id == coursework["student_id"]
        assert await repository.get_student_id(db, coursework["teacher_user_id"]) is None


class TestPathList:
    @pytest.mark.asyncio
    async def test_append_is_set_like(self, db, coursework):
        module_id = coursework["module_id"]
        path = f"modules/{module_id}/1_week1.pdf"

        first = await repository.append_path(db, AttachmentKind.MODULE, module_id, path)
        second = await repository.append_path(db, AttachmentKind.MODULE, module_id, path)
        await db.commit()

        assert (first, second) == (True, False)
        assert await _files(db, LearningModule, LearningModule.files, module_id) == [path]

    @pytest.mark.asyncio
    async def test_remove_and_clear(self, db, coursework):
        assignment_id = coursework["assignment_id"]
        a = f"assignments/{assignment_id}/1_a.pdf"
        b = f"assignments/{assignment_id}/2_b.pdf"
        for path in (a, b):
            await repository.append_path(db, AttachmentKind.ASSIGNMENT, assignment_id, path)

        await repository.remove_path(db, AttachmentKind.ASSIGNMENT, assignment_id, a)
        await db.commit()
        assert await _files(db, Assignment, Assignment.attachments, assignment_id) == [b]

        await repository.clear_paths(db, AttachmentKind.ASSIGNMENT, assignment_id)
        await db.commit()
        assert await _files(db, Assignment, Assignment.attachments, assignment_id) == []


class TestSubmissionUpsert:
    @pytest.mark.asyncio
    async def test_first_file_creates_then_appends(self, db, coursework):
        assignment_id, student_id = coursework["assignment_id"], coursework["student_id"]
        prefix = f"submissions/{coursework['student_user_id']}/{assignment_id}/"

        first = await repository.upsert_submission_path(
            db, assignment_id, student_id, prefix + "1_essay.docx"
        )
        second = await repository.upsert_submission_path(
            db, assignment_id, student_id, prefix + "2_refs.pdf"
        )
        await db.commit()

        submission_id = first[0]
        assert first == (submission_id, True, True)
        assert second == (submission_id, False, True)
        assert await _files(db, Submission, Submission.attachments, submission_id) == [
            prefix + "1_essay.docx",
            prefix + "2_refs.pdf",
        ]

    @pytest.mark.asyncio
    async def test_repeated_path_is_not_recorded_twice(self, db, coursework):
        assignment_id, student_id = coursework["assignment_id"], coursework["student_id"]
        path = f"submissions/{coursework['student_user_id']}/{assignment_id}/1_essay.docx"

        submission_id, _, _ = await repository.upsert_submission_path(
            db, assignment_id, student_id, path
        )
        again = await repository.upsert_submission_path(db, assignment_id, student_id, path)
        await db.commit()

        assert again == (submission_id, False, False)
        assert await _files(db, Submission, Submission.attachments, submission_id) == [path]
