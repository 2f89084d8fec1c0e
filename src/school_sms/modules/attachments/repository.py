"""
Attachment Repository

Database operations on the JSONB path lists of assignments, submissions and
modules. List changes are single UPDATE statements so concurrent uploads to
the same record never overwrite each other.

The lists are treated as sets: appending a path that is already present is a
no-op, so a client retrying a record call cannot double-record a file.
"""

from dataclasses import dataclass
from uuid import uuid4

from sqlalchemy import Text, cast, func, literal_column, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from school_sms.modules.attachments.schemas import AttachmentKind
from school_sms.modules.coursework.models import Assignment, LearningModule, Submission
from school_sms.modules.users.models import Student, Teacher


@dataclass
class AttachmentOwner:
    """The user who owns a record and the blob prefix its files live under."""

    record_id: str
    owner_user_id: str
    prefix: str


def _target(kind: AttachmentKind):
    if kind == AttachmentKind.ASSIGNMENT:
        return Assignment, Assignment.attachments
    if kind == AttachmentKind.SUBMISSION:
        return Submission, Submission.attachments
    return LearningModule, LearningModule.files


async def get_owner(
    db: AsyncSession, kind: AttachmentKind, record_id: str
) -> AttachmentOwner | None:
    """Resolve who owns a record, or None if it does not exist."""
    if kind == AttachmentKind.SUBMISSION:
        result = await db.execute(
            select(Submission.id, Submission.assignment_id, Student.user_id)
            .join(Student, Student.id == Submission.student_id)
            .where(Submission.id == str(record_id))
        )
        row = result.first()
        if row is None:
            return None
        submission_id, assignment_id, student_user_id = row
        return AttachmentOwner(
            record_id=str(submission_id),
            owner_user_id=str(student_user_id),
            prefix=f"{kind.value}/{student_user_id}/{assignment_id}/",
        )

    model, _ = _target(kind)
    result = await db.execute(
        select(model.id, Teacher.user_id)
        .join(Teacher, Teacher.id == model.teacher_id)
        .where(model.id == str(record_id))
    )
    row = result.first()
    if row is None:
        return None
    return AttachmentOwner(
        record_id=str(row[0]),
        owner_user_id=str(row[1]),
        prefix=f"{kind.value}/{row[0]}/",
    )


async def get_assignment_teacher_user_id(db: AsyncSession, assignment_id: str) -> str | None:
    result = await db.execute(
        select(Teacher.user_id)
        .join(Assignment, Assignment.teacher_id == Teacher.id)
        .where(Assignment.id == str(assignment_id))
    )
    user_id = result.scalar_one_or_none()
    return str(user_id) if user_id else None


async def get_student_id(db: AsyncSession, user_id: str) -> str | None:
    """Student profile id for a user, or None if the user is not a student."""
    result = await db.execute(select(Student.id).where(Student.user_id == str(user_id)))
    student_id = result.scalar_one_or_none()
    return str(student_id) if student_id else None


async def append_path(db: AsyncSession, kind: AttachmentKind, record_id: str, path: str) -> bool:
    """
    Add a path to a record's list.

    Returns:
        True if the path was added, False if it was already there or the
        record does not exist
    """
    model, column = _target(kind)
    result = await db.execute(
        update(model)
        .where(model.id == str(record_id), ~column.contains([path]))
        .values(
            {
                column: column.op("||")(func.jsonb_build_array(cast(path, Text))),
                model.updated_at: func.now(),
            }
        )
    )
    return (result.rowcount or 0) > 0


async def remove_path(db: AsyncSession, kind: AttachmentKind, record_id: str, path: str) -> None:
    model, column = _target(kind)
    await db.execute(
        update(model)
        .where(model.id == str(record_id))
        .values({column: column.op("-")(cast(path, Text)), model.updated_at: func.now()})
    )


async def clear_paths(db: AsyncSession, kind: AttachmentKind, record_id: str) -> None:
    model, column = _target(kind)
    await db.execute(
        update(model)
        .where(model.id == str(record_id))
        .values({column: [], model.updated_at: func.now()})
    )


async def upsert_submission_path(
    db: AsyncSession,
    assignment_id: str,
    student_id: str,
    path: str,
) -> tuple[str, bool, bool]:
    """
    Record a submission file, creating the submission on first upload.

    An existing submission that already lists the path is left untouched.

    Returns:
        (submission id, True if the submission row was created,
        True if the path was added)
    """
    stmt = pg_insert(Submission).values(
        id=str(uuid4()),
        assignment_id=str(assignment_id),
        student_id=str(student_id),
        attachments=[path],
    )
    stmt = stmt.on_conflict_do_update(
        constraint="uq_submissions_student_assignment",
        set_={
            "attachments": Submission.attachments.op("||")(
                func.jsonb_build_array(cast(path, Text))
            ),
            "updated_at": func.now(),
        },
        where=~Submission.attachments.contains([path]),
    ).returning(Submission.id, literal_column("(xmax = 0)").label("created"))

    row = (await db.execute(stmt)).first()
    if row is not None:
        return str(row.id), bool(row.created), True

    # Conflict skipped by the WHERE clause: the path is already recorded
    result = await db.execute(
        select(Submission.id).where(
            Submission.assignment_id == str(assignment_id),
            Submission.student_id == str(student_id),
        )
    )
    return str(result.scalar_one()), False, False
