"""
Coursework Models

Records that own uploaded files. Each keeps the blob paths of its files in a
JSONB list; the bytes live in the blob store.
"""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from school_sms.modules.shared import BaseModel
from school_sms.modules.users.models import Student, Teacher


class Assignment(BaseModel):
    """An assignment set by a teacher, with optional attached files."""

    __tablename__ = "assignments"

    teacher_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("teachers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    due_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    attachments: Mapped[list[str]] = mapped_column(
        JSONB, nullable=False, default=list, server_default="[]"
    )

    teacher: Mapped[Teacher] = relationship("Teacher", lazy="selectin")

    def __repr__(self) -> str:
        return f"<Assignment(id={self.id}, title={self.title})>"


class Submission(BaseModel):
    """A student's submission for an assignment. One per student and assignment."""

    __tablename__ = "submissions"
    __table_args__ = (
        UniqueConstraint("student_id", "assignment_id", name="uq_submissions_student_assignment"),
    )

    assignment_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("assignments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    student_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("students.id", ondelete="CASCADE"),
        nullable=False,
    )
    attachments: Mapped[list[str]] = mapped_column(
        JSONB, nullable=False, default=list, server_default="[]"
    )

    student: Mapped[Student] = relationship("Student", lazy="selectin")

    def __repr__(self) -> str:
        return f"<Submission(id={self.id}, assignment_id={self.assignment_id})>"


class LearningModule(BaseModel):
    """A teaching module (notes, slides, videos) published by a teacher."""

    __tablename__ = "modules"

    teacher_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("teachers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    files: Mapped[list[str]] = mapped_column(
        JSONB, nullable=False, default=list, server_default="[]"
    )

    def __repr__(self) -> str:
        return f"<LearningModule(id={self.id}, title={self.title})>"
