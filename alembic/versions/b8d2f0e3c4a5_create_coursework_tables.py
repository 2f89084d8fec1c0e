"""create coursework tables

Revision ID: b8d2f0e3c4a5
Revises: a7c1e9d2b3f4
Create Date: 2026-09-28 10:30:00.000000

This migration:
1. Creates assignments (owned by a teacher, JSONB attachment paths)
2. Creates submissions, one per student and assignment
3. Creates modules (owned by a teacher, JSONB file paths)
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "b8d2f0e3c4a5"
down_revision: str | Sequence[str] | None = "a7c1e9d2b3f4"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def _path_list(name: str) -> sa.Column:
    return sa.Column(
        name,
        postgresql.JSONB(astext_type=sa.Text()),
        nullable=False,
        server_default=sa.text("'[]'::jsonb"),
    )


def upgrade() -> None:
    """Create assignments, submissions and modules."""
    op.create_table(
        "assignments",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        *_timestamps(),
        sa.Column("teacher_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("due_at", sa.DateTime(timezone=True), nullable=True),
        _path_list("attachments"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["teacher_id"],
            ["teachers.id"],
            name="fk_assignments_teacher_id",
            ondelete="CASCADE",
        ),
    )
    op.create_index(
        op.f("ix_assignments_teacher_id"), "assignments", ["teacher_id"], unique=False
    )

    op.create_table(
        "submissions",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        *_timestamps(),
        sa.Column("assignment_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("student_id", postgresql.UUID(as_uuid=False), nullable=False),
        _path_list("attachments"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["assignment_id"],
            ["assignments.id"],
            name="fk_submissions_assignment_id",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["student_id"],
            ["students.id"],
            name="fk_submissions_student_id",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint(
            "student_id", "assignment_id", name="uq_submissions_student_assignment"
        ),
    )
    op.create_index(
        op.f("ix_submissions_assignment_id"), "submissions", ["assignment_id"], unique=False
    )

    op.create_table(
        "modules",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        *_timestamps(),
        sa.Column("teacher_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        _path_list("files"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["teacher_id"],
            ["teachers.id"],
            name="fk_modules_teacher_id",
            ondelete="CASCADE",
        ),
    )
    op.create_index(op.f("ix_modules_teacher_id"), "modules", ["teacher_id"], unique=False)


def downgrade() -> None:
    """Drop modules, submissions and assignments."""
    op.drop_index(op.f("ix_modules_teacher_id"), table_name="modules")
    op.drop_table("modules")
    op.drop_index(op.f("ix_submissions_assignment_id"), table_name="submissions")
    op.drop_table("submissions")
    op.drop_index(op.f("ix_assignments_teacher_id"), table_name="assignments")
    op.drop_table("assignments")
