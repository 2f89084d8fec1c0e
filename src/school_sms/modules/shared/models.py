"""
Shared Models

Abstract base providing the primary key and timestamps for every table.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from school_sms.core.database import Base


class BaseModel(Base):
    """Abstract model with a string UUID primary key and timestamps."""

    __abstract__ = True
    # Fetch server-generated timestamps on flush; lazy loads fail under asyncio
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
