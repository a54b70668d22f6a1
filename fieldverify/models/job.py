"""Job model — tracks background submission and finalize attempts."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fieldverify.core.database import Base
from fieldverify.models.case import JSONType


class JobStatus(str, enum.Enum):
    pending = "pending"
    running = "running"
    complete = "complete"
    failed = "failed"


class Job(Base):
    __tablename__ = "jobs"
    __table_args__ = (UniqueConstraint("case_id", "attempt_id", name="uq_jobs_case_attempt"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: uuid.uuid4().hex)
    case_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    attempt_id: Mapped[str] = mapped_column(String(64), nullable=False)
    kind: Mapped[str] = mapped_column(
        String(32), nullable=False,
        comment="Task kind: submit, finalize",
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=JobStatus.pending.value)
    requested_by: Mapped[str | None] = mapped_column(String(256), nullable=True)
    error_detail: Mapped[str | None] = mapped_column(
        Text, nullable=True, default=None,
        comment="Error message if status=failed",
    )
    result_json: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
