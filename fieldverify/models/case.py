"""Case model — one background verification assigned to a field executive."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from fieldverify.core.database import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


class CaseStatus(str, enum.Enum):
    fired = "fired"
    assigned = "assigned"
    audit = "audit"
    reverted = "reverted"
    completed = "completed"
    closed = "closed"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class Case(Base):
    __tablename__ = "cases"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)

    # Identity
    matrix_ref_no: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    client: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    company: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    check_type: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    chk_type: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    ces_type: Mapped[str | None] = mapped_column(String(32), nullable=True)

    # Subject
    candidate_name: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    address: Mapped[str] = mapped_column(Text, nullable=False, default="")
    city: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    state: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    pincode: Mapped[str] = mapped_column(String(16), nullable=False, default="")
    contact_number: Mapped[str] = mapped_column(String(64), nullable=False, default="")

    # Lifecycle
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=CaseStatus.fired.value, index=True
    )
    date_initiated: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    assigned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finalized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ingested_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_now, onupdate=_now
    )

    # Assignment
    assigned_to: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    assignee_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    assignee_role: Mapped[str | None] = mapped_column(String(32), nullable=True)

    # Evidence
    photos_folder: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    draft_photos: Mapped[dict | None] = mapped_column(
        JSONType, nullable=True, default=None,
        comment="Working photo set captured since the last submission",
    )
    photos_folder_link: Mapped[str | None] = mapped_column(Text, nullable=True)
    filled_form: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    form_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Audit signals
    audit_feedback: Mapped[str | None] = mapped_column(Text, nullable=True)
    photos_to_redo: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    # Finalize saga
    finalize_pending: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    finalize_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    finalized_by: Mapped[str | None] = mapped_column(String(256), nullable=True)
    closed_by: Mapped[str | None] = mapped_column(String(256), nullable=True)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)

    ingest_batch_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)

    rev: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": rev}
