"""RevertedCase model — snapshot of a case moved out of the active table."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from fieldverify.core.database import Base
from fieldverify.models.case import JSONType


class RevertedCase(Base):
    __tablename__ = "reverted_cases"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, comment="Original case id")
    matrix_ref_no: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    snapshot_json: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    reverted_by: Mapped[str] = mapped_column(String(256), nullable=False)
    revert_reason: Mapped[str] = mapped_column(Text, nullable=False)
    reverted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
