"""MailRecord model — one row per report mail the relay accepted."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from fieldverify.core.database import Base


class MailRecord(Base):
    __tablename__ = "mail_records"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: uuid.uuid4().hex)
    case_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    ref_no: Mapped[str | None] = mapped_column(String(128), nullable=True)
    subject: Mapped[str] = mapped_column(String(512), nullable=False)
    recipient: Mapped[str] = mapped_column(String(320), nullable=False)
    sent_by: Mapped[str | None] = mapped_column(String(256), nullable=True)
    sent_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
