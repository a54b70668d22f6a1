"""Member model — field executives, admins and developers."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from fieldverify.core.database import Base


class MemberRole(str, enum.Enum):
    member = "member"
    admin = "admin"
    dev = "dev"


class MemberStatus(str, enum.Enum):
    active = "active"
    banned = "banned"


class Member(Base):
    __tablename__ = "members"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: uuid.uuid4().hex)
    name: Mapped[str] = mapped_column(String(256), nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default=MemberRole.member.value)
    unique_id: Mapped[str | None] = mapped_column(String(4), nullable=True, unique=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=MemberStatus.active.value)
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    pincode: Mapped[str | None] = mapped_column(String(16), nullable=True)
    blood_group: Mapped[str | None] = mapped_column(String(8), nullable=True)
    photo_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def is_admin(self) -> bool:
        return self.role in (MemberRole.admin.value, MemberRole.dev.value)

    @property
    def is_banned(self) -> bool:
        return self.status == MemberStatus.banned.value
