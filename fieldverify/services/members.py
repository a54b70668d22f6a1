"""Member directory — lookup, creation and moderation."""

from __future__ import annotations

import logging
import random
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from fieldverify.core.errors import NotFoundError, ValidationError
from fieldverify.models.member import Member, MemberRole, MemberStatus
from fieldverify.services.audit import append_audit_event

logger = logging.getLogger(__name__)

_ROLES = {r.value for r in MemberRole}


def _new_unique_id(db: Session) -> str:
    taken = set(db.scalars(select(Member.unique_id)).all())
    free = [f"{n:04d}" for n in range(1000, 10000) if f"{n:04d}" not in taken]
    if not free:
        raise ValidationError("No four-digit member ids left")
    return random.choice(free)


def create_member(
    db: Session,
    *,
    name: str,
    email: str,
    role: str = MemberRole.member.value,
    city: Optional[str] = None,
    pincode: Optional[str] = None,
    blood_group: Optional[str] = None,
    photo_url: Optional[str] = None,
    actor: Optional[str] = None,
) -> Member:
    name, email = (name or "").strip(), (email or "").strip().lower()
    if not name or not email:
        raise ValidationError("Name and email are required")
    if role not in _ROLES:
        raise ValidationError(f"Unknown role '{role}'")
    if db.scalars(select(Member).where(Member.email == email)).first() is not None:
        raise ValidationError(f"A member with email {email} already exists")

    member = Member(
        name=name,
        email=email,
        role=role,
        unique_id=_new_unique_id(db),
        city=city,
        pincode=pincode,
        blood_group=blood_group,
        photo_url=photo_url,
    )
    db.add(member)
    db.flush()
    append_audit_event(db, None, "member.created", {"member_id": member.id, "role": role}, actor=actor)
    db.commit()
    db.refresh(member)
    logger.info("Created member %s (%s)", member.id, role)
    return member


def list_members(db: Session, *, role: Optional[str] = None) -> List[Member]:
    stmt = select(Member).order_by(Member.name)
    if role:
        stmt = stmt.where(Member.role == role)
    return list(db.scalars(stmt).all())


def get_member(db: Session, member_id: str) -> Member:
    member = db.get(Member, member_id)
    if member is None:
        raise NotFoundError(f"Member {member_id} not found")
    return member


def resolve_by_name(db: Session, name: str) -> Optional[Member]:
    """Case-insensitive exact match on the member's display name."""
    needle = (name or "").strip().lower()
    if not needle:
        return None
    return db.scalars(
        select(Member).where(func.lower(func.trim(Member.name)) == needle).order_by(Member.created_at)
    ).first()


def set_status(db: Session, member: Member, status: str, *, actor: Optional[str] = None) -> Member:
    if status not in {s.value for s in MemberStatus}:
        raise ValidationError(f"Unknown status '{status}'")
    member.status = status
    append_audit_event(db, None, f"member.{status}", {"member_id": member.id}, actor=actor)
    db.commit()
    db.refresh(member)
    return member


def mark_verified(db: Session, member: Member, *, actor: Optional[str] = None) -> Member:
    member.is_verified = True
    append_audit_event(db, None, "member.verified", {"member_id": member.id}, actor=actor)
    db.commit()
    db.refresh(member)
    return member
