"""Members API — directory and moderation."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from fieldverify.api.deps import actor_name, current_member, require_admin
from fieldverify.api.schemas import MemberCreate, MemberOut
from fieldverify.core.database import get_db
from fieldverify.models.member import Member, MemberStatus
from fieldverify.services import members

router = APIRouter(prefix="/members", tags=["members"])


@router.post("", response_model=MemberOut, status_code=201)
def create_member(body: MemberCreate, db: Session = Depends(get_db), admin: Member = Depends(require_admin)):
    return members.create_member(db, **body.model_dump(), actor=actor_name(admin))


@router.get("", response_model=list[MemberOut])
def list_members(
    role: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    admin: Member = Depends(require_admin),
):
    return members.list_members(db, role=role)


@router.get("/me", response_model=MemberOut)
def read_me(member: Member = Depends(current_member)):
    return member


@router.get("/{member_id}", response_model=MemberOut)
def read_member(member_id: str, db: Session = Depends(get_db), admin: Member = Depends(require_admin)):
    return members.get_member(db, member_id)


@router.post("/{member_id}/ban", response_model=MemberOut)
def ban_member(member_id: str, db: Session = Depends(get_db), admin: Member = Depends(require_admin)):
    member = members.get_member(db, member_id)
    return members.set_status(db, member, MemberStatus.banned.value, actor=actor_name(admin))


@router.post("/{member_id}/unban", response_model=MemberOut)
def unban_member(member_id: str, db: Session = Depends(get_db), admin: Member = Depends(require_admin)):
    member = members.get_member(db, member_id)
    return members.set_status(db, member, MemberStatus.active.value, actor=actor_name(admin))


@router.post("/{member_id}/verify", response_model=MemberOut)
def verify_member(member_id: str, db: Session = Depends(get_db), admin: Member = Depends(require_admin)):
    member = members.get_member(db, member_id)
    return members.mark_verified(db, member, actor=actor_name(admin))
