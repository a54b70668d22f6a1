"""Request dependencies — session claim authentication and role checks."""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from fieldverify.core.database import get_db
from fieldverify.core.errors import PermissionDeniedError
from fieldverify.core.security import verify_claim
from fieldverify.models.case import Case
from fieldverify.models.member import Member
from fieldverify.services.mailer import MailRelayClient


def member_from_token(db: Session, token: Optional[str]) -> Member:
    member_id = verify_claim(token) if token else None
    if member_id is None:
        raise HTTPException(status_code=401, detail="Invalid or expired session")
    member = db.get(Member, member_id)
    if member is None:
        raise HTTPException(status_code=401, detail="Unknown member")
    if member.is_banned:
        raise PermissionDeniedError("Member is banned")
    return member


def current_member(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> Member:
    token = None
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
    return member_from_token(db, token)


def require_admin(member: Member = Depends(current_member)) -> Member:
    if not member.is_admin:
        raise PermissionDeniedError("Admin role required")
    return member


def ensure_can_work(case: Case, member: Member) -> None:
    """Only the assignee (or an admin) may change a case's evidence."""
    if not member.is_admin and case.assigned_to != member.id:
        raise PermissionDeniedError(f"Case {case.id} is not assigned to you")


def actor_name(member: Member) -> str:
    return member.email or member.id


def get_mail_relay() -> MailRelayClient:
    return MailRelayClient()
