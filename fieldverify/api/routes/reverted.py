"""Revert API — pull cases out of the active queue and reassign them."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from fieldverify.api.deps import actor_name, current_member, ensure_can_work, require_admin
from fieldverify.api.schemas import (
    AssignmentOut,
    CaseOut,
    ReassignRequest,
    RevertedOut,
    RevertRequest,
    RevisionIn,
)
from fieldverify.core.database import get_db
from fieldverify.core.errors import ConsistencyWarning
from fieldverify.models.member import Member
from fieldverify.services import revert
from fieldverify.services.lifecycle import get_case

router = APIRouter(tags=["reverted"])


@router.post("/cases/{case_id}/revert", response_model=RevertedOut, status_code=201)
def revert_case(
    case_id: str,
    body: RevertRequest,
    db: Session = Depends(get_db),
    member: Member = Depends(current_member),
):
    """Assignee (or admin) hands a case back with a reason."""
    case = get_case(db, case_id)
    ensure_can_work(case, member)
    return revert.revert_case(
        db, case, body.reason, actor=actor_name(member), expected_rev=body.expected_rev
    )


@router.post("/cases/{case_id}/release", response_model=CaseOut)
def release_case(
    case_id: str,
    body: RevisionIn | None = None,
    db: Session = Depends(get_db),
    admin: Member = Depends(require_admin),
):
    case = get_case(db, case_id)
    return revert.release_case(
        db, case, actor=actor_name(admin), expected_rev=body.expected_rev if body else None
    )


@router.get("/reverted", response_model=list[RevertedOut])
def list_reverted(db: Session = Depends(get_db), admin: Member = Depends(require_admin)):
    return revert.list_reverted(db)


@router.post("/reverted/{reverted_id}/assign", response_model=AssignmentOut)
def assign_reverted(
    reverted_id: str,
    body: ReassignRequest,
    db: Session = Depends(get_db),
    admin: Member = Depends(require_admin),
):
    result = revert.reassign_reverted(db, reverted_id, body.member_name, actor=actor_name(admin))
    if not result.ok:
        warning = ConsistencyWarning("Reverted case could not be reassigned", result=result.to_dict())
        return JSONResponse(status_code=warning.status_code, content=warning.to_dict())
    return result.to_dict()
