"""Audit API — approve, reject and rectify submitted cases."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from fieldverify.api.deps import actor_name, get_mail_relay, require_admin
from fieldverify.api.schemas import ApproveRequest, CaseOut, RejectRequest, RevisionIn
from fieldverify.core.database import get_db
from fieldverify.models.member import Member
from fieldverify.services import review
from fieldverify.services.lifecycle import get_case
from fieldverify.services.mailer import MailRelayClient

router = APIRouter(prefix="/cases", tags=["audit"])


@router.post("/{case_id}/approve", response_model=CaseOut)
def approve_case(
    case_id: str,
    body: ApproveRequest,
    db: Session = Depends(get_db),
    admin: Member = Depends(require_admin),
    relay: MailRelayClient = Depends(get_mail_relay),
):
    """Mail the report to *recipient*, then mark the case completed."""
    case = get_case(db, case_id)
    return review.approve(
        db, case, body.recipient,
        actor=actor_name(admin), expected_rev=body.expected_rev,
        relay=relay, attempt_id=body.attempt_id,
    )


@router.post("/{case_id}/reject", response_model=CaseOut)
def reject_case(
    case_id: str,
    body: RejectRequest,
    db: Session = Depends(get_db),
    admin: Member = Depends(require_admin),
):
    case = get_case(db, case_id)
    return review.reject(
        db, case, body.feedback, body.redo,
        actor=actor_name(admin), expected_rev=body.expected_rev,
    )


@router.post("/{case_id}/rectify", response_model=CaseOut)
def rectify_case(
    case_id: str,
    body: RevisionIn | None = None,
    db: Session = Depends(get_db),
    admin: Member = Depends(require_admin),
):
    case = get_case(db, case_id)
    return review.rectify(
        db, case, actor=actor_name(admin), expected_rev=body.expected_rev if body else None
    )
