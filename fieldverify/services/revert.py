"""Revert path — move cases out of the active queue and bring them back."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import List, Optional

from sqlalchemy import inspect, select
from sqlalchemy.orm import Session

from fieldverify.core.errors import NotFoundError, ValidationError
from fieldverify.models.case import Case, CaseStatus
from fieldverify.models.reverted_case import RevertedCase
from fieldverify.services.assignment import AssignmentResult, assign
from fieldverify.services.audit import append_audit_event
from fieldverify.services.change_feed import CaseChange, feed
from fieldverify.services.lifecycle import assert_transition, check_rev, commit_case

logger = logging.getLogger(__name__)


def case_snapshot(case: Case) -> dict:
    """JSON-safe copy of every column of *case*."""
    snap = {}
    for attr in inspect(Case).column_attrs:
        value = getattr(case, attr.key)
        if isinstance(value, (datetime, date)):
            value = value.isoformat()
        snap[attr.key] = value
    return snap


def revert_case(
    db: Session,
    case: Case,
    reason: str,
    *,
    actor: str,
    expected_rev: Optional[int] = None,
) -> RevertedCase:
    """Copy *case* into the reverted collection, then delete it from the active table."""
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A revert reason is required")
    check_rev(case, expected_rev)
    assert_transition(case, CaseStatus.reverted.value)

    row = RevertedCase(
        id=case.id,
        matrix_ref_no=case.matrix_ref_no,
        snapshot_json=case_snapshot(case),
        reverted_by=actor,
        revert_reason=reason,
        reverted_at=datetime.now(timezone.utc),
    )
    existing = db.get(RevertedCase, case.id)
    if existing is not None:
        db.delete(existing)
        db.flush()
    db.add(row)
    append_audit_event(db, case.id, "case.reverted", {"reason": reason, "from_status": case.status}, actor=actor)
    db.delete(case)
    db.commit()
    db.refresh(row)
    logger.info("Case %s moved to reverted collection by %s", row.id, actor)
    feed.publish(CaseChange(case_id=row.id, status=None, rev=None, event_type="case.reverted"))
    return row


def release_case(
    db: Session,
    case: Case,
    *,
    actor: Optional[str] = None,
    expected_rev: Optional[int] = None,
) -> Case:
    """Admin bounce: status reverted with assignment, evidence and audit state cleared."""
    check_rev(case, expected_rev)
    assert_transition(case, CaseStatus.reverted.value)
    case.status = CaseStatus.reverted.value
    case.completed_at = None
    case.assigned_to = None
    case.assignee_name = None
    case.assignee_role = None
    case.assigned_at = None
    case.photos_folder = {}
    case.draft_photos = None
    case.photos_folder_link = None
    case.form_completed = False
    case.filled_form = None
    case.audit_feedback = None
    case.photos_to_redo = []
    case.comments = None
    return commit_case(db, case, "case.released", {}, actor=actor)


def list_reverted(db: Session) -> List[RevertedCase]:
    return list(db.scalars(select(RevertedCase).order_by(RevertedCase.reverted_at.desc())).all())


def get_reverted(db: Session, reverted_id: str) -> RevertedCase:
    row = db.get(RevertedCase, reverted_id)
    if row is None:
        raise NotFoundError(f"Reverted case {reverted_id} not found")
    return row


def reassign_reverted(
    db: Session,
    reverted_id: str,
    member_name: str,
    *,
    actor: Optional[str] = None,
) -> AssignmentResult:
    """Recreate a reverted record as a fresh assigned case (same id)."""
    get_reverted(db, reverted_id)
    return assign(db, [reverted_id], member_name, actor=actor)
