"""Audit workflow — approve (finalize saga), reject for redo, rectify."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from fieldverify.core.errors import FieldVerifyError, InvalidTransitionError, ValidationError
from fieldverify.models.case import Case, CaseStatus
from fieldverify.models.job import Job, JobStatus
from fieldverify.models.mail_record import MailRecord
from fieldverify.services.lifecycle import assert_transition, check_rev, commit_case
from fieldverify.services.mailer import (
    MailRelayClient,
    approval_attachments,
    approval_body,
    approval_ref,
    approval_subject,
)
from fieldverify.services.policy import FORM_ITEM, select_policy

logger = logging.getLogger(__name__)


def _finalize_job(db: Session, case: Case, attempt_id: Optional[str], actor: Optional[str]) -> Job:
    if attempt_id:
        existing = db.scalars(
            select(Job).where(Job.case_id == case.id, Job.attempt_id == attempt_id)
        ).first()
        if existing is not None:
            return existing
    job = Job(
        id=uuid.uuid4().hex,
        case_id=case.id,
        attempt_id=attempt_id or uuid.uuid4().hex,
        kind="finalize",
        status=JobStatus.running.value,
        requested_by=actor,
    )
    db.add(job)
    return job


def approve(
    db: Session,
    case: Case,
    recipient: str,
    *,
    actor: Optional[str] = None,
    expected_rev: Optional[int] = None,
    relay: Optional[MailRelayClient] = None,
    attempt_id: Optional[str] = None,
) -> Case:
    """
    Finalize an audited case.

    The case is only completed after the relay accepted the report mail.
    If the relay fails the case stays in audit with ``finalize_pending`` and
    ``finalize_error`` set so the approval can be retried. Each attempt is
    recorded as a ``finalize`` job; repeating a completed attempt id is a no-op.
    """
    if not recipient:
        raise ValidationError("Recipient email is required")
    job = _finalize_job(db, case, attempt_id, actor)
    if job.status == JobStatus.complete.value:
        return case
    check_rev(case, expected_rev)
    assert_transition(case, CaseStatus.completed.value)

    job.status = JobStatus.running.value
    case.finalize_pending = True
    case.finalize_error = None
    commit_case(db, case, "case.finalize_started", {"recipient": recipient, "job_id": job.id}, actor=actor)

    relay = relay or MailRelayClient()
    subject = approval_subject(case)
    try:
        relay.send(
            to=recipient,
            subject=subject,
            body=approval_body(case),
            case_id=case.id,
            ref_no=approval_ref(case),
            attachments=approval_attachments(case),
        )
    except FieldVerifyError as exc:
        case.finalize_error = exc.message
        job.status = JobStatus.failed.value
        job.error_detail = exc.message
        commit_case(db, case, "case.finalize_failed", {"error": exc.message, "job_id": job.id}, actor=actor)
        raise

    case.status = CaseStatus.completed.value
    case.filled_form = None
    case.finalized_at = datetime.now(timezone.utc)
    case.finalized_by = actor or "admin"
    case.finalize_pending = False
    case.finalize_error = None
    job.status = JobStatus.complete.value
    job.error_detail = None
    job.result_json = {"recipient": recipient, "subject": subject}
    db.add(
        MailRecord(
            case_id=case.id,
            ref_no=approval_ref(case),
            subject=subject,
            recipient=recipient,
            sent_by=actor or "admin",
        )
    )
    return commit_case(db, case, "case.approved", {"recipient": recipient, "job_id": job.id}, actor=actor)


def reject(
    db: Session,
    case: Case,
    feedback: Optional[str],
    redo: Optional[List[str]],
    *,
    actor: Optional[str] = None,
    expected_rev: Optional[int] = None,
) -> Case:
    """Send an audited case back to its assignee with feedback and/or redo items."""
    feedback = (feedback or "").strip()
    redo = [item for item in (redo or []) if item]
    if not feedback and not redo:
        raise ValidationError("Provide feedback or select items to redo")
    check_rev(case, expected_rev)
    if case.status != CaseStatus.audit.value:
        raise InvalidTransitionError(case.id, case.status, CaseStatus.assigned.value)

    policy = select_policy(case)
    unknown = [item for item in redo if item != FORM_ITEM and policy.category(item) is None]
    if unknown:
        raise ValidationError(f"Unknown redo categories: {', '.join(unknown)}")

    if not feedback:
        feedback = "Redo required: " + ", ".join(policy.label(item) for item in redo)

    case.status = CaseStatus.assigned.value
    case.audit_feedback = feedback
    case.photos_to_redo = [item for item in redo if item != FORM_ITEM]
    case.completed_at = None
    case.draft_photos = None
    if FORM_ITEM in redo:
        case.form_completed = False
        case.filled_form = None
    return commit_case(db, case, "case.rejected", {"redo": redo, "feedback": feedback}, actor=actor)


def rectify(
    db: Session,
    case: Case,
    *,
    actor: Optional[str] = None,
    expected_rev: Optional[int] = None,
) -> Case:
    """Reopen a completed or closed case for another audit pass."""
    check_rev(case, expected_rev)
    if case.status not in (CaseStatus.completed.value, CaseStatus.closed.value):
        raise InvalidTransitionError(case.id, case.status, CaseStatus.audit.value)
    case.status = CaseStatus.audit.value
    case.finalize_pending = False
    case.finalize_error = None
    return commit_case(db, case, "case.rectified", {}, actor=actor)
