"""Case lifecycle — transition table, revision checks and the commit path.

Every case mutation goes through ``commit_case`` so that it is audited,
version-checked and published to the change feed in one place.
"""

from __future__ import annotations

import logging
from typing import Dict, FrozenSet, Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from fieldverify.core.errors import InvalidTransitionError, NotFoundError, StaleRevisionError
from fieldverify.models.case import Case, CaseStatus
from fieldverify.services.audit import append_audit_event
from fieldverify.services.change_feed import CaseChange, feed

logger = logging.getLogger(__name__)

_S = CaseStatus

ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    _S.fired.value: frozenset({_S.assigned.value}),
    _S.assigned.value: frozenset({_S.assigned.value, _S.audit.value, _S.reverted.value}),
    _S.audit.value: frozenset({_S.completed.value, _S.assigned.value}),
    _S.reverted.value: frozenset({_S.assigned.value}),
    _S.completed.value: frozenset({_S.audit.value}),
    _S.closed.value: frozenset({_S.audit.value}),
}


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def assert_transition(case: Case, target: str) -> None:
    if not can_transition(case.status, target):
        raise InvalidTransitionError(case.id, case.status, target)


def check_rev(case: Case, expected_rev: Optional[int]) -> None:
    """Fail fast when the caller's view of the case is out of date."""
    if expected_rev is not None and case.rev != expected_rev:
        raise StaleRevisionError(case.id, expected_rev, case.rev)


def get_case(db: Session, case_id: str) -> Case:
    case = db.get(Case, case_id)
    if case is None:
        raise NotFoundError(f"Case {case_id} not found")
    return case


def commit_case(
    db: Session,
    case: Case,
    event_type: str,
    payload: Optional[dict] = None,
    actor: Optional[str] = None,
) -> Case:
    """Audit, commit and publish a mutation of *case*."""
    case_id, expected = case.id, case.rev
    try:
        append_audit_event(
            db,
            case_id,
            event_type,
            {"status": case.status, "ref_no": case.matrix_ref_no, **(payload or {})},
            actor=actor,
        )
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        current = db.get(Case, case_id)
        raise StaleRevisionError(case_id, expected, current.rev if current else None) from exc
    db.refresh(case)
    logger.info("case %s %s -> status=%s rev=%s", case.id, event_type, case.status, case.rev)
    publish(case, event_type)
    return case


def publish(case: Case, event_type: str) -> None:
    feed.publish(CaseChange(case_id=case.id, status=case.status, rev=case.rev, event_type=event_type))
