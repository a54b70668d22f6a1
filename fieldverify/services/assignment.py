"""Assignment engine — bulk assignment of cases to a field member."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from fieldverify.core.errors import (
    FieldVerifyError,
    InvalidTransitionError,
    NotFoundError,
    StaleRevisionError,
    ValidationError,
)
from fieldverify.models.case import Case, CaseStatus
from fieldverify.models.member import Member
from fieldverify.models.reverted_case import RevertedCase
from fieldverify.services.audit import append_audit_event
from fieldverify.services.lifecycle import assert_transition, publish
from fieldverify.services.members import resolve_by_name

logger = logging.getLogger(__name__)

DEFAULT_ASSIGNEE_ROLE = "FE"

# Audited cases go back to the field through reject, not reassignment
ASSIGNABLE = frozenset({CaseStatus.fired.value, CaseStatus.assigned.value, CaseStatus.reverted.value})


@dataclass
class AssignmentResult:
    member_id: str
    member_name: str
    assigned: List[str] = field(default_factory=list)
    reassigned: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict:
        return asdict(self)


def resolve_assignee(db: Session, member_name: str) -> Member:
    member = resolve_by_name(db, member_name)
    if member is None:
        raise ValidationError(f"No member named '{member_name}'")
    if member.is_banned:
        raise ValidationError(f"Member '{member.name}' is banned")
    return member


def apply_assignment(case: Case, member: Member, now: Optional[datetime] = None) -> None:
    """Set the assignment fields of *case*; no commit."""
    case.status = CaseStatus.assigned.value
    case.assigned_to = member.id
    case.assignee_name = member.name
    case.assignee_role = member.role or DEFAULT_ASSIGNEE_ROLE
    case.assigned_at = now or datetime.now(timezone.utc)


def case_from_reverted(row: RevertedCase) -> Case:
    """Rebuild an active case (same id) from a reverted snapshot, evidence cleared."""
    snap = dict(row.snapshot_json or {})
    return Case(
        id=row.id,
        matrix_ref_no=snap.get("matrix_ref_no") or row.matrix_ref_no,
        client=snap.get("client") or "",
        company=snap.get("company") or "",
        check_type=snap.get("check_type") or "",
        chk_type=snap.get("chk_type") or "",
        ces_type=snap.get("ces_type"),
        candidate_name=snap.get("candidate_name") or "",
        address=snap.get("address") or "",
        city=snap.get("city") or "",
        state=snap.get("state") or "",
        pincode=snap.get("pincode") or "",
        contact_number=snap.get("contact_number") or "",
        date_initiated=_parse_dt(snap.get("date_initiated")),
        ingested_at=_parse_dt(snap.get("ingested_at")),
        ingest_batch_id=snap.get("ingest_batch_id"),
        comments=snap.get("comments"),
        photos_folder={},
        photos_to_redo=[],
    )


def _parse_dt(value) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None


def assign(
    db: Session,
    case_ids: Iterable[str],
    member_name: str,
    *,
    actor: Optional[str] = None,
    expected_revs: Optional[Dict[str, int]] = None,
) -> AssignmentResult:
    """
    Assign every case in *case_ids* to the member called *member_name*.

    Each case is written in its own savepoint so one failure does not undo
    the others; failures are collected in ``result.failed``.
    """
    ids = [cid for cid in dict.fromkeys(case_ids or []) if cid]
    if not ids:
        raise ValidationError("Select at least one case to assign")
    member = resolve_assignee(db, member_name)
    expected_revs = expected_revs or {}
    result = AssignmentResult(member_id=member.id, member_name=member.name)
    now = datetime.now(timezone.utc)
    touched: List[Case] = []

    for case_id in ids:
        loaded_rev = None
        try:
            with db.begin_nested():
                case = db.get(Case, case_id)
                if case is None:
                    row = db.get(RevertedCase, case_id)
                    if row is None:
                        raise NotFoundError(f"Case {case_id} not found")
                    case = case_from_reverted(row)
                    db.delete(row)
                    db.add(case)
                    previous = CaseStatus.reverted.value
                else:
                    loaded_rev = case.rev
                    expected = expected_revs.get(case_id)
                    if expected is not None and case.rev != expected:
                        raise StaleRevisionError(case_id, expected, case.rev)
                    if case.status not in ASSIGNABLE:
                        raise InvalidTransitionError(case_id, case.status, CaseStatus.assigned.value)
                    assert_transition(case, CaseStatus.assigned.value)
                    previous = case.status

                reassigning = bool(case.assigned_to) and case.assigned_to != member.id
                apply_assignment(case, member, now)
                db.flush()
                append_audit_event(
                    db,
                    case.id,
                    "case.assigned",
                    {"member_id": member.id, "from_status": previous, "reassigned": reassigning},
                    actor=actor,
                )
            touched.append(case)
            (result.reassigned if reassigning else result.assigned).append(case_id)
        except FieldVerifyError as exc:
            logger.warning("Assignment of %s to %s failed: %s", case_id, member.name, exc.message)
            result.failed[case_id] = exc.message
        except StaleDataError:
            # Another writer committed between our read and the savepoint flush
            current = db.get(Case, case_id)
            stale = StaleRevisionError(case_id, loaded_rev, current.rev if current else None)
            logger.warning("Assignment of %s to %s lost a race: %s", case_id, member.name, stale.message)
            result.failed[case_id] = stale.message
        except SQLAlchemyError as exc:
            logger.exception("Assignment of %s to %s failed in the database", case_id, member.name)
            result.failed[case_id] = f"Database error: {exc.__class__.__name__}"

    db.commit()
    for case in touched:
        db.refresh(case)
        publish(case, "case.assigned")
    logger.info(
        "Assigned %d (+%d reassigned) cases to %s, %d failed",
        len(result.assigned), len(result.reassigned), member.name, len(result.failed),
    )
    return result
