"""
Case Submission
===============
Moves an assigned case into audit once its checklist is satisfied:

  1. purge remote evidence of categories flagged for redo (and the old PDF)
  2. upload every photo that is not yet remote
  3. render the report PDF (unless the policy or maintenance switch says raw)
  4. replace the previously linked PDF with the new one
  5. persist the photo mapping and link, status -> audit

Steps 1 and 4 are best-effort deletions. Uploads that fail after retries
abort the submission without touching the case status; photos uploaded so
far are kept in the draft so a retry does not upload them twice.

Submissions normally run as a Celery job (``enqueue_submission`` +
``run_submit_job``); ``submit_case`` is the synchronous core.
"""

from __future__ import annotations

import logging
import re
import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from fieldverify.core.config import settings
from fieldverify.core.errors import FieldVerifyError, IncompleteRequirementsError, TransientRemoteError
from fieldverify.models.case import Case, CaseStatus
from fieldverify.models.job import Job, JobStatus
from fieldverify.services.audit import append_audit_event
from fieldverify.services.capture import LOCATION_UNAVAILABLE
from fieldverify.services.lifecycle import assert_transition, check_rev, commit_case, get_case
from fieldverify.services.policy import effective_photos, missing_requirements, select_policy
from fieldverify.services.report import build_case_report
from fieldverify.services.retry import retry_call
from fieldverify.services.storage import ObjectStore, get_store, read_uri

logger = logging.getLogger(__name__)


@dataclass
class SubmissionResult:
    case_id: str
    status: str
    photos_folder_link: Optional[str]
    uploaded: int = 0
    purged: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def safe_ref(case: Case) -> str:
    return re.sub(r"[^a-zA-Z0-9\-_]", "_", case.matrix_ref_no or case.id)


def ensure_ready(case: Case) -> None:
    """Raise IncompleteRequirementsError listing every unmet item."""
    missing = missing_requirements(case, select_policy(case))
    if missing:
        raise IncompleteRequirementsError(missing)


def _best_effort_delete(store: ObjectStore, url: str, resource_type: str) -> bool:
    try:
        return store.delete_url(url, resource_type)
    except TransientRemoteError as exc:
        logger.warning("Could not delete %s (%s): %s", url, resource_type, exc.message)
        return False


def _purge_redo(case: Case, store: ObjectStore, keep: set) -> List[str]:
    purged = []
    for category in case.photos_to_redo or []:
        for photo in (case.photos_folder or {}).get(category, []) or []:
            uri = (photo or {}).get("uri") or ""
            if uri.startswith("http") and uri not in keep and _best_effort_delete(store, uri, "image"):
                purged.append(uri)
    return purged


def _photo_id() -> str:
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


def _with_id(photo: Dict) -> Dict:
    """Copy of *photo* that is guaranteed an ``id`` (older drafts lack one)."""
    photo = dict(photo or {})
    photo["id"] = photo.get("id") or _photo_id()
    return photo


def _normalise(photo: Dict, category: str, uri: str) -> Dict:
    return {
        "uri": uri,
        "timestamp": photo.get("timestamp") or datetime.now(timezone.utc).isoformat(),
        "geotag": photo.get("geotag") or None,
        "address": photo.get("address") or LOCATION_UNAVAILABLE,
        "category": photo.get("category") or category,
        "id": photo.get("id") or _photo_id(),
    }


def upload_pdf(
    store: ObjectStore,
    data: bytes,
    folder: str,
    public_id: str,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> str:
    """Primary upload path with backoff, then each fallback once."""
    errors = []
    for position, (name, uploader) in enumerate(store.pdf_uploaders()):
        attempts = settings.remote_retry_attempts if position == 0 else 1
        try:
            return retry_call(
                lambda: uploader(data, folder, public_id),
                attempts=attempts,
                base_delay=settings.remote_retry_base_delay,
                retry_on=(TransientRemoteError,),
                sleep=sleep,
                label=f"PDF upload via {name}",
            )
        except TransientRemoteError as exc:
            errors.append(f"{name}: {exc.message}")
    raise TransientRemoteError("All PDF upload methods failed: " + "; ".join(errors))


def submit_case(
    db: Session,
    case_id: str,
    *,
    actor: Optional[str] = None,
    expected_rev: Optional[int] = None,
    store: Optional[ObjectStore] = None,
    fetch: Callable[[str], bytes] = read_uri,
    sleep: Callable[[float], None] = time.sleep,
) -> SubmissionResult:
    case = get_case(db, case_id)
    check_rev(case, expected_rev)
    assert_transition(case, CaseStatus.audit.value)
    policy = select_policy(case)
    ensure_ready(case)
    store = store or get_store()

    ref = safe_ref(case)
    folder = f"cases/{ref}"
    photos = {cat: [_with_id(p) for p in entries] for cat, entries in effective_photos(case).items()}
    keep = {p.get("uri") for entries in photos.values() for p in entries}
    redo = list(case.photos_to_redo or [])

    # 1. purge redo categories and the PDF built from them
    purged = _purge_redo(case, store, keep) if redo else []
    if redo and case.photos_folder_link:
        if _best_effort_delete(store, case.photos_folder_link, "raw"):
            purged.append(case.photos_folder_link)

    # 2. upload local photos
    uploaded = 0
    local_bytes: Dict[str, bytes] = {}
    result_photos: Dict[str, List[Dict]] = {}
    try:
        for category, entries in photos.items():
            result_photos[category] = []
            for index, photo in enumerate(entries):
                uri = photo.get("uri") or ""
                if not uri:
                    continue
                if not uri.startswith("http"):
                    data = fetch(uri)
                    filename = f"{category}_{int(time.time() * 1000)}_{index}.jpg"
                    uri = retry_call(
                        lambda: store.upload_image(
                            data,
                            folder=folder,
                            filename=filename,
                            context={
                                "lat": (photo.get("geotag") or {}).get("latitude"),
                                "lng": (photo.get("geotag") or {}).get("longitude"),
                                "address": photo.get("address"),
                                "timestamp": photo.get("timestamp"),
                            },
                        ),
                        attempts=settings.remote_retry_attempts,
                        base_delay=settings.remote_retry_base_delay,
                        retry_on=(TransientRemoteError,),
                        sleep=sleep,
                        label=f"photo upload {category}[{index}]",
                    )
                    local_bytes[uri] = data
                    uploaded += 1
                result_photos[category].append(_normalise(photo, category, uri))
    except (TransientRemoteError, OSError) as exc:
        _save_progress(db, case, photos, result_photos, actor)
        if isinstance(exc, TransientRemoteError):
            raise
        raise TransientRemoteError(f"Could not read staged photo: {exc}") from exc

    # 3 + 4. report PDF
    link: Optional[str] = None
    if policy.generate_report and not settings.maintenance_camera:
        def report_fetch(uri: str) -> bytes:
            if uri in local_bytes:
                return local_bytes[uri]
            stored = store.open_url(uri)
            return stored if stored is not None else fetch(uri)

        pdf = build_case_report(case.matrix_ref_no, result_photos, policy.requirements, fetch=report_fetch)
        if case.photos_folder_link and case.photos_folder_link not in purged:
            if _best_effort_delete(store, case.photos_folder_link, "raw"):
                purged.append(case.photos_folder_link)
        public_id = f"CaseReport_{ref}_{int(time.time() * 1000)}"
        try:
            link = upload_pdf(store, pdf, folder, public_id, sleep=sleep)
        except TransientRemoteError:
            _save_progress(db, case, photos, result_photos, actor)
            raise
    elif case.photos_folder_link and case.photos_folder_link not in purged:
        # Raw submission: no report, and the old one no longer matches the photos
        if _best_effort_delete(store, case.photos_folder_link, "raw"):
            purged.append(case.photos_folder_link)

    # 5. persist
    case.photos_folder = result_photos
    case.photos_folder_link = link
    case.status = CaseStatus.audit.value
    case.completed_at = datetime.now(timezone.utc)
    case.closed_by = actor
    case.photos_to_redo = []
    case.draft_photos = None
    case.audit_feedback = None
    commit_case(
        db,
        case,
        "case.submitted",
        {"uploaded": uploaded, "purged": len(purged), "report": link is not None},
        actor=actor,
    )
    return SubmissionResult(
        case_id=case.id,
        status=case.status,
        photos_folder_link=link,
        uploaded=uploaded,
        purged=purged,
    )


def _save_progress(
    db: Session,
    case: Case,
    photos: Dict[str, List[Dict]],
    done: Dict[str, List[Dict]],
    actor: Optional[str],
) -> None:
    """Write already-uploaded URLs back into the draft so a retry skips them."""
    merged: Dict[str, List[Dict]] = {}
    for category, entries in photos.items():
        finished = {p["id"]: p for p in done.get(category, [])}
        merged[category] = [finished.get(entry["id"], entry) for entry in entries]
    if merged == (case.draft_photos or {}):
        return
    case.draft_photos = merged
    commit_case(db, case, "case.submit_progress", {"uploaded": sum(len(v) for v in done.values())}, actor=actor)


# ── Background jobs ──────────────────────────────────────────────────


def enqueue_submission(
    db: Session,
    case_id: str,
    *,
    actor: Optional[str] = None,
    expected_rev: Optional[int] = None,
    attempt_id: Optional[str] = None,
) -> Job:
    """Validate synchronously and record a pending submit job (idempotent per attempt id)."""
    case = get_case(db, case_id)
    if attempt_id:
        existing = db.scalars(
            select(Job).where(Job.case_id == case_id, Job.attempt_id == attempt_id)
        ).first()
        if existing is not None:
            return existing
    check_rev(case, expected_rev)
    assert_transition(case, CaseStatus.audit.value)
    ensure_ready(case)

    job = Job(
        id=uuid.uuid4().hex,
        case_id=case_id,
        attempt_id=attempt_id or uuid.uuid4().hex,
        kind="submit",
        status=JobStatus.pending.value,
        requested_by=actor,
        result_json={"expected_rev": expected_rev},
    )
    db.add(job)
    append_audit_event(db, case_id, "job.created", {"job_id": job.id, "kind": "submit"}, actor=actor)
    db.commit()
    db.refresh(job)
    return job


def run_submit_job(
    db: Session,
    job_id: str,
    *,
    store: Optional[ObjectStore] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Job:
    """Execute a submit job and record its outcome on the job row."""
    job = db.get(Job, job_id)
    if job is None:
        raise FieldVerifyError(f"Job {job_id} not found")
    if job.status == JobStatus.complete.value:
        return job

    expected_rev = (job.result_json or {}).get("expected_rev")
    job.status = JobStatus.running.value
    db.commit()

    try:
        result = submit_case(
            db,
            job.case_id,
            actor=job.requested_by,
            expected_rev=expected_rev,
            store=store,
            sleep=sleep,
        )
    except FieldVerifyError as exc:
        db.rollback()
        logger.warning("Submit job %s for case %s failed: %s", job.id, job.case_id, exc.message)
        job.status = JobStatus.failed.value
        job.error_detail = exc.message
        job.result_json = exc.to_dict()
        append_audit_event(
            db, job.case_id, "job.failed",
            {"job_id": job.id, "kind": job.kind, "error": exc.code},
            actor=job.requested_by,
        )
        db.commit()
        return job

    job.status = JobStatus.complete.value
    job.error_detail = None
    job.result_json = result.to_dict()
    append_audit_event(db, job.case_id, "job.complete", {"job_id": job.id, "kind": job.kind}, actor=job.requested_by)
    db.commit()
    return job
