"""Cases API — listing, assignment, field capture and submission."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    HTTPException,
    Query,
    UploadFile,
    WebSocket,
    WebSocketDisconnect,
)
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.orm import Session

from fieldverify.api.deps import (
    actor_name,
    current_member,
    ensure_can_work,
    member_from_token,
    require_admin,
)
from fieldverify.api.schemas import (
    AssignmentOut,
    AssignRequest,
    CaseOut,
    ChecklistOut,
    FormIn,
    JobOut,
    PhotoOut,
    SubmitRequest,
)
from fieldverify.core.database import SessionLocal, get_db
from fieldverify.core.errors import ConsistencyWarning, FieldVerifyError, ValidationError
from fieldverify.models.case import Case
from fieldverify.models.job import Job
from fieldverify.models.member import Member
from fieldverify.services import assignment, capture, policy, submission
from fieldverify.services.change_feed import feed
from fieldverify.services.lifecycle import get_case
from fieldverify.workers.celery_app import submit_case_task

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cases", tags=["cases"])


@router.get("", response_model=list[CaseOut])
def list_cases(
    status: Optional[str] = Query(None),
    assigned_to: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    member: Member = Depends(current_member),
):
    """Admins see every case; members only the cases assigned to them."""
    stmt = select(Case).order_by(Case.created_at.desc())
    if not member.is_admin:
        stmt = stmt.where(Case.assigned_to == member.id)
    elif assigned_to:
        stmt = stmt.where(Case.assigned_to == assigned_to)
    if status:
        stmt = stmt.where(Case.status == status)
    return db.scalars(stmt.limit(500)).all()


@router.post("/assign", response_model=AssignmentOut)
def assign_cases(
    body: AssignRequest,
    db: Session = Depends(get_db),
    admin: Member = Depends(require_admin),
):
    result = assignment.assign(
        db, body.case_ids, body.member_name,
        actor=actor_name(admin), expected_revs=body.expected_revs,
    )
    if not result.ok:
        warning = ConsistencyWarning(
            f"{len(result.failed)} of {len(body.case_ids)} cases could not be assigned",
            result=result.to_dict(),
        )
        return JSONResponse(status_code=warning.status_code, content=warning.to_dict())
    return result.to_dict()


@router.get("/{case_id}", response_model=CaseOut)
def read_case(case_id: str, db: Session = Depends(get_db), member: Member = Depends(current_member)):
    case = get_case(db, case_id)
    if not member.is_admin:
        ensure_can_work(case, member)
    return case


@router.get("/{case_id}/checklist", response_model=ChecklistOut)
def read_checklist(case_id: str, db: Session = Depends(get_db), member: Member = Depends(current_member)):
    case = get_case(db, case_id)
    ensure_can_work(case, member)
    return policy.checklist(case)


@router.post("/{case_id}/photos/{category}", response_model=PhotoOut, status_code=201)
def upload_photo(
    case_id: str,
    category: str,
    file: UploadFile = File(...),
    latitude: Optional[float] = Form(None),
    longitude: Optional[float] = Form(None),
    timestamp: Optional[str] = Form(None),
    expected_rev: Optional[int] = Form(None),
    db: Session = Depends(get_db),
    member: Member = Depends(current_member),
):
    capture.ensure_member_writes_enabled(member)
    case = get_case(db, case_id)
    ensure_can_work(case, member)
    data = file.file.read()
    if not data:
        raise ValidationError("Empty photo upload")
    suffix = Path(file.filename or "").suffix or ".jpg"
    uri = capture.stage_upload(case.id, category, data, suffix)
    geotag = None
    if latitude is not None and longitude is not None:
        geotag = {"latitude": latitude, "longitude": longitude}
    return capture.capture_photo(
        db, case, category, uri,
        timestamp=timestamp, geotag=geotag,
        actor=actor_name(member), expected_rev=expected_rev,
    )


@router.delete("/{case_id}/photos/{category}/{index}", response_model=PhotoOut)
def remove_photo(
    case_id: str,
    category: str,
    index: int,
    expected_rev: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    member: Member = Depends(current_member),
):
    capture.ensure_member_writes_enabled(member)
    case = get_case(db, case_id)
    ensure_can_work(case, member)
    return capture.delete_photo(
        db, case, category, index, actor=actor_name(member), expected_rev=expected_rev
    )


@router.put("/{case_id}/form", response_model=CaseOut)
def complete_form(
    case_id: str,
    body: FormIn,
    db: Session = Depends(get_db),
    member: Member = Depends(current_member),
):
    case = get_case(db, case_id)
    ensure_can_work(case, member)
    return capture.record_form(db, case, body.url, actor=actor_name(member), expected_rev=body.expected_rev)


@router.post("/{case_id}/submit", response_model=JobOut, status_code=202)
def submit_case(
    case_id: str,
    body: SubmitRequest | None = None,
    db: Session = Depends(get_db),
    member: Member = Depends(current_member),
):
    """Validate readiness now; upload and report generation run as a job."""
    body = body or SubmitRequest()
    capture.ensure_member_writes_enabled(member)
    case = get_case(db, case_id)
    ensure_can_work(case, member)
    job = submission.enqueue_submission(
        db, case.id,
        actor=actor_name(member), expected_rev=body.expected_rev, attempt_id=body.attempt_id,
    )
    job_id = job.id
    if job.status in ("pending", "failed"):
        submit_case_task.delay(job_id)
    db.expire_all()
    return db.get(Job, job_id)


# ── Live updates ─────────────────────────────────────────────────────


def _snapshot(case_id: str, token: Optional[str]) -> dict:
    db = SessionLocal()
    try:
        member = member_from_token(db, token)
        case = get_case(db, case_id)
        ensure_can_work(case, member)
        return CaseOut.model_validate(case).model_dump(mode="json", by_alias=True)
    finally:
        db.close()


@router.websocket("/{case_id}/live")
async def case_live(websocket: WebSocket, case_id: str, token: Optional[str] = Query(None)):
    """Push the case snapshot on connect, then every committed change."""
    await websocket.accept()
    try:
        snapshot = await run_in_threadpool(_snapshot, case_id, token)
    except FieldVerifyError as exc:
        await websocket.send_json({"type": "error", **exc.to_dict()})
        await websocket.close(code=4000 + exc.status_code % 1000)
        return
    except HTTPException as exc:
        logger.info("Live subscription to %s refused: %s", case_id, exc.detail)
        await websocket.close(code=4401)
        return

    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()
    unsubscribe = feed.subscribe(lambda change: loop.call_soon_threadsafe(queue.put_nowait, change), case_id)

    async def forward_changes():
        while True:
            change = await queue.get()
            await websocket.send_json({"type": "change", **change.to_dict()})

    sender = None
    try:
        await websocket.send_json({"type": "snapshot", "case": snapshot})
        sender = asyncio.create_task(forward_changes())
        # Client messages are ignored; receiving only detects the disconnect
        while (await websocket.receive())["type"] != "websocket.disconnect":
            pass
    except WebSocketDisconnect:
        logger.debug("Live subscriber for %s dropped mid-send", case_id)
    finally:
        if sender is not None:
            sender.cancel()
        unsubscribe()
