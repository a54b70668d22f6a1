"""Jobs API — progress of background submission and finalize attempts."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from fieldverify.api.deps import current_member
from fieldverify.api.schemas import JobOut
from fieldverify.core.database import get_db
from fieldverify.core.errors import NotFoundError
from fieldverify.models.job import Job
from fieldverify.models.member import Member

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.get("", response_model=list[JobOut])
def list_jobs(
    case_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    member: Member = Depends(current_member),
):
    """List jobs, optionally filtered by case_id or status."""
    stmt = select(Job).order_by(Job.created_at.desc())
    if case_id is not None:
        stmt = stmt.where(Job.case_id == case_id)
    if status is not None:
        stmt = stmt.where(Job.status == status)
    return db.scalars(stmt.limit(200)).all()


@router.get("/{job_id}", response_model=JobOut)
def read_job(job_id: str, db: Session = Depends(get_db), member: Member = Depends(current_member)):
    job = db.get(Job, job_id)
    if job is None:
        raise NotFoundError(f"Job {job_id} not found")
    return job
