"""Ingestion API — spreadsheet or JSON rows into fired cases."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from fieldverify.api.deps import actor_name, require_admin
from fieldverify.api.schemas import IngestOut, IngestRowsIn
from fieldverify.core.database import get_db
from fieldverify.core.errors import ValidationError
from fieldverify.models.member import Member
from fieldverify.services import ingestion

router = APIRouter(prefix="/ingest", tags=["ingest"])


@router.post("", response_model=IngestOut, status_code=201)
async def ingest(
    request: Request,
    mode: str = Query("manual", pattern="^(manual|automate)$"),
    db: Session = Depends(get_db),
    admin: Member = Depends(require_admin),
):
    """Accept a multipart ``file`` (.xlsx) or a JSON body ``{"rows": [...]}``."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("multipart/form-data"):
        form = await request.form()
        upload = form.get("file")
        if upload is None or isinstance(upload, str):
            raise ValidationError("Expected an .xlsx file in field 'file'")
        data = await upload.read()
        rows = await run_in_threadpool(ingestion.read_workbook, data)
    else:
        try:
            payload = IngestRowsIn.model_validate(await request.json())
        except ValueError as exc:
            raise ValidationError(f"Invalid ingest body: {exc}") from exc
        rows = payload.rows

    result = await run_in_threadpool(
        ingestion.ingest_rows, db, rows, mode, actor=actor_name(admin)
    )
    return result.to_dict()


@router.delete("/batches/{batch_id}")
def reverse_batch(batch_id: str, db: Session = Depends(get_db), admin: Member = Depends(require_admin)):
    deleted = ingestion.reverse_batch(db, batch_id, actor=actor_name(admin))
    return {"batch_id": batch_id, "deleted": deleted}
