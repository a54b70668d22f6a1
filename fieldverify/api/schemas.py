"""Pydantic request / response schemas for the API layer."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


# ── Members ──────────────────────────────────────────────────────────


class MemberCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=256)
    email: str = Field(..., min_length=3, max_length=320)
    role: str = "member"
    city: str | None = None
    pincode: str | None = None
    blood_group: str | None = None
    photo_url: str | None = None


class MemberOut(BaseModel):
    id: str
    name: str
    email: str
    role: str
    unique_id: str | None = None
    status: str
    is_verified: bool
    city: str | None = None
    pincode: str | None = None
    blood_group: str | None = None
    photo_url: str | None = None
    created_at: datetime

    class Config:
        from_attributes = True


# ── Cases ────────────────────────────────────────────────────────────


class CaseOut(BaseModel):
    id: str
    matrix_ref_no: str = Field(..., serialization_alias="matrixRefNo")
    client: str
    company: str
    check_type: str
    chk_type: str
    ces_type: str | None = None
    candidate_name: str
    address: str
    city: str
    state: str
    pincode: str
    contact_number: str
    status: str
    date_initiated: datetime | None = None
    assigned_at: datetime | None = None
    completed_at: datetime | None = None
    finalized_at: datetime | None = None
    ingested_at: datetime | None = None
    assigned_to: str | None = None
    assignee_name: str | None = None
    assignee_role: str | None = None
    photos_folder: dict = Field(default_factory=dict)
    draft_photos: dict | None = None
    photos_folder_link: str | None = None
    filled_form: dict | None = None
    form_completed: bool = False
    audit_feedback: str | None = None
    photos_to_redo: list = Field(default_factory=list)
    finalize_pending: bool = False
    finalize_error: str | None = None
    finalized_by: str | None = None
    closed_by: str | None = None
    comments: str | None = None
    ingest_batch_id: str | None = None
    rev: int

    class Config:
        from_attributes = True


class RevisionIn(BaseModel):
    expected_rev: int | None = None


class AssignRequest(BaseModel):
    case_ids: list[str]
    member_name: str = ""
    expected_revs: dict[str, int] | None = None


class AssignmentOut(BaseModel):
    member_id: str
    member_name: str
    assigned: list[str]
    reassigned: list[str]
    failed: dict[str, str]


class FormIn(RevisionIn):
    url: str = Field(..., min_length=1)


class SubmitRequest(RevisionIn):
    attempt_id: str | None = Field(None, max_length=64)


class PhotoOut(BaseModel):
    uri: str
    timestamp: str
    geotag: dict | None = None
    address: str
    category: str
    id: str


class ChecklistItemOut(BaseModel):
    category_id: str
    label: str
    min: int | None = None
    max: int
    count: int
    required: bool
    satisfied: bool


class ChecklistOut(BaseModel):
    policy: str
    items: list[ChecklistItemOut]
    form_required: bool
    form_completed: bool
    missing: list[str]
    ready: bool
    redo: list[str]
    feedback: str | None = None


# ── Audit ────────────────────────────────────────────────────────────


class ApproveRequest(RevisionIn):
    recipient: str = Field(..., min_length=3)
    attempt_id: str | None = Field(None, max_length=64)


class RejectRequest(RevisionIn):
    feedback: str | None = None
    redo: list[str] = Field(default_factory=list)


class RevertRequest(RevisionIn):
    reason: str = ""


class RevertedOut(BaseModel):
    id: str
    matrix_ref_no: str = Field(..., serialization_alias="matrixRefNo")
    snapshot_json: dict
    reverted_by: str
    revert_reason: str
    reverted_at: datetime

    class Config:
        from_attributes = True


class ReassignRequest(BaseModel):
    member_name: str = Field(..., min_length=1)


# ── Jobs ─────────────────────────────────────────────────────────────


class JobOut(BaseModel):
    id: str
    case_id: str
    attempt_id: str
    kind: str
    status: str
    requested_by: str | None = None
    error_detail: str | None = None
    result_json: dict | None = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


# ── Ingestion ────────────────────────────────────────────────────────


class IngestRowsIn(BaseModel):
    rows: list[dict[str, Any]]


class IngestOut(BaseModel):
    batch_id: str
    added: int
    duplicates: int
    skipped: int
    assigned: int
    case_ids: list[str]


# ── Mail ─────────────────────────────────────────────────────────────


class MailRecordOut(BaseModel):
    id: str
    case_id: str | None = None
    ref_no: str | None = None
    subject: str
    recipient: str
    sent_by: str | None = None
    sent_at: datetime

    class Config:
        from_attributes = True
