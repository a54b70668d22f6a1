"""Initial schema — cases, members, reverted_cases, audit_events, jobs, mail_records

Revision ID: 0001_initial
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(JSONB(), "postgresql")


def _ts(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    # -- cases --
    op.create_table(
        "cases",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("matrix_ref_no", sa.String(128), nullable=False),
        sa.Column("client", sa.String(256), nullable=False, server_default=""),
        sa.Column("company", sa.String(256), nullable=False, server_default=""),
        sa.Column("check_type", sa.String(128), nullable=False, server_default=""),
        sa.Column("chk_type", sa.String(128), nullable=False, server_default=""),
        sa.Column("ces_type", sa.String(32), nullable=True),
        sa.Column("candidate_name", sa.String(256), nullable=False, server_default=""),
        sa.Column("address", sa.Text, nullable=False, server_default=""),
        sa.Column("city", sa.String(128), nullable=False, server_default=""),
        sa.Column("state", sa.String(128), nullable=False, server_default=""),
        sa.Column("pincode", sa.String(16), nullable=False, server_default=""),
        sa.Column("contact_number", sa.String(64), nullable=False, server_default=""),
        sa.Column("status", sa.String(16), nullable=False, server_default="fired"),
        _ts("date_initiated"),
        _ts("assigned_at"),
        _ts("completed_at"),
        _ts("finalized_at"),
        _ts("ingested_at"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("assigned_to", sa.String(36), nullable=True),
        sa.Column("assignee_name", sa.String(256), nullable=True),
        sa.Column("assignee_role", sa.String(32), nullable=True),
        sa.Column("photos_folder", JSONType, nullable=False),
        sa.Column("draft_photos", JSONType, nullable=True),
        sa.Column("photos_folder_link", sa.Text, nullable=True),
        sa.Column("filled_form", JSONType, nullable=True),
        sa.Column("form_completed", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("audit_feedback", sa.Text, nullable=True),
        sa.Column("photos_to_redo", JSONType, nullable=False),
        sa.Column("finalize_pending", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("finalize_error", sa.Text, nullable=True),
        sa.Column("finalized_by", sa.String(256), nullable=True),
        sa.Column("closed_by", sa.String(256), nullable=True),
        sa.Column("comments", sa.Text, nullable=True),
        sa.Column("ingest_batch_id", sa.String(36), nullable=True),
        sa.Column("rev", sa.Integer, nullable=False, server_default="1"),
    )
    op.create_index("ix_cases_matrix_ref_no", "cases", ["matrix_ref_no"])
    op.create_index("ix_cases_status", "cases", ["status"])
    op.create_index("ix_cases_assigned_to", "cases", ["assigned_to"])
    op.create_index("ix_cases_ingest_batch_id", "cases", ["ingest_batch_id"])

    # -- members --
    op.create_table(
        "members",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("email", sa.String(320), nullable=False, unique=True),
        sa.Column("role", sa.String(16), nullable=False, server_default="member"),
        sa.Column("unique_id", sa.String(4), nullable=True, unique=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="active"),
        sa.Column("is_verified", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("city", sa.String(128), nullable=True),
        sa.Column("pincode", sa.String(16), nullable=True),
        sa.Column("blood_group", sa.String(8), nullable=True),
        sa.Column("photo_url", sa.String(1024), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_members_name", "members", ["name"])

    # -- reverted_cases --
    op.create_table(
        "reverted_cases",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("matrix_ref_no", sa.String(128), nullable=False),
        sa.Column("snapshot_json", JSONType, nullable=False),
        sa.Column("reverted_by", sa.String(256), nullable=False),
        sa.Column("revert_reason", sa.Text, nullable=False),
        sa.Column("reverted_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_reverted_cases_matrix_ref_no", "reverted_cases", ["matrix_ref_no"])

    # -- audit_events --
    op.create_table(
        "audit_events",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("case_id", sa.String(36), nullable=True),
        sa.Column("event_type", sa.String(128), nullable=False),
        sa.Column("actor", sa.String(256), nullable=True),
        sa.Column("payload_json", JSONType, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_audit_events_case_id", "audit_events", ["case_id"])

    # -- jobs --
    op.create_table(
        "jobs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("case_id", sa.String(36), nullable=False),
        sa.Column("attempt_id", sa.String(64), nullable=False),
        sa.Column("kind", sa.String(32), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("requested_by", sa.String(256), nullable=True),
        sa.Column("error_detail", sa.Text, nullable=True),
        sa.Column("result_json", JSONType, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("case_id", "attempt_id", name="uq_jobs_case_attempt"),
    )
    op.create_index("ix_jobs_case_id", "jobs", ["case_id"])

    # -- mail_records --
    op.create_table(
        "mail_records",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("case_id", sa.String(36), nullable=True),
        sa.Column("ref_no", sa.String(128), nullable=True),
        sa.Column("subject", sa.String(512), nullable=False),
        sa.Column("recipient", sa.String(320), nullable=False),
        sa.Column("sent_by", sa.String(256), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_mail_records_case_id", "mail_records", ["case_id"])


def downgrade() -> None:
    op.drop_table("mail_records")
    op.drop_table("jobs")
    op.drop_table("audit_events")
    op.drop_table("reverted_cases")
    op.drop_table("members")
    op.drop_table("cases")
