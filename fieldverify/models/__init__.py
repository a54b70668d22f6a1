"""ORM models package — re-exports all models for Alembic auto-detection."""

from fieldverify.models.case import Case, CaseStatus  # noqa: F401
from fieldverify.models.member import Member, MemberRole, MemberStatus  # noqa: F401
from fieldverify.models.reverted_case import RevertedCase  # noqa: F401
from fieldverify.models.audit_event import AuditEvent  # noqa: F401
from fieldverify.models.job import Job, JobStatus  # noqa: F401
from fieldverify.models.mail_record import MailRecord  # noqa: F401
