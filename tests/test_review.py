"""
Tests for the audit workflow
=============================
Verifies:
  - Approve completes the case only after the relay accepted the mail.
  - A relay failure leaves the case in audit with the failure recorded.
  - Finalize attempts are idempotent per attempt id.
  - Reject sends the case back with feedback and redo items.
  - Rectify reopens completed cases for audit.
"""

import pytest
from sqlalchemy import select

from conftest import make_case
from fieldverify.api.deps import get_mail_relay
from fieldverify.core.errors import InvalidTransitionError, TransientRemoteError, ValidationError
from fieldverify.main import app
from fieldverify.models.job import Job
from fieldverify.models.mail_record import MailRecord
from fieldverify.services.review import approve, rectify, reject


class FakeRelay:
    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    def send(self, **kwargs):
        if self.fail:
            raise TransientRemoteError("Mail relay returned 500: boom")
        self.sent.append(kwargs)


def _audited(db, member, **kw):
    values = dict(
        status="audit",
        assigned_to=member.id,
        photos_folder={"house": [{"uri": "https://cdn.example.com/h.jpg"}]},
        photos_folder_link="https://cdn.example.com/report.pdf",
        filled_form={"url": "https://forms.example.com/1.pdf"},
        form_completed=True,
    )
    values.update(kw)
    return make_case(db, **values)


class TestApprove:
    def test_success(self, db, member):
        case = _audited(db, member)
        relay = FakeRelay()
        approve(db, case, "client@example.com", actor="admin@example.com", relay=relay)
        assert case.status == "completed"
        assert case.finalized_by == "admin@example.com"
        assert case.finalized_at is not None
        assert case.finalize_pending is False
        assert case.filled_form is None

        mail = relay.sent[0]
        assert mail["to"] == "client@example.com"
        assert mail["subject"] == "Case Approved: MX-1001"
        assert "Candidate Name: Priya Sharma" in mail["body"]
        assert [a.filename for a in mail["attachments"]] == ["Report_MX-1001.pdf", "Form_MX-1001.pdf"]

        record = db.scalars(select(MailRecord)).one()
        assert record.recipient == "client@example.com"
        assert record.case_id == case.id
        job = db.scalars(select(Job).where(Job.kind == "finalize")).one()
        assert job.status == "complete"

    def test_relay_failure_keeps_audit(self, db, member):
        case = _audited(db, member)
        with pytest.raises(TransientRemoteError):
            approve(db, case, "client@example.com", relay=FakeRelay(fail=True), attempt_id="fin-1")
        db.refresh(case)
        assert case.status == "audit"
        assert case.finalize_pending is True
        assert "boom" in case.finalize_error
        assert db.scalars(select(MailRecord)).all() == []
        job = db.scalars(select(Job).where(Job.attempt_id == "fin-1")).one()
        assert job.status == "failed"

        # retrying the same attempt succeeds and reuses the job row
        approve(db, case, "client@example.com", relay=FakeRelay(), attempt_id="fin-1")
        assert case.status == "completed"
        assert case.finalize_error is None
        assert len(db.scalars(select(Job)).all()) == 1

    def test_relay_rejection_recorded(self, db, member):
        class RejectingRelay:
            def send(self, **kwargs):
                raise ValidationError("Mail relay rejected the request (400): Missing required email fields.")

        case = _audited(db, member)
        with pytest.raises(ValidationError):
            approve(db, case, "client@example.com", relay=RejectingRelay(), attempt_id="fin-2")
        db.refresh(case)
        assert case.status == "audit"
        assert case.finalize_pending is True
        assert "Missing required email fields." in case.finalize_error
        assert db.scalars(select(Job).where(Job.attempt_id == "fin-2")).one().status == "failed"

    def test_completed_attempt_is_noop(self, db, member):
        case = _audited(db, member)
        relay = FakeRelay()
        approve(db, case, "client@example.com", relay=relay, attempt_id="fin-1")
        approve(db, case, "client@example.com", relay=relay, attempt_id="fin-1")
        assert len(relay.sent) == 1

    def test_only_from_audit(self, db, member):
        case = make_case(db, status="assigned", assigned_to=member.id)
        with pytest.raises(InvalidTransitionError):
            approve(db, case, "client@example.com", relay=FakeRelay())

    def test_recipient_required(self, db, member):
        case = _audited(db, member)
        with pytest.raises(ValidationError):
            approve(db, case, "", relay=FakeRelay())


class TestReject:
    def test_reject_with_redo(self, db, member):
        case = _audited(db, member)
        reject(db, case, None, ["house", "form"], actor="admin@example.com")
        assert case.status == "assigned"
        assert case.photos_to_redo == ["house"]
        assert case.form_completed is False
        assert case.filled_form is None
        assert case.audit_feedback == "Redo required: House/Building View, Form"
        assert case.completed_at is None

    def test_feedback_only(self, db, member):
        case = _audited(db, member)
        reject(db, case, "Photos are blurry", [])
        assert case.audit_feedback == "Photos are blurry"
        assert case.photos_to_redo == []
        assert case.form_completed is True

    def test_needs_feedback_or_redo(self, db, member):
        case = _audited(db, member)
        with pytest.raises(ValidationError):
            reject(db, case, "  ", [])

    def test_unknown_category(self, db, member):
        case = _audited(db, member)
        with pytest.raises(ValidationError):
            reject(db, case, None, ["garage"])

    def test_only_from_audit(self, db, member):
        case = make_case(db, status="assigned", assigned_to=member.id)
        with pytest.raises(InvalidTransitionError):
            reject(db, case, "x", [])


class TestRectify:
    def test_reopens_completed(self, db, member):
        case = _audited(db, member, status="completed")
        rectify(db, case)
        assert case.status == "audit"

    def test_reopens_closed(self, db, member):
        case = _audited(db, member, status="closed")
        rectify(db, case)
        assert case.status == "audit"

    def test_not_from_assigned(self, db, member):
        case = make_case(db, status="assigned", assigned_to=member.id)
        with pytest.raises(InvalidTransitionError):
            rectify(db, case)


class TestAuditEndpoints:
    def test_approve_endpoint(self, client, db, member, admin_headers):
        case = _audited(db, member)
        relay = FakeRelay()
        app.dependency_overrides[get_mail_relay] = lambda: relay
        resp = client.post(
            f"/cases/{case.id}/approve", headers=admin_headers,
            json={"recipient": "client@example.com", "expected_rev": case.rev},
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["status"] == "completed"
        mails = client.get("/mails", headers=admin_headers).json()
        assert [m["recipient"] for m in mails] == ["client@example.com"]

    def test_approve_relay_failure_is_502(self, client, db, member, admin_headers):
        case = _audited(db, member)
        app.dependency_overrides[get_mail_relay] = lambda: FakeRelay(fail=True)
        resp = client.post(f"/cases/{case.id}/approve", headers=admin_headers, json={"recipient": "client@example.com"})
        assert resp.status_code == 502
        assert resp.json()["error"] == "remote_failure"
        body = client.get(f"/cases/{case.id}", headers=admin_headers).json()
        assert body["status"] == "audit"
        assert body["finalize_pending"] is True

    def test_reject_and_rectify_endpoints(self, client, db, member, admin_headers, member_headers):
        case = _audited(db, member)
        resp = client.post(f"/cases/{case.id}/reject", headers=admin_headers, json={"redo": ["selfie"]})
        assert resp.status_code == 200
        assert resp.json()["photos_to_redo"] == ["selfie"]
        assert client.post(f"/cases/{case.id}/rectify", headers=admin_headers).status_code == 409

    def test_members_cannot_audit(self, client, db, member, member_headers):
        case = _audited(db, member)
        resp = client.post(f"/cases/{case.id}/reject", headers=member_headers, json={"feedback": "x"})
        assert resp.status_code == 403
