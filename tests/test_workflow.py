"""
End-to-end case workflow
=========================
Drives a case through the service layer the way the field app and the audit
desk do:

  - ingest -> assign -> capture + form -> submit -> approve
  - audit rejects one category -> only that category is recaptured ->
    resubmission purges the old objects and clears the redo list
"""

import pytest
from sqlalchemy import select

from conftest import jpeg_bytes
from fieldverify.core.errors import IncompleteRequirementsError
from fieldverify.models.case import Case
from fieldverify.services.assignment import assign
from fieldverify.services.capture import capture_photo, record_form, stage_upload
from fieldverify.services.ingestion import ingest_rows
from fieldverify.services.members import create_member
from fieldverify.services.policy import checklist, select_policy
from fieldverify.services.review import approve, reject
from fieldverify.services.submission import submit_case

GEOTAG = {"latitude": 28.61, "longitude": 77.21}


class AcceptingRelay:
    def __init__(self):
        self.sent = []

    def send(self, **kwargs):
        self.sent.append(kwargs)


def _capture_all(db, case, color="red"):
    for req in select_policy(case).requirements:
        for _ in range(req.needed):
            uri = stage_upload(case.id, req.category_id, jpeg_bytes(color))
            capture_photo(db, case, req.category_id, uri, geotag=GEOTAG, actor="alice@example.com")


@pytest.fixture()
def alice(db):
    return create_member(db, name="Alice", email="alice@example.com")


@pytest.fixture()
def submitted_case(db, alice, store):
    result = ingest_rows(
        db,
        [{
            "RefNo": "R100",
            "Client": "Acme Corp",
            "company": "Acme Corp",
            "Check type": "Address",
            "Candidate Name": "Jane Doe",
            "Address": "7 Janpath",
            "Location": "New Delhi",
            "State": "Delhi",
            "Pincode": "110001",
        }],
    )
    assert result.added == 1
    case = db.scalars(select(Case).where(Case.matrix_ref_no == "R100")).one()
    assert case.status == "fired"

    assignment = assign(db, [case.id], "Alice")
    assert assignment.assigned == [case.id]
    assert case.status == "assigned"
    assert case.assigned_to == alice.id

    with pytest.raises(IncompleteRequirementsError):
        submit_case(db, case.id, store=store)

    _capture_all(db, case)
    record_form(db, case, "https://forms.example.com/R100.pdf")
    assert checklist(case)["ready"]

    outcome = submit_case(db, case.id, actor="alice@example.com", store=store)
    assert outcome.status == "audit"
    return case


class TestHappyPath:
    def test_ingest_to_completed(self, db, submitted_case):
        case = submitted_case
        assert case.status == "audit"
        assert case.photos_folder_link
        assert case.draft_photos is None

        relay = AcceptingRelay()
        approve(db, case, "client@example.com", actor="admin@example.com", relay=relay)
        db.refresh(case)
        assert case.status == "completed"
        assert case.filled_form is None
        assert case.form_completed is True
        assert relay.sent[0]["subject"] == "Case Approved: R100"

    def test_resubmitting_remote_photos_uploads_nothing(self, db, submitted_case, store):
        case = submitted_case
        reject(db, case, "please confirm the address", [])
        assert case.status == "assigned"
        outcome = submit_case(db, case.id, store=store)
        assert outcome.uploaded == 0


class TestRedoPath:
    def test_redo_selfie_only(self, db, submitted_case, store):
        case = submitted_case
        house_before = [p["uri"] for p in case.photos_folder["house"]]
        old_selfies = [p["uri"] for p in case.photos_folder["selfie"]]

        reject(db, case, "blurry", ["selfie"])
        assert case.status == "assigned"
        counts = {item["category_id"]: item["count"] for item in checklist(case)["items"]}
        assert counts["selfie"] == 0
        assert counts["house"] == 2
        assert counts["proof"] == 2
        assert counts["landmark"] == 1
        assert checklist(case)["missing"] == ["selfie"]

        uri = stage_upload(case.id, "selfie", jpeg_bytes("green"))
        fresh = capture_photo(db, case, "selfie", uri, geotag=GEOTAG)

        outcome = submit_case(db, case.id, store=store)
        db.refresh(case)
        assert outcome.uploaded == 1
        assert case.status == "audit"
        assert case.photos_to_redo == []
        assert case.audit_feedback is None
        assert [p["id"] for p in case.photos_folder["selfie"]] == [fresh["id"]]
        assert not set(old_selfies) & {p["uri"] for p in case.photos_folder["selfie"]}
        assert [p["uri"] for p in case.photos_folder["house"]] == house_before
        for old in old_selfies:
            assert old in outcome.purged
            assert store.open_url(old) is None
