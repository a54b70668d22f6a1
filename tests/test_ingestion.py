"""
Tests for spreadsheet ingestion
================================
Verifies:
  - Header mapping, cell normalisation and date parsing.
  - Re-ingesting the same rows adds nothing.
  - Automate mode assigns by the ``fe name`` column.
  - Batches can be reversed.
  - The /ingest endpoint accepts .xlsx uploads and JSON rows.
"""

import io
from datetime import date, datetime, timezone

import pytest
from openpyxl import Workbook
from sqlalchemy import select

from fieldverify.core.errors import NotFoundError, ValidationError
from fieldverify.models.audit_event import AuditEvent
from fieldverify.models.case import Case
from fieldverify.services.ingestion import (
    cell_text,
    ingest_rows,
    parse_date,
    read_workbook,
    reverse_batch,
)

NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


def _row(ref="MX-1", **kw):
    row = {
        "Reference ID": ref,
        "Client": "Acme",
        "company": "Acme",
        "Check type": "Address",
        "ChkType": "Residence",
        "Candidate Name": "Priya",
        "Address": "12 MG Road",
        "Contact Number": 9800000000,
        "Location": "Bengaluru",
        "State": "KA",
        "Pincode": 560001.0,
        "Date Initiated": "05-02-2026",
    }
    row.update(kw)
    return row


def _xlsx(rows):
    wb = Workbook()
    ws = wb.active
    header = list(rows[0].keys())
    ws.append(header)
    for r in rows:
        ws.append([r.get(h) for h in header])
    ws.append([None] * len(header))
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


class TestCellHelpers:
    def test_cell_text(self):
        assert cell_text(None) == ""
        assert cell_text(560001.0) == "560001"
        assert cell_text(1.5) == "1.5"
        assert cell_text("abc") == "abc"

    def test_parse_day_first_string(self):
        assert parse_date("05-02-2026", now=NOW) == datetime(2026, 2, 5, tzinfo=timezone.utc)

    def test_parse_iso_string(self):
        assert parse_date("2026-02-05", now=NOW) == datetime(2026, 2, 5, tzinfo=timezone.utc)

    def test_parse_serial_number(self):
        assert parse_date(45000, now=NOW) == datetime(2023, 3, 15, tzinfo=timezone.utc)

    def test_parse_date_cell(self):
        assert parse_date(date(2026, 1, 2), now=NOW) == datetime(2026, 1, 2, tzinfo=timezone.utc)

    def test_unparseable_is_now(self):
        assert parse_date("someday", now=NOW) == NOW
        assert parse_date(None, now=NOW) == NOW
        assert parse_date("31-02-2026", now=NOW) == NOW


class TestIngestRows:
    def test_creates_fired_cases(self, db):
        result = ingest_rows(db, [_row("MX-1"), _row("MX-2")])
        assert result.added == 2
        cases = db.scalars(select(Case).order_by(Case.matrix_ref_no)).all()
        assert [c.matrix_ref_no for c in cases] == ["MX-1", "MX-2"]
        case = cases[0]
        assert case.status == "fired"
        assert case.pincode == "560001"
        assert case.contact_number == "9800000000"
        assert case.city == "Bengaluru"
        assert case.ingest_batch_id == result.batch_id
        assert case.date_initiated.replace(tzinfo=None) == datetime(2026, 2, 5)

    def test_reingest_is_idempotent(self, db):
        rows = [_row("MX-1"), _row("MX-2")]
        ingest_rows(db, rows)
        second = ingest_rows(db, rows)
        assert second.added == 0
        assert second.duplicates == 2
        assert len(db.scalars(select(Case)).all()) == 2

    def test_duplicates_within_one_batch(self, db):
        result = ingest_rows(db, [_row("MX-1"), _row("MX-1")])
        assert (result.added, result.duplicates) == (1, 1)

    def test_same_ref_different_address_is_new(self, db):
        result = ingest_rows(db, [_row("MX-1"), _row("MX-1", Address="Other street")])
        assert result.added == 2

    def test_rows_without_reference_skipped(self, db):
        result = ingest_rows(db, [_row(""), _row(None)])
        assert (result.added, result.skipped) == (0, 2)

    def test_reference_aliases(self, db):
        result = ingest_rows(
            db,
            [
                {"RefNo": "R100", "Candidate Name": "Jane Doe"},
                {"matrixRefNo": " R101 ", "Candidate Name": "John Roe"},
                {"Reference ID": "", "RefNo": "R102", "Candidate Name": "Asha Nair"},
            ],
        )
        assert (result.added, result.skipped) == (3, 0)
        refs = db.scalars(select(Case.matrix_ref_no).order_by(Case.matrix_ref_no)).all()
        assert refs == ["R100", "R101", "R102"]

    def test_reference_id_wins_over_aliases(self, db):
        ingest_rows(db, [_row("MX-9", RefNo="R-OTHER")])
        assert db.scalars(select(Case.matrix_ref_no)).one() == "MX-9"

    def test_automate_assigns_by_fe_name(self, db, member):
        result = ingest_rows(
            db,
            [_row("MX-1", **{"fe name": "  ravi KUMAR "}), _row("MX-2", **{"fe name": "Nobody"})],
            "automate",
        )
        assert result.assigned == 1
        assigned = db.scalars(select(Case).where(Case.matrix_ref_no == "MX-1")).one()
        assert assigned.status == "assigned"
        assert assigned.assigned_to == member.id
        unassigned = db.scalars(select(Case).where(Case.matrix_ref_no == "MX-2")).one()
        assert unassigned.status == "fired"

    def test_manual_mode_ignores_fe_name(self, db, member):
        result = ingest_rows(db, [_row("MX-1", **{"fe name": "Ravi Kumar"})], "manual")
        assert result.assigned == 0

    def test_unknown_mode(self, db):
        with pytest.raises(ValidationError):
            ingest_rows(db, [_row()], "bulk")

    def test_batch_is_audited(self, db):
        ingest_rows(db, [_row()], actor="ops@example.com")
        event = db.scalars(select(AuditEvent).where(AuditEvent.event_type == "ingest.batch")).one()
        assert event.actor == "ops@example.com"
        assert event.payload_json["added"] == 1


class TestReverseBatch:
    def test_reverse(self, db):
        keep = ingest_rows(db, [_row("MX-1")])
        drop = ingest_rows(db, [_row("MX-2"), _row("MX-3")])
        assert reverse_batch(db, drop.batch_id) == 2
        db.expire_all()
        refs = [c.matrix_ref_no for c in db.scalars(select(Case)).all()]
        assert refs == ["MX-1"]
        assert keep.batch_id != drop.batch_id

    def test_unknown_batch(self, db):
        with pytest.raises(NotFoundError):
            reverse_batch(db, "missing")


class TestWorkbook:
    def test_read_workbook(self):
        rows = read_workbook(_xlsx([_row("MX-1"), _row("MX-2")]))
        assert len(rows) == 2
        assert rows[0]["Reference ID"] == "MX-1"

    def test_bad_workbook(self):
        with pytest.raises(ValidationError):
            read_workbook(b"not a spreadsheet")


class TestIngestEndpoint:
    def test_upload_xlsx(self, client, admin_headers):
        resp = client.post(
            "/ingest?mode=manual",
            headers=admin_headers,
            files={"file": ("cases.xlsx", _xlsx([_row("MX-1")]), "application/octet-stream")},
        )
        assert resp.status_code == 201, resp.text
        assert resp.json()["added"] == 1

    def test_json_rows(self, client, admin_headers):
        resp = client.post("/ingest", headers=admin_headers, json={"rows": [_row("MX-1"), _row("MX-1")]})
        assert resp.status_code == 201
        body = resp.json()
        assert (body["added"], body["duplicates"]) == (1, 1)

    def test_members_cannot_ingest(self, client, member_headers):
        resp = client.post("/ingest", headers=member_headers, json={"rows": [_row()]})
        assert resp.status_code == 403

    def test_reverse_endpoint(self, client, admin_headers):
        batch = client.post("/ingest", headers=admin_headers, json={"rows": [_row("MX-1")]}).json()["batch_id"]
        resp = client.delete(f"/ingest/batches/{batch}", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["deleted"] == 1
        assert client.delete(f"/ingest/batches/{batch}", headers=admin_headers).status_code == 404
