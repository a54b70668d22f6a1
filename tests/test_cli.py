"""
Tests for the fieldverify command line.
"""

import json

from openpyxl import Workbook
from sqlalchemy import select

from fieldverify.cli import main
from fieldverify.core.security import verify_claim
from fieldverify.models.case import Case
from fieldverify.models.member import Member


def test_create_member(db, capsys):
    assert main(["create-member", "--name", "Anil Rao", "--email", "Anil@Example.com"]) == 0
    out = json.loads(capsys.readouterr().out)
    member = db.scalars(select(Member).where(Member.email == "anil@example.com")).one()
    assert out["id"] == member.id
    assert out["role"] == "member"


def test_duplicate_member_exits_2(db, capsys, member):
    assert main(["create-member", "--name", "Ravi", "--email", member.email]) == 2
    assert "already exists" in capsys.readouterr().err


def test_issue_claim(capsys, member):
    assert main(["issue-claim", member.id, "--ttl", "60"]) == 0
    token = capsys.readouterr().out.strip()
    assert verify_claim(token) == member.id


def test_ingest_and_reverse(db, tmp_path, capsys):
    wb = Workbook()
    ws = wb.active
    ws.append(["Reference ID", "Client", "Check type", "Candidate Name", "Address", "Location", "State", "Pincode"])
    ws.append(["MX-CLI-1", "Acme Corp", "Address", "Sunita Das", "4 Park St", "Kolkata", "West Bengal", "700016"])
    path = tmp_path / "cases.xlsx"
    wb.save(path)

    assert main(["ingest", str(path)]) == 0
    result = json.loads(capsys.readouterr().out)
    assert result["added"] == 1
    assert db.scalars(select(Case).where(Case.matrix_ref_no == "MX-CLI-1")).first() is not None

    assert main(["reverse-batch", result["batch_id"]]) == 0
    assert "Deleted 1 cases" in capsys.readouterr().out
    db.expire_all()
    assert db.scalars(select(Case).where(Case.matrix_ref_no == "MX-CLI-1")).first() is None


def test_no_command(capsys):
    assert main([]) == 1
