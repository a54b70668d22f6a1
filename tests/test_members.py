"""
Tests for the member directory and moderation endpoints.
"""

import pytest

from fieldverify.core.errors import ValidationError
from fieldverify.services.members import create_member, resolve_by_name


class TestCreateMember:
    def test_unique_four_digit_id(self, db):
        a = create_member(db, name="Asha", email="Asha@Example.com")
        b = create_member(db, name="Bala", email="bala@example.com")
        assert a.email == "asha@example.com"
        for m in (a, b):
            assert len(m.unique_id) == 4
            assert 1000 <= int(m.unique_id) <= 9999
        assert a.unique_id != b.unique_id

    def test_duplicate_email(self, db):
        create_member(db, name="Asha", email="asha@example.com")
        with pytest.raises(ValidationError):
            create_member(db, name="Asha 2", email="ASHA@example.com")

    def test_unknown_role(self, db):
        with pytest.raises(ValidationError):
            create_member(db, name="X", email="x@example.com", role="owner")

    def test_resolve_by_name_is_case_insensitive(self, db):
        m = create_member(db, name="Asha Rao", email="asha@example.com")
        assert resolve_by_name(db, "  asha rao ").id == m.id
        assert resolve_by_name(db, "asha") is None
        assert resolve_by_name(db, "") is None


class TestMemberEndpoints:
    def test_create_and_list(self, client, admin_headers):
        resp = client.post("/members", headers=admin_headers, json={"name": "Asha", "email": "asha@example.com"})
        assert resp.status_code == 201, resp.text
        body = resp.json()
        assert body["role"] == "member"
        assert body["status"] == "active"
        listed = client.get("/members", headers=admin_headers).json()
        assert {m["email"] for m in listed} == {"asha@example.com", "admin@example.com"}

    def test_duplicate_is_400(self, client, admin_headers):
        client.post("/members", headers=admin_headers, json={"name": "Asha", "email": "asha@example.com"})
        resp = client.post("/members", headers=admin_headers, json={"name": "Asha", "email": "asha@example.com"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "validation_failed"

    def test_ban_unban_verify(self, client, admin_headers, member):
        resp = client.post(f"/members/{member.id}/ban", headers=admin_headers)
        assert resp.json()["status"] == "banned"
        resp = client.post(f"/members/{member.id}/unban", headers=admin_headers)
        assert resp.json()["status"] == "active"
        resp = client.post(f"/members/{member.id}/verify", headers=admin_headers)
        assert resp.json()["is_verified"] is True

    def test_unknown_member_404(self, client, admin_headers):
        assert client.get("/members/nope", headers=admin_headers).status_code == 404
