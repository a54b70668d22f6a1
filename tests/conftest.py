"""Pytest configuration — in-memory SQLite database, eager Celery & local storage."""

from __future__ import annotations

import io
import os
import tempfile
from typing import Generator

import pytest

_TMP = tempfile.mkdtemp(prefix="fieldverify-tests-")

# Override env BEFORE importing app modules so Settings picks up test values.
os.environ.update(
    {
        "APP_ENV": "test",
        "DATABASE_URL": "sqlite://",
        "REDIS_URL": "redis://localhost:6379/0",
        "CELERY_EAGER": "true",
        "STORAGE_BACKEND": "local",
        "LOCAL_STORE_ROOT": os.path.join(_TMP, "media"),
        "LOCAL_STORE_BASE_URL": "http://testserver/media",
        "STAGING_DIR": os.path.join(_TMP, "staging"),
        "SESSION_SIGNING_KEY": "test-signing-key-for-pytest",
        "GMAIL_USER": "reports@example.com",
        "MAIL_RELAY_URL": "http://relay.test/send-email",
        "GEOCODER_URL": "",
        "REMOTE_RETRY_BASE_DELAY": "0",
        "CLIENT_POLICIES_PATH": "",
        "AUDIT_LOG_PATH": "",
    }
)

from fastapi.testclient import TestClient  # noqa: E402
from PIL import Image  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from fieldverify.core.database import Base, SessionLocal, engine  # noqa: E402
from fieldverify.core.security import issue_claim  # noqa: E402
from fieldverify.main import app  # noqa: E402
from fieldverify.models.case import Case, CaseStatus  # noqa: E402
from fieldverify.models.member import Member, MemberRole  # noqa: E402
from fieldverify.services.change_feed import feed  # noqa: E402
from fieldverify.services.storage import LocalFSStore, set_store  # noqa: E402

# ── Force all models to register on Base.metadata ──────────────────
import fieldverify.models  # noqa: E402, F401


@pytest.fixture(autouse=True)
def _create_tables():
    """Create all tables before each test and drop after."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def store(tmp_path) -> Generator[LocalFSStore, None, None]:
    """Fresh local object store per test."""
    local = LocalFSStore(root=str(tmp_path / "media"), base_url="http://testserver/media")
    set_store(local)
    yield local
    set_store(None)


@pytest.fixture(autouse=True)
def _staging(tmp_path, monkeypatch):
    from fieldverify.core.config import settings

    monkeypatch.setattr(settings, "staging_dir", str(tmp_path / "staging"))


@pytest.fixture(autouse=True)
def _reset_feed():
    yield
    feed._subscribers.clear()


@pytest.fixture()
def db() -> Generator[Session, None, None]:
    """Yield a DB session on the application engine."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client() -> Generator[TestClient, None, None]:
    with TestClient(app, raise_server_exceptions=False) as tc:
        yield tc
    app.dependency_overrides.clear()


def _member(db: Session, name: str, email: str, role: str) -> Member:
    member = Member(name=name, email=email, role=role)
    db.add(member)
    db.commit()
    db.refresh(member)
    return member


@pytest.fixture()
def member(db: Session) -> Member:
    return _member(db, "Ravi Kumar", "ravi@example.com", MemberRole.member.value)


@pytest.fixture()
def other_member(db: Session) -> Member:
    return _member(db, "Meena Iyer", "meena@example.com", MemberRole.member.value)


@pytest.fixture()
def admin(db: Session) -> Member:
    return _member(db, "Admin User", "admin@example.com", MemberRole.admin.value)


def auth(member: Member) -> dict:
    return {"Authorization": f"Bearer {issue_claim(member.id)}"}


@pytest.fixture()
def member_headers(member) -> dict:
    return auth(member)


@pytest.fixture()
def admin_headers(admin) -> dict:
    return auth(admin)


def make_case(db: Session, **overrides) -> Case:
    values = dict(
        matrix_ref_no="MX-1001",
        client="Acme Corp",
        company="Acme Corp",
        check_type="Address",
        chk_type="Residence",
        candidate_name="Priya Sharma",
        address="12 MG Road",
        city="Bengaluru",
        state="Karnataka",
        pincode="560001",
        contact_number="9800000000",
        status=CaseStatus.fired.value,
        photos_folder={},
        photos_to_redo=[],
    )
    values.update(overrides)
    case = Case(**values)
    db.add(case)
    db.commit()
    db.refresh(case)
    return case


@pytest.fixture()
def assigned_case(db: Session, member: Member) -> Case:
    return make_case(
        db,
        status=CaseStatus.assigned.value,
        assigned_to=member.id,
        assignee_name=member.name,
        assignee_role="FE",
    )


def jpeg_bytes(color: str = "red", size=(40, 30)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="JPEG")
    return buf.getvalue()


def fill_checklist(db: Session, case: Case, tmp_dir) -> Case:
    """Stage enough local photos (and the form) to satisfy the default policy."""
    from fieldverify.services.policy import select_policy

    photos = {}
    for req in select_policy(case).requirements:
        entries = []
        for i in range(req.needed):
            path = tmp_dir / f"{req.category_id}_{i}.jpg"
            path.write_bytes(jpeg_bytes())
            entries.append({
                "uri": str(path),
                "timestamp": "2026-01-01T10:00:00+00:00",
                "geotag": {"latitude": 12.97, "longitude": 77.59},
                "address": "MG Road, Bengaluru",
                "category": req.category_id,
                "id": f"p-{req.category_id}-{i}",
            })
        photos[req.category_id] = entries
    case.draft_photos = photos
    case.form_completed = True
    case.filled_form = {"url": "https://forms.example.com/f/1.pdf"}
    db.commit()
    db.refresh(case)
    return case
