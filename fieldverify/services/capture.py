"""Field capture — photo working set, form artifact and reverse geocoding."""

from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

import httpx
from sqlalchemy.orm import Session

from fieldverify.core.config import settings
from fieldverify.core.errors import MaintenanceModeError, NotFoundError, ValidationError
from fieldverify.models.case import Case, CaseStatus
from fieldverify.models.member import Member, MemberRole
from fieldverify.services.http import http_client
from fieldverify.services.lifecycle import check_rev, commit_case
from fieldverify.services.policy import effective_photos, select_policy

logger = logging.getLogger(__name__)

LOCATION_UNAVAILABLE = "Location unavailable"


def ensure_member_writes_enabled(member: Member) -> None:
    """Members cannot capture or submit while maintenance mode is on."""
    if settings.maintenance_mode_member and member.role == MemberRole.member.value:
        raise MaintenanceModeError("Capture and submission are paused for maintenance")


def reverse_geocode(latitude: float, longitude: float) -> str:
    """Best-effort street address for a coordinate; never raises."""
    if not settings.geocoder_url:
        return LOCATION_UNAVAILABLE
    try:
        with http_client() as client:
            resp = client.get(
                settings.geocoder_url,
                params={"format": "jsonv2", "lat": latitude, "lon": longitude},
                headers={"User-Agent": "fieldverify/0.1"},
            )
            resp.raise_for_status()
            body = resp.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("Reverse geocoding failed for %s,%s: %s", latitude, longitude, exc)
        return LOCATION_UNAVAILABLE
    address = body.get("display_name") if isinstance(body, dict) else None
    return address or LOCATION_UNAVAILABLE


def stage_upload(case_id: str, category: str, data: bytes, suffix: str = ".jpg") -> str:
    """Write an uploaded photo to the staging area; returns its local path."""
    folder = Path(settings.staging_dir) / case_id
    folder.mkdir(parents=True, exist_ok=True)
    path = folder / f"{category}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}{suffix}"
    path.write_bytes(data)
    return str(path)


def _require_open(case: Case) -> None:
    if case.status != CaseStatus.assigned.value:
        raise ValidationError(f"Case {case.id} is not open for capture (status={case.status})")


def capture_photo(
    db: Session,
    case: Case,
    category: str,
    uri: str,
    *,
    timestamp: Optional[str] = None,
    geotag: Optional[Dict[str, float]] = None,
    address: Optional[str] = None,
    actor: Optional[str] = None,
    expected_rev: Optional[int] = None,
) -> Dict:
    """Append a photo to the case's draft set and return the stored entry."""
    check_rev(case, expected_rev)
    _require_open(case)
    policy = select_policy(case)
    req = policy.category(category)
    if req is None:
        raise ValidationError(f"Unknown photo category '{category}' for policy {policy.name}")

    photos = effective_photos(case)
    entries = photos.setdefault(category, [])
    if len(entries) >= req.max:
        raise ValidationError(f"Category '{category}' already has the maximum of {req.max} photos")

    if not address:
        if geotag and geotag.get("latitude") is not None and geotag.get("longitude") is not None:
            address = reverse_geocode(geotag["latitude"], geotag["longitude"])
        else:
            address = LOCATION_UNAVAILABLE

    entry = {
        "uri": uri,
        "timestamp": timestamp or datetime.now(timezone.utc).isoformat(),
        "geotag": geotag or None,
        "address": address,
        "category": category,
        "id": f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}",
    }
    entries.append(entry)
    case.draft_photos = photos
    commit_case(db, case, "photo.captured", {"category": category, "photo_id": entry["id"]}, actor=actor)
    return entry


def delete_photo(
    db: Session,
    case: Case,
    category: str,
    index: int,
    *,
    actor: Optional[str] = None,
    expected_rev: Optional[int] = None,
) -> Dict:
    """Remove a photo from the draft set; remote storage is left untouched."""
    check_rev(case, expected_rev)
    _require_open(case)
    photos = effective_photos(case)
    entries = photos.get(category, [])
    if index < 0 or index >= len(entries):
        raise NotFoundError(f"No photo {index} in category '{category}'")
    removed = entries.pop(index)
    case.draft_photos = photos
    commit_case(db, case, "photo.deleted", {"category": category, "photo_id": removed.get("id")}, actor=actor)
    return removed


def record_form(
    db: Session,
    case: Case,
    url: str,
    *,
    actor: Optional[str] = None,
    expected_rev: Optional[int] = None,
) -> Case:
    check_rev(case, expected_rev)
    _require_open(case)
    if not url:
        raise ValidationError("Form URL is required")
    case.filled_form = {"url": url, "updatedAt": datetime.now(timezone.utc).isoformat()}
    case.form_completed = True
    return commit_case(db, case, "form.completed", {"url": url}, actor=actor)
