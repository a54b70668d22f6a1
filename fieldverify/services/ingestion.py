"""
Spreadsheet ingestion — case rows in, deduplicated cases out.

Rows are dicts keyed by the spreadsheet's header row. A row is a duplicate
when every identifying field (trimmed, case-sensitive) equals an existing
case or a row accepted earlier in the same batch, so re-uploading the same
file adds nothing.
"""

from __future__ import annotations

import io
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from openpyxl import load_workbook
from openpyxl.utils.datetime import from_excel
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from fieldverify.core.errors import NotFoundError, ValidationError
from fieldverify.models.case import Case, CaseStatus
from fieldverify.models.member import Member
from fieldverify.services.assignment import apply_assignment
from fieldverify.services.audit import append_audit_event
from fieldverify.services.lifecycle import publish

logger = logging.getLogger(__name__)

MODES = ("manual", "automate")

# spreadsheet header -> case attribute
COLUMN_MAP: Dict[str, str] = {
    "Client": "client",
    "company": "company",
    "Check type": "check_type",
    "ChkType": "chk_type",
    "Candidate Name": "candidate_name",
    "Address": "address",
    "Contact Number": "contact_number",
    "Location": "city",
    "State": "state",
    "Pincode": "pincode",
    "comments": "comments",
}
# first non-empty wins
REF_COLUMNS: Tuple[str, ...] = ("Reference ID", "RefNo", "matrixRefNo")
DATE_COLUMN = "Date Initiated"
ASSIGNEE_COLUMN = "fe name"

DEDUP_FIELDS: Tuple[str, ...] = (
    "matrix_ref_no",
    "candidate_name",
    "check_type",
    "chk_type",
    "client",
    "company",
    "address",
    "city",
    "state",
    "pincode",
    "contact_number",
)

_DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%d/%m/%Y", "%d.%m.%Y", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S")


@dataclass
class IngestResult:
    batch_id: str
    added: int = 0
    duplicates: int = 0
    skipped: int = 0
    assigned: int = 0
    case_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def cell_text(value: Any) -> str:
    """Spreadsheet cell as text; whole floats lose their ``.0``."""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def parse_date(value: Any, now: Optional[datetime] = None) -> datetime:
    """
    Interpret a ``Date Initiated`` cell.

    Accepts spreadsheet serial numbers, datetime/date cells, ``DD-MM-YYYY``
    strings and common ISO-like strings. Anything else is today.
    """
    now = now or datetime.now(timezone.utc)
    if value is None or value == "":
        return now
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            parsed = from_excel(value)
        except (ValueError, OverflowError, TypeError):
            return now
        return datetime(parsed.year, parsed.month, parsed.day, tzinfo=timezone.utc)

    text = str(value).strip()
    parts = text.split("-")
    if len(parts) == 3 and len(parts[0]) <= 2 and len(parts[2]) == 4:
        try:
            day, month, year = (int(p) for p in parts)
            return datetime(year, month, day, tzinfo=timezone.utc)
        except ValueError:
            return now
    try:
        parsed = datetime.fromisoformat(text)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return now


def read_workbook(data: bytes) -> List[Dict[str, Any]]:
    """First sheet of an .xlsx file as a list of dicts keyed by the header row."""
    try:
        wb = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except Exception as exc:  # openpyxl raises assorted types on corrupt files
        raise ValidationError(f"Could not read workbook: {exc}") from exc
    try:
        ws = wb.worksheets[0]
        rows = list(ws.iter_rows(values_only=True))
    finally:
        wb.close()
    if not rows:
        return []
    header = [cell_text(h).strip() for h in rows[0]]
    out = []
    for raw in rows[1:]:
        if raw is None or all(v is None or v == "" for v in raw):
            continue
        out.append({header[i]: raw[i] for i in range(min(len(header), len(raw))) if header[i]})
    return out


def dedup_key(values: Dict[str, Any]) -> Tuple[str, ...]:
    return tuple(cell_text(values.get(f)).strip() for f in DEDUP_FIELDS)


def _case_key(case: Case) -> Tuple[str, ...]:
    return dedup_key({f: getattr(case, f) for f in DEDUP_FIELDS})


def ref_of(row: Dict[str, Any]) -> str:
    for col in REF_COLUMNS:
        ref = cell_text(row.get(col)).strip()
        if ref:
            return ref
    return ""


def row_to_fields(row: Dict[str, Any]) -> Dict[str, Any]:
    values = {attr: cell_text(row.get(col)) for col, attr in COLUMN_MAP.items()}
    values["matrix_ref_no"] = ref_of(row)
    values["date_initiated"] = parse_date(row.get(DATE_COLUMN))
    return values


def ingest_rows(
    db: Session,
    rows: Iterable[Dict[str, Any]],
    mode: str = "manual",
    *,
    members: Optional[Sequence[Member]] = None,
    actor: Optional[str] = None,
) -> IngestResult:
    """Create one case per new row; see module docstring for the duplicate rule."""
    if mode not in MODES:
        raise ValidationError(f"Unknown ingest mode '{mode}'")

    if members is None:
        members = list(db.scalars(select(Member)).all())
    by_name = {}
    for m in members:
        if m.name and not m.is_banned:
            by_name.setdefault(m.name.strip().lower(), m)

    seen = {_case_key(c) for c in db.scalars(select(Case)).all()}
    result = IngestResult(batch_id=uuid.uuid4().hex)
    now = datetime.now(timezone.utc)
    created: List[Case] = []

    for row in rows:
        ref = ref_of(row)
        if not ref:
            result.skipped += 1
            continue
        values = row_to_fields(row)
        key = dedup_key(values)
        if key in seen:
            result.duplicates += 1
            continue
        seen.add(key)

        case = Case(
            id=uuid.uuid4().hex,
            status=CaseStatus.fired.value,
            ingested_at=now,
            ingest_batch_id=result.batch_id,
            photos_folder={},
            photos_to_redo=[],
            **values,
        )
        if mode == "automate":
            fe_name = cell_text(row.get(ASSIGNEE_COLUMN)).strip().lower()
            member = by_name.get(fe_name) if fe_name else None
            if member is not None:
                apply_assignment(case, member, now)
                result.assigned += 1
        db.add(case)
        created.append(case)
        result.case_ids.append(case.id)
        result.added += 1

    append_audit_event(
        db,
        None,
        "ingest.batch",
        {"batch_id": result.batch_id, "mode": mode, "added": result.added,
         "duplicates": result.duplicates, "skipped": result.skipped},
        actor=actor,
    )
    db.commit()
    for case in created:
        publish(case, "case.ingested")
    logger.info(
        "Ingest batch %s (%s): added=%d duplicates=%d skipped=%d assigned=%d",
        result.batch_id, mode, result.added, result.duplicates, result.skipped, result.assigned,
    )
    return result


def reverse_batch(db: Session, batch_id: str, *, actor: Optional[str] = None) -> int:
    """Delete the cases created by one ingest batch; returns how many went."""
    ids = list(db.scalars(select(Case.id).where(Case.ingest_batch_id == batch_id)).all())
    if not ids:
        raise NotFoundError(f"No cases for batch {batch_id}")
    db.execute(delete(Case).where(Case.ingest_batch_id == batch_id))
    append_audit_event(db, None, "ingest.reversed", {"batch_id": batch_id, "deleted": len(ids)}, actor=actor)
    db.commit()
    logger.info("Reversed ingest batch %s (%d cases)", batch_id, len(ids))
    return len(ids)
