"""Audit log — append-only dual-write to the DB and an optional JSONL file."""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy.orm import Session

from fieldverify.core.config import settings
from fieldverify.models.audit_event import AuditEvent

logger = logging.getLogger(__name__)


def append_audit_event(
    db: Session,
    case_id: Optional[str],
    event_type: str,
    payload: dict,
    actor: Optional[str] = None,
) -> AuditEvent:
    """
    Dual-write an audit event:
      1. Insert into the audit_events table (same transaction as the mutation).
      2. Append a JSON line to ``settings.audit_log_path`` when configured.
    """
    now = datetime.now(timezone.utc)
    event_id = uuid.uuid4().hex

    row = AuditEvent(
        id=event_id,
        case_id=case_id,
        event_type=event_type,
        actor=actor,
        payload_json=payload,
        created_at=now,
    )
    db.add(row)
    db.flush()

    if settings.audit_log_path:
        line = {
            "event_id": event_id,
            "case_id": case_id,
            "event_type": event_type,
            "actor": actor,
            "payload": payload,
            "created_at": now.isoformat(),
        }
        path = Path(settings.audit_log_path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "a", encoding="utf-8") as f:
                f.write(json.dumps(line, separators=(",", ":"), sort_keys=True, default=str) + "\n")
        except OSError as exc:
            # DB is authoritative
            logger.warning("Could not append to %s: %s", path, exc)

    return row
