"""Mail relay endpoint and the sent-mail log."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy import select
from sqlalchemy.orm import Session

from fieldverify.api.deps import require_admin
from fieldverify.api.schemas import MailRecordOut
from fieldverify.core.database import get_db
from fieldverify.core.errors import TransientRemoteError, ValidationError
from fieldverify.models.mail_record import MailRecord
from fieldverify.models.member import Member
from fieldverify.services import mailer

logger = logging.getLogger(__name__)

router = APIRouter(tags=["mail"])


@router.post("/send-email")
def send_email(payload: dict = Body(...)):
    """Relay one report mail. Unauthenticated; reachable only on the private network."""
    try:
        mailer.relay_email(payload)
    except ValidationError as exc:
        return PlainTextResponse(exc.message, status_code=400)
    except TransientRemoteError as exc:
        logger.error("Mail relay failed: %s", exc.message)
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to send email", "detail": exc.message},
        )
    return PlainTextResponse("Email sent successfully", status_code=200)


@router.get("/mails", response_model=list[MailRecordOut])
def list_mails(db: Session = Depends(get_db), admin: Member = Depends(require_admin)):
    return db.scalars(select(MailRecord).order_by(MailRecord.sent_at.desc()).limit(500)).all()
