"""
Report mail — Gmail SMTP sender (relay side) and relay client (caller side).

The relay accepts ``{to, subject, body, attachments: [{url, filename}]}``,
downloads each attachment and sends one message over SMTP authenticated with
XOAUTH2. The access token is minted from a long-lived refresh token on every
send. ``MailRelayClient`` is what the approval workflow calls.
"""

from __future__ import annotations

import base64
import logging
import smtplib
import time
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

import httpx

from fieldverify.core.config import settings
from fieldverify.core.errors import TransientRemoteError, ValidationError
from fieldverify.services.http import http_client
from fieldverify.services.retry import retry_call

logger = logging.getLogger(__name__)

MISSING_FIELDS = "Missing required email fields."


@dataclass(frozen=True)
class MailAttachment:
    url: str
    filename: str

    def to_dict(self) -> dict:
        return {"url": self.url, "filename": self.filename}


# ---------------------------------------------------------------------------
# Approval message
# ---------------------------------------------------------------------------


def approval_ref(case) -> str:
    return case.matrix_ref_no or case.id


def approval_subject(case) -> str:
    return f"Case Approved: {approval_ref(case)}"


def approval_body(case) -> str:
    return (
        "Dear Client,\n\n"
        "This is to inform you that the verification for the following case has been "
        "completed and approved. Please find the final report and the submitted "
        "verification form attached to this email.\n\n"
        "Case Details:\n"
        "--------------------\n"
        f"Reference No: {approval_ref(case)}\n"
        f"Candidate Name: {case.candidate_name or 'N/A'}\n"
        f"Check Type: {case.chk_type or 'N/A'}\n"
        f"City: {case.city or 'N/A'}\n\n"
        "Thank you,\n"
        f"{settings.mail_from_name} Team"
    )


def approval_attachments(case) -> List[MailAttachment]:
    ref = "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in approval_ref(case))
    attachments = []
    if case.photos_folder_link:
        attachments.append(MailAttachment(case.photos_folder_link, f"Report_{ref}.pdf"))
    form_url = (case.filled_form or {}).get("url")
    if form_url:
        attachments.append(MailAttachment(form_url, f"Form_{ref}.pdf"))
    return attachments


# ---------------------------------------------------------------------------
# Relay side: Gmail over SMTP + XOAUTH2
# ---------------------------------------------------------------------------


def fetch_access_token() -> str:
    """Exchange the configured refresh token for a short-lived access token."""
    try:
        with http_client() as client:
            resp = client.post(
                settings.gmail_token_url,
                data={
                    "client_id": settings.gmail_client_id,
                    "client_secret": settings.gmail_client_secret,
                    "refresh_token": settings.gmail_refresh_token,
                    "grant_type": "refresh_token",
                },
            )
            resp.raise_for_status()
            token = resp.json().get("access_token")
    except (httpx.HTTPError, ValueError) as exc:
        raise TransientRemoteError(f"Could not obtain mail access token: {exc}") from exc
    if not token:
        raise TransientRemoteError("Token endpoint returned no access_token")
    return token


def xoauth2_string(user: str, token: str) -> str:
    raw = f"user={user}\x01auth=Bearer {token}\x01\x01"
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


def download_attachments(attachments: Iterable[dict]) -> List[Tuple[str, bytes]]:
    downloaded = []
    with http_client() as client:
        for item in attachments:
            url = (item or {}).get("url")
            if not url:
                continue
            filename = item.get("filename") or url.rsplit("/", 1)[-1]
            logger.info("Downloading attachment %s", filename)
            try:
                resp = client.get(url)
                resp.raise_for_status()
            except httpx.HTTPError as exc:
                raise TransientRemoteError(f"Could not download attachment {filename}: {exc}") from exc
            downloaded.append((filename, resp.content))
    return downloaded


def build_message(to: str, subject: str, body: str, files: Sequence[Tuple[str, bytes]]) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = formataddr((settings.mail_from_name, settings.gmail_user))
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content(body)
    for filename, data in files:
        msg.add_attachment(data, maintype="application", subtype="pdf", filename=filename)
    return msg


def send_via_smtp(msg: EmailMessage, token_provider: Callable[[], str] = fetch_access_token) -> None:
    token = token_provider()
    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=settings.http_timeout) as smtp:
            smtp.ehlo()
            smtp.starttls()
            smtp.ehlo()
            code, response = smtp.docmd("AUTH", "XOAUTH2 " + xoauth2_string(settings.gmail_user, token))
            if code != 235:
                raise TransientRemoteError(f"SMTP XOAUTH2 rejected ({code}): {response!r}")
            smtp.send_message(msg)
    except (smtplib.SMTPException, OSError) as exc:
        raise TransientRemoteError(f"SMTP send failed: {exc}") from exc


def relay_email(payload: dict) -> None:
    """Validate, download attachments and send one report mail."""
    to, subject, body = payload.get("to"), payload.get("subject"), payload.get("body")
    if not to or not subject or not body:
        raise ValidationError(MISSING_FIELDS)
    files = download_attachments(payload.get("attachments") or [])
    send_via_smtp(build_message(to, subject, body, files))
    logger.info(
        "Mail relayed to %s (case=%s ref=%s, %d attachments)",
        to, payload.get("caseId"), payload.get("RefNo"), len(files),
    )


# ---------------------------------------------------------------------------
# Caller side
# ---------------------------------------------------------------------------


class MailRelayClient:
    def __init__(
        self,
        url: Optional[str] = None,
        *,
        attempts: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.url = url or settings.mail_relay_url
        self.attempts = attempts if attempts is not None else settings.remote_retry_attempts
        self.sleep = sleep

    def _post(self, payload: dict) -> None:
        try:
            with http_client(timeout=settings.upload_timeout) as client:
                resp = client.post(self.url, json=payload)
        except httpx.HTTPError as exc:
            raise TransientRemoteError(f"Mail relay unreachable: {exc}") from exc
        if 400 <= resp.status_code < 500:
            # The relay refused the request itself; sending it again cannot help
            raise ValidationError(
                f"Mail relay rejected the request ({resp.status_code}): {resp.text[:200]}",
                status=resp.status_code,
            )
        if resp.status_code != 200:
            raise TransientRemoteError(
                f"Mail relay returned {resp.status_code}: {resp.text[:200]}",
                status=resp.status_code,
            )

    def send(
        self,
        *,
        to: str,
        subject: str,
        body: str,
        case_id: Optional[str] = None,
        ref_no: Optional[str] = None,
        attachments: Sequence[MailAttachment] = (),
    ) -> None:
        payload = {
            "to": to,
            "subject": subject,
            "body": body,
            "caseId": case_id,
            "RefNo": ref_no,
            "attachments": [a.to_dict() for a in attachments],
        }
        retry_call(
            lambda: self._post(payload),
            attempts=self.attempts,
            base_delay=settings.remote_retry_base_delay,
            retry_on=(TransientRemoteError,),
            sleep=self.sleep,
            label="mail relay",
        )
