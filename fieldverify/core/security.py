"""Signed session claims — HMAC-SHA256 over a compact JSON payload.

The identity provider authenticates members; this service only checks a
claim of the form ``<base64url(json)>.<hex hmac>`` whose ``sub`` is a
member id. No secrets are stored per member.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from typing import Optional

from fieldverify.core.config import settings


def hmac_sha256(key: str, message: str) -> str:
    """Return HMAC-SHA256 hex digest of *message* using *key*."""
    return hmac.new(
        key.encode("utf-8"),
        message.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def verify_hmac_sha256(key: str, message: str, signature: str) -> bool:
    """Constant-time HMAC-SHA256 verification."""
    return hmac.compare_digest(hmac_sha256(key, message), signature)


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


def issue_claim(
    member_id: str,
    *,
    ttl_seconds: Optional[int] = None,
    key: Optional[str] = None,
    now: Optional[float] = None,
) -> str:
    """Sign a session claim for *member_id*."""
    issued = int(now if now is not None else time.time())
    ttl = ttl_seconds if ttl_seconds is not None else settings.session_ttl_seconds
    payload = _b64encode(
        json.dumps({"sub": member_id, "iat": issued, "exp": issued + ttl}, separators=(",", ":")).encode()
    )
    return f"{payload}.{hmac_sha256(key or settings.session_signing_key, payload)}"


def verify_claim(token: str, *, key: Optional[str] = None, now: Optional[float] = None) -> Optional[str]:
    """Return the member id of a valid, unexpired claim, else None."""
    try:
        payload, signature = token.rsplit(".", 1)
    except ValueError:
        return None
    if not verify_hmac_sha256(key or settings.session_signing_key, payload, signature):
        return None
    try:
        claims = json.loads(_b64decode(payload))
    except (ValueError, json.JSONDecodeError):
        return None
    current = now if now is not None else time.time()
    if not isinstance(claims, dict) or claims.get("exp", 0) < current:
        return None
    sub = claims.get("sub")
    return sub if isinstance(sub, str) and sub else None
