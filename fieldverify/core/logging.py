"""
Structured JSON Logging
========================
Configures Python's logging to emit JSON-structured log lines in production
and a readable format elsewhere.

Usage:
    from fieldverify.core.logging import init_logging
    init_logging(app)

Each log line contains:
  - timestamp (ISO-8601 UTC)
  - level
  - logger (module name)
  - message
  - request_id / method / path (when emitted while serving a request)
  - exception (when exc_info is attached)

The request id comes from the incoming ``X-Request-ID`` header when present,
otherwise a new one is generated; it is echoed back on every response.
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request

from fieldverify.core.config import settings

_request_ctx: contextvars.ContextVar[Optional[dict]] = contextvars.ContextVar(
    "fieldverify_request", default=None
)


def current_request_id() -> Optional[str]:
    ctx = _request_ctx.get()
    return ctx["request_id"] if ctx else None


class JSONFormatter(logging.Formatter):
    """Emit each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        ctx = _request_ctx.get()
        if ctx:
            payload.update(ctx)

        if record.exc_info and record.exc_info[0] is not None:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


def configure_logging(level: Optional[str] = None, json_lines: Optional[bool] = None) -> None:
    """Install a single stdout handler on the root logger."""
    if json_lines is None:
        json_lines = settings.app_env == "production"
    if level is None:
        level = settings.log_level

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Remove existing handlers to avoid duplicate output
    for handler in root.handlers[:]:
        root.handlers.remove(handler)

    handler = logging.StreamHandler(sys.stdout)
    if json_lines:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
    root.addHandler(handler)


def init_logging(app: FastAPI, *, level: Optional[str] = None) -> None:
    """Configure logging and attach the request-id middleware to *app*."""
    configure_logging(level)
    http_logger = logging.getLogger("fieldverify.http")

    @app.middleware("http")
    async def _request_context(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        token = _request_ctx.set(
            {"request_id": request_id, "method": request.method, "path": request.url.path}
        )
        try:
            http_logger.info("request_start %s %s", request.method, request.url.path)
            response = await call_next(request)
            http_logger.info(
                "request_end %s %s status=%d",
                request.method,
                request.url.path,
                response.status_code,
            )
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            _request_ctx.reset(token)

    logging.getLogger("fieldverify").info(
        "Structured logging initialised (env=%s, json=%s)",
        settings.app_env,
        settings.app_env == "production",
    )
