"""FieldVerify — FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from redis import Redis
from sqlalchemy import text

from fieldverify import __version__
from fieldverify.api.routes import (
    cases_router,
    ingest_router,
    jobs_router,
    mail_router,
    members_router,
    reverted_router,
    review_router,
)
from fieldverify.core.config import settings
from fieldverify.core.database import engine
from fieldverify.core.errors import FieldVerifyError
from fieldverify.core.logging import init_logging
from fieldverify.services.storage import get_store

logger = logging.getLogger(__name__)


def _run_migrations() -> None:
    """Apply pending Alembic migrations on startup."""
    try:
        from alembic import command
        from alembic.config import Config as AlembicConfig

        cfg = AlembicConfig("alembic.ini")
        command.upgrade(cfg, "head")
        logger.info("Alembic migrations applied.")
    except Exception as exc:
        logger.warning("Alembic migration skipped: %s", exc)


@asynccontextmanager
async def lifespan(application: FastAPI):
    """Startup / shutdown lifecycle hook."""
    import asyncio

    if settings.app_env != "test":
        try:
            await asyncio.wait_for(
                asyncio.get_running_loop().run_in_executor(None, _run_migrations),
                timeout=15,
            )
        except Exception as exc:
            logger.warning("DB migration skipped: %s", exc)
    yield


app = FastAPI(title="FieldVerify", version=__version__, lifespan=lifespan)

init_logging(app)


@app.exception_handler(FieldVerifyError)
async def _domain_error(request: Request, exc: FieldVerifyError):
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# ── CORS ─────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://frontend:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ──────────────────────────────────────────────────────────
app.include_router(cases_router)
app.include_router(review_router)
app.include_router(reverted_router)
app.include_router(ingest_router)
app.include_router(members_router)
app.include_router(jobs_router)
app.include_router(mail_router)

if settings.storage_backend.lower() == "local":
    Path(settings.local_store_root).mkdir(parents=True, exist_ok=True)
    app.mount("/media", StaticFiles(directory=settings.local_store_root, check_dir=False), name="media")


@app.get("/health")
def health():
    """Health check with service status details."""
    result = {
        "status": "healthy",
        "version": __version__,
        "database": "disconnected",
        "redis": "disconnected",
        "storage": "unavailable",
    }

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        result["database"] = "connected"
    except Exception as exc:
        logger.warning("Database health check failed: %s", exc)
        result["status"] = "degraded"

    if settings.celery_eager:
        result["redis"] = "eager"
    else:
        try:
            r = Redis.from_url(settings.redis_url, socket_timeout=2)
            r.ping()
            result["redis"] = "connected"
        except Exception as exc:
            logger.warning("Redis health check failed: %s", exc)
            result["status"] = "degraded"

    try:
        result["storage"] = get_store().name
    except ValueError as exc:
        logger.warning("Storage health check failed: %s", exc)
        result["status"] = "degraded"

    return result
