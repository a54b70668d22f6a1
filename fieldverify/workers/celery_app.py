import logging

from celery import Celery

from fieldverify.core.config import settings

celery_app = Celery(
    "fieldverify",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    task_soft_time_limit=300,
    task_time_limit=360,
    task_always_eager=settings.celery_eager,
    task_eager_propagates=False,
    task_store_eager_result=False,
)

logger = logging.getLogger(__name__)


def _get_db():
    from fieldverify.core.database import SessionLocal
    return SessionLocal()


@celery_app.task(name="fieldverify.submit_case", bind=True, max_retries=0)
def submit_case_task(self, job_id: str):
    """Upload evidence, build the report and move the case to audit."""
    from fieldverify.models.job import JobStatus
    from fieldverify.services.submission import run_submit_job

    db = _get_db()
    try:
        job = run_submit_job(db, job_id)
        if job.status == JobStatus.failed.value:
            return {"status": job.status, "error": job.error_detail}
        return {"status": job.status, "result": job.result_json}
    except Exception as exc:
        logger.exception("submit_case_task failed for job %s", job_id)
        db.rollback()
        _mark_failed(db, job_id, str(exc))
        return {"error": str(exc)}
    finally:
        db.close()


def _mark_failed(db, job_id: str, detail: str) -> None:
    from fieldverify.models.job import Job, JobStatus
    from fieldverify.services.audit import append_audit_event

    job = db.get(Job, job_id)
    if job is None:
        return
    job.status = JobStatus.failed.value
    job.error_detail = detail[:2000]
    append_audit_event(
        db, job.case_id, "job.failed",
        {"job_id": job.id, "kind": job.kind, "error": "internal_error"},
        actor=job.requested_by,
    )
    db.commit()
