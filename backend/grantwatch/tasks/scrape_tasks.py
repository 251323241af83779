"""Scrape orchestration tasks."""

import logging
import uuid

from grantwatch.core.orchestrator import Orchestrator
from grantwatch.core.scheduler import Scheduler
from grantwatch.models.base import SessionLocal
from grantwatch.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


def dispatch_to_celery(job_id: uuid.UUID) -> None:
    """Scheduler dispatch hook: queue the job for a Celery worker."""
    execute_scrape_job.delay(str(job_id))


@celery_app.task(name="grantwatch.tasks.scrape_tasks.run_scheduler_tick")
def run_scheduler_tick():
    """Create jobs for due sources and pending retries, and queue them."""
    db = SessionLocal()
    try:
        result = Scheduler(db, dispatch=dispatch_to_celery).tick()
        return {
            "due": result.due,
            "retries": result.retries,
            "dispatched": len(result.created),
            "skipped_active": result.skipped_active,
            "deferred": result.deferred,
        }
    finally:
        db.close()


@celery_app.task(name="grantwatch.tasks.scrape_tasks.execute_scrape_job")
def execute_scrape_job(job_id: str):
    """Run one scrape job to a terminal status."""
    db = SessionLocal()
    try:
        result = Orchestrator(db).execute_scrape_job(uuid.UUID(job_id))
        return {
            "job_id": job_id,
            "status": result.status.value if result.status else None,
            "code": result.code,
            "duration": result.duration,
            **result.counters(),
        }
    finally:
        db.close()


@celery_app.task(name="grantwatch.tasks.scrape_tasks.reconcile_stale_jobs")
def reconcile_stale_jobs():
    """Fail jobs that stopped making progress so their sources are not blocked."""
    db = SessionLocal()
    try:
        reconciled = Scheduler(db).reconcile_stale_jobs()
        return {"reconciled": [str(job_id) for job_id in reconciled]}
    finally:
        db.close()
