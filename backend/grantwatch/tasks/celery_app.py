"""Celery application configuration and beat schedule."""

from celery import Celery
from celery.schedules import crontab

from grantwatch.config import get_settings

settings = get_settings()

celery_app = Celery(
    "grantwatch",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "grantwatch.tasks.scrape_tasks",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    task_track_started=True,
    # The orchestrator enforces job_timeout_seconds itself; these are the backstop
    task_time_limit=settings.job_timeout_seconds + 120,
    task_soft_time_limit=settings.job_timeout_seconds + 60,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

celery_app.conf.beat_schedule = {
    "run-scheduler-tick": {
        "task": "grantwatch.tasks.scrape_tasks.run_scheduler_tick",
        "schedule": float(settings.health_check_interval_seconds),
    },
    "reconcile-stale-jobs": {
        "task": "grantwatch.tasks.scrape_tasks.reconcile_stale_jobs",
        "schedule": crontab(minute="*/10"),
    },
}
