"""Shared FastAPI dependencies."""

from fastapi import Depends
from sqlalchemy.orm import Session

from grantwatch.core.scheduler import Dispatch, Scheduler
from grantwatch.core.source_manager import SourceManager
from grantwatch.models.base import get_db


def get_job_dispatcher() -> Dispatch:
    """Queue jobs on Celery. Overridden in tests and single-process mode."""
    from grantwatch.tasks.scrape_tasks import dispatch_to_celery

    return dispatch_to_celery


def get_source_manager(db: Session = Depends(get_db)) -> SourceManager:
    return SourceManager(db)


def get_scheduler(
    db: Session = Depends(get_db),
    dispatch: Dispatch = Depends(get_job_dispatcher),
) -> Scheduler:
    return Scheduler(db, dispatch=dispatch)
