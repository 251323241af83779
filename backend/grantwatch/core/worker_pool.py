"""In-process worker pool for running scrape jobs without Celery."""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable
from uuid import UUID

from sqlalchemy.orm import Session

from grantwatch.config import Settings, get_settings
from grantwatch.core.orchestrator import JobResult, Orchestrator, ScraperFactory
from grantwatch.models.base import SessionLocal

logger = logging.getLogger(__name__)


class WorkerPool:
    """Fixed-size pool; each run gets its own Session and Orchestrator.

    Instances are callable with a job id, so a pool can be passed to
    ``Scheduler`` as its ``dispatch``.
    """

    def __init__(
        self,
        size: int | None = None,
        settings: Settings | None = None,
        session_factory: Callable[[], Session] = SessionLocal,
        scraper_factory: ScraperFactory | None = None,
    ):
        self.settings = settings or get_settings()
        self.size = size or self.settings.max_concurrent_jobs
        self.session_factory = session_factory
        self.scraper_factory = scraper_factory
        self._executor = ThreadPoolExecutor(max_workers=self.size, thread_name_prefix="grantwatch-worker")

    def submit(self, job_id: UUID) -> Future:
        return self._executor.submit(self._run, job_id)

    __call__ = submit

    def _run(self, job_id: UUID) -> JobResult:
        db = self.session_factory()
        try:
            orchestrator = Orchestrator(db, self.settings, scraper_factory=self.scraper_factory)
            return orchestrator.execute_scrape_job(job_id)
        except Exception:
            logger.exception(f"Worker failed on job {job_id}")
            raise
        finally:
            db.close()

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "WorkerPool":
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown(wait=True)
