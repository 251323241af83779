"""Orchestrator: runs one scrape job to a terminal status.

Flow for ``execute_scrape_job``::

    claim (PENDING -> RUNNING)
      -> fetch            (helper thread, bounded by the remaining time budget)
      -> chunk            (only when the text exceeds the scraper's budget)
      -> extract          (helper thread, bounded; errors recorded as PARSE_FAILURE)
      -> normalize/upsert (per item, committed one at a time)
      -> finish + record_outcome, committed together

Only scraper calls leave the calling thread; every database call stays on it,
so one Orchestrator owns one Session. Failures inside the run are recorded on
the job and never raised to the caller.
"""

import logging
import time
import traceback
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Any, Callable
from uuid import UUID

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import grantwatch.scrapers  # noqa: F401
from grantwatch.config import Settings, get_settings
from grantwatch.core.chunker import prepare_for_extraction
from grantwatch.core.source_manager import SourceManager
from grantwatch.exceptions import (
    FetchError,
    InvalidTransitionError,
    JobCancelledError,
    NotFoundError,
    ParseError,
    ScrapeExecutionError,
    ScrapeTimeoutError,
    SourceInactiveError,
)
from grantwatch.models.base import utcnow
from grantwatch.models.enums import JobStatus, Outcome, SourceStatus
from grantwatch.repositories.job_repository import JobRepository, elapsed_ms
from grantwatch.scrapers.base import BaseScraper, SourceSnapshot
from grantwatch.scrapers.registry import get_scraper_class
from grantwatch.services.grant_writer import INSERTED, SKIPPED, UPDATED, GrantWriter

logger = logging.getLogger(__name__)

MAX_LOGGED_ERRORS = 50

ScraperFactory = Callable[[SourceSnapshot, Settings], BaseScraper]


def default_scraper_factory(source: SourceSnapshot, settings: Settings) -> BaseScraper:
    scraper_class = get_scraper_class(source.type)
    if scraper_class is None:
        raise ScrapeExecutionError(f"No scraper registered for source type: {source.type.value}")
    return scraper_class(source, settings)


@dataclass
class JobResult:
    job_id: UUID
    status: JobStatus
    total_found: int = 0
    total_inserted: int = 0
    total_updated: int = 0
    total_skipped: int = 0
    duration: int | None = None
    errors: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    code: str | None = None
    message: str | None = None

    def log(self) -> dict[str, Any]:
        entry: dict[str, Any] = {
            "message": self.message,
            "errors": self.errors[:MAX_LOGGED_ERRORS],
            "metadata": self.metadata,
        }
        if self.code:
            entry["code"] = self.code
        return entry

    def counters(self) -> dict[str, int]:
        return {
            "total_found": self.total_found,
            "total_inserted": self.total_inserted,
            "total_updated": self.total_updated,
            "total_skipped": self.total_skipped,
        }


class Orchestrator:
    def __init__(
        self,
        db: Session,
        settings: Settings | None = None,
        scraper_factory: ScraperFactory | None = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.jobs = JobRepository(db)
        self.sources = SourceManager(db, self.settings)
        self.scraper_factory = scraper_factory or default_scraper_factory

    def execute_scrape_job(self, job_id: UUID) -> JobResult:
        """Run one job. Always returns; the job is never left RUNNING by this call."""
        job = self.jobs.get_or_raise(job_id)
        attempt = (job.job_metadata or {}).get("attempt", 1)
        result = JobResult(job_id=job_id, status=JobStatus.RUNNING, metadata={"attempt": attempt})

        if not self.jobs.claim(job_id):
            self.db.commit()
            current = self.jobs.current_status(job_id)
            logger.warning(f"[job {job_id}] Not claimable, status is {current.value if current else None}")
            result.status = current
            result.message = f"Job not claimable in status {current.value if current else None}"
            return result
        self.db.commit()

        started_at = job.started_at or utcnow()
        deadline = time.monotonic() + self.settings.job_timeout_seconds

        source = self.sources.sources.get(job.source_id)
        if source is None:
            result.status = JobStatus.FAILED
            result.code = NotFoundError.code
            result.message = f"Source {job.source_id} not found"
            result.errors.append(result.message)
            return self._finish(result, started_at, record_health=False)

        if source.status != SourceStatus.ACTIVE and not job.is_forced:
            error = SourceInactiveError(source.id, source.status.value)
            result.code = error.code
            result.message = str(error)
            return self._cancel(result, started_at)

        snapshot = SourceSnapshot.from_source(source)
        logger.info(f"[{snapshot.label}] Starting job {job_id}")

        try:
            scraper = self.scraper_factory(snapshot, self.settings)
            self._scrape(scraper, result, deadline)
            result.status = JobStatus.SUCCESS
            result.message = (
                f"Scraped {result.total_found} grants "
                f"({result.total_inserted} new, {result.total_updated} updated, {result.total_skipped} skipped)"
            )
        except JobCancelledError as e:
            result.code = e.code
            result.message = str(e)
            logger.info(f"[{snapshot.label}] Job {job_id} cancelled mid-run")
            return self._cancelled(result, started_at)
        except ScrapeExecutionError as e:
            self._fail(result, e.code, str(e))
        except httpx.HTTPError as e:
            self._fail(result, FetchError.code, f"{type(e).__name__}: {e}")
        except Exception as e:
            logger.exception(f"[{snapshot.label}] Unexpected error in job {job_id}")
            self._fail(result, FetchError.code, f"{type(e).__name__}: {e}")

        if result.status == JobStatus.FAILED:
            logger.error(f"[{snapshot.label}] Job {job_id} failed [{result.code}]: {result.message}")
        else:
            logger.info(f"[{snapshot.label}] Job {job_id} finished: {result.message}")
        return self._finish(result, started_at, record_health=True, source_id=source.id)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _scrape(self, scraper: BaseScraper, result: JobResult, deadline: float) -> None:
        job_id = result.job_id

        document = self._call_with_budget(scraper, scraper.fetch, deadline, "fetch")
        self._check_cancelled(scraper, job_id)

        content, chunking = prepare_for_extraction(document.content, scraper.max_content_chars)
        result.metadata["chunking"] = chunking
        result.metadata["fetched_url"] = document.url
        if chunking["chunked"]:
            logger.info(
                f"[{scraper.source.label}] Chunked {chunking['original_chars']} chars "
                f"to {chunking['processed_chars']} in {chunking['sections']} sections"
            )

        try:
            raw_items = self._call_with_budget(scraper, lambda: scraper.extract(content), deadline, "extract")
        except (ScrapeExecutionError, httpx.HTTPError):
            raise
        except Exception as e:
            logger.exception(f"[{scraper.source.label}] extract() raised")
            raise ParseError(f"{type(e).__name__}: {e}") from e
        if not isinstance(raw_items, list):
            raise ParseError(f"extract() returned {type(raw_items).__name__}, expected a list of items")
        result.total_found = len(raw_items)

        writer = GrantWriter(self.db, scraper.source.id)
        for index, raw in enumerate(raw_items):
            if time.monotonic() >= deadline:
                raise ScrapeTimeoutError(
                    f"Job exceeded {self.settings.job_timeout_seconds}s after {index} of {len(raw_items)} items"
                )
            try:
                data = scraper.normalize(raw)
                outcome = writer.upsert(data)
                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                outcome = SKIPPED
                self._item_error(scraper, result, index, e)
            except Exception as e:
                outcome = SKIPPED
                self._item_error(scraper, result, index, e)

            if outcome == INSERTED:
                result.total_inserted += 1
            elif outcome == UPDATED:
                result.total_updated += 1
            else:
                result.total_skipped += 1

            self._check_cancelled(scraper, job_id)

    def _call_with_budget(self, scraper: BaseScraper, fn: Callable[[], Any], deadline: float, step: str) -> Any:
        """Run a scraper call on a helper thread, waiting at most the remaining budget."""
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise ScrapeTimeoutError(f"Job exceeded {self.settings.job_timeout_seconds}s before {step}")

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"scrape-{step}")
        future = executor.submit(fn)
        try:
            return future.result(timeout=remaining)
        except FutureTimeoutError:
            # The late result is discarded; the thread stops at its next checkpoint
            scraper.cancel()
            raise ScrapeTimeoutError(f"Job exceeded {self.settings.job_timeout_seconds}s during {step}")
        finally:
            executor.shutdown(wait=False)

    def _check_cancelled(self, scraper: BaseScraper, job_id: UUID) -> None:
        if self.jobs.current_status(job_id) == JobStatus.CANCELLED:
            scraper.cancel()
            raise JobCancelledError(f"Job {job_id} was cancelled")

    def _item_error(self, scraper: BaseScraper, result: JobResult, index: int, error: Exception) -> None:
        message = f"Item {index}: {type(error).__name__}: {error}"
        result.errors.append(message)
        logger.warning(f"[{scraper.source.label}] Failed to process item: {message}")

    # ------------------------------------------------------------------
    # Terminal states
    # ------------------------------------------------------------------

    def _fail(self, result: JobResult, code: str, message: str) -> None:
        result.status = JobStatus.FAILED
        result.code = code
        result.message = message
        result.errors.append(message)
        result.metadata["traceback"] = traceback.format_exc(limit=5)

    def _finish(
        self,
        result: JobResult,
        started_at,
        record_health: bool,
        source_id: UUID | None = None,
    ) -> JobResult:
        finished_at = utcnow()
        result.duration = elapsed_ms(started_at, finished_at)
        values = {
            "finished_at": finished_at,
            "duration": result.duration,
            "log": result.log(),
            **result.counters(),
        }

        if not self.jobs.finish(result.job_id, result.status, values):
            # Cancelled while the last step ran; the cancel already wrote the terminal row
            self.db.rollback()
            result.status = self.jobs.current_status(result.job_id)
            logger.info(f"[job {result.job_id}] Left RUNNING before finish, now {result.status}")
            return result

        if record_health and source_id is not None:
            outcome = Outcome.SUCCESS if result.status == JobStatus.SUCCESS else Outcome.FAILURE
            self.sources.record_outcome(
                source_id,
                outcome,
                result.duration,
                error_message=result.message if outcome == Outcome.FAILURE else None,
                now=finished_at,
            )
        self.db.commit()
        return result

    def _cancel(self, result: JobResult, started_at) -> JobResult:
        """Cancel a claimed job the run itself refuses to execute."""
        result.status = JobStatus.CANCELLED
        result.duration = elapsed_ms(started_at, utcnow())
        try:
            self.jobs.cancel(result.job_id, result.log())
        except InvalidTransitionError:
            result.status = self.jobs.current_status(result.job_id)
        self.db.commit()
        logger.info(f"[job {result.job_id}] Cancelled: {result.message}")
        return result

    def _cancelled(self, result: JobResult, started_at) -> JobResult:
        """An admin cancel landed mid-run; the job row is already terminal."""
        self.db.rollback()
        result.status = JobStatus.CANCELLED
        result.duration = elapsed_ms(started_at, utcnow())
        return result
