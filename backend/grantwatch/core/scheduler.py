"""Scheduler: turns due sources into bounded, non-duplicated scrape jobs.

One tick:
    1. collect due sources and FAILED jobs whose retry backoff has elapsed
    2. order them oldest ``last_scraped_at`` first, never-scraped first of all
    3. skip sources with an active job (single-flight)
    4. create PENDING jobs up to the free capacity, leave the rest for the next tick
    5. hand each new job id to ``dispatch``

Capacity is derived from the jobs table on every tick, so a restart loses
nothing: sources left over remain due and are picked up again.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Iterator
from uuid import UUID

from sqlalchemy.orm import Session

from grantwatch.config import Settings, get_settings
from grantwatch.core.source_manager import SourceManager, fairness_key
from grantwatch.exceptions import STALE, AlreadyRunningError, SourceInactiveError
from grantwatch.models.base import utcnow
from grantwatch.models.enums import JobStatus, Outcome, SourceStatus
from grantwatch.models.scrape_job import ScrapeJob
from grantwatch.models.scraped_source import ScrapedSource
from grantwatch.repositories.job_repository import JobRepository, elapsed_ms

logger = logging.getLogger(__name__)

MIN_PRIORITY = 1
MAX_PRIORITY = 10

Dispatch = Callable[[UUID], Any]


@dataclass
class TickResult:
    due: int = 0
    retries: int = 0
    created: list[UUID] = field(default_factory=list)
    skipped_active: int = 0
    deferred: int = 0


class Scheduler:
    def __init__(self, db: Session, settings: Settings | None = None, dispatch: Dispatch | None = None):
        self.db = db
        self.settings = settings or get_settings()
        self.sources = SourceManager(db, self.settings)
        self.jobs = JobRepository(db)
        self.dispatch = dispatch

    def retry_delay(self, attempt: int) -> timedelta:
        """Exponential backoff after the given (failed) attempt number."""
        seconds = self.settings.retry_base_delay_seconds * 2 ** max(attempt - 1, 0)
        return timedelta(seconds=min(seconds, self.settings.retry_max_delay_seconds))

    # ------------------------------------------------------------------
    # Control loop
    # ------------------------------------------------------------------

    def tick(self, now: datetime | None = None) -> TickResult:
        now = now or utcnow()
        result = TickResult()
        # Health fields are written by other sessions
        self.db.expire_all()

        candidates: list[tuple[ScrapedSource, dict[str, Any]]] = []
        due_ids = set()
        for source in self.sources.due_sources(now):
            due_ids.add(source.id)
            candidates.append((source, self._metadata("scheduled")))
        result.due = len(candidates)

        for source, metadata in self._retry_candidates(now):
            if source.id not in due_ids:
                candidates.append((source, metadata))
                result.retries += 1

        candidates.sort(key=lambda candidate: fairness_key(candidate[0]))
        capacity = max(self.settings.max_concurrent_jobs - self.jobs.count_active(), 0)

        for source, metadata in candidates:
            if self.jobs.find_active(source.id) is not None:
                result.skipped_active += 1
                continue
            if capacity <= 0:
                result.deferred += 1
                continue
            try:
                job = self.jobs.create_pending(source.id, metadata)
                self.db.commit()
            except AlreadyRunningError:
                result.skipped_active += 1
                continue
            capacity -= 1
            result.created.append(job.id)

        for job_id in result.created:
            self._dispatch(job_id)

        logger.info(
            f"Tick: {result.due} due, {result.retries} retries, {len(result.created)} dispatched, "
            f"{result.skipped_active} already active, {result.deferred} deferred"
        )
        return result

    def run_forever(self, stop_event: threading.Event, interval: float | None = None) -> None:
        """Re-enter ``tick`` every ``health_check_interval_seconds`` until ``stop_event`` is set."""
        interval = interval or self.settings.health_check_interval_seconds
        logger.info(f"Scheduler loop started, tick every {interval}s")
        while not stop_event.is_set():
            try:
                self.tick()
                self.reconcile_stale_jobs()
            except Exception:
                logger.exception("Scheduler tick failed")
                self.db.rollback()
            stop_event.wait(interval)
        logger.info("Scheduler loop stopped")

    # ------------------------------------------------------------------
    # Manual operations
    # ------------------------------------------------------------------

    def trigger(
        self,
        source_id: UUID,
        priority: int = MIN_PRIORITY,
        force: bool = False,
        triggered_by: str | None = None,
    ) -> ScrapeJob:
        """Create and dispatch a job now, bypassing the due check and capacity."""
        source = self.sources.get(source_id)
        if source.status != SourceStatus.ACTIVE and not force:
            raise SourceInactiveError(source.id, source.status.value)

        metadata = self._metadata("manual", priority=priority, triggered_by=triggered_by)
        job = self.jobs.create_pending(source.id, metadata, force=force)
        self.db.commit()
        logger.info(f"[{source.type.value}/{source.url}] Manual trigger -> job {job.id} (force={force})")

        self._dispatch(job.id)
        return job

    def cancel(self, job_id: UUID, cancelled_by: str | None = None) -> ScrapeJob:
        now = utcnow()
        log = {
            "message": "Job cancelled by admin",
            "code": JobStatus.CANCELLED.value,
            "errors": [],
            "metadata": {"cancelled_by": cancelled_by, "cancelled_at": now.isoformat()},
        }
        job = self.jobs.cancel(job_id, log)
        self.db.commit()
        logger.info(f"Job {job_id} cancelled by {cancelled_by or 'admin'}")
        return job

    def reconcile_stale_jobs(self, now: datetime | None = None) -> list[UUID]:
        """Fail active jobs with no progress within the grace period."""
        now = now or utcnow()
        grace = self.settings.stale_job_grace_minutes
        reconciled = []

        for job in self.jobs.find_stale(now - timedelta(minutes=grace)):
            job_id, source_id, started_at = job.id, job.source_id, job.started_at
            message = f"Job stuck in {job.status.value} for more than {grace} minutes"
            values = {
                "finished_at": now,
                "log": {"message": message, "code": STALE, "errors": [message], "metadata": {}},
            }
            if started_at is not None:
                values["duration"] = elapsed_ms(started_at, now)

            if not self.jobs.fail_active(job_id, values):
                continue
            if self.sources.sources.get(source_id) is not None:
                self.sources.record_outcome(source_id, Outcome.FAILURE, None, error_message=message, now=now)
            self.db.commit()
            reconciled.append(job_id)
            logger.warning(f"Reconciled stale job {job_id}: {message}")

        if reconciled:
            logger.info(f"Marked {len(reconciled)} stale jobs as FAILED")
        return reconciled

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _retry_candidates(self, now: datetime) -> Iterator[tuple[ScrapedSource, dict[str, Any]]]:
        failed = self.jobs.latest_by_source(status=JobStatus.FAILED)
        if not failed:
            return
        for source in self.sources.sources.all_with_status(SourceStatus.ACTIVE):
            latest = failed.get(source.id)
            if latest is None:
                continue

            previous = latest.job_metadata or {}
            attempt = previous.get("attempt", 1)
            max_attempts = previous.get("max_attempts", self.settings.retry_attempts)
            if attempt >= max_attempts:
                continue
            if latest.finished_at is not None and now - latest.finished_at < self.retry_delay(attempt):
                continue

            yield source, self._metadata(
                "retry",
                priority=previous.get("priority", MIN_PRIORITY),
                triggered_by=previous.get("triggered_by"),
                attempt=attempt + 1,
                max_attempts=max_attempts,
                retry_of=str(latest.id),
                root_job_id=previous.get("root_job_id") or str(latest.id),
            )

    def _metadata(self, trigger: str, priority: int = MIN_PRIORITY, **extra: Any) -> dict[str, Any]:
        metadata = {
            "trigger": trigger,
            "priority": min(max(int(priority), MIN_PRIORITY), MAX_PRIORITY),
            "attempt": 1,
            "max_attempts": self.settings.retry_attempts,
        }
        metadata.update(extra)
        return metadata

    def _dispatch(self, job_id: UUID) -> None:
        if self.dispatch is None:
            return
        try:
            self.dispatch(job_id)
        except Exception:
            # The job stays PENDING and is failed by reconciliation
            logger.exception(f"Failed to dispatch job {job_id}")
