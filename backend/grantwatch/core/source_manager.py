"""Source manager: catalog of scrape sources and their rolling health.

Health fields on ``ScrapedSource`` are only ever written here. Administrative
operations commit their own transaction; ``record_outcome`` only flushes so the
orchestrator can commit it together with the job's terminal status.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from grantwatch.config import Settings, get_settings
from grantwatch.exceptions import DuplicateSourceError, SourceNotFoundError
from grantwatch.models.base import utcnow
from grantwatch.models.enums import Frequency, JobStatus, Outcome, SourceStatus, SourceType
from grantwatch.models.scraped_source import ScrapedSource
from grantwatch.repositories.job_repository import JobRepository
from grantwatch.repositories.source_repository import SourceRepository

logger = logging.getLogger(__name__)

FREQUENCY_INTERVALS = {
    Frequency.DAILY: timedelta(days=1),
    Frequency.WEEKLY: timedelta(days=7),
    Frequency.MONTHLY: timedelta(days=30),
}

DEFAULT_ESTIMATED_DURATION_MS = 60_000
EDITABLE_FIELDS = ("url", "type", "frequency", "status", "category", "region", "notes")
ENUM_FIELDS = {"type": SourceType, "frequency": Frequency, "status": SourceStatus}


def frequency_interval(frequency: Frequency) -> timedelta:
    return FREQUENCY_INTERVALS[Frequency(frequency)]


def is_due(source: ScrapedSource, now: datetime) -> bool:
    """True when the source is ACTIVE and its frequency interval has elapsed (inclusive)."""
    if source.status != SourceStatus.ACTIVE:
        return False
    if source.last_scraped_at is None:
        return True
    return now - source.last_scraped_at >= frequency_interval(source.frequency)


def blend_success_rate(rate: float, prior_fail_count: int, success: bool, cold_start: bool) -> float:
    """Weighted blend of the prior rate and the new outcome (100 or 0).

    The prior rate is weighted by the number of consecutive failures that
    preceded this outcome. The first recorded outcome is taken as-is.
    """
    target = 100.0 if success else 0.0
    if cold_start:
        return target
    weight = max(prior_fail_count, 0)
    blended = ((rate or 0.0) * weight + target) / (weight + 1)
    return min(100.0, max(0.0, blended))


class SourceManager:
    def __init__(self, db: Session, settings: Settings | None = None):
        self.db = db
        self.settings = settings or get_settings()
        self.sources = SourceRepository(db)
        self.jobs = JobRepository(db)

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def create(
        self,
        url: str,
        type: SourceType,
        frequency: Frequency | None = None,
        category: str | None = None,
        region: str | None = None,
        notes: str | None = None,
        status: SourceStatus = SourceStatus.ACTIVE,
    ) -> ScrapedSource:
        url = url.strip()
        if self.sources.get_by_url(url):
            raise DuplicateSourceError(url)

        source = ScrapedSource(
            url=url,
            type=SourceType(type),
            frequency=Frequency(frequency or self.settings.default_frequency),
            status=SourceStatus(status),
            category=category,
            region=region,
            notes=notes,
            fail_count=0,
            success_rate=0.0,
        )
        self.sources.add(source)
        self.db.commit()
        logger.info(f"Created source [{source.type.value}/{source.url}]")
        return source

    def get(self, source_id: UUID) -> ScrapedSource:
        source = self.sources.get(source_id)
        if source is None:
            raise SourceNotFoundError(source_id)
        return source

    def list_sources(
        self,
        status: SourceStatus | None = None,
        type: SourceType | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> tuple[Sequence[ScrapedSource], int]:
        return self.sources.list_sources(status=status, type=type, skip=skip, limit=limit)

    def update(self, source_id: UUID, **changes: Any) -> ScrapedSource:
        """Apply administrative edits. ``None`` values are ignored."""
        source = self.get(source_id)
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Not editable: {', '.join(sorted(unknown))}")

        url = changes.get("url")
        if url and url != source.url:
            conflict = self.sources.get_by_url(url)
            if conflict is not None and conflict.id != source.id:
                raise DuplicateSourceError(url)

        for key, value in changes.items():
            if value is None:
                continue
            if key in ENUM_FIELDS:
                value = ENUM_FIELDS[key](value)
            setattr(source, key, value)
        self.db.commit()
        return source

    def set_status(self, source_id: UUID, status: SourceStatus) -> ScrapedSource:
        source = self.get(source_id)
        source.status = SourceStatus(status)
        self.db.commit()
        logger.info(f"Source [{source.type.value}/{source.url}] status -> {source.status.value}")
        return source

    def deactivate(self, source_id: UUID, reason: str | None = None) -> ScrapedSource:
        """Soft delete. Sources referenced by job history are never removed."""
        source = self.get(source_id)
        source.status = SourceStatus.INACTIVE
        if reason:
            source.last_error = reason
        self.db.commit()
        logger.info(f"Deactivated source [{source.type.value}/{source.url}]")
        return source

    def reactivate(self, source_id: UUID) -> ScrapedSource:
        """Manual exit from ERROR or INACTIVE; clears the failure streak."""
        source = self.get(source_id)
        source.status = SourceStatus.ACTIVE
        source.fail_count = 0
        self.db.commit()
        return source

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def record_outcome(
        self,
        source_id: UUID,
        outcome: Outcome,
        duration_ms: int | None,
        error_message: str | None = None,
        now: datetime | None = None,
    ) -> ScrapedSource:
        """Fold one terminal job outcome into the source's rolling health.

        Flushes but does not commit; the caller owns the transaction.
        """
        source = self.get(source_id)
        success = Outcome(outcome) == Outcome.SUCCESS
        prior_fail_count = source.fail_count or 0

        source.success_rate = blend_success_rate(
            source.success_rate,
            prior_fail_count,
            success,
            cold_start=source.last_scraped_at is None,
        )
        source.last_scraped_at = now or utcnow()

        if duration_ms is not None:
            if source.avg_parse_time is None:
                source.avg_parse_time = int(duration_ms)
            else:
                source.avg_parse_time = round((source.avg_parse_time + duration_ms) / 2)

        if success:
            source.fail_count = 0
            source.last_error = None
        else:
            source.fail_count = prior_fail_count + 1
            source.last_error = (error_message or "Unknown error")[:2000]
            ceiling = self.settings.fail_count_ceiling
            if source.status == SourceStatus.ACTIVE and source.fail_count >= ceiling:
                source.status = SourceStatus.ERROR
                logger.warning(
                    f"[{source.type.value}/{source.url}] {source.fail_count} consecutive failures, status -> ERROR"
                )

        self.db.flush()
        return source

    def is_due(self, source: ScrapedSource, now: datetime) -> bool:
        return is_due(source, now)

    def due_sources(self, now: datetime) -> list[ScrapedSource]:
        """ACTIVE sources that are due, oldest ``last_scraped_at`` first, never-scraped first of all."""
        candidates = [s for s in self.sources.all_with_status(SourceStatus.ACTIVE) if is_due(s, now)]
        return sorted(candidates, key=fairness_key)

    def estimated_duration(self, source: ScrapedSource) -> int:
        return source.avg_parse_time or DEFAULT_ESTIMATED_DURATION_MS

    def metrics(self, source_id: UUID) -> dict[str, Any]:
        """Job-history metrics shown on the source detail view."""
        self.get(source_id)
        summary = self.jobs.summarize(source_id=source_id)
        total = summary["total_jobs"]
        successful = summary["status_breakdown"].get(JobStatus.SUCCESS.value, 0)
        return {
            "total_jobs": total,
            "successful_jobs": successful,
            "success_rate": round(successful / total * 100, 2) if total else 0.0,
            "average_duration": summary["average_duration"],
            "average_grants_found": summary["average_grants_found"],
            "status_breakdown": summary["status_breakdown"],
            "recent_performance": list(self.jobs.recent_for_source(source_id, limit=10)),
        }


def fairness_key(source: ScrapedSource) -> tuple[int, datetime]:
    if source.last_scraped_at is None:
        return (0, datetime.min.replace(tzinfo=utcnow().tzinfo))
    return (1, source.last_scraped_at)
