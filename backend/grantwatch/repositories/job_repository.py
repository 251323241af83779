"""Persistence for scrape jobs and their status transitions.

Status changes are compare-and-set updates on the current status, so two
writers racing on the same job cannot move it out of a terminal state.
"""

import logging
from datetime import datetime
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased, selectinload

from grantwatch.exceptions import AlreadyRunningError, InvalidTransitionError, JobNotFoundError
from grantwatch.models.base import utcnow
from grantwatch.models.enums import ACTIVE_JOB_STATUSES, JobStatus
from grantwatch.models.scrape_job import ScrapeJob

logger = logging.getLogger(__name__)

SORTABLE_COLUMNS = {
    "startedAt": ScrapeJob.started_at,
    "duration": ScrapeJob.duration,
}


class JobRepository:
    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, job_id: UUID) -> ScrapeJob | None:
        return self.db.get(ScrapeJob, job_id)

    def get_or_raise(self, job_id: UUID) -> ScrapeJob:
        job = self.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def current_status(self, job_id: UUID) -> JobStatus | None:
        """Read the status straight from the database, bypassing the identity map."""
        return self.db.execute(select(ScrapeJob.status).where(ScrapeJob.id == job_id)).scalar_one_or_none()

    def find_active(self, source_id: UUID) -> ScrapeJob | None:
        query = (
            select(ScrapeJob)
            .where(ScrapeJob.source_id == source_id, ScrapeJob.status.in_(ACTIVE_JOB_STATUSES))
            .order_by(ScrapeJob.created_at)
            .limit(1)
        )
        return self.db.execute(query).scalar_one_or_none()

    def count_active(self) -> int:
        query = select(func.count(ScrapeJob.id)).where(ScrapeJob.status.in_(ACTIVE_JOB_STATUSES))
        return self.db.execute(query).scalar() or 0

    def count_by_status(self, status: JobStatus) -> int:
        return self.db.execute(select(func.count(ScrapeJob.id)).where(ScrapeJob.status == status)).scalar() or 0

    def latest_by_source(self, status: JobStatus | None = None) -> dict[UUID, ScrapeJob]:
        """Most recent job of every source, keyed by source id, in one query.

        ``status`` filters after ranking: a source whose latest job has a
        different status is left out rather than matched on an older job.
        """
        rank = (
            func.row_number()
            .over(partition_by=ScrapeJob.source_id, order_by=ScrapeJob.created_at.desc())
            .label("rank")
        )
        ranked = select(ScrapeJob, rank).subquery()
        latest = aliased(ScrapeJob, ranked)
        query = select(latest).where(ranked.c.rank == 1)
        if status is not None:
            query = query.where(latest.status == status)
        return {job.source_id: job for job in self.db.execute(query).scalars()}

    def recent_for_source(self, source_id: UUID, limit: int = 10) -> Sequence[ScrapeJob]:
        query = (
            select(ScrapeJob)
            .where(ScrapeJob.source_id == source_id)
            .order_by(ScrapeJob.created_at.desc())
            .limit(limit)
        )
        return self.db.execute(query).scalars().all()

    def find_stale(self, cutoff: datetime) -> Sequence[ScrapeJob]:
        """Active jobs whose last progress predates ``cutoff``."""
        query = select(ScrapeJob).where(
            ScrapeJob.status.in_(ACTIVE_JOB_STATUSES),
            func.coalesce(ScrapeJob.started_at, ScrapeJob.created_at) < cutoff,
        )
        return self.db.execute(query).scalars().all()

    def list_jobs(
        self,
        source_id: UUID | None = None,
        status: JobStatus | None = None,
        skip: int = 0,
        limit: int = 20,
        sort_by: str = "startedAt",
        sort_order: str = "desc",
    ) -> tuple[Sequence[ScrapeJob], int]:
        query = select(ScrapeJob).options(selectinload(ScrapeJob.source))
        query = self._filtered(query, source_id, status)

        column = SORTABLE_COLUMNS.get(sort_by, ScrapeJob.started_at)
        ordering = column.asc().nullsfirst() if sort_order == "asc" else column.desc().nullslast()
        query = query.order_by(ordering, ScrapeJob.created_at.desc()).offset(skip).limit(limit)

        total_query = self._filtered(select(func.count(ScrapeJob.id)), source_id, status)
        total = self.db.execute(total_query).scalar() or 0
        return self.db.execute(query).scalars().all(), total

    def summarize(self, source_id: UUID | None = None, status: JobStatus | None = None) -> dict[str, Any]:
        """Counts, sums and averages over the filtered job set."""
        aggregate = select(
            func.count(ScrapeJob.id),
            func.sum(ScrapeJob.total_found),
            func.sum(ScrapeJob.total_inserted),
            func.sum(ScrapeJob.total_updated),
            func.sum(ScrapeJob.total_skipped),
            func.sum(ScrapeJob.duration),
            func.avg(ScrapeJob.duration),
            func.avg(ScrapeJob.total_found),
        )
        row = self.db.execute(self._filtered(aggregate, source_id, status)).one()

        breakdown_query = self._filtered(
            select(ScrapeJob.status, func.count(ScrapeJob.id)).group_by(ScrapeJob.status),
            source_id,
            status,
        )
        breakdown = {job_status.value: count for job_status, count in self.db.execute(breakdown_query)}

        return {
            "total_jobs": row[0] or 0,
            "total_grants_found": row[1] or 0,
            "total_grants_inserted": row[2] or 0,
            "total_grants_updated": row[3] or 0,
            "total_grants_skipped": row[4] or 0,
            "total_duration": row[5] or 0,
            "average_duration": float(row[6] or 0),
            "average_grants_found": float(row[7] or 0),
            "status_breakdown": breakdown,
        }

    @staticmethod
    def _filtered(query, source_id: UUID | None, status: JobStatus | None):
        if source_id:
            query = query.where(ScrapeJob.source_id == source_id)
        if status:
            query = query.where(ScrapeJob.status == status)
        return query

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_pending(self, source_id: UUID, metadata: dict[str, Any], force: bool = False) -> ScrapeJob:
        """Insert a PENDING job unless the source already has an active one.

        With ``force`` the check is skipped and the row is excluded from the
        unique partial index. Raises ``AlreadyRunningError`` otherwise; on a
        lost race the session is rolled back before raising.
        """
        if not force:
            existing = self.find_active(source_id)
            if existing is not None:
                raise AlreadyRunningError(existing)

        job = ScrapeJob(
            source_id=source_id,
            status=JobStatus.PENDING,
            is_forced=force,
            job_metadata=dict(metadata, force=force),
        )
        self.db.add(job)
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            existing = self.find_active(source_id)
            logger.warning(f"Lost single-flight race for source {source_id}")
            if existing is None:
                raise
            raise AlreadyRunningError(existing)
        return job

    def claim(self, job_id: UUID) -> bool:
        """PENDING -> RUNNING. Returns False when the job was no longer PENDING."""
        now = utcnow()
        result = self.db.execute(
            update(ScrapeJob)
            .where(ScrapeJob.id == job_id, ScrapeJob.status == JobStatus.PENDING)
            .values(status=JobStatus.RUNNING, started_at=func.coalesce(ScrapeJob.started_at, now), updated_at=now)
            .execution_options(synchronize_session=False)
        )
        self._expire(job_id)
        return result.rowcount == 1

    def finish(self, job_id: UUID, status: JobStatus, values: dict[str, Any]) -> bool:
        """RUNNING -> SUCCESS/FAILED. Returns False when the job left RUNNING meanwhile."""
        if status not in (JobStatus.SUCCESS, JobStatus.FAILED):
            raise ValueError(f"finish() cannot set {status}")
        return self._transition(job_id, (JobStatus.RUNNING,), status, values)

    def fail_active(self, job_id: UUID, values: dict[str, Any]) -> bool:
        """PENDING|RUNNING -> FAILED, used by reconciliation."""
        return self._transition(job_id, ACTIVE_JOB_STATUSES, JobStatus.FAILED, values)

    def cancel(self, job_id: UUID, log: dict[str, Any]) -> ScrapeJob:
        job = self.get_or_raise(job_id)
        if job.status not in ACTIVE_JOB_STATUSES:
            raise InvalidTransitionError(job_id, job.status, JobStatus.CANCELLED)

        now = utcnow()
        values = {"finished_at": now, "log": log}
        if job.started_at is not None:
            values["duration"] = elapsed_ms(job.started_at, now)
        if not self._transition(job_id, ACTIVE_JOB_STATUSES, JobStatus.CANCELLED, values):
            raise InvalidTransitionError(job_id, self.current_status(job_id), JobStatus.CANCELLED)
        return self.get_or_raise(job_id)

    def _transition(self, job_id: UUID, allowed: tuple[JobStatus, ...], target: JobStatus, values: dict[str, Any]) -> bool:
        result = self.db.execute(
            update(ScrapeJob)
            .where(ScrapeJob.id == job_id, ScrapeJob.status.in_(allowed))
            .values(status=target, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        self._expire(job_id)
        return result.rowcount == 1

    def _expire(self, job_id: UUID) -> None:
        # Bulk updates skip the identity map; drop only the cached copy of this job.
        job = self.db.identity_map.get(self.db.identity_key(ScrapeJob, job_id))
        if job is not None:
            self.db.expire(job)


def elapsed_ms(started_at: datetime, finished_at: datetime) -> int:
    return int((finished_at - started_at).total_seconds() * 1000)
