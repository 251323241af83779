"""Scrape job API endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from grantwatch.api.deps import get_scheduler
from grantwatch.core.scheduler import Scheduler
from grantwatch.exceptions import InvalidTransitionError, JobNotFoundError
from grantwatch.models.base import get_db
from grantwatch.models.enums import JobStatus
from grantwatch.repositories.job_repository import SORTABLE_COLUMNS, JobRepository
from grantwatch.schemas.common import Pagination
from grantwatch.schemas.scrape_job import (
    CancelResponse,
    JobSummaryStats,
    ScrapeJobList,
    ScrapeJobRead,
    ScrapeJobWithSource,
)
from grantwatch.schemas.scraped_source import ScrapedSourceSummary

router = APIRouter(prefix="/jobs", tags=["jobs"])


def _with_source(job) -> ScrapeJobWithSource:
    return ScrapeJobWithSource(
        **ScrapeJobRead.model_validate(job).model_dump(),
        source=ScrapedSourceSummary.model_validate(job.source) if job.source else None,
    )


@router.get("", response_model=ScrapeJobList)
def list_jobs(
    db: Session = Depends(get_db),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: JobStatus | None = Query(None, description="Filter by status"),
    source_id: UUID | None = Query(None, alias="sourceId", description="Filter by source"),
    sort_by: str = Query("startedAt", alias="sortBy", pattern="^(" + "|".join(SORTABLE_COLUMNS) + ")$"),
    sort_order: str = Query("desc", alias="sortOrder", pattern="^(asc|desc)$"),
):
    """List scrape jobs with an aggregate summary over the same filter."""
    jobs = JobRepository(db)
    rows, total = jobs.list_jobs(
        source_id=source_id,
        status=status,
        skip=(page - 1) * limit,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return ScrapeJobList(
        jobs=[_with_source(job) for job in rows],
        pagination=Pagination.build(page, limit, total),
        summary=JobSummaryStats(**jobs.summarize(source_id=source_id, status=status)),
    )


@router.get("/{job_id}", response_model=ScrapeJobWithSource)
def get_job(
    job_id: UUID,
    db: Session = Depends(get_db),
):
    """Get a single scrape job."""
    job = JobRepository(db).get(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return _with_source(job)


@router.delete("/{job_id}", response_model=CancelResponse)
def cancel_job(
    job_id: UUID,
    scheduler: Scheduler = Depends(get_scheduler),
    cancelled_by: str | None = Query(None, alias="cancelledBy"),
):
    """Cancel a PENDING or RUNNING job."""
    try:
        job = scheduler.cancel(job_id, cancelled_by=cancelled_by)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    except InvalidTransitionError as e:
        raise HTTPException(status_code=400, detail=f"Cannot cancel job with status {getattr(e.current, 'value', e.current)}")
    return CancelResponse(message="Job cancelled successfully", job=ScrapeJobRead.model_validate(job))
