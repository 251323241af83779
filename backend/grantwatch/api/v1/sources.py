"""Scraped source API endpoints."""

from uuid import UUID

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from grantwatch.api.deps import get_scheduler, get_source_manager
from grantwatch.core.scheduler import Scheduler
from grantwatch.core.source_manager import SourceManager
from grantwatch.exceptions import AlreadyRunningError, DuplicateSourceError, SourceInactiveError, SourceNotFoundError
from grantwatch.models.enums import SourceStatus, SourceType
from grantwatch.schemas.common import Pagination
from grantwatch.schemas.scrape_job import ScrapeJobSummary
from grantwatch.schemas.scraped_source import (
    DeactivateResponse,
    ScrapedSourceCreate,
    ScrapedSourceList,
    ScrapedSourceRead,
    ScrapedSourceUpdate,
    ScrapedSourceWithMetrics,
    SourceMetrics,
    TriggerRequest,
    TriggerResponse,
)

router = APIRouter(prefix="/sources", tags=["sources"])


def trigger_source_job(
    scheduler: Scheduler,
    source_id: UUID,
    request: TriggerRequest,
) -> TriggerResponse | JSONResponse:
    """Manual trigger shared by both trigger routes; maps errors to 404/400/409.

    The 409 body is flat so callers can read ``jobId`` and ``status`` of the
    job that already holds the source.
    """
    try:
        job = scheduler.trigger(
            source_id,
            priority=request.priority,
            force=request.force,
            triggered_by=request.triggered_by,
        )
    except SourceNotFoundError:
        raise HTTPException(status_code=404, detail="Source not found")
    except SourceInactiveError as e:
        raise HTTPException(status_code=400, detail=f"Source is not active (status {e.status})")
    except AlreadyRunningError as e:
        return JSONResponse(
            status_code=409,
            content={
                "error": "A scraping job is already running for this source",
                "code": e.code,
                "jobId": str(e.job.id),
                "status": e.job.status.value,
            },
        )

    source = scheduler.sources.get(source_id)
    return TriggerResponse(
        message=f"Scrape job queued for {source.url}",
        job_id=job.id,
        status=job.status.value,
        estimated_duration=scheduler.sources.estimated_duration(source),
        metadata=job.job_metadata or {},
    )


@router.post("", response_model=ScrapedSourceRead, status_code=201)
def create_source(
    payload: ScrapedSourceCreate,
    manager: SourceManager = Depends(get_source_manager),
):
    """Register a new source."""
    try:
        source = manager.create(**payload.model_dump())
    except DuplicateSourceError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return ScrapedSourceRead.model_validate(source)


@router.get("", response_model=ScrapedSourceList)
def list_sources(
    manager: SourceManager = Depends(get_source_manager),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: SourceStatus | None = Query(None, description="Filter by status"),
    source_type: SourceType | None = Query(None, alias="type", description="Filter by source type"),
):
    """List sources, most recently updated first."""
    sources, total = manager.list_sources(status=status, type=source_type, skip=(page - 1) * limit, limit=limit)
    return ScrapedSourceList(
        sources=[ScrapedSourceRead.model_validate(source) for source in sources],
        pagination=Pagination.build(page, limit, total),
    )


@router.get("/{source_id}", response_model=ScrapedSourceWithMetrics)
def get_source(
    source_id: UUID,
    manager: SourceManager = Depends(get_source_manager),
):
    """Get a single source with job-history metrics."""
    try:
        source = manager.get(source_id)
    except SourceNotFoundError:
        raise HTTPException(status_code=404, detail="Source not found")

    metrics = manager.metrics(source_id)
    recent = metrics.pop("recent_performance")
    return ScrapedSourceWithMetrics(
        **ScrapedSourceRead.model_validate(source).model_dump(),
        metrics=SourceMetrics(
            **metrics,
            recent_performance=[ScrapeJobSummary.model_validate(job) for job in recent],
        ),
    )


@router.put("/{source_id}", response_model=ScrapedSourceRead)
def update_source(
    source_id: UUID,
    payload: ScrapedSourceUpdate,
    manager: SourceManager = Depends(get_source_manager),
):
    """Edit source configuration. Omitted fields are left unchanged."""
    try:
        source = manager.update(source_id, **payload.model_dump(exclude_unset=True))
    except SourceNotFoundError:
        raise HTTPException(status_code=404, detail="Source not found")
    except DuplicateSourceError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return ScrapedSourceRead.model_validate(source)


@router.delete("/{source_id}", response_model=DeactivateResponse)
def deactivate_source(
    source_id: UUID,
    manager: SourceManager = Depends(get_source_manager),
    reason: str | None = Query(None, description="Why the source is being retired"),
):
    """Soft delete: the source becomes INACTIVE and keeps its job history."""
    try:
        source = manager.deactivate(source_id, reason=reason)
    except SourceNotFoundError:
        raise HTTPException(status_code=404, detail="Source not found")
    return DeactivateResponse(
        message="Source deactivated",
        source=ScrapedSourceRead.model_validate(source),
    )


@router.post("/{source_id}/reactivate", response_model=ScrapedSourceRead)
def reactivate_source(
    source_id: UUID,
    manager: SourceManager = Depends(get_source_manager),
):
    """Return an ERROR or INACTIVE source to ACTIVE and clear its failure streak."""
    try:
        source = manager.reactivate(source_id)
    except SourceNotFoundError:
        raise HTTPException(status_code=404, detail="Source not found")
    return ScrapedSourceRead.model_validate(source)


@router.post("/{source_id}/trigger", response_model=TriggerResponse, status_code=202)
def trigger_scrape(
    source_id: UUID,
    request: TriggerRequest | None = Body(None),
    scheduler: Scheduler = Depends(get_scheduler),
):
    """Trigger a manual scrape for a source."""
    return trigger_source_job(scheduler, source_id, request or TriggerRequest())
