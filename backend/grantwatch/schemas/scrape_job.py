"""Pydantic schemas for ScrapeJob model."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from pydantic import AliasChoices, BaseModel, Field

from grantwatch.models.enums import JobStatus
from grantwatch.schemas.common import ORM_WIRE_CONFIG, WIRE_CONFIG, Pagination

if TYPE_CHECKING:
    from grantwatch.schemas.scraped_source import ScrapedSourceSummary


class ScrapeJobRead(BaseModel):
    """Full job output."""

    model_config = ORM_WIRE_CONFIG

    id: UUID
    source_id: UUID
    status: JobStatus
    started_at: datetime | None = None
    finished_at: datetime | None = None
    duration: int | None = None
    total_found: int | None = None
    total_inserted: int | None = None
    total_updated: int | None = None
    total_skipped: int | None = None
    log: dict[str, Any] | None = None
    # ORM attribute is job_metadata; Base.metadata is the SQLAlchemy MetaData
    job_metadata: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("job_metadata", "metadata"),
        serialization_alias="metadata",
    )
    created_at: datetime


class ScrapeJobSummary(BaseModel):
    """Minimal job info for list views and source metrics."""

    model_config = ORM_WIRE_CONFIG

    id: UUID
    status: JobStatus
    started_at: datetime | None = None
    duration: int | None = None
    total_found: int | None = None


class ScrapeJobWithSource(ScrapeJobRead):
    source: "ScrapedSourceSummary | None" = None


class JobSummaryStats(BaseModel):
    """Aggregates over a filtered job set."""

    model_config = WIRE_CONFIG

    total_jobs: int = 0
    total_grants_found: int = 0
    total_grants_inserted: int = 0
    total_grants_updated: int = 0
    total_grants_skipped: int = 0
    total_duration: int = 0
    average_duration: float = 0.0
    average_grants_found: float = 0.0
    status_breakdown: dict[str, int] = {}


class ScrapeJobList(BaseModel):
    model_config = WIRE_CONFIG

    jobs: list[ScrapeJobWithSource]
    pagination: Pagination
    summary: JobSummaryStats


class CancelResponse(BaseModel):
    model_config = WIRE_CONFIG

    message: str
    job: ScrapeJobRead
