"""Pydantic schemas for ScrapedSource model."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from pydantic import BaseModel, Field

from grantwatch.models.enums import Frequency, SourceStatus, SourceType
from grantwatch.schemas.common import ORM_WIRE_CONFIG, WIRE_CONFIG, Pagination

if TYPE_CHECKING:
    from grantwatch.schemas.scrape_job import ScrapeJobSummary


class ScrapedSourceBase(BaseModel):
    """Base fields for scraped source."""

    model_config = WIRE_CONFIG

    url: str
    type: SourceType
    category: str | None = None
    region: str | None = None
    notes: str | None = None


class ScrapedSourceCreate(ScrapedSourceBase):
    """Fields for creating a source. Frequency falls back to the configured default."""

    frequency: Frequency | None = None
    status: SourceStatus = SourceStatus.ACTIVE


class ScrapedSourceUpdate(BaseModel):
    """Administrative edit; only provided fields change."""

    model_config = WIRE_CONFIG

    url: str | None = None
    type: SourceType | None = None
    frequency: Frequency | None = None
    status: SourceStatus | None = None
    category: str | None = None
    region: str | None = None
    notes: str | None = None


class ScrapedSourceRead(ScrapedSourceBase):
    """Full source output including rolling health."""

    model_config = ORM_WIRE_CONFIG

    id: UUID
    status: SourceStatus
    frequency: Frequency
    last_scraped_at: datetime | None = None
    fail_count: int = 0
    success_rate: float = 0.0
    last_error: str | None = None
    avg_parse_time: int | None = None
    created_at: datetime
    updated_at: datetime


class ScrapedSourceSummary(BaseModel):
    """Minimal source info for nested responses."""

    model_config = ORM_WIRE_CONFIG

    id: UUID
    url: str
    type: SourceType
    status: SourceStatus


class SourceMetrics(BaseModel):
    """Job-history metrics for one source."""

    model_config = WIRE_CONFIG

    total_jobs: int = 0
    successful_jobs: int = 0
    success_rate: float = 0.0
    average_duration: float = 0.0
    average_grants_found: float = 0.0
    status_breakdown: dict[str, int] = {}
    recent_performance: list["ScrapeJobSummary"] = []


class ScrapedSourceWithMetrics(ScrapedSourceRead):
    metrics: SourceMetrics


class ScrapedSourceList(BaseModel):
    model_config = WIRE_CONFIG

    sources: list[ScrapedSourceRead]
    pagination: Pagination


class DeactivateResponse(BaseModel):
    model_config = WIRE_CONFIG

    message: str
    source: ScrapedSourceRead


class TriggerRequest(BaseModel):
    """Body of a manual trigger."""

    model_config = WIRE_CONFIG

    priority: int = Field(1, ge=1, le=10)
    force: bool = False
    triggered_by: str | None = None


class SourceTriggerRequest(TriggerRequest):
    source_id: UUID


class TriggerResponse(BaseModel):
    """Response from triggering a manual scrape."""

    model_config = WIRE_CONFIG

    message: str
    job_id: UUID
    status: str
    estimated_duration: int
    metadata: dict[str, Any] = {}
