"""Pydantic schemas package."""

from grantwatch.schemas.common import Pagination
from grantwatch.schemas.scraped_source import (
    DeactivateResponse,
    ScrapedSourceBase,
    ScrapedSourceCreate,
    ScrapedSourceList,
    ScrapedSourceRead,
    ScrapedSourceSummary,
    ScrapedSourceUpdate,
    ScrapedSourceWithMetrics,
    SourceMetrics,
    SourceTriggerRequest,
    TriggerRequest,
    TriggerResponse,
)
from grantwatch.schemas.scrape_job import (
    CancelResponse,
    JobSummaryStats,
    ScrapeJobList,
    ScrapeJobRead,
    ScrapeJobSummary,
    ScrapeJobWithSource,
)

# Rebuild models to resolve forward references
SourceMetrics.model_rebuild()
ScrapedSourceWithMetrics.model_rebuild()
ScrapeJobWithSource.model_rebuild()
ScrapeJobList.model_rebuild()

__all__ = [
    "Pagination",
    # ScrapedSource
    "ScrapedSourceBase",
    "ScrapedSourceCreate",
    "ScrapedSourceUpdate",
    "ScrapedSourceRead",
    "ScrapedSourceSummary",
    "ScrapedSourceWithMetrics",
    "ScrapedSourceList",
    "SourceMetrics",
    "DeactivateResponse",
    "TriggerRequest",
    "SourceTriggerRequest",
    "TriggerResponse",
    # ScrapeJob
    "ScrapeJobRead",
    "ScrapeJobSummary",
    "ScrapeJobWithSource",
    "JobSummaryStats",
    "ScrapeJobList",
    "CancelResponse",
]
