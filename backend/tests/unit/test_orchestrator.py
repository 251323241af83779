"""Unit tests for grantwatch.core.orchestrator.

Scrapers are replaced by FakeScraper through the ``scraper_factory`` hook, so
no network access is needed.

Covers:
- successful runs: counters, grant upserts, health update, re-runs
- fetch failures, transport errors, and extract errors recorded as parse failures
- the per-job time budget
- per-item failures that do not fail the job
- cancellation before the claim, mid-run and for inactive sources
- chunking metadata on oversized documents
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import httpx
import pytest

from grantwatch.core.orchestrator import Orchestrator
from grantwatch.exceptions import FetchError, JobNotFoundError, ParseError
from grantwatch.models.enums import JobStatus, SourceStatus
from grantwatch.models.grant import Grant
from grantwatch.models.scrape_job import ScrapeJob
from grantwatch.models.scraped_source import ScrapedSource
from grantwatch.repositories.job_repository import JobRepository
from grantwatch.scrapers.base import BaseScraper, FetchedDocument

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)

ITEMS = [
    {"title": "Community Arts Fund", "url": "https://example.org/grants/arts", "amount": "$10,000"},
    {"title": "Rural Health Initiative", "url": "https://example.org/grants/health", "amount": "$25,000"},
    {"title": "STEM Education Awards", "url": "https://example.org/grants/stem", "amount": "$5,000"},
]


class FakeScraper(BaseScraper):
    """In-memory scraper with hooks for failure injection."""

    def __init__(
        self,
        source,
        settings,
        items=None,
        content: str = "Grant listings",
        fetch_error: Exception | None = None,
        extract_error: Exception | None = None,
        block_fetch: bool = False,
        on_normalize=None,
    ):
        super().__init__(source, settings)
        self.items = ITEMS if items is None else items
        self.content = content
        self.fetch_error = fetch_error
        self.extract_error = extract_error
        self.block_fetch = block_fetch
        self.on_normalize = on_normalize
        self.extracted_content: str | None = None

    def fetch(self) -> FetchedDocument:
        if self.block_fetch:
            # Released by cancel() once the budget runs out
            self.cancel_event.wait(10)
        if self.fetch_error is not None:
            raise self.fetch_error
        return FetchedDocument(url=self.source.url, content=self.content, status_code=200)

    def extract(self, content: str) -> list[dict]:
        self.extracted_content = content
        if self.extract_error is not None:
            raise self.extract_error
        return [dict(item) for item in self.items]

    def normalize(self, raw: dict) -> dict:
        if self.on_normalize is not None:
            self.on_normalize(raw)
        if not raw.get("title"):
            raise ParseError("Missing title")
        return {
            "title": raw["title"],
            "application_url": raw["url"],
            "amount_text": raw.get("amount"),
            "description": raw.get("description"),
            "extra_data": {"source_type": self.source.type.value},
        }


def _factory(**options):
    scrapers = []

    def build(snapshot, settings):
        scraper = FakeScraper(snapshot, settings, **options)
        scrapers.append(scraper)
        return scraper

    build.scrapers = scrapers
    return build


def _reload(db, model, pk):
    db.expire_all()
    return db.get(model, pk)


# ---------------------------------------------------------------------------
# Success path
# ---------------------------------------------------------------------------


class TestSuccessfulRun:
    def test_inserts_grants_and_records_success(self, db, settings, make_source, make_job) -> None:
        source = make_source()
        job = make_job(source)

        result = Orchestrator(db, settings, scraper_factory=_factory()).execute_scrape_job(job.id)

        assert result.status == JobStatus.SUCCESS
        assert result.counters() == {"total_found": 3, "total_inserted": 3, "total_updated": 0, "total_skipped": 0}

        stored = _reload(db, ScrapeJob, job.id)
        assert stored.status == JobStatus.SUCCESS
        assert stored.total_inserted == 3
        assert stored.started_at is not None
        assert stored.finished_at >= stored.started_at
        assert stored.duration >= 0
        assert stored.log["message"].startswith("Scraped 3 grants")
        assert stored.log["errors"] == []
        assert stored.log["metadata"]["attempt"] == 1
        assert stored.log["metadata"]["fetched_url"] == source.url

        health = db.get(ScrapedSource, source.id)
        assert health.success_rate == 100.0
        assert health.fail_count == 0
        assert health.last_scraped_at is not None
        assert db.query(Grant).filter(Grant.source_id == source.id).count() == 3

    def test_rerun_skips_unchanged_grants(self, db, settings, make_source, make_job) -> None:
        source = make_source()
        orchestrator = Orchestrator(db, settings, scraper_factory=_factory())
        orchestrator.execute_scrape_job(make_job(source).id)

        result = orchestrator.execute_scrape_job(make_job(source).id)

        assert result.status == JobStatus.SUCCESS
        assert result.total_inserted == 0
        assert result.total_skipped == 3
        assert db.query(Grant).count() == 3

    def test_rerun_updates_changed_grant(self, db, settings, make_source, make_job) -> None:
        source = make_source()
        Orchestrator(db, settings, scraper_factory=_factory()).execute_scrape_job(make_job(source).id)

        changed = [dict(ITEMS[0], amount="$12,000"), *ITEMS[1:]]
        result = Orchestrator(db, settings, scraper_factory=_factory(items=changed)).execute_scrape_job(
            make_job(source).id
        )

        assert result.total_updated == 1
        assert result.total_skipped == 2
        grant = db.query(Grant).filter(Grant.application_url == ITEMS[0]["url"]).one()
        assert grant.amount_text == "$12,000"

    def test_empty_listing_is_success(self, db, settings, make_source, make_job) -> None:
        job = make_job(make_source())

        result = Orchestrator(db, settings, scraper_factory=_factory(items=[])).execute_scrape_job(job.id)

        assert result.status == JobStatus.SUCCESS
        assert result.total_found == 0


# ---------------------------------------------------------------------------
# Failure paths
# ---------------------------------------------------------------------------


class TestFailures:
    def test_fetch_error_fails_job_and_lowers_health(self, db, settings, make_source, make_job) -> None:
        source = make_source(success_rate=80.0, fail_count=1, last_scraped_at=NOW - timedelta(days=8))
        job = make_job(source)
        factory = _factory(fetch_error=FetchError("Portal returned HTTP 503"))

        result = Orchestrator(db, settings, scraper_factory=factory).execute_scrape_job(job.id)

        assert result.status == JobStatus.FAILED
        assert result.code == "FETCH_FAILURE"

        stored = _reload(db, ScrapeJob, job.id)
        assert stored.status == JobStatus.FAILED
        assert stored.log["code"] == "FETCH_FAILURE"
        assert stored.log["message"] == "Portal returned HTTP 503"
        assert "Portal returned HTTP 503" in stored.log["errors"]
        assert "traceback" in stored.log["metadata"]

        health = db.get(ScrapedSource, source.id)
        assert health.fail_count == 2
        assert health.success_rate == pytest.approx(40.0)
        assert health.last_error == "Portal returned HTTP 503"

    def test_transport_error_maps_to_fetch_failure(self, db, settings, make_source, make_job) -> None:
        job = make_job(make_source())
        factory = _factory(fetch_error=httpx.ConnectError("connection refused"))

        result = Orchestrator(db, settings, scraper_factory=factory).execute_scrape_job(job.id)

        assert result.status == JobStatus.FAILED
        assert result.code == "FETCH_FAILURE"
        assert result.message == "ConnectError: connection refused"

    def test_parse_error_keeps_its_code(self, db, settings, make_source, make_job) -> None:
        job = make_job(make_source())
        factory = _factory(extract_error=ParseError("Unsupported content type: application/pdf"))

        result = Orchestrator(db, settings, scraper_factory=factory).execute_scrape_job(job.id)

        assert result.status == JobStatus.FAILED
        assert result.code == "PARSE_FAILURE"

    def test_unexpected_extract_exception_is_a_parse_failure(self, db, settings, make_source, make_job) -> None:
        job = make_job(make_source())
        factory = _factory(extract_error=RuntimeError("selector exploded"))

        result = Orchestrator(db, settings, scraper_factory=factory).execute_scrape_job(job.id)

        assert result.status == JobStatus.FAILED
        assert result.code == "PARSE_FAILURE"
        assert result.message == "RuntimeError: selector exploded"
        stored = _reload(db, ScrapeJob, job.id)
        assert stored.status == JobStatus.FAILED
        assert stored.log["code"] == "PARSE_FAILURE"

    def test_extract_must_return_a_list(self, db, settings, make_source, make_job) -> None:
        class NoItemsScraper(FakeScraper):
            def extract(self, content: str):
                return None

        job = make_job(make_source())

        result = Orchestrator(db, settings, scraper_factory=NoItemsScraper).execute_scrape_job(job.id)

        assert result.status == JobStatus.FAILED
        assert result.code == "PARSE_FAILURE"
        assert result.message == "extract() returned NoneType, expected a list of items"
        assert result.total_found == 0

    def test_time_budget_exceeded(self, db, settings, make_source, make_job) -> None:
        settings.job_timeout_seconds = 1
        source = make_source()
        job = make_job(source)
        factory = _factory(block_fetch=True)

        result = Orchestrator(db, settings, scraper_factory=factory).execute_scrape_job(job.id)

        assert result.status == JobStatus.FAILED
        assert result.code == "TIMEOUT"
        assert factory.scrapers[0].cancel_event.is_set()
        assert _reload(db, ScrapeJob, job.id).log["code"] == "TIMEOUT"
        assert db.get(ScrapedSource, source.id).fail_count == 1

    def test_item_failure_is_skipped_not_fatal(self, db, settings, make_source, make_job) -> None:
        items = [ITEMS[0], {"title": "", "url": "https://example.org/grants/blank"}, ITEMS[1]]
        job = make_job(make_source())

        result = Orchestrator(db, settings, scraper_factory=_factory(items=items)).execute_scrape_job(job.id)

        assert result.status == JobStatus.SUCCESS
        assert result.total_found == 3
        assert result.total_inserted == 2
        assert result.total_skipped == 1
        assert result.errors == ["Item 1: ParseError: Missing title"]
        assert _reload(db, ScrapeJob, job.id).log["errors"] == ["Item 1: ParseError: Missing title"]

    def test_duplicate_urls_within_run_are_skipped(self, db, settings, make_source, make_job) -> None:
        items = [ITEMS[0], dict(ITEMS[0], title="Community Arts Fund (repost)")]
        job = make_job(make_source())

        result = Orchestrator(db, settings, scraper_factory=_factory(items=items)).execute_scrape_job(job.id)

        assert result.total_inserted == 1
        assert result.total_skipped == 1


# ---------------------------------------------------------------------------
# Claim and cancellation
# ---------------------------------------------------------------------------


class TestCancellation:
    def test_unknown_job(self, db, settings) -> None:
        with pytest.raises(JobNotFoundError):
            Orchestrator(db, settings, scraper_factory=_factory()).execute_scrape_job(uuid.uuid4())

    def test_cancelled_job_is_not_claimed(self, db, settings, make_source, make_job) -> None:
        job = make_job(make_source(), status=JobStatus.CANCELLED)
        factory = MagicMock()

        result = Orchestrator(db, settings, scraper_factory=factory).execute_scrape_job(job.id)

        assert result.status == JobStatus.CANCELLED
        factory.assert_not_called()

    def test_cancel_during_run_stops_processing(self, db, settings, make_source, make_job) -> None:
        source = make_source()
        job = make_job(source)

        def cancel_on_first_item(raw: dict) -> None:
            if raw["url"] == ITEMS[0]["url"]:
                JobRepository(db).cancel(job.id, {"message": "Job cancelled by admin", "errors": []})
                db.commit()

        factory = _factory(on_normalize=cancel_on_first_item)
        result = Orchestrator(db, settings, scraper_factory=factory).execute_scrape_job(job.id)

        assert result.status == JobStatus.CANCELLED
        assert factory.scrapers[0].cancel_event.is_set()
        stored = _reload(db, ScrapeJob, job.id)
        assert stored.status == JobStatus.CANCELLED
        assert stored.log["message"] == "Job cancelled by admin"

        health = db.get(ScrapedSource, source.id)
        assert health.last_scraped_at is None
        assert health.fail_count == 0
        assert db.query(Grant).count() == 1

    def test_inactive_source_cancels_unforced_job(self, db, settings, make_source, make_job) -> None:
        source = make_source(status=SourceStatus.INACTIVE)
        job = make_job(source)
        factory = MagicMock()

        result = Orchestrator(db, settings, scraper_factory=factory).execute_scrape_job(job.id)

        assert result.status == JobStatus.CANCELLED
        factory.assert_not_called()
        stored = _reload(db, ScrapeJob, job.id)
        assert stored.status == JobStatus.CANCELLED
        assert stored.log["code"] == "SOURCE_INACTIVE"

    def test_forced_job_runs_on_inactive_source(self, db, settings, make_source, make_job) -> None:
        job = make_job(make_source(status=SourceStatus.INACTIVE), is_forced=True)

        result = Orchestrator(db, settings, scraper_factory=_factory()).execute_scrape_job(job.id)

        assert result.status == JobStatus.SUCCESS

    def test_missing_source_fails_without_health_update(self, db, settings) -> None:
        job = ScrapeJob(source_id=uuid.uuid4(), status=JobStatus.PENDING, is_forced=False, job_metadata={})
        db.add(job)
        db.commit()

        result = Orchestrator(db, settings, scraper_factory=MagicMock()).execute_scrape_job(job.id)

        assert result.status == JobStatus.FAILED
        assert result.code == "NOT_FOUND"
        assert _reload(db, ScrapeJob, job.id).status == JobStatus.FAILED


# ---------------------------------------------------------------------------
# Chunking
# ---------------------------------------------------------------------------


def test_oversized_document_is_chunked_before_extract(db, settings, make_source, make_job) -> None:
    settings.extraction_max_chars = 300
    filler = "Background on the foundation and its history. " * 20
    content = "\n\n".join([filler, "Eligibility: registered charities. Deadline: April 30.", filler])
    job = make_job(make_source())
    factory = _factory(content=content)

    Orchestrator(db, settings, scraper_factory=factory).execute_scrape_job(job.id)

    extracted = factory.scrapers[0].extracted_content
    assert len(extracted) < len(content)
    assert "Eligibility: registered charities." in extracted
    chunking = _reload(db, ScrapeJob, job.id).log["metadata"]["chunking"]
    assert chunking["chunked"] is True
    assert chunking["original_chars"] == len(content)
