"""Shared pytest fixtures for Grantwatch tests.

Fixture summary
---------------
engine       In-memory SQLite engine with the full schema, one per test.
db           Session bound to ``engine``; closed after each test.
settings     Settings with small timeouts and a capacity of 5.
make_source  Factory for persisted ScrapedSource rows.
make_job     Factory for persisted ScrapeJob rows in any status.

SQLite runs the same partial unique index PostgreSQL uses for single-flight,
so no live database is required.
"""

from __future__ import annotations

import os
import uuid

# ---------------------------------------------------------------------------
# Test environment bootstrap
# ---------------------------------------------------------------------------
# Set before application imports so get_settings() never points at a server.

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from grantwatch.config import Settings, get_settings  # noqa: E402
from grantwatch.models.base import Base  # noqa: E402
from grantwatch.models.enums import Frequency, JobStatus, SourceStatus, SourceType  # noqa: E402
from grantwatch.models.grant import Grant  # noqa: E402, F401
from grantwatch.models.scrape_job import ScrapeJob  # noqa: E402
from grantwatch.models.scraped_source import ScrapedSource  # noqa: E402

get_settings.cache_clear()


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    yield session
    session.close()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite://",
        max_concurrent_jobs=5,
        retry_attempts=3,
        retry_base_delay_seconds=60,
        retry_max_delay_seconds=3600,
        job_timeout_seconds=5,
        stale_job_grace_minutes=60,
        fail_count_ceiling=5,
        extraction_max_chars=32000,
    )


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_source(db):
    def _make(
        url: str | None = None,
        type: SourceType = SourceType.FOUNDATION,
        status: SourceStatus = SourceStatus.ACTIVE,
        frequency: Frequency = Frequency.WEEKLY,
        **fields,
    ) -> ScrapedSource:
        fields.setdefault("fail_count", 0)
        fields.setdefault("success_rate", 0.0)
        source = ScrapedSource(
            url=url or f"https://example.org/grants/{uuid.uuid4().hex[:8]}",
            type=type,
            status=status,
            frequency=frequency,
            **fields,
        )
        db.add(source)
        db.commit()
        return source

    return _make


@pytest.fixture
def make_job(db):
    def _make(
        source: ScrapedSource,
        status: JobStatus = JobStatus.PENDING,
        is_forced: bool = False,
        metadata: dict | None = None,
        **fields,
    ) -> ScrapeJob:
        job = ScrapeJob(
            source_id=source.id,
            status=status,
            is_forced=is_forced,
            job_metadata=metadata if metadata is not None else {"trigger": "manual", "attempt": 1, "max_attempts": 3},
            **fields,
        )
        db.add(job)
        db.commit()
        return job

    return _make
