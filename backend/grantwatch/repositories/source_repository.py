"""Persistence for scraped sources."""

from typing import Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from grantwatch.models.enums import SourceStatus, SourceType
from grantwatch.models.grant import Grant  # noqa: F401
from grantwatch.models.scrape_job import ScrapeJob  # noqa: F401
from grantwatch.models.scraped_source import ScrapedSource


class SourceRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, source_id: UUID) -> ScrapedSource | None:
        return self.db.get(ScrapedSource, source_id)

    def get_by_url(self, url: str) -> ScrapedSource | None:
        return self.db.execute(select(ScrapedSource).where(ScrapedSource.url == url)).scalar_one_or_none()

    def add(self, source: ScrapedSource) -> ScrapedSource:
        self.db.add(source)
        self.db.flush()
        return source

    def list_sources(
        self,
        status: SourceStatus | None = None,
        type: SourceType | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> tuple[Sequence[ScrapedSource], int]:
        query = select(ScrapedSource)
        count_query = select(func.count(ScrapedSource.id))
        if status:
            query = query.where(ScrapedSource.status == status)
            count_query = count_query.where(ScrapedSource.status == status)
        if type:
            query = query.where(ScrapedSource.type == type)
            count_query = count_query.where(ScrapedSource.type == type)

        query = query.order_by(ScrapedSource.updated_at.desc()).offset(skip)
        if limit is not None:
            query = query.limit(limit)

        total = self.db.execute(count_query).scalar() or 0
        return self.db.execute(query).scalars().all(), total

    def all_with_status(self, status: SourceStatus) -> Sequence[ScrapedSource]:
        return self.db.execute(select(ScrapedSource).where(ScrapedSource.status == status)).scalars().all()
