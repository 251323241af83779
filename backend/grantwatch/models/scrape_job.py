"""Scrape job model: one execution attempt against one source."""

from sqlalchemy import JSON, Boolean, Column, Enum, ForeignKey, Index, Integer, Uuid, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from grantwatch.models.base import Base, TimestampMixin, UTCDateTime, UUIDMixin
from grantwatch.models.enums import JobStatus

JSONType = JSON().with_variant(JSONB(), "postgresql")

# At most one non-forced active job per source. The index is the conditional
# insert that JobRepository.create_pending relies on under races.
_ACTIVE_UNFORCED = text("status IN ('PENDING', 'RUNNING') AND NOT is_forced")


class ScrapeJob(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "scrape_jobs"

    source_id = Column(Uuid, ForeignKey("scraped_sources.id"), nullable=False, index=True)
    status = Column(
        Enum(JobStatus, native_enum=False, length=20),
        default=JobStatus.PENDING,
        nullable=False,
        index=True,
    )
    is_forced = Column(Boolean, default=False, nullable=False)

    started_at = Column(UTCDateTime)
    finished_at = Column(UTCDateTime)
    duration = Column(Integer)  # milliseconds

    total_found = Column(Integer)
    total_inserted = Column(Integer)
    total_updated = Column(Integer)
    total_skipped = Column(Integer)

    log = Column(JSONType)
    # "metadata" is reserved on declarative classes
    job_metadata = Column("metadata", JSONType, default=dict)

    source = relationship("ScrapedSource", back_populates="scrape_jobs")

    __table_args__ = (
        Index("idx_job_source_started", "source_id", "started_at"),
        Index(
            "uq_job_active_source",
            "source_id",
            unique=True,
            postgresql_where=_ACTIVE_UNFORCED,
            sqlite_where=_ACTIVE_UNFORCED,
        ),
    )
