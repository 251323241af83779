"""Scraped source model: per-URL scrape config and rolling health."""

from sqlalchemy import Column, Enum, Float, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from grantwatch.models.base import Base, TimestampMixin, UTCDateTime, UUIDMixin
from grantwatch.models.enums import Frequency, SourceStatus, SourceType


class ScrapedSource(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "scraped_sources"

    url = Column(String(1000), unique=True, nullable=False)
    type = Column(Enum(SourceType, native_enum=False, length=20), nullable=False, index=True)
    status = Column(
        Enum(SourceStatus, native_enum=False, length=20),
        default=SourceStatus.ACTIVE,
        nullable=False,
        index=True,
    )
    frequency = Column(
        Enum(Frequency, native_enum=False, length=20),
        default=Frequency.WEEKLY,
        nullable=False,
        index=True,
    )
    category = Column(String(255))
    region = Column(String(255))
    notes = Column(Text)

    # Rolling health, written only by SourceManager
    last_scraped_at = Column(UTCDateTime, index=True)
    fail_count = Column(Integer, default=0, nullable=False)
    success_rate = Column(Float, default=0.0, nullable=False)
    last_error = Column(Text)
    avg_parse_time = Column(Integer)  # milliseconds

    scrape_jobs = relationship("ScrapeJob", back_populates="source")
    grants = relationship("Grant", back_populates="source")

    __table_args__ = (
        Index("idx_source_due", "status", "last_scraped_at", "frequency"),
    )
