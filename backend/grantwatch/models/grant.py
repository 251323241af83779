"""Grant model: normalized opportunities upserted by scrape jobs."""

from sqlalchemy import JSON, Column, ForeignKey, String, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from grantwatch.models.base import Base, TimestampMixin, UTCDateTime, UUIDMixin


class Grant(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "grants"

    source_id = Column(Uuid, ForeignKey("scraped_sources.id"), nullable=False, index=True)

    # Dedup
    url_hash = Column(String(64), unique=True, nullable=False, index=True)
    content_hash = Column(String(64), index=True)

    # Core
    title = Column(Text, nullable=False)
    application_url = Column(Text, nullable=False)

    funder = Column(String(255))
    amount_text = Column(String(255))
    deadline_text = Column(String(255))
    eligibility = Column(Text)
    description = Column(Text)
    extra_data = Column(JSON().with_variant(JSONB(), "postgresql"), default=dict)

    # Lifecycle
    first_seen_at = Column(UTCDateTime, nullable=False)
    last_seen_at = Column(UTCDateTime, nullable=False)

    source = relationship("ScrapedSource", back_populates="grants")
