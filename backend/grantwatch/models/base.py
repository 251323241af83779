"""Base database configuration and mixins."""

import uuid
from datetime import datetime, timezone
from functools import lru_cache
from typing import Generator

from sqlalchemy import Column, DateTime, Uuid, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, declared_attr, sessionmaker
from sqlalchemy.types import TypeDecorator

from grantwatch.config import get_settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime that always round-trips as UTC.

    SQLite drops tzinfo on read; values coming back naive are UTC by construction.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


@lru_cache
def get_engine() -> Engine:
    settings = get_settings()
    options = {"echo": settings.debug, "pool_pre_ping": True}
    if not settings.database_url.startswith("sqlite"):
        options.update(pool_size=5, max_overflow=10, pool_timeout=30)
    return create_engine(settings.database_url, **options)


_session_factory = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False)


def SessionLocal() -> Session:
    """Open a session for workers and Celery tasks. Callers must close it."""
    return _session_factory(bind=get_engine())


class Base(DeclarativeBase):
    @declared_attr
    def __tablename__(cls) -> str:
        return cls.__name__.lower() + "s"


class TimestampMixin:
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)


class UUIDMixin:
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)


def get_db() -> Generator[Session, None, None]:
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
