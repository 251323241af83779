"""Scraper registry: maps source types to scraper classes."""

import logging
from typing import Type

from grantwatch.models.enums import SourceType
from grantwatch.scrapers.base import BaseScraper

logger = logging.getLogger(__name__)

# Source type -> scraper class mapping
_REGISTRY: dict[SourceType, Type[BaseScraper]] = {}
_DEFAULT: list[Type[BaseScraper]] = []


def register_scraper(*source_types: SourceType, default: bool = False):
    """Decorator to register a scraper class for one or more source types."""
    def decorator(cls: Type[BaseScraper]):
        for source_type in source_types:
            _REGISTRY[SourceType(source_type)] = cls
            logger.debug(f"Registered scraper {cls.__name__} for source type: {source_type}")
        if default:
            _DEFAULT[:] = [cls]
        return cls
    return decorator


def get_scraper_class(source_type: SourceType) -> Type[BaseScraper] | None:
    """Look up the scraper class for a source type, falling back to the default."""
    return _REGISTRY.get(SourceType(source_type)) or (_DEFAULT[0] if _DEFAULT else None)


def list_source_types() -> list[SourceType]:
    """List all source types with a dedicated scraper."""
    return list(_REGISTRY.keys())
