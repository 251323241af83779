"""Base scraper abstract class: the pluggable fetch/extract capability."""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from grantwatch.config import Settings, get_settings
from grantwatch.models.enums import SourceType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceSnapshot:
    """Read-only copy of a source's config handed to scrapers.

    Scrapers may run on a helper thread, so they never see the ORM row.
    """

    id: UUID
    url: str
    type: SourceType
    category: str | None = None
    region: str | None = None
    notes: str | None = None

    @classmethod
    def from_source(cls, source) -> "SourceSnapshot":
        return cls(
            id=source.id,
            url=source.url,
            type=source.type,
            category=source.category,
            region=source.region,
            notes=source.notes,
        )

    @property
    def label(self) -> str:
        return f"{self.type.value}/{self.url}"


@dataclass
class FetchedDocument:
    url: str
    content: str
    content_type: str = "text/plain"
    status_code: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class BaseScraper(ABC):
    """Abstract base class for all source scrapers.

    Subclasses must implement:
        fetch() -> FetchedDocument       retrieve the source as text
        extract(content) -> list[dict]   split text into raw candidate records
        normalize(raw) -> dict           convert a candidate to grant fields

    ``extract`` may receive a relevance excerpt instead of the full text when
    the document exceeds ``max_content_chars``.
    """

    def __init__(self, source: SourceSnapshot, settings: Settings | None = None):
        self.source = source
        self.settings = settings or get_settings()
        self.max_content_chars = self.settings.extraction_max_chars
        self.cancel_event = threading.Event()

    @abstractmethod
    def fetch(self) -> FetchedDocument:
        """Retrieve the source. Raises FetchError or ParseError."""
        ...

    @abstractmethod
    def extract(self, content: str) -> list[dict]:
        """Split (possibly chunked) text into raw candidate dicts."""
        ...

    @abstractmethod
    def normalize(self, raw: dict) -> dict:
        """Normalize a raw candidate to grant fields.

        Must return a dict with at least:
            - title (str)
            - application_url (str)

        Optional fields:
            - funder, amount_text, deadline_text, eligibility, description
            - extra_data (dict)

        Raises ParseError when the candidate is unusable.
        """
        ...

    def cancel(self) -> None:
        """Ask a long-running fetch/extract to stop at its next checkpoint."""
        self.cancel_event.set()
