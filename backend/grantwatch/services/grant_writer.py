"""Grant upsert: natural-key match on the application URL, change detection by content hash."""

import hashlib
import json
import logging
import uuid
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from grantwatch.models.base import utcnow
from grantwatch.models.grant import Grant

logger = logging.getLogger(__name__)

INSERTED = "inserted"
UPDATED = "updated"
SKIPPED = "skipped"

CONTENT_FIELDS = ("title", "funder", "amount_text", "deadline_text", "eligibility", "description")


def hash_url(url: str) -> str:
    return hashlib.sha256(url.strip().encode()).hexdigest()


def hash_content(data: dict) -> str:
    payload = {key: data.get(key) or "" for key in CONTENT_FIELDS}
    payload["extra_data"] = data.get("extra_data") or {}
    content = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(content.encode()).hexdigest()


class GrantWriter:
    """Upserts normalized grants for one source within one job.

    ``upsert`` flushes; the caller commits. A URL seen twice in the same batch
    is skipped the second time.
    """

    def __init__(self, db: Session, source_id: UUID):
        self.db = db
        self.source_id = source_id
        self._seen: set[str] = set()

    def upsert(self, data: dict) -> str:
        """Save or update a grant. Returns 'inserted', 'updated', or 'skipped'."""
        if not data.get("title") or not data.get("application_url"):
            raise ValueError("Grant requires title and application_url")

        now = utcnow()
        url_hash = hash_url(data["application_url"])
        if url_hash in self._seen:
            return SKIPPED
        self._seen.add(url_hash)

        content_hash = hash_content(data)
        existing = self.db.execute(select(Grant).where(Grant.url_hash == url_hash)).scalar_one_or_none()

        if existing:
            existing.last_seen_at = now
            if existing.content_hash == content_hash:
                self.db.flush()
                return SKIPPED

            # Content changed
            for key in CONTENT_FIELDS:
                if key in data:
                    setattr(existing, key, data[key])
            existing.extra_data = data.get("extra_data") or {}
            existing.content_hash = content_hash
            self.db.flush()
            return UPDATED

        grant = Grant(
            id=uuid.uuid4(),
            source_id=self.source_id,
            url_hash=url_hash,
            content_hash=content_hash,
            title=data["title"],
            application_url=data["application_url"],
            funder=data.get("funder"),
            amount_text=data.get("amount_text"),
            deadline_text=data.get("deadline_text"),
            eligibility=data.get("eligibility"),
            description=data.get("description"),
            extra_data=data.get("extra_data") or {},
            first_seen_at=now,
            last_seen_at=now,
        )
        self.db.add(grant)
        self.db.flush()
        return INSERTED
