"""Exception hierarchy for the scraping core.

Every exception carries a stable ``code`` that is written to job logs and
returned in API error bodies.

Hierarchy::

    GrantwatchError
    ├── DuplicateSourceError     DUPLICATE_SOURCE
    ├── NotFoundError            NOT_FOUND
    │   ├── SourceNotFoundError
    │   └── JobNotFoundError
    ├── AlreadyRunningError      ALREADY_RUNNING (job)
    ├── SourceInactiveError      SOURCE_INACTIVE
    ├── InvalidTransitionError   INVALID_TRANSITION
    └── ScrapeExecutionError
        ├── FetchError           FETCH_FAILURE
        ├── ParseError           PARSE_FAILURE
        ├── ScrapeTimeoutError   TIMEOUT
        └── JobCancelledError    CANCELLED

Request-time errors are raised synchronously to the caller and never retried.
``ScrapeExecutionError`` subclasses are caught by the orchestrator, recorded on
the job and counted against the source's health.
"""

from __future__ import annotations

from typing import Any

STALE = "STALE"


class GrantwatchError(Exception):
    """Base class for all Grantwatch exceptions."""

    code = "ERROR"


class DuplicateSourceError(GrantwatchError):
    """Raised when a source URL is already registered."""

    code = "DUPLICATE_SOURCE"

    def __init__(self, url: str) -> None:
        super().__init__(f"Source with URL {url} already exists")
        self.url = url


class NotFoundError(GrantwatchError):
    code = "NOT_FOUND"


class SourceNotFoundError(NotFoundError):
    def __init__(self, source_id: Any) -> None:
        super().__init__(f"Source {source_id} not found")
        self.source_id = source_id


class JobNotFoundError(NotFoundError):
    def __init__(self, job_id: Any) -> None:
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class AlreadyRunningError(GrantwatchError):
    """Raised when a source already has a PENDING or RUNNING job.

    Args:
        job: The conflicting ``ScrapeJob``.
    """

    code = "ALREADY_RUNNING"

    def __init__(self, job: Any) -> None:
        super().__init__(f"A scraping job is already running for source {job.source_id}")
        self.job = job


class SourceInactiveError(GrantwatchError):
    code = "SOURCE_INACTIVE"

    def __init__(self, source_id: Any, status: Any) -> None:
        super().__init__(f"Source {source_id} is not active (status {status})")
        self.source_id = source_id
        self.status = status


class InvalidTransitionError(GrantwatchError):
    """Raised on a job status change the lifecycle does not allow."""

    code = "INVALID_TRANSITION"

    def __init__(self, job_id: Any, current: Any, target: Any) -> None:
        super().__init__(f"Job {job_id} cannot move from {current} to {target}")
        self.job_id = job_id
        self.current = current
        self.target = target


class ScrapeExecutionError(GrantwatchError):
    """Base for failures that happen while a job is executing."""


class FetchError(ScrapeExecutionError):
    code = "FETCH_FAILURE"


class ParseError(ScrapeExecutionError):
    code = "PARSE_FAILURE"


class ScrapeTimeoutError(ScrapeExecutionError):
    code = "TIMEOUT"


class JobCancelledError(ScrapeExecutionError):
    code = "CANCELLED"
