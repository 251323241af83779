"""Wire-stable enumerations shared by models, schemas and services."""

import enum


class SourceType(str, enum.Enum):
    GOV = "GOV"
    FOUNDATION = "FOUNDATION"
    NGO = "NGO"
    OTHER = "OTHER"


class SourceStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    ERROR = "ERROR"


class Frequency(str, enum.Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


class JobStatus(str, enum.Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class Outcome(str, enum.Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


ACTIVE_JOB_STATUSES = (JobStatus.PENDING, JobStatus.RUNNING)
TERMINAL_JOB_STATUSES = (JobStatus.SUCCESS, JobStatus.FAILED, JobStatus.CANCELLED)
