"""Status enums shared by the job pipeline and calendar sync."""
from enum import StrEnum


class ImportJobStatus(StrEnum):
    PENDING = "pending"; PROCESSING = "processing"; NEEDS_REVIEW = "needs_review"
    COMPLETED = "completed"; FAILED = "failed"


# Statuses a human may push back into the pipeline.
RETRYABLE_JOB_STATUSES = frozenset({ImportJobStatus.FAILED, ImportJobStatus.NEEDS_REVIEW})


class CalendarSourceStatus(StrEnum):
    ACTIVE = "active"; PAUSED = "paused"


class CalendarRunStatus(StrEnum):
    SUCCESS = "success"; FAILED = "failed"


class ErrorSeverity(StrEnum):
    INFO = "info"; WARNING = "warning"; ERROR = "error"; CRITICAL = "critical"


class TransitionTrigger(StrEnum):
    CREATED = "created"; CLAIM = "claim"; LEASE_RECLAIM = "lease_reclaim"
    RESOLVED = "resolved"; TRANSIENT_ERROR = "transient_error"
    RETRY_EXHAUSTED = "retry_exhausted"; PERMANENT_ERROR = "permanent_error"
    MANUAL_RETRY = "manual_retry"
