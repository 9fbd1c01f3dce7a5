"""
Exception hierarchy.

Every exception carries code + http_status + severity. ``retryable`` marks
the transient class: the worker requeues the job instead of failing it.
"""
from __future__ import annotations


class IntakeError(Exception):
    """Base exception."""
    code: str = "UNKNOWN_ERROR"
    http_status: int = 400
    severity: str = "error"
    retryable: bool = False

    def __init__(self, message: str = "", code: str | None = None):
        self.message = message
        if code:
            self.code = code
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error_code": self.code, "message": self.message, "severity": self.severity}


# === Transient ===
class RetryableError(IntakeError):
    code = "RETRYABLE_ERROR"; http_status = 503; retryable = True

class ExtractionTimeoutError(RetryableError):
    code = "EXTRACTION_TIMEOUT"; http_status = 504

class ExtractionUnavailableError(RetryableError):
    code = "EXTRACTION_UNAVAILABLE"; severity = "warning"

class ExtractionResponseError(RetryableError):
    code = "EXTRACTION_BAD_RESPONSE"; http_status = 502

class StoreUnavailableError(RetryableError):
    code = "STORE_UNAVAILABLE"; severity = "critical"


# === Permanent ===
class MalformedInputError(IntakeError):
    code = "MALFORMED_INPUT"; http_status = 422

class ClaimLostError(IntakeError):
    code = "CLAIM_LOST"; http_status = 409; severity = "warning"


# === Job operations ===
class JobNotFoundError(IntakeError):
    code = "JOB_NOT_FOUND"; http_status = 404

class JobNotRetryableError(IntakeError):
    code = "JOB_NOT_RETRYABLE"; http_status = 409


# === Calendar ===
class FeedFetchError(IntakeError):
    code = "FEED_FETCH_FAILED"; http_status = 502; retryable = True

class FeedParseError(IntakeError):
    code = "FEED_PARSE_FAILED"; http_status = 422

class SourceNotFoundError(IntakeError):
    code = "SOURCE_NOT_FOUND"; http_status = 404

class SourceIntervalInvalidError(IntakeError):
    code = "SOURCE_INTERVAL_INVALID"; http_status = 422


# === Auth ===
class WorkerUnauthorizedError(IntakeError):
    code = "WORKER_UNAUTHORIZED"; http_status = 401; severity = "warning"
