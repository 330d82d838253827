"""Error taxonomy shared by the API, the orchestrator and the processors."""

from __future__ import annotations

from typing import Any

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from sqlalchemy.exc import DisconnectionError, OperationalError

TRANSIENT = "transient"
PERMANENT = "permanent"
WORKER_CRASH = "worker_crash"


class BatchJobError(Exception):
    """Base class for every error raised by the batch job subsystem."""


class ValidationError(BatchJobError):
    """Submission rejected before a job is created."""

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.errors = errors or []


class UnknownJobTypeError(BatchJobError):
    """Job type has no registered processor."""

    def __init__(self, job_type: str):
        super().__init__(f"Unknown batch job type '{job_type}'")
        self.job_type = job_type


class NotFoundError(BatchJobError):
    """Unknown batch job id."""

    def __init__(self, job_id: str):
        super().__init__(f"Batch job {job_id} not found")
        self.job_id = job_id


class QueueUnavailableError(BatchJobError):
    """The work item could not be handed to the queue."""


class StorageKeyError(BatchJobError):
    """File key is malformed or escapes the storage root."""


class TransientProcessingError(BatchJobError):
    """Retryable failure (I/O timeouts, page fetch errors)."""


class PermanentProcessingError(BatchJobError):
    """Non-retryable failure (schema mismatch, bad data)."""


class JobCanceledError(BatchJobError):
    """Raised at a processor checkpoint once cancellation was requested."""


class JobConflictError(TransientProcessingError):
    """Concurrent writers kept winning the version check on a job row."""


_TRANSIENT_TYPES: tuple[type[BaseException], ...] = (
    TransientProcessingError,
    TimeoutError,
    ConnectionError,
    OperationalError,
    DisconnectionError,
    RedisConnectionError,
    RedisTimeoutError,
)


def classify_error(exc: BaseException) -> str:
    """Return ``transient`` or ``permanent`` for a processor failure."""
    if isinstance(exc, PermanentProcessingError):
        return PERMANENT
    if isinstance(exc, _TRANSIENT_TYPES):
        return TRANSIENT
    # Disk and socket failures surface as OSError; a missing file is not retryable.
    if isinstance(exc, OSError) and not isinstance(exc, FileNotFoundError):
        return TRANSIENT
    return PERMANENT


def error_payload(exc: BaseException, code: str, attempts: int) -> dict[str, Any]:
    """Shape the JSON stored on ``BatchJob.error`` / ``last_error``."""
    return {
        "code": code,
        "type": type(exc).__name__,
        "message": str(exc) or type(exc).__name__,
        "attempts": attempts,
    }
