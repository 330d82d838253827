"""Batch job state machine: submission, execution, retries and cancellation."""

from __future__ import annotations

import logging
from typing import Any

from app.api.schemas.batch_job import BatchJobRead
from app.core.errors import (
    TRANSIENT,
    WORKER_CRASH,
    JobCanceledError,
    JobConflictError,
    NotFoundError,
    QueueUnavailableError,
    classify_error,
    error_payload,
)
from app.db.models.batch_job import PROCESSING
from app.processors.registry import ProcessorRegistry
from app.services.job_store import JobStore
from app.services.progress_tracker import (
    ProgressPublisher,
    ProgressReporter,
    publish_progress,
)
from app.workers.queue import JobQueue

logger = logging.getLogger(__name__)


class BatchJobOrchestrator:
    """Owns every status transition of a batch job.

    ``created -> processing -> completed | failed``, with ``canceled`` reachable
    from ``created`` (immediately) or ``processing`` (at the processor's next
    checkpoint). ``processing`` repeats across retries.
    """

    def __init__(
        self,
        store: JobStore,
        queue: JobQueue,
        registry: ProcessorRegistry,
        *,
        max_attempts: int = 3,
        backoff_seconds: float = 5.0,
        backoff_max_seconds: float = 300.0,
        progress_flush_every: int = 1000,
        progress_flush_interval: float = 5.0,
        progress_publisher: ProgressPublisher = publish_progress,
    ):
        self.store = store
        self.queue = queue
        self.registry = registry
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self.progress_flush_every = progress_flush_every
        self.progress_flush_interval = progress_flush_interval
        self.progress_publisher = progress_publisher

    def submit(
        self, job_type: str, context: dict[str, Any], actor: str | None
    ) -> BatchJobRead:
        """Validate, persist as ``created`` and enqueue.

        Raises UnknownJobTypeError or ValidationError before anything is stored.
        """
        processor = self.registry.resolve(job_type)
        validated = processor.validate_context(context)

        job = self.store.create(job_type, validated.model_dump(mode="json"), actor)
        try:
            self.queue.enqueue(job.id)
        except Exception as exc:
            logger.error(f"Error enqueueing batch job {job.id}: {exc}", exc_info=True)
            self.store.fail(job.id, error_payload(exc, TRANSIENT, attempts=0))
            raise QueueUnavailableError(
                f"Failed to enqueue batch job {job.id}"
            ) from exc

        self.progress_publisher(job.id, 0, None, status=job.status, message="Queued")
        logger.info(f"Created batch job {job.id} of type {job_type} for {actor}")
        return job

    def get_status(self, job_id: str) -> BatchJobRead:
        return self.store.get(job_id)

    def list_jobs(
        self,
        *,
        limit: int = 50,
        offset: int = 0,
        status: str | None = None,
        job_type: str | None = None,
    ) -> tuple[list[BatchJobRead], int]:
        return self.store.list_jobs(
            limit=limit, offset=offset, status=status, job_type=job_type
        )

    def cancel(self, job_id: str) -> BatchJobRead:
        """Best-effort cancellation; never fails for a known job."""
        job = self.store.request_cancel(job_id)
        logger.info(f"Cancellation requested for batch job {job_id} (status={job.status})")
        return job

    def backoff_for(self, attempt: int) -> float:
        return min(self.backoff_seconds * 2 ** max(attempt - 1, 0), self.backoff_max_seconds)

    def dequeue_and_run(self, job_id: str) -> BatchJobRead | None:
        """Execute one delivery of ``job_id``.

        Redelivery of a terminal job is a no-op, so at-least-once delivery can
        never produce a second result or move a job backwards.
        """
        try:
            job = self.store.get(job_id)
        except NotFoundError:
            logger.warning(f"Received unknown batch job {job_id}, dropping delivery")
            return None

        if job.is_terminal:
            logger.info(f"Batch job {job_id} already {job.status}, ignoring redelivery")
            return job

        if job.cancel_requested:
            return self.store.mark_canceled(job_id) or self.store.get(job_id)

        if job.status == PROCESSING and job.attempts >= self.max_attempts:
            # A worker died mid-run and the broker redelivered; the budget is spent.
            error = job.last_error or {
                "code": WORKER_CRASH,
                "type": "WorkerCrash",
                "message": "Worker stopped before finishing the job",
                "attempts": job.attempts,
            }
            if job.last_error:
                error = {**error, "attempts": job.attempts}
            logger.error(f"Batch job {job_id} exhausted {job.attempts} attempts")
            return self.store.fail(job_id, error) or self.store.get(job_id)

        started = self.store.mark_processing(job_id)
        if started is None:
            return self.store.get(job_id)
        attempt = started.attempts
        logger.info(f"Processing batch job {job_id} ({started.type}), attempt {attempt}")

        processor = self.registry.resolve(started.type)
        reporter = ProgressReporter(
            job_id,
            attempt,
            self.store,
            flush_every=self.progress_flush_every,
            flush_interval=self.progress_flush_interval,
            publisher=self.progress_publisher,
        )

        try:
            context = processor.validate_context(started.context)
            result = processor.run(context, reporter)
        except JobCanceledError:
            logger.info(f"Batch job {job_id} canceled at checkpoint")
            final = self.store.mark_canceled(job_id) or self.store.get(job_id)
            self._publish_final(final)
            return final
        except Exception as exc:
            return self._handle_failure(job_id, attempt, exc)

        try:
            final = self.store.complete(job_id, result, attempt=attempt)
        except JobConflictError:
            # Leave the delivery unacked; the redelivered attempt writes a new file.
            logger.warning(f"Batch job {job_id} attempt {attempt} could not be recorded")
            processor.discard(result)
            raise
        if final is None:
            # Another delivery finished (or the job was canceled) first.
            logger.warning(
                f"Batch job {job_id} attempt {attempt} lost the completion race"
            )
            processor.discard(result)
            return self.store.get(job_id)
        logger.info(f"Batch job {job_id} completed: {result}")
        self._publish_final(final)
        return final

    def _handle_failure(
        self, job_id: str, attempt: int, exc: Exception
    ) -> BatchJobRead:
        code = classify_error(exc)
        error = error_payload(exc, code, attempts=attempt)

        if code == TRANSIENT and attempt < self.max_attempts:
            delay = self.backoff_for(attempt)
            logger.warning(
                f"Batch job {job_id} attempt {attempt} failed with transient error "
                f"{error['type']}: {error['message']}; retrying in {delay:.1f}s"
            )
            scheduled = self.store.schedule_retry(job_id, error)
            if scheduled is not None:
                try:
                    self.queue.enqueue(job_id, delay=delay)
                    return scheduled
                except Exception as enqueue_exc:
                    logger.error(
                        f"Could not re-enqueue batch job {job_id}: {enqueue_exc}",
                        exc_info=True,
                    )
            else:
                return self.store.get(job_id)
        else:
            logger.error(
                f"Batch job {job_id} failed ({code}) on attempt {attempt}: {exc}",
                exc_info=code != TRANSIENT,
            )

        final = self.store.fail(job_id, error) or self.store.get(job_id)
        self._publish_final(final)
        return final

    def _publish_final(self, job: BatchJobRead) -> None:
        self.progress_publisher(
            job.id,
            job.progress.advanced_count,
            job.progress.total_count,
            status=job.status,
            message=f"Batch job {job.status}",
        )
