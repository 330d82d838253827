"""Persistence of batch job state with guarded, versioned transitions."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from app.api.schemas.batch_job import BatchJobRead
from app.core.errors import JobConflictError, NotFoundError
from app.db.models.batch_job import (
    CANCELED,
    COMPLETED,
    CREATED,
    FAILED,
    PROCESSING,
    BatchJob,
    utcnow,
)

logger = logging.getLogger(__name__)

# Re-read attempts when a concurrent writer bumped the version first.
MAX_CONFLICT_RETRIES = 3


class JobStore:
    """Single source of truth for batch job status.

    Every mutation is a read-check-write on one row guarded by the ``version``
    column. A writer that loses a race re-reads the row and re-evaluates its
    guard, so conflicting terminal writes collapse into a no-op.
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def create(
        self, job_type: str, context: dict[str, Any], created_by: str | None
    ) -> BatchJobRead:
        with self._session_factory() as session:
            job = BatchJob(
                type=job_type,
                status=CREATED,
                context=context,
                created_by=created_by,
                advanced_count=0,
                attempts=0,
                cancel_requested=False,
            )
            session.add(job)
            session.commit()
            return BatchJobRead.from_model(job)

    def get(self, job_id: str) -> BatchJobRead:
        with self._session_factory() as session:
            job = session.get(BatchJob, job_id)
            if job is None:
                raise NotFoundError(job_id)
            return BatchJobRead.from_model(job)

    def is_cancel_requested(self, job_id: str) -> bool:
        with self._session_factory() as session:
            flag = session.scalar(
                select(BatchJob.cancel_requested).where(BatchJob.id == job_id)
            )
            return bool(flag)

    def list_jobs(
        self,
        *,
        limit: int = 50,
        offset: int = 0,
        status: str | None = None,
        job_type: str | None = None,
    ) -> tuple[list[BatchJobRead], int]:
        """Return a page of jobs (newest first) and the total matching count."""
        with self._session_factory() as session:
            query = select(BatchJob)
            count_query = select(func.count(BatchJob.id))
            if status:
                query = query.where(BatchJob.status == status)
                count_query = count_query.where(BatchJob.status == status)
            if job_type:
                query = query.where(BatchJob.type == job_type)
                count_query = count_query.where(BatchJob.type == job_type)
            query = (
                query.order_by(BatchJob.created_at.desc(), BatchJob.id.desc())
                .offset(offset)
                .limit(limit)
            )
            jobs = session.scalars(query).all()
            total = session.scalar(count_query) or 0
            return [BatchJobRead.from_model(job) for job in jobs], total

    # ------------------------------------------------------------------
    # Guarded transitions. Each returns the new snapshot, or None when the
    # job was not in an allowed source state (the write became a no-op).
    # Persistent version conflicts raise JobConflictError instead.
    # ------------------------------------------------------------------

    def mark_processing(self, job_id: str) -> BatchJobRead | None:
        def mutate(job: BatchJob) -> None:
            now = utcnow()
            job.status = PROCESSING
            job.attempts = (job.attempts or 0) + 1
            job.started_at = job.started_at or now
            job.advanced_count = 0

        return self._transition(job_id, (CREATED, PROCESSING), mutate)

    def record_progress(
        self, job_id: str, advanced_count: int, total_count: int | None
    ) -> BatchJobRead | None:
        def mutate(job: BatchJob) -> None:
            job.advanced_count = advanced_count
            if total_count is not None:
                job.total_count = total_count

        return self._transition(job_id, (PROCESSING,), mutate)

    def schedule_retry(
        self, job_id: str, last_error: dict[str, Any]
    ) -> BatchJobRead | None:
        def mutate(job: BatchJob) -> None:
            job.last_error = last_error

        return self._transition(job_id, (PROCESSING,), mutate)

    def complete(
        self, job_id: str, result: dict[str, Any], *, attempt: int | None = None
    ) -> BatchJobRead | None:
        def mutate(job: BatchJob) -> None:
            job.status = COMPLETED
            job.result = result
            job.error = None
            job.finished_at = utcnow()
            record_count = result.get("record_count")
            if record_count is not None:
                job.advanced_count = record_count
                job.total_count = record_count

        def guard(job: BatchJob) -> bool:
            return attempt is None or job.attempts == attempt

        return self._transition(job_id, (PROCESSING,), mutate, guard=guard)

    def fail(self, job_id: str, error: dict[str, Any]) -> BatchJobRead | None:
        def mutate(job: BatchJob) -> None:
            job.status = FAILED
            job.error = error
            job.result = None
            job.finished_at = utcnow()

        return self._transition(job_id, (CREATED, PROCESSING), mutate)

    def request_cancel(self, job_id: str) -> BatchJobRead:
        """Cancel a created job outright, flag a processing one.

        Terminal jobs are returned unchanged.
        """

        def mutate(job: BatchJob) -> None:
            job.cancel_requested = True
            if job.status == CREATED:
                job.status = CANCELED
                job.finished_at = utcnow()

        snapshot = self._transition(job_id, (CREATED, PROCESSING), mutate)
        return snapshot if snapshot is not None else self.get(job_id)

    def mark_canceled(self, job_id: str) -> BatchJobRead | None:
        def mutate(job: BatchJob) -> None:
            job.status = CANCELED
            job.result = None
            job.error = None
            job.finished_at = utcnow()

        return self._transition(job_id, (CREATED, PROCESSING), mutate)

    def _transition(
        self,
        job_id: str,
        allowed_from: Iterable[str],
        mutate: Callable[[BatchJob], None],
        *,
        guard: Callable[[BatchJob], bool] | None = None,
    ) -> BatchJobRead | None:
        allowed = frozenset(allowed_from)
        for _ in range(MAX_CONFLICT_RETRIES):
            with self._session_factory() as session:
                job = session.get(BatchJob, job_id)
                if job is None:
                    raise NotFoundError(job_id)
                if job.status not in allowed or (guard and not guard(job)):
                    logger.debug(
                        f"Skipping transition on job {job_id}: status={job.status}"
                    )
                    return None
                mutate(job)
                job.updated_at = utcnow()
                try:
                    session.commit()
                except StaleDataError:
                    session.rollback()
                    logger.info(f"Version conflict on job {job_id}, re-reading")
                    continue
                return BatchJobRead.from_model(job)
        logger.warning(
            f"Gave up on job {job_id} transition after {MAX_CONFLICT_RETRIES} conflicts"
        )
        raise JobConflictError(
            f"Batch job {job_id} kept changing under {MAX_CONFLICT_RETRIES} writes"
        )
