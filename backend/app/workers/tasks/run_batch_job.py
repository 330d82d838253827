"""Celery task that executes one delivery of a batch job."""

from __future__ import annotations

import logging

from sqlalchemy.exc import OperationalError

from app.core.config import get_settings
from app.core.errors import JobConflictError
from app.services.container import get_orchestrator
from app.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    name="app.workers.tasks.run_batch_job",
    autoretry_for=(OperationalError, JobConflictError),
    retry_backoff=True,
    max_retries=get_settings().job_max_attempts,
)
def run_batch_job_task(self, job_id: str) -> dict | None:
    """Run the job through the orchestrator and return its final snapshot.

    Processor failures are recorded on the job by the orchestrator; only a
    lost database connection or a persistent version conflict escapes, and
    Celery redelivers the job id.
    """
    redelivered = bool((self.request.delivery_info or {}).get("redelivered"))
    logger.info(f"Worker received batch job {job_id} (redelivered={redelivered})")
    job = get_orchestrator().dequeue_and_run(job_id)
    return job.model_dump(mode="json") if job else None
