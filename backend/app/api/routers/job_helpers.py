"""Shared helpers for shaping batch job responses."""
from __future__ import annotations

from app.api.schemas.batch_job import BatchJobProgress, BatchJobRead
from app.db.models.batch_job import PROCESSING


def with_live_progress(job: BatchJobRead, progress_payload: dict | None) -> BatchJobRead:
    """Overlay the Redis progress snapshot on a processing job.

    The store is written at a throttled cadence; the snapshot may be ahead of
    it. Status always comes from the store.
    """
    progress_payload = progress_payload or {}
    if job.status != PROCESSING:
        return job

    live_count = progress_payload.get("advanced_count")
    if not isinstance(live_count, int) or live_count <= job.progress.advanced_count:
        return job

    total = progress_payload.get("total_count", job.progress.total_count)
    percent = None
    if total:
        percent = round(min(live_count / total, 1.0) * 100, 2)
    return job.model_copy(
        update={
            "progress": BatchJobProgress(
                advanced_count=live_count, total_count=total, percent=percent
            )
        }
    )
