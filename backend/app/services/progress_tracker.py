"""Job progress: Redis snapshots for live dashboards plus throttled store writes."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from redis.exceptions import RedisError

from app.core.config import get_settings
from app.core.errors import JobCanceledError
from app.utils.redis_client import create_redis_client

if TYPE_CHECKING:
    from app.services.job_store import JobStore

logger = logging.getLogger(__name__)

settings = get_settings()
redis_client = create_redis_client(settings.redis_url, decode_responses=True)
PROGRESS_PREFIX = "batch_jobs:progress:"
PROGRESS_TTL = timedelta(hours=24)

ProgressPublisher = Callable[..., None]


def _key(job_id: str) -> str:
    return f"{PROGRESS_PREFIX}{job_id}"


def publish_progress(
    job_id: str,
    advanced_count: int,
    total_count: int | None = None,
    *,
    status: str | None = None,
    message: str | None = None,
) -> None:
    """Persist a progress snapshot so dashboards can read it between store flushes."""
    payload = {
        "job_id": job_id,
        "advanced_count": advanced_count,
        "total_count": total_count,
        "status": status,
        "message": message,
    }
    try:
        redis_client.set(
            _key(job_id),
            json.dumps(payload),
            ex=int(PROGRESS_TTL.total_seconds()),
        )
    except RedisError as e:
        # Redis availability should not break exports.
        logger.debug(f"Could not publish progress for job {job_id}: {e}")


def fetch_progress(job_id: str) -> dict[str, Any]:
    """Return the latest live snapshot, or an empty dict."""
    try:
        raw = redis_client.get(_key(job_id))
    except RedisError:
        return {}
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return {}


class ProgressReporter:
    """Narrow handle a processor uses to report progress and observe cancellation.

    Store writes are throttled to every ``flush_every`` records or
    ``flush_interval`` seconds, whichever comes first.
    """

    def __init__(
        self,
        job_id: str,
        attempt: int,
        store: "JobStore",
        *,
        flush_every: int,
        flush_interval: float,
        publisher: ProgressPublisher = publish_progress,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.job_id = job_id
        self.attempt = attempt
        self._store = store
        self._flush_every = flush_every
        self._flush_interval = flush_interval
        self._publisher = publisher
        self._clock = clock
        self.advanced_count = 0
        self.total_count: int | None = None
        self._flushed_count = 0
        self._last_flush = clock()

    def set_total(self, total_count: int | None) -> None:
        self.total_count = total_count
        self.flush()

    def advance(self, count: int) -> None:
        self.advanced_count += count
        total_display = self.total_count if self.total_count is not None else "?"
        self._publisher(
            self.job_id,
            self.advanced_count,
            self.total_count,
            status="processing",
            message=f"Exported {self.advanced_count}/{total_display} records",
        )
        due_by_count = self.advanced_count - self._flushed_count >= self._flush_every
        due_by_time = self._clock() - self._last_flush >= self._flush_interval
        if due_by_count or due_by_time:
            self.flush()

    def flush(self) -> None:
        self._store.record_progress(self.job_id, self.advanced_count, self.total_count)
        self._flushed_count = self.advanced_count
        self._last_flush = self._clock()

    def check_canceled(self) -> None:
        """Checkpoint: raise JobCanceledError once cancellation was requested."""
        if self._store.is_cancel_requested(self.job_id):
            raise JobCanceledError(f"Batch job {self.job_id} was canceled")
