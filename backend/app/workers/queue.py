"""At-least-once work queues carrying batch job ids."""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


class JobQueue(ABC):
    """Submission side of the queue used by the orchestrator."""

    @abstractmethod
    def enqueue(self, job_id: str, delay: float = 0.0) -> None:
        """Deliver ``job_id`` to a worker no earlier than ``delay`` seconds from now."""


class CeleryJobQueue(JobQueue):
    """Celery transport; acks_late + reject_on_worker_lost give redelivery."""

    def __init__(self, queue_name: str):
        self.queue_name = queue_name

    def enqueue(self, job_id: str, delay: float = 0.0) -> None:
        from app.workers.tasks.run_batch_job import run_batch_job_task

        run_batch_job_task.apply_async(
            args=(job_id,),
            queue=self.queue_name,
            countdown=delay or None,
        )


@dataclass
class QueueMessage:
    job_id: str
    receipt: str = field(default_factory=lambda: uuid.uuid4().hex)
    deliveries: int = 0


class InMemoryJobQueue(JobQueue):
    """In-process queue with delayed delivery and a visibility timeout.

    A received message stays in flight until acked; when its visibility
    timeout lapses it becomes deliverable again. No external dependencies
    (Redis, Celery) are needed, which suits local runs and tests.
    """

    def __init__(
        self,
        visibility_timeout: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.visibility_timeout = visibility_timeout
        self._clock = clock
        self._ready: list[tuple[float, int, QueueMessage]] = []
        self._in_flight: dict[str, tuple[float, QueueMessage]] = {}
        self._seq = itertools.count()
        self._cond = threading.Condition()

    def enqueue(self, job_id: str, delay: float = 0.0) -> None:
        with self._cond:
            self._push(QueueMessage(job_id=job_id), self._clock() + max(delay, 0.0))
            self._cond.notify()

    def _push(self, message: QueueMessage, ready_at: float) -> None:
        heapq.heappush(self._ready, (ready_at, next(self._seq), message))

    def _requeue_expired(self, now: float) -> None:
        expired = [r for r, (deadline, _) in self._in_flight.items() if deadline <= now]
        for receipt in expired:
            _, message = self._in_flight.pop(receipt)
            logger.warning(
                f"Visibility timeout lapsed for job {message.job_id}, redelivering"
            )
            self._push(message, now)

    def receive(self, timeout: float | None = None) -> QueueMessage | None:
        """Block until a message is deliverable or ``timeout`` seconds pass."""
        deadline = None if timeout is None else self._clock() + timeout
        with self._cond:
            while True:
                now = self._clock()
                self._requeue_expired(now)
                if self._ready and self._ready[0][0] <= now:
                    _, _, message = heapq.heappop(self._ready)
                    message.deliveries += 1
                    message.receipt = uuid.uuid4().hex
                    self._in_flight[message.receipt] = (
                        now + self.visibility_timeout,
                        message,
                    )
                    return message
                waits = []
                if self._ready:
                    waits.append(self._ready[0][0] - now)
                if self._in_flight:
                    waits.append(min(d for d, _ in self._in_flight.values()) - now)
                if deadline is not None:
                    remaining = deadline - now
                    if remaining <= 0:
                        return None
                    waits.append(remaining)
                self._cond.wait(timeout=max(min(waits), 0.001) if waits else None)

    def ack(self, message: QueueMessage) -> None:
        with self._cond:
            self._in_flight.pop(message.receipt, None)

    def pending(self) -> int:
        """Messages queued or in flight."""
        with self._cond:
            return len(self._ready) + len(self._in_flight)
