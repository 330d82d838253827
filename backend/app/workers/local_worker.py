"""Thread workers draining an InMemoryJobQueue inside the API process."""

from __future__ import annotations

import logging
import threading

from app.services.orchestrator import BatchJobOrchestrator
from app.workers.queue import InMemoryJobQueue

logger = logging.getLogger(__name__)


class LocalWorkerPool:
    """Runs ``count`` threads that receive job ids and execute them.

    A message is acked only after ``dequeue_and_run`` returns; if it raises,
    the message is left in flight and redelivered after the visibility timeout.
    """

    def __init__(
        self,
        orchestrator: BatchJobOrchestrator,
        queue: InMemoryJobQueue,
        *,
        count: int = 1,
        poll_timeout: float = 0.5,
    ):
        self.orchestrator = orchestrator
        self.queue = queue
        self.count = count
        self.poll_timeout = poll_timeout
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

    def start(self) -> None:
        self._stop.clear()
        for index in range(self.count):
            thread = threading.Thread(
                target=self._loop, name=f"batch-worker-{index}", daemon=True
            )
            thread.start()
            self._threads.append(thread)
        logger.info(f"Started {self.count} local batch job worker(s)")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads.clear()
        logger.info("Stopped local batch job workers")

    def run_once(self, timeout: float | None = 0.0) -> bool:
        """Process a single delivery; returns False when nothing was received."""
        message = self.queue.receive(timeout=timeout)
        if message is None:
            return False
        try:
            self.orchestrator.dequeue_and_run(message.job_id)
        except Exception as e:
            logger.error(
                f"Worker error on job {message.job_id} (delivery {message.deliveries}): {e}",
                exc_info=True,
            )
            return True
        self.queue.ack(message)
        return True

    def _loop(self) -> None:
        while not self._stop.is_set():
            self.run_once(timeout=self.poll_timeout)
