"""Mapping from batch job type to the processor that executes it."""

from __future__ import annotations

import logging
from typing import Any, Protocol

from pydantic import BaseModel

from app.core.errors import UnknownJobTypeError
from app.services.progress_tracker import ProgressReporter

logger = logging.getLogger(__name__)


class BatchJobProcessor(Protocol):
    """Capability every job type provides."""

    def validate_context(self, context: dict[str, Any]) -> BaseModel:
        """Parse a submitted context; raise ValidationError when it is invalid."""
        ...

    def run(self, context: BaseModel, reporter: ProgressReporter) -> dict[str, Any]:
        """Execute the job and return the result reference stored on the job."""
        ...

    def discard(self, result: dict[str, Any]) -> None:
        """Remove artifacts of a result that lost the race to complete the job."""
        ...


class ProcessorRegistry:
    def __init__(self) -> None:
        self._processors: dict[str, BatchJobProcessor] = {}

    def register(self, job_type: str, processor: BatchJobProcessor) -> None:
        if job_type in self._processors:
            raise ValueError(f"Processor already registered for '{job_type}'")
        self._processors[job_type] = processor
        logger.debug(f"Registered processor for job type {job_type}")

    def resolve(self, job_type: str) -> BatchJobProcessor:
        try:
            return self._processors[job_type]
        except KeyError:
            raise UnknownJobTypeError(job_type) from None

    def __contains__(self, job_type: object) -> bool:
        return job_type in self._processors

    def job_types(self) -> list[str]:
        return sorted(self._processors)
