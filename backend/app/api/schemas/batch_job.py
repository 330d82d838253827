"""Batch job request and response payloads."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from app.db.models.batch_job import TERMINAL_STATUSES, BatchJob


class BatchJobCreate(BaseModel):
    type: str = Field(..., min_length=1, description="e.g., product-export")
    context: dict[str, Any] = Field(
        default_factory=dict, description="Job-type specific parameters"
    )


class BatchJobProgress(BaseModel):
    advanced_count: int = 0
    total_count: int | None = None
    percent: float | None = Field(None, description="0-100 range for UI progress bars")


class BatchJobRead(BaseModel):
    id: str
    type: str
    status: str = Field(..., description="created|processing|completed|failed|canceled")
    context: dict[str, Any]
    progress: BatchJobProgress
    result: dict[str, Any] | None = None
    error: dict[str, Any] | None = None
    attempts: int = 0
    cancel_requested: bool = False
    created_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @classmethod
    def from_model(cls, job: BatchJob) -> "BatchJobRead":
        percent = None
        if job.total_count:
            percent = round(min(job.advanced_count / job.total_count, 1.0) * 100, 2)
        elif job.total_count == 0 and job.is_terminal:
            percent = 100.0
        return cls(
            id=job.id,
            type=job.type,
            status=job.status,
            context=dict(job.context or {}),
            progress=BatchJobProgress(
                advanced_count=job.advanced_count or 0,
                total_count=job.total_count,
                percent=percent,
            ),
            result=job.result,
            error=job.error,
            attempts=job.attempts or 0,
            cancel_requested=bool(job.cancel_requested),
            created_by=job.created_by,
            created_at=job.created_at,
            updated_at=job.updated_at,
            started_at=job.started_at,
            finished_at=job.finished_at,
            version=job.version or 0,
        )


class BatchJobResponse(BaseModel):
    batch_job: BatchJobRead


class BatchJobListResponse(BaseModel):
    batch_jobs: list[BatchJobRead]
    count: int
    limit: int
    offset: int
