"""Durable record of each batch job; the single source of truth for polling."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Index, Integer, String
from sqlalchemy.types import DateTime

from app.db.base import Base, JSONType

CREATED = "created"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"
CANCELED = "canceled"

STATUSES = (CREATED, PROCESSING, COMPLETED, FAILED, CANCELED)
TERMINAL_STATUSES = frozenset({COMPLETED, FAILED, CANCELED})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_batch_job_id() -> str:
    return f"batch_{uuid.uuid4().hex}"


class BatchJob(Base):
    __tablename__ = "batch_jobs"

    id = Column(String(64), primary_key=True, default=new_batch_job_id)
    type = Column(String(64), nullable=False)
    status = Column(String(32), nullable=False, default=CREATED)
    context = Column(JSONType, nullable=False, default=dict)
    created_by = Column(String(255))
    advanced_count = Column(Integer, nullable=False, default=0)
    total_count = Column(Integer)
    result = Column(JSONType)
    error = Column(JSONType)
    last_error = Column(JSONType)
    attempts = Column(Integer, nullable=False, default=0)
    cancel_requested = Column(Boolean, nullable=False, default=False)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
    started_at = Column(DateTime(timezone=True))
    finished_at = Column(DateTime(timezone=True))

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        Index("ix_batch_jobs_status_created_at", "status", "created_at"),
        Index("ix_batch_jobs_type", "type"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
