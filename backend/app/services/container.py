"""Process-wide wiring of the store, queue, registry and orchestrator."""

from __future__ import annotations

import logging
from functools import lru_cache

from sqlalchemy.orm import Session, sessionmaker

from app.core.config import Settings, get_settings
from app.exports.source import SqlProductSource
from app.processors import product_export
from app.processors.registry import ProcessorRegistry
from app.services.job_store import JobStore
from app.services.orchestrator import BatchJobOrchestrator
from app.storage.file_storage import LocalFileStorage
from app.workers.queue import CeleryJobQueue, InMemoryJobQueue, JobQueue

logger = logging.getLogger(__name__)


def build_default_registry(
    session_factory: sessionmaker[Session],
    storage: LocalFileStorage,
    settings: Settings,
) -> ProcessorRegistry:
    """Static registration of every supported job type."""
    registry = ProcessorRegistry()
    registry.register(
        product_export.JOB_TYPE,
        product_export.ProductExportProcessor(
            SqlProductSource(session_factory),
            storage,
            page_size=settings.export_page_size,
        ),
    )
    return registry


def build_queue(settings: Settings) -> JobQueue:
    if settings.queue_backend == "memory":
        return InMemoryJobQueue(
            visibility_timeout=settings.queue_visibility_timeout_seconds
        )
    return CeleryJobQueue(settings.batch_jobs_queue)


def build_orchestrator(
    session_factory: sessionmaker[Session],
    settings: Settings,
    *,
    queue: JobQueue | None = None,
    storage: LocalFileStorage | None = None,
) -> BatchJobOrchestrator:
    storage = storage or LocalFileStorage(settings.exports_dir)
    return BatchJobOrchestrator(
        JobStore(session_factory),
        queue or build_queue(settings),
        build_default_registry(session_factory, storage, settings),
        max_attempts=settings.job_max_attempts,
        backoff_seconds=settings.retry_backoff_seconds,
        backoff_max_seconds=settings.retry_backoff_max_seconds,
        progress_flush_every=settings.progress_flush_every,
        progress_flush_interval=settings.progress_flush_interval_seconds,
    )


@lru_cache
def get_storage() -> LocalFileStorage:
    return LocalFileStorage(get_settings().exports_dir)


@lru_cache
def get_orchestrator() -> BatchJobOrchestrator:
    """Orchestrator bound to the application database and configured queue."""
    from app.db.session import SessionLocal

    settings = get_settings()
    logger.info(f"Building orchestrator with {settings.queue_backend} queue backend")
    return build_orchestrator(SessionLocal, settings, storage=get_storage())
