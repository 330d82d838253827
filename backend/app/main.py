"""FastAPI application bootstrap with router wiring."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.routers import batch_jobs, health
from app.core.config import get_settings

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and, for the in-process queue, start local workers."""
    from app.db.session import init_db
    from app.services.container import get_orchestrator
    from app.workers.local_worker import LocalWorkerPool
    from app.workers.queue import InMemoryJobQueue

    settings = get_settings()
    init_db()

    pool = None
    orchestrator = get_orchestrator()
    if isinstance(orchestrator.queue, InMemoryJobQueue):
        pool = LocalWorkerPool(
            orchestrator, orchestrator.queue, count=settings.local_worker_count
        )
        pool.start()
    try:
        yield
    finally:
        if pool is not None:
            pool.stop()


def create_app() -> FastAPI:
    """Instantiate the FastAPI app and include top-level routers."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)

    logger.info(f"[CORS] Allowed origins: {settings.cors_origins}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition"],
    )

    app.include_router(health.router)
    app.include_router(
        batch_jobs.router, prefix="/admin/batch-jobs", tags=["batch-jobs"]
    )

    return app


app = create_app()
