"""Service dependencies for the batch job routers."""

from app.services.container import get_orchestrator, get_storage
from app.services.orchestrator import BatchJobOrchestrator
from app.storage.file_storage import LocalFileStorage


def get_batch_job_orchestrator() -> BatchJobOrchestrator:
    """FastAPI dependency returning the process-wide orchestrator."""
    return get_orchestrator()


def get_file_storage() -> LocalFileStorage:
    return get_storage()
