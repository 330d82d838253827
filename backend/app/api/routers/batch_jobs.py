"""Admin endpoints to submit, poll, cancel and download batch jobs."""
from __future__ import annotations

import logging
from pathlib import PurePosixPath

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import StreamingResponse
from sqlalchemy.exc import SQLAlchemyError

from app.api.dependencies.auth import get_current_actor
from app.api.dependencies.services import get_batch_job_orchestrator, get_file_storage
from app.api.routers.job_helpers import with_live_progress
from app.api.schemas.batch_job import (
    BatchJobCreate,
    BatchJobListResponse,
    BatchJobResponse,
)
from app.core.errors import (
    JobConflictError,
    NotFoundError,
    QueueUnavailableError,
    UnknownJobTypeError,
    ValidationError,
)
from app.db.models.batch_job import COMPLETED, STATUSES
from app.services.orchestrator import BatchJobOrchestrator
from app.services.progress_tracker import fetch_progress
from app.storage.file_storage import LocalFileStorage

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(get_current_actor)])

DOWNLOAD_CHUNK_SIZE = 64 * 1024


def _not_found(exc: NotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


@router.post(
    "",
    summary="Submit a batch job",
    status_code=status.HTTP_201_CREATED,
    response_model=BatchJobResponse,
)
async def create_batch_job(
    payload: BatchJobCreate,
    actor: str = Depends(get_current_actor),
    orchestrator: BatchJobOrchestrator = Depends(get_batch_job_orchestrator),
) -> BatchJobResponse:
    """Validate the context for the job type, persist the job and enqueue it.

    The job starts in ``created``; poll ``GET /{id}`` until it is terminal.
    """
    try:
        job = orchestrator.submit(payload.type, payload.context, actor)
    except UnknownJobTypeError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)
        ) from exc
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(exc), "errors": exc.errors},
        ) from exc
    except QueueUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)
        ) from exc
    except SQLAlchemyError as exc:
        logger.error(f"Database error creating batch job: {exc}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create batch job",
        ) from exc
    return BatchJobResponse(batch_job=job)


@router.get(
    "",
    summary="List batch jobs",
    response_model=BatchJobListResponse,
)
async def list_batch_jobs(
    limit: int = Query(50, ge=1, le=500, description="Maximum number of jobs to return"),
    offset: int = Query(0, ge=0),
    status_filter: str | None = Query(
        None, alias="status", description="created|processing|completed|failed|canceled"
    ),
    job_type: str | None = Query(None, alias="type"),
    orchestrator: BatchJobOrchestrator = Depends(get_batch_job_orchestrator),
) -> BatchJobListResponse:
    """Return batch jobs newest first."""
    if status_filter is not None and status_filter not in STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown status '{status_filter}'",
        )
    try:
        jobs, count = orchestrator.list_jobs(
            limit=limit, offset=offset, status=status_filter, job_type=job_type
        )
    except SQLAlchemyError as exc:
        logger.error(f"Database error listing batch jobs: {exc}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve batch jobs",
        ) from exc
    return BatchJobListResponse(batch_jobs=jobs, count=count, limit=limit, offset=offset)


@router.get(
    "/{job_id}",
    summary="Fetch batch job status, progress and result",
    response_model=BatchJobResponse,
)
async def get_batch_job(
    job_id: str,
    orchestrator: BatchJobOrchestrator = Depends(get_batch_job_orchestrator),
) -> BatchJobResponse:
    """Expose job state for polling clients."""
    try:
        job = orchestrator.get_status(job_id)
    except NotFoundError as exc:
        raise _not_found(exc) from exc
    except SQLAlchemyError as exc:
        logger.error(f"Database error fetching batch job {job_id}: {exc}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve batch job",
        ) from exc
    return BatchJobResponse(batch_job=with_live_progress(job, fetch_progress(job_id)))


@router.post(
    "/{job_id}/cancel",
    summary="Request cancellation of a batch job",
    response_model=BatchJobResponse,
)
async def cancel_batch_job(
    job_id: str,
    orchestrator: BatchJobOrchestrator = Depends(get_batch_job_orchestrator),
) -> BatchJobResponse:
    """Cancel a queued job, or flag a running one to stop at its next page."""
    try:
        job = orchestrator.cancel(job_id)
    except NotFoundError as exc:
        raise _not_found(exc) from exc
    except JobConflictError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Batch job {job_id} is being updated, retry the request",
        ) from exc
    except SQLAlchemyError as exc:
        logger.error(f"Database error canceling batch job {job_id}: {exc}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to cancel batch job",
        ) from exc
    return BatchJobResponse(batch_job=job)


@router.get(
    "/{job_id}/download",
    summary="Download the file produced by a completed batch job",
)
async def download_batch_job_result(
    job_id: str,
    orchestrator: BatchJobOrchestrator = Depends(get_batch_job_orchestrator),
    storage: LocalFileStorage = Depends(get_file_storage),
) -> StreamingResponse:
    try:
        job = orchestrator.get_status(job_id)
    except NotFoundError as exc:
        raise _not_found(exc) from exc

    file_key = (job.result or {}).get("file_key")
    if job.status != COMPLETED or not file_key:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Batch job {job_id} has no result (status={job.status})",
        )
    try:
        stream = storage.resolve(file_key)
    except FileNotFoundError as exc:
        logger.error(f"Result file {file_key} for batch job {job_id} is missing")
        raise HTTPException(
            status_code=status.HTTP_410_GONE, detail="Result file no longer exists"
        ) from exc

    def iter_file():
        with stream:
            while chunk := stream.read(DOWNLOAD_CHUNK_SIZE):
                yield chunk

    filename = PurePosixPath(file_key).name
    return StreamingResponse(
        iter_file(),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
