"""Endpoints for bulk spreadsheet imports and job polling."""

from __future__ import annotations

import logging
from pathlib import Path

from fastapi import (
    APIRouter,
    Depends,
    File,
    HTTPException,
    Query,
    UploadFile,
    status,
)
from starlette.concurrency import run_in_threadpool

from idea_importer.api.dependencies.imports import get_coordinator
from idea_importer.api.schemas.job import (
    ImportAccepted,
    ImportJobView,
    ImportRejectedBody,
    JobStatusValue,
)
from idea_importer.services.import_coordinator import ImportCoordinator, ImportRejected

logger = logging.getLogger(__name__)

router = APIRouter()

ALLOWED_EXTENSIONS = {".csv", ".xls", ".xlsx"}
ALLOWED_CONTENT_TYPES = {
    "text/csv",
    "application/csv",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


def _is_supported(file: UploadFile) -> bool:
    suffix = Path(file.filename or "").suffix.lower()
    if suffix:
        return suffix in ALLOWED_EXTENSIONS
    return (file.content_type or "").split(";")[0].strip() in ALLOWED_CONTENT_TYPES


@router.post(
    "/ideas/bulk-import",
    summary="Start a bulk spreadsheet import",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=ImportAccepted,
    responses={400: {"model": ImportRejectedBody}},
)
async def start_bulk_import(
    file: UploadFile = File(...),
    coordinator: ImportCoordinator = Depends(get_coordinator),
) -> ImportAccepted:
    """Parse the upload and return the job id; rows are processed in the background."""
    if not file.filename:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "Filename is required"},
        )
    if not _is_supported(file):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "Only CSV, XLS or XLSX uploads are supported"},
        )

    settings = coordinator.settings
    try:
        await file.seek(0)
        content = await file.read()
    except OSError as exc:
        logger.error(f"OS error reading uploaded file: {exc}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to read uploaded file"},
        ) from exc

    if len(content) > settings.max_upload_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail={"error": f"File exceeds {settings.max_upload_bytes} bytes"},
        )

    try:
        job_id = await run_in_threadpool(coordinator.submit, content, file.filename)
    except ImportRejected as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=ImportRejectedBody(error=exc.message, job_id=exc.job_id).model_dump(
                by_alias=True
            ),
        ) from exc
    except Exception as exc:
        logger.error(f"Unexpected error starting import: {exc}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "An unexpected error occurred"},
        ) from exc

    view = coordinator.status(job_id)
    logger.info(f"Accepted import job {job_id} for file {file.filename}")
    return ImportAccepted(job_id=job_id, status=view.status if view else "queued")


@router.get(
    "/import-jobs",
    summary="List recent import jobs",
    response_model=list[ImportJobView],
)
async def list_import_jobs(
    status_filter: JobStatusValue | None = Query(
        None, alias="status", description="Filter by status"
    ),
    limit: int = Query(50, ge=1, le=500, description="Maximum number of jobs to return"),
    coordinator: ImportCoordinator = Depends(get_coordinator),
) -> list[ImportJobView]:
    """Jobs still held by this process, newest first."""
    return coordinator.list_jobs(status=status_filter, limit=limit)


@router.get(
    "/import-jobs/{job_id}",
    summary="Poll import progress",
    response_model=ImportJobView,
)
async def get_import_job(
    job_id: str,
    coordinator: ImportCoordinator = Depends(get_coordinator),
) -> ImportJobView:
    """Side-effect free snapshot; clients poll every ~2s until the job is terminal."""
    view = coordinator.status(job_id)
    if view is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return view


@router.post(
    "/import-jobs/{job_id}/cancel",
    summary="Stop an import after in-flight rows finish",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=ImportJobView,
)
async def cancel_import_job(
    job_id: str,
    coordinator: ImportCoordinator = Depends(get_coordinator),
) -> ImportJobView:
    """Finished jobs are returned unchanged."""
    view = coordinator.cancel(job_id)
    if view is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return view
