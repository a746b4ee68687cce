"""File ingestion status routes: listing, stats, ingest, archive, restore and upload."""

import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, UploadFile, File

from kb_ingest.api.dependencies import get_controller
from kb_ingest.api.models.requests import IngestRequest
from kb_ingest.api.models.responses import FileActionResult, IngestResult, RefreshResponse
from kb_ingest.controller import ReconciliationController
from kb_ingest.errors import (
    AlreadyInProgress,
    FileNotFound,
    IngestionFailed,
    TransitionRejected,
    WorkerUnavailable,
)
from kb_ingest.models import BatchSummary, DashboardStats, FileView, UploadSource

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["files"])


def _not_found(e: FileNotFound) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)


def _conflict(e: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


# ============================================================================
# LIST FILES
# ============================================================================

@router.get("/files", response_model=List[FileView])
async def list_files(
    include_archived: bool = False,
    controller: ReconciliationController = Depends(get_controller)
) -> List[FileView]:
    """
    Get listed files joined with their ingestion status.

    Args:
        include_archived: Also return archived files
        controller: Reconciliation controller

    Returns:
        List of file views
    """
    return controller.list_files(include_archived=include_archived)


# ============================================================================
# DASHBOARD STATS
# ============================================================================

@router.get("/files/stats", response_model=DashboardStats)
async def get_dashboard_stats(
    controller: ReconciliationController = Depends(get_controller)
) -> DashboardStats:
    """Get dashboard statistics from the last-known snapshots."""
    return controller.get_dashboard_stats()


# ============================================================================
# REFRESH
# ============================================================================

@router.post("/files/refresh", response_model=RefreshResponse)
async def refresh_files(
    controller: ReconciliationController = Depends(get_controller)
) -> RefreshResponse:
    """
    Re-read the object store listing and the ingestion records.

    A failing source does not fail the request; it is reported and its
    previous snapshot stays in use.
    """
    result = await controller.refresh()
    return RefreshResponse(
        ok=result.ok,
        errors=[error.message for error in result.errors],
        stale_sources=controller.stale_sources,
    )


# ============================================================================
# UPLOAD FILES
# ============================================================================

@router.post("/files/upload", response_model=BatchSummary)
async def upload_files(
    files: List[UploadFile] = File(...),
    controller: ReconciliationController = Depends(get_controller)
) -> BatchSummary:
    """
    Upload files to the object store one after another.

    Args:
        files: Files to upload
        controller: Reconciliation controller

    Returns:
        Count of succeeded and failed uploads
    """
    limit = controller.uploads.max_upload_bytes if controller.uploads else None

    sources = []
    for file in files:
        name = file.filename or "untitled"
        mime_type = file.content_type or "application/octet-stream"
        if limit is not None and file.size is not None and file.size > limit:
            # Rejected by the tracker on size without reading the body
            sources.append(UploadSource(
                name=name, content=b"", mime_type=mime_type, declared_size=file.size
            ))
            continue

        content = await file.read()
        sources.append(UploadSource(name=name, content=content, mime_type=mime_type))

    try:
        return await controller.upload_batch(sources)
    except Exception as e:
        logger.exception(f"Upload error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Upload failed: {e}"
        )


# ============================================================================
# GET FILE
# ============================================================================

@router.get("/files/{file_id}", response_model=FileView)
async def get_file(
    file_id: str,
    controller: ReconciliationController = Depends(get_controller)
) -> FileView:
    """
    Get one file with its ingestion status.

    Raises:
        HTTPException: If the file is not listed by the object store
    """
    view = controller.get_file(file_id)
    if view is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"File {file_id} not found"
        )
    return view


# ============================================================================
# INGEST FILE
# ============================================================================

@router.post("/files/{file_id}/ingest", response_model=IngestResult)
async def ingest_file(
    file_id: str,
    request: Optional[IngestRequest] = None,
    controller: ReconciliationController = Depends(get_controller)
) -> IngestResult:
    """
    Ingest a file into the knowledge base.

    Args:
        file_id: Object store file ID
        request: Optional file name override
        controller: Reconciliation controller

    Returns:
        The ingested record

    Raises:
        HTTPException: 404 if the file is unknown, 409 if already pending,
            422 if the worker failed,
            502 if the worker is unreachable
    """
    try:
        record = await controller.ingest_file(file_id, request.file_name if request else None)
        return IngestResult(
            file_id=record.file_id,
            file_name=record.file_name,
            status=record.status,
            vector_count=record.vector_count,
            chunk_count=record.chunk_count,
            ingestion_completed_at=record.ingestion_completed_at,
        )

    except FileNotFound as e:
        raise _not_found(e)
    except (AlreadyInProgress, TransitionRejected) as e:
        raise _conflict(e)
    except IngestionFailed as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=e.message
        )
    except WorkerUnavailable as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=e.message
        )
    except Exception as e:
        logger.exception(f"Error ingesting file: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to ingest file: {e}"
        )


# ============================================================================
# ARCHIVE / RESTORE FILE
# ============================================================================

@router.post("/files/{file_id}/archive", response_model=FileActionResult)
async def archive_file(
    file_id: str,
    controller: ReconciliationController = Depends(get_controller)
) -> FileActionResult:
    """
    Archive a file (soft delete, the object store copy is kept).

    Raises:
        HTTPException: 404 if the file is unknown, 409 if it is being ingested
    """
    try:
        name = await controller.archive_file(file_id)
        return FileActionResult(file_id=file_id, file_name=name, message=f"{name} archived")

    except FileNotFound as e:
        raise _not_found(e)
    except TransitionRejected as e:
        raise _conflict(e)
    except Exception as e:
        logger.exception(f"Error archiving file: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to archive file: {e}"
        )


@router.post("/files/{file_id}/restore", response_model=FileActionResult)
async def restore_file(
    file_id: str,
    controller: ReconciliationController = Depends(get_controller)
) -> FileActionResult:
    """
    Restore an archived file; it has to be ingested again.

    Raises:
        HTTPException: 404 if the file is unknown, 409 if it is not archived
    """
    try:
        record = await controller.restore_file(file_id)
        return FileActionResult(
            file_id=file_id,
            file_name=record.file_name,
            message=f"{record.file_name or file_id} restored"
        )

    except FileNotFound as e:
        raise _not_found(e)
    except TransitionRejected as e:
        raise _conflict(e)
    except Exception as e:
        logger.exception(f"Error restoring file: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to restore file: {e}"
        )
