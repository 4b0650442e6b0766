"""
Dataset endpoints: upload through the ingestion pipeline, and the
per-user dataset library (list, get, preview, delete, stats).

The caller is identified by the X-User-Id header.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import JSONResponse

from genbi.config import settings
from genbi.dependencies import (
    get_dataset_service,
    get_owner_id,
    get_pipeline,
    get_preview_cache,
    get_recovery_cache,
)
from genbi.models.upload import FileDescriptor, UploadSession
from genbi.services.dataset_service import DatasetService
from genbi.services.ingestion_pipeline import IngestionPipeline
from genbi.services.preview_cache import PreviewCache, RecoveryCache

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/upload", status_code=201)
async def upload_dataset(
    file: UploadFile = File(...),
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    overwrite: bool = Form(False),
    owner_id: str = Depends(get_owner_id),
    pipeline: IngestionPipeline = Depends(get_pipeline),
):
    """
    Upload a CSV, JSON or Excel file and register it as a dataset.

    Returns the dataset record, a preview handle with its sample rows, and
    any notices about degraded steps (schema deferred, synthetic preview).
    A name already used by the caller is rejected with 409 unless
    `overwrite` is set.
    """
    # One byte past the limit is enough to reject oversized files
    data = await file.read(settings.max_upload_size_bytes + 1)
    descriptor = FileDescriptor(
        name=file.filename or "upload",
        content_type=file.content_type,
        size=len(data),
        data=data,
    )
    session = UploadSession(file=descriptor, name=name or "", description=description, overwrite=overwrite)

    result = await pipeline.run(session, owner_id)

    body = result.to_dict()
    body["session"] = {
        "session_id": session.session_id,
        "progress": session.progress,
        "retry_count": session.retry_count,
    }
    return JSONResponse(status_code=201, content=body)


@router.get("")
async def list_datasets(
    owner_id: str = Depends(get_owner_id),
    service: DatasetService = Depends(get_dataset_service),
):
    """List the caller's datasets, newest first."""
    records = await service.list_datasets(owner_id)
    return {"datasets": [r.to_dict() for r in records], "count": len(records)}


@router.get("/stats")
async def storage_stats(
    owner_id: str = Depends(get_owner_id),
    service: DatasetService = Depends(get_dataset_service),
):
    return await service.storage_stats(owner_id)


@router.get("/recover")
async def recover_last_upload(
    owner_id: str = Depends(get_owner_id),
    recovery: RecoveryCache = Depends(get_recovery_cache),
):
    """Last successful upload for this caller, if it is still remembered."""
    entry = recovery.recall(owner_id)
    if entry is None:
        return {"recovered": False}
    return {
        "recovered": True,
        "dataset_id": entry.dataset_id,
        "dataset_name": entry.dataset_name,
        "preview_handle": entry.preview_handle,
    }


@router.get("/previews/{handle}")
async def get_cached_preview(
    handle: str,
    previews: PreviewCache = Depends(get_preview_cache),
):
    sample = previews.get(handle)
    if sample is None:
        raise HTTPException(status_code=404, detail=f"Preview {handle} not found or expired")
    return sample.to_dict()


@router.get("/{dataset_id}")
async def get_dataset(
    dataset_id: str,
    owner_id: str = Depends(get_owner_id),
    service: DatasetService = Depends(get_dataset_service),
):
    record = await service.get_dataset(owner_id, dataset_id)
    return record.to_dict()


@router.get("/{dataset_id}/preview")
async def preview_dataset(
    dataset_id: str,
    limit: int = Query(50, ge=1, le=1000),
    owner_id: str = Depends(get_owner_id),
    service: DatasetService = Depends(get_dataset_service),
):
    """
    Preview rows re-read from storage.

    Falls back to the cached upload sample, then to generated rows; the
    `synthetic` flag in the response says which one was returned.
    """
    sample = await service.preview(owner_id, dataset_id, limit=limit)
    return {"dataset_id": dataset_id, **sample.to_dict()}


@router.delete("/{dataset_id}")
async def delete_dataset(
    dataset_id: str,
    owner_id: str = Depends(get_owner_id),
    service: DatasetService = Depends(get_dataset_service),
):
    await service.delete_dataset(owner_id, dataset_id)
    return {"deleted": True, "dataset_id": dataset_id}
