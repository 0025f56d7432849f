"""
Uploads router - status, row errors and ingestion dispatch.

This module provides endpoints to check the status of a price-list upload,
list the rows it rejected, and enqueue it for background ingestion.
"""

import json
import logging

import redis
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from api.dependencies import get_db, get_redis
from api.schemas.common import PaginatedResponse
from api.schemas.upload_schema import (
    IngestStartResponse, RowErrorItem, UploadProgressResponse, UploadStatusResponse
)
from backend.models.schema import PriceListUpload, UploadRowError, UploadStatus
from tasks.ingestion_tasks import ingest_price_list, progress_key

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix='/uploads', tags=['uploads'])


def _get_upload_or_404(db: Session, upload_id: int) -> PriceListUpload:
    upload = db.get(PriceListUpload, upload_id)
    if upload is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Upload {upload_id} not found"
        )
    return upload


@router.get('/{upload_id}', response_model=UploadStatusResponse)
def get_upload_status(
    upload_id: int,
    db: Session = Depends(get_db),
    cache: redis.Redis = Depends(get_redis)
):
    """
    Get status and counters of an upload.

    The latest worker progress is included while it is still cached.
    """
    upload = _get_upload_or_404(db, upload_id)

    progress = None
    try:
        progress_data = cache.get(progress_key(upload_id))
        if progress_data:
            progress = UploadProgressResponse(**json.loads(progress_data))
    except redis.RedisError as e:
        logger.warning(f"Could not read progress for upload {upload_id}: {e}")

    return UploadStatusResponse(
        id=upload.id,
        price_list_id=upload.price_list_id,
        file_name=upload.file_name,
        status=upload.status,
        status_name=UploadStatusResponse.status_label(upload.status),
        rows=upload.rows,
        rows_loaded=upload.rows_loaded,
        rows_error=upload.rows_error,
        loaded_at=upload.loaded_at,
        progress=progress
    )


@router.get('/{upload_id}/errors', response_model=PaginatedResponse[RowErrorItem])
def list_row_errors(
    upload_id: int,
    skip: int = Query(0, ge=0, description="Number of errors to skip"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum errors to return"),
    db: Session = Depends(get_db)
):
    """List rejected rows of an upload, ordered by row number."""
    _get_upload_or_404(db, upload_id)

    query = db.query(UploadRowError).filter(UploadRowError.upload_id == upload_id)
    total = query.count()
    errors = (
        query.order_by(UploadRowError.no_row, UploadRowError.id)
        .offset(skip)
        .limit(limit)
        .all()
    )

    return PaginatedResponse[RowErrorItem](
        total=total,
        skip=skip,
        limit=limit,
        items=[RowErrorItem.model_validate(error) for error in errors]
    )


@router.post('/{upload_id}/ingest', response_model=IngestStartResponse,
             status_code=status.HTTP_202_ACCEPTED)
def enqueue_ingestion(upload_id: int, db: Session = Depends(get_db)):
    """
    Enqueue an upload for background ingestion.

    **Returns:**
    - 202 Accepted with the Celery task id
    - 404 if the upload does not exist
    - 409 if the upload is being processed
    """
    upload = _get_upload_or_404(db, upload_id)
    if upload.status == UploadStatus.PROCESSING:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Upload {upload_id} is already being processed"
        )

    task = ingest_price_list.apply_async(args=[upload_id])
    logger.info(f"Enqueued ingestion task {task.id} for upload {upload_id}")

    return IngestStartResponse(
        upload_id=upload_id,
        task_id=task.id,
        status_url=f"/api/uploads/{upload_id}"
    )
