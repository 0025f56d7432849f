"""
Upload-related Pydantic schemas.

This module contains schemas for upload status, progress and row errors.
"""

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime

from backend.models.schema import UploadStatus


class UploadProgressResponse(BaseModel):
    """Latest progress published by the worker."""

    stage: str = Field(..., description="Current stage (e.g., 'scanning', 'writing')")
    percent: float = Field(..., ge=0, le=100, description="Progress percentage")
    message: str = Field(..., description="Human-readable progress message")
    timestamp: datetime = Field(..., description="Progress update timestamp")


class UploadStatusResponse(BaseModel):
    """Status and counters of an upload."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    price_list_id: int
    file_name: str
    status: int = Field(..., description="0 pending, 1 processing, 2 done, 3 failed")
    status_name: str
    rows: int = Field(..., description="Rows scanned")
    rows_loaded: int = Field(..., description="Price rows written")
    rows_error: int = Field(..., description="Rows rejected")
    loaded_at: Optional[datetime] = None
    progress: Optional[UploadProgressResponse] = Field(None, description="Latest progress update")

    @staticmethod
    def status_label(status: int) -> str:
        try:
            return UploadStatus(status).name.lower()
        except ValueError:
            return 'unknown'


class RowErrorItem(BaseModel):
    """One rejected row."""

    model_config = ConfigDict(from_attributes=True)

    no_row: int = Field(..., description="1-based sheet row number")
    text: str = Field(..., description="Reason the row was rejected")
    created_at: Optional[datetime] = None


class IngestStartResponse(BaseModel):
    """Response after enqueueing an upload."""

    upload_id: int
    task_id: str
    status_url: str
