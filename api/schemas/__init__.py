"""
Pydantic schemas for request/response validation.

This package contains all Pydantic models used for API request validation
and response serialization.
"""

from api.schemas.common import ErrorResponse, PaginatedResponse, HealthCheckResponse
from api.schemas.upload_schema import (
    UploadProgressResponse, UploadStatusResponse, RowErrorItem, IngestStartResponse
)

__all__ = [
    # Common
    'ErrorResponse',
    'PaginatedResponse',
    'HealthCheckResponse',

    # Upload
    'UploadProgressResponse',
    'UploadStatusResponse',
    'RowErrorItem',
    'IngestStartResponse',
]
