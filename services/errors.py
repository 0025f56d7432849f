"""
Exception classes for the ingestion pipeline.

Two severities exist. ``RowValidationError`` excludes one row and the file
continues. ``FatalIngestionError`` ends the whole run; its ``error_kind`` lets
the caller choose between stopping the worker and moving on to the next
queue item (see ``FATAL_ERROR_POLICY``).
"""

from typing import Any, Dict, Optional


class IngestionError(Exception):
    """Base exception for all ingestion errors."""


class RowValidationError(IngestionError):
    """A single row could not be parsed or resolved."""

    def __init__(self, row_number: int, message: str):
        self.row_number = row_number
        self.message = message
        super().__init__(f"Row {row_number}: {message}")


class FatalIngestionError(IngestionError):
    """
    Run-level failure: nothing more can be done for this upload.

    Attributes:
        error_kind: Stable identifier of the failure category
        upload_id: Upload being processed, if known
        details: Additional context
    """

    error_kind = 'fatal'

    def __init__(self, message: str, upload_id: Optional[int] = None,
                 details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.upload_id = upload_id
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            'error_kind': self.error_kind,
            'message': self.message,
            'upload_id': self.upload_id,
            'details': self.details,
        }


class UploadNotFoundError(FatalIngestionError):
    """The queued upload id does not exist."""
    error_kind = 'upload_not_found'


class ColumnMappingError(FatalIngestionError):
    """The column-mapping payload is malformed or misses required fields."""
    error_kind = 'column_mapping'


class UnsupportedFormatError(FatalIngestionError):
    """The upload's file extension has no reader."""
    error_kind = 'unsupported_format'


class FileReadError(FatalIngestionError):
    """The spreadsheet file could not be opened or read."""
    error_kind = 'file_read'


class BulkWriteError(FatalIngestionError):
    """A bulk-write chunk failed; earlier chunks stay committed."""
    error_kind = 'bulk_write'


class MalformedWorkItemError(FatalIngestionError):
    """A queue message does not carry a usable upload id."""
    error_kind = 'work_item'
