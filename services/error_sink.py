"""
Error Sink - record row-level failures against an upload.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.models.schema import UploadRowError

logger = logging.getLogger(__name__)


class ErrorSink:
    """
    Append row errors to ``price_list_upload_rows``.

    Each error is committed on its own. Writes are best-effort: a failed
    insert is logged and rolled back, and the row stays excluded either way.
    """

    def __init__(self, db_session: Session):
        self.session = db_session
        self.recorded = 0
        self.failed = 0

    def record(self, upload_id: int, row_number: int, message: str) -> bool:
        """Store one row error. Returns False if it could not be written."""
        logger.debug(f"Upload {upload_id} row {row_number}: {message}")
        try:
            self.session.add(UploadRowError(upload_id=upload_id, no_row=row_number, text=message))
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            self.failed += 1
            logger.error(f"Could not record error for upload {upload_id} row {row_number}: {e}")
            return False
        self.recorded += 1
        return True
