"""
Catalog Service - nomenclature lookup and deferred creation.

A row whose (code, brand) is not in the catalog yet is not an error: the
orchestrator queues a ``PendingCreate`` for it, and the batcher writes all of
them at once after the scan so the parked rows can be resolved again.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from backend.models.schema import Nomenclature
from services.bulk_writer import ChunkedBulkWriter

logger = logging.getLogger(__name__)

DEFAULT_NOMENCLATURE_BATCH_SIZE = 50000


class CatalogResolver:
    """Exact (code, brand) lookup against the nomenclature catalog."""

    def __init__(self, db_session: Session):
        self.session = db_session

    def resolve(self, code: str, brand: str) -> Optional[Nomenclature]:
        """Return the catalog entry for (code, brand), or None on a miss."""
        return (
            self.session.query(Nomenclature)
            .filter(Nomenclature.code == code, Nomenclature.brand == brand)
            .first()
        )


@dataclass(frozen=True)
class PendingCreate:
    """A catalog entry discovered during the scan and not yet persisted."""
    code: str
    brand: str
    replace_code: str
    description: str
    created_by: int

    def to_row(self, now: datetime) -> dict:
        return {
            'code': self.code,
            'replace_code': self.replace_code,
            'brand': self.brand,
            'description': self.description,
            'is_auto_added': True,
            'created_by': self.created_by,
            'updated_by': self.created_by,
            'created_at': now,
            'updated_at': now,
        }


class PendingCreateBatcher:
    """
    Buffer pending catalog creates for one upload and bulk-write them.

    Candidates are kept in arrival order and are not deduplicated: two rows
    carrying the same new (code, brand) yield two inserts. Where the store enforces the
    unique (code, brand) key during the flush, the flush fails. MySQL with
    unique_checks=0 may not check it.
    """

    def __init__(self, writer: ChunkedBulkWriter):
        self.writer = writer
        self._pending: List[PendingCreate] = []

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def pending(self) -> Tuple[PendingCreate, ...]:
        return tuple(self._pending)

    def add(self, candidate: PendingCreate):
        self._pending.append(candidate)

    def flush(self) -> int:
        """
        Write every buffered candidate and clear the buffer.

        Returns:
            Number of catalog entries created

        Raises:
            BulkWriteError: A chunk failed; the buffer is kept as-is
        """
        if not self._pending:
            logger.info("No missing nomenclatures to add")
            return 0

        logger.info(f"Adding {len(self._pending)} missing nomenclatures")
        now = datetime.utcnow()
        rows = [candidate.to_row(now) for candidate in self._pending]
        created = self.writer.write(Nomenclature.__table__, rows)
        self._pending.clear()
        return created
