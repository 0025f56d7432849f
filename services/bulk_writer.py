"""
Chunked bulk writer.

Rows are inserted with parameterized multi-row ``INSERT`` statements, one
statement and one commit per chunk. There is no transaction around the whole
write: when a chunk fails, the chunks before it stay committed and the rest
are not attempted.
"""

import logging
from contextlib import contextmanager
from typing import Dict, Iterator, List, Mapping, Sequence, Tuple

from sqlalchemy import insert, Table
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from services.errors import BulkWriteError

logger = logging.getLogger(__name__)

# (relax statements, restore statements) per dialect
INTEGRITY_STATEMENTS: Dict[str, Tuple[Tuple[str, ...], Tuple[str, ...]]] = {
    'mysql': (
        ('SET unique_checks=0', 'SET foreign_key_checks=0'),
        ('SET unique_checks=1', 'SET foreign_key_checks=1'),
    ),
    'sqlite': (
        ('PRAGMA defer_foreign_keys = ON',),
        ('PRAGMA defer_foreign_keys = OFF',),
    ),
}


def chunked(rows: Sequence, size: int) -> Iterator[Sequence]:
    """Yield consecutive slices of at most ``size`` rows."""
    if size <= 0:
        raise ValueError(f"Chunk size must be positive, got {size}")
    for start in range(0, len(rows), size):
        yield rows[start:start + size]


@contextmanager
def relaxed_integrity_checks(conn: Connection):
    """
    Relax integrity checking on ``conn`` for the duration of the block.

    The restore statements run on every exit path, including when the block
    raises. Dialects without an entry are left untouched.
    """
    relax, restore = INTEGRITY_STATEMENTS.get(conn.dialect.name, ((), ()))
    for statement in relax:
        conn.exec_driver_sql(statement)
    conn.commit()
    try:
        yield conn
    finally:
        if conn.in_transaction():
            conn.rollback()
        for statement in restore:
            conn.exec_driver_sql(statement)
        conn.commit()
        if restore:
            logger.debug(f"Integrity checks restored on {conn.dialect.name}")


class ChunkedBulkWriter:
    """
    Insert many rows into one table in fixed-size chunks.

    Args:
        engine: Engine to take a dedicated connection from
        chunk_size: Maximum rows per INSERT statement
        relax_integrity: Apply ``relaxed_integrity_checks`` around the write
    """

    def __init__(self, engine: Engine, chunk_size: int, relax_integrity: bool = True):
        if chunk_size <= 0:
            raise ValueError(f"Chunk size must be positive, got {chunk_size}")
        self.engine = engine
        self.chunk_size = chunk_size
        self.relax_integrity = relax_integrity

    def write(self, table: Table, rows: List[Mapping]) -> int:
        """
        Insert ``rows`` into ``table``.

        Returns:
            Number of rows written

        Raises:
            BulkWriteError: A chunk failed; earlier chunks remain committed
        """
        if not rows:
            logger.info(f"Nothing to write into {table.name}")
            return 0

        total = len(rows)
        chunks = (total + self.chunk_size - 1) // self.chunk_size
        logger.info(f"Writing {total} rows into {table.name} in {chunks} chunk(s)")

        written = 0
        with self.engine.connect() as conn:
            if self.relax_integrity:
                scope = relaxed_integrity_checks(conn)
            else:
                scope = _no_scope(conn)
            with scope:
                for number, chunk in enumerate(chunked(rows, self.chunk_size), 1):
                    try:
                        conn.execute(insert(table), list(chunk))
                        conn.commit()
                    except SQLAlchemyError as e:
                        conn.rollback()
                        logger.error(f"Chunk {number}/{chunks} into {table.name} failed "
                                     f"after {written} committed rows: {e}")
                        raise BulkWriteError(
                            f"Bulk write into {table.name} failed at chunk {number}/{chunks}",
                            details={
                                'table': table.name,
                                'chunk': number,
                                'chunks': chunks,
                                'rows_committed': written,
                                'error': str(e),
                            }
                        ) from e
                    written += len(chunk)
                    logger.debug(f"Chunk {number}/{chunks} into {table.name}: {len(chunk)} rows")

        logger.info(f"Wrote {written} rows into {table.name}")
        return written


@contextmanager
def _no_scope(conn: Connection):
    yield conn
