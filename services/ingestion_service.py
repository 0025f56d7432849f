"""
Price List Ingestion Service - Framework-agnostic business logic.

This module drives one upload through the two-pass reconciliation:

    SCANNING     parse every row, price the rows whose nomenclature exists,
                 park the others and queue a catalog create for each
    FLUSHING     bulk-write the queued catalog creates
    RECONCILING  parse and resolve the parked rows again, now expected to hit
    WRITING      bulk-write all price records
    DONE         counters stored on the upload, summary returned

Row-level failures are recorded through the ErrorSink and never stop the run.
Run-level failures raise ``FatalIngestionError`` and leave the upload FAILED.
"""

import logging
import zipfile
from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.models.schema import Price, PriceListUpload, UploadStatus
from services.bulk_writer import ChunkedBulkWriter
from services.catalog_service import (
    CatalogResolver, PendingCreate, PendingCreateBatcher, DEFAULT_NOMENCLATURE_BATCH_SIZE
)
from services.error_sink import ErrorSink
from services.errors import (
    FatalIngestionError, FileReadError, RowValidationError,
    UnsupportedFormatError, UploadNotFoundError
)
from services.pricing_service import PriceInsertRecord, PriceRowBuilder, DEFAULT_PRICE_BATCH_SIZE
from services.row_parser import ColumnMapping, RowParser

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_EXTENSIONS = ('.xlsx',)
DEFAULT_UPLOAD_ROOT = 'storage/uploads'
SCAN_PROGRESS_EVERY = 5000

SECOND_PASS_MISS_MESSAGE = 'Nomenclature not found after catalog update'


class IngestionState(str, Enum):
    """Orchestrator states, in order."""
    PENDING = 'pending'
    SCANNING = 'scanning'
    FLUSHING = 'flushing'
    RECONCILING = 'reconciling'
    WRITING = 'writing'
    DONE = 'done'


# progress percent reported when entering each state
STATE_PROGRESS = {
    IngestionState.SCANNING: 5,
    IngestionState.FLUSHING: 60,
    IngestionState.RECONCILING: 70,
    IngestionState.WRITING: 80,
    IngestionState.DONE: 100,
}


@dataclass(frozen=True)
class ParkedRow:
    """A row held back until its nomenclature has been created."""
    row_number: int
    values: Tuple[Any, ...]


@dataclass
class IngestionSummary:
    """Outcome of one run."""
    upload_id: int
    state: IngestionState = IngestionState.PENDING
    rows_total: int = 0
    rows_loaded: int = 0
    rows_error: int = 0
    catalog_created: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['state'] = self.state.value
        return data


def load_upload(db_session: Session, upload_id: int) -> PriceListUpload:
    """
    Load the upload descriptor referenced by a work item.

    Raises:
        UploadNotFoundError: No upload with this id
    """
    upload = db_session.get(PriceListUpload, upload_id)
    if upload is None:
        raise UploadNotFoundError(f"Upload {upload_id} not found", upload_id=upload_id)
    return upload


def check_extension(upload: PriceListUpload,
                    allowed_extensions: Sequence[str] = DEFAULT_ALLOWED_EXTENSIONS) -> str:
    """
    Return the upload's lower-cased file extension if a reader exists for it.

    Raises:
        UnsupportedFormatError: Any other extension
    """
    name = upload.file_name or upload.file_path or ''
    ext = Path(name).suffix.lower()
    if ext not in {e.lower() for e in allowed_extensions}:
        raise UnsupportedFormatError(
            f"Unknown format: {ext or '(none)'}",
            upload_id=upload.id,
            details={'file_name': name, 'allowed': list(allowed_extensions)}
        )
    return ext


def resolve_file_path(upload: PriceListUpload, upload_root: str = DEFAULT_UPLOAD_ROOT) -> Path:
    """Absolute stored paths are used as-is, relative ones live under ``upload_root``."""
    path = Path(upload.file_path or upload.file_name)
    if not path.is_absolute():
        path = Path(upload_root) / path
    return path


def iter_sheet_rows(file_path: Path, start_row: int = 1) -> Iterator[Tuple[int, Tuple[Any, ...]]]:
    """
    Yield ``(row_number, values)`` for the first worksheet, from ``start_row`` on.

    Rows without any value are skipped.

    Raises:
        FileReadError: The workbook cannot be opened or read
    """
    start_row = max(start_row or 1, 1)
    try:
        workbook = openpyxl.load_workbook(file_path, read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, OSError, KeyError) as e:
        raise FileReadError(f"Failed to open file: {file_path}", details={'error': str(e)}) from e

    try:
        if not workbook.worksheets:
            raise FileReadError(f"Workbook has no worksheets: {file_path}")
        sheet = workbook.worksheets[0]
        logger.info(f"File opened: {file_path}, sheet '{sheet.title}', rows: {sheet.max_row}")
        try:
            for row_number, values in enumerate(
                    sheet.iter_rows(min_row=start_row, values_only=True), start_row):
                if all(value is None for value in values):
                    continue
                yield row_number, tuple(values)
        except (zipfile.BadZipFile, KeyError, ValueError) as e:
            raise FileReadError(f"Failed to read file: {file_path}", details={'error': str(e)}) from e
    finally:
        workbook.close()


class IngestionOrchestrator:
    """
    Run the two-pass ingestion of one upload.

    Pass-1 state (parked rows and pending creates) lives on the instance and
    is never shared: build a new orchestrator per upload.
    """

    def __init__(
        self,
        db_session: Session,
        upload: PriceListUpload,
        progress_callback: Optional[Callable[[str, float, str], None]] = None,
        upload_root: str = DEFAULT_UPLOAD_ROOT,
        allowed_extensions: Sequence[str] = DEFAULT_ALLOWED_EXTENSIONS,
        nomenclature_batch_size: int = DEFAULT_NOMENCLATURE_BATCH_SIZE,
        price_batch_size: int = DEFAULT_PRICE_BATCH_SIZE,
        relax_integrity: bool = True
    ):
        """
        Initialize the orchestrator.

        Args:
            db_session: SQLAlchemy session bound to an Engine
            upload: Upload descriptor, see ``load_upload``
            progress_callback: Optional callback for progress updates
                              Signature: callback(stage: str, percent: float, message: str)
            upload_root: Base directory for relative file paths
            allowed_extensions: Extensions accepted at intake
            nomenclature_batch_size: Rows per catalog INSERT
            price_batch_size: Rows per price INSERT
            relax_integrity: Relax integrity checks around bulk writes
        """
        self.session = db_session
        self.upload = upload
        self.upload_id = upload.id
        self.created_by = upload.created_by
        self.progress_callback = progress_callback or (lambda *args: None)
        self.upload_root = upload_root
        self.allowed_extensions = tuple(allowed_extensions)

        engine = db_session.get_bind()
        self.catalog_writer = ChunkedBulkWriter(engine, nomenclature_batch_size, relax_integrity)
        self.price_writer = ChunkedBulkWriter(engine, price_batch_size, relax_integrity)

        self.resolver = CatalogResolver(db_session)
        self.batcher = PendingCreateBatcher(self.catalog_writer)
        self.error_sink = ErrorSink(db_session)

        self.parked: List[ParkedRow] = []
        self.records: List[PriceInsertRecord] = []
        self.summary = IngestionSummary(upload_id=upload.id)

    @property
    def state(self) -> IngestionState:
        return self.summary.state

    def _transition(self, state: IngestionState, message: str):
        self.summary.state = state
        self._emit_progress(state.value, STATE_PROGRESS.get(state, 0), message)

    def _emit_progress(self, stage: str, percent: float, message: str):
        """Emit progress update via callback."""
        self.progress_callback(stage, percent, message)
        logger.info(f"Upload {self.upload_id}: {stage} ({percent:.1f}%) - {message}")

    def _reject(self, error: RowValidationError):
        self.summary.rows_error += 1
        self.error_sink.record(self.upload_id, error.row_number, error.message)

    def _set_status(self, status: UploadStatus):
        self.upload.status = int(status)
        self.session.commit()

    def _end_session_transaction(self):
        # bulk writes commit on their own connection, later lookups need a fresh snapshot
        self.session.commit()

    def run(self) -> IngestionSummary:
        """
        Ingest the upload end to end.

        Returns:
            IngestionSummary in state DONE

        Raises:
            FatalIngestionError: Unsupported format, malformed column mapping,
                unreadable file or failed bulk write
        """
        logger.info(f"Start ingestion of upload {self.upload_id}: {self.upload.file_name}")
        try:
            check_extension(self.upload, self.allowed_extensions)
            mapping = ColumnMapping.from_payload(
                self.upload.columns_config,
                has_brand_override=bool((self.upload.brand or '').strip()),
                upload_id=self.upload_id
            )
            parser = RowParser(mapping, brand_override=self.upload.brand)
            builder = PriceRowBuilder(self.upload)
            file_path = resolve_file_path(self.upload, self.upload_root)
            start_row = self.upload.start_row

            self._set_status(UploadStatus.PROCESSING)

            self._transition(IngestionState.SCANNING, f"Reading {file_path.name}")
            self._scan(iter_sheet_rows(file_path, start_row), parser, builder)

            self._transition(IngestionState.FLUSHING,
                             f"Creating {len(self.batcher)} missing nomenclatures")
            self._end_session_transaction()
            self.summary.catalog_created = self.batcher.flush()

            self._transition(IngestionState.RECONCILING,
                             f"Resolving {len(self.parked)} parked rows")
            self._reconcile(parser, builder)

            self._transition(IngestionState.WRITING, f"Inserting {len(self.records)} prices")
            self._end_session_transaction()
            self.summary.rows_loaded = self.price_writer.write(
                Price.__table__, [record.to_row() for record in self.records]
            )

            self._finish()
        except FatalIngestionError as e:
            if e.upload_id is None:
                e.upload_id = self.upload_id
            logger.error(f"Ingestion of upload {self.upload_id} failed in state "
                         f"{self.state.value}: {e.message}")
            self._mark_failed()
            raise

        return self.summary

    def _scan(self, rows: Iterator[Tuple[int, Tuple[Any, ...]]],
              parser: RowParser, builder: PriceRowBuilder):
        for row_number, values in rows:
            self.summary.rows_total += 1
            try:
                fields = parser.parse(values, row_number)
            except RowValidationError as e:
                self._reject(e)
                continue

            entry = self.resolver.resolve(fields.code, fields.brand)
            if entry is None:
                self.batcher.add(PendingCreate(
                    code=fields.code,
                    brand=fields.brand,
                    replace_code=fields.replace_code,
                    description=fields.description,
                    created_by=self.created_by
                ))
                self.parked.append(ParkedRow(row_number=row_number, values=values))
            else:
                self.records.append(builder.build(entry, fields))

            if self.summary.rows_total % SCAN_PROGRESS_EVERY == 0:
                self._emit_progress(IngestionState.SCANNING.value,
                                    STATE_PROGRESS[IngestionState.SCANNING],
                                    f"Scanned {self.summary.rows_total} rows")

        logger.info(f"Scan of upload {self.upload_id} done: {self.summary.rows_total} rows, "
                    f"{len(self.records)} resolved, {len(self.parked)} parked, "
                    f"{self.summary.rows_error} errors")

    def _reconcile(self, parser: RowParser, builder: PriceRowBuilder):
        for parked in self.parked:
            try:
                fields = parser.parse(parked.values, parked.row_number)
                entry = self.resolver.resolve(fields.code, fields.brand)
                if entry is None:
                    raise RowValidationError(parked.row_number, SECOND_PASS_MISS_MESSAGE)
            except RowValidationError as e:
                logger.warning(f"Upload {self.upload_id} row {e.row_number}: {e.message}")
                self._reject(e)
                continue
            self.records.append(builder.build(entry, fields))

    def _finish(self):
        self.upload.rows = self.summary.rows_total
        self.upload.rows_loaded = self.summary.rows_loaded
        self.upload.rows_error = self.summary.rows_error
        self.upload.loaded_at = datetime.utcnow()
        self._set_status(UploadStatus.DONE)
        self._transition(IngestionState.DONE,
                         f"Loaded {self.summary.rows_loaded} rows, {self.summary.rows_error} errors")

    def _mark_failed(self):
        try:
            self.session.rollback()
            self.upload.rows = self.summary.rows_total
            self.upload.rows_error = self.summary.rows_error
            self._set_status(UploadStatus.FAILED)
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Could not mark upload {self.upload_id} as failed: {e}")
