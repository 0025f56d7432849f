"""
Tests for the two-pass ingestion of an upload.

Each test writes a real .xlsx with openpyxl and runs the orchestrator against
an in-memory database, or a WAL-mode file database where connections read
from their own snapshots.
"""

import json

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from backend.models.schema import (
    Base, Nomenclature, Price, PriceListUpload, UploadRowError, UploadStatus
)
from services.errors import (
    BulkWriteError, ColumnMappingError, FileReadError,
    UnsupportedFormatError, UploadNotFoundError
)
from services.ingestion_service import (
    IngestionOrchestrator, IngestionState, SECOND_PASS_MISS_MESSAGE,
    check_extension, iter_sheet_rows, load_upload, resolve_file_path
)


def _run(session, upload, **kwargs):
    stages = []
    orchestrator = IngestionOrchestrator(
        session, upload,
        progress_callback=lambda stage, percent, message: stages.append(stage),
        **kwargs
    )
    summary = orchestrator.run()
    return summary, stages


class TestHelpers:
    """Test intake helpers."""

    def test_load_upload_missing(self, session):
        with pytest.raises(UploadNotFoundError) as exc_info:
            load_upload(session, 12345)
        assert exc_info.value.upload_id == 12345

    def test_check_extension(self, make_upload, tmp_path):
        upload = make_upload(tmp_path / 'Prices.XLSX')
        assert check_extension(upload) == '.xlsx'

        upload = make_upload(tmp_path / 'prices.csv')
        with pytest.raises(UnsupportedFormatError) as exc_info:
            check_extension(upload)
        assert exc_info.value.message == 'Unknown format: .csv'

    def test_resolve_file_path(self, make_upload, tmp_path):
        upload = make_upload(tmp_path / 'a.xlsx', file_path='2024/05/a.xlsx')
        assert resolve_file_path(upload, '/srv/uploads').as_posix() == '/srv/uploads/2024/05/a.xlsx'

        upload = make_upload(tmp_path / 'b.xlsx')
        assert resolve_file_path(upload, '/srv/uploads') == tmp_path / 'b.xlsx'

    def test_iter_sheet_rows_skips_blank_rows(self, write_xlsx):
        path = write_xlsx([
            ['X1', 'A-1', 'ACME', '', 1, 1],
            [],
            ['X3', 'A-3', 'ACME', '', 3, 3],
        ])

        rows = list(iter_sheet_rows(path, start_row=2))

        assert [number for number, _ in rows] == [2, 4]
        assert rows[1][1][:2] == ('X3', 'A-3')

    def test_iter_sheet_rows_start_row_below_one(self, write_xlsx):
        path = write_xlsx([['X1', 'A-1', 'ACME', '', 1, 1]])
        rows = list(iter_sheet_rows(path, start_row=0))
        assert rows[0][0] == 1
        assert rows[0][1][0] == 'Owner'

    def test_iter_sheet_rows_unreadable(self, tmp_path):
        path = tmp_path / 'broken.xlsx'
        path.write_bytes(b'not a zip archive')
        with pytest.raises(FileReadError):
            list(iter_sheet_rows(path))


class TestIngestionOrchestrator:
    """Test complete runs."""

    def test_catalog_hit(self, session, make_upload, add_nomenclature, write_xlsx):
        entry = add_nomenclature('A-100', 'ACME', description='Catalog bolt', replace_code='R-1')
        path = write_xlsx([['X1', 'A-100', 'ACME', 'File bolt', 100, 5, None]])
        upload = make_upload(path, markup=1.2, comment_price='Default comment')

        summary, stages = _run(session, upload)

        assert summary.state == IngestionState.DONE
        assert summary.rows_total == 1
        assert summary.rows_loaded == 1
        assert summary.rows_error == 0
        assert summary.catalog_created == 0
        assert stages == ['scanning', 'flushing', 'reconciling', 'writing', 'done']

        price = session.query(Price).one()
        assert price.nomenclature_id == entry.id
        assert price.upload_id == upload.id
        assert price.price_list_id == 7
        assert price.owner_id == 'X1'
        assert price.description == 'Catalog bolt'
        assert price.replace_code == 'R-1'
        assert price.price == pytest.approx(120.0)
        assert price.price_default == pytest.approx(100.0)
        assert price.amount == 5
        assert price.comment == 'Default comment'
        assert price.created_by == 99

        session.refresh(upload)
        assert upload.status == UploadStatus.DONE
        assert upload.rows == 1
        assert upload.rows_loaded == 1
        assert upload.rows_error == 0
        assert upload.loaded_at is not None

    def test_missing_nomenclature_is_created(self, session, make_upload, write_xlsx):
        path = write_xlsx([['X1', 'B-200', 'ACME', 'Widget', 10, 1, 'note']])
        upload = make_upload(path)

        summary, _ = _run(session, upload)

        assert summary.catalog_created == 1
        assert summary.rows_loaded == 1

        entry = session.query(Nomenclature).filter_by(code='B-200', brand='ACME').one()
        assert entry.is_auto_added is True
        assert entry.description == 'Widget'
        assert entry.created_by == 99

        price = session.query(Price).one()
        assert price.nomenclature_id == entry.id
        assert price.description == 'Widget'
        assert price.comment == 'note'

    def test_existing_and_missing_produce_same_record(self, session, make_upload,
                                                      add_nomenclature, write_xlsx):
        add_nomenclature('A-1', 'ACME', description='Desc')
        path = write_xlsx([
            ['X1', 'A-1', 'ACME', 'Desc', 10, 1, 'c'],
            ['X2', 'A-2', 'ACME', 'Desc', 10, 1, 'c'],
        ])
        upload = make_upload(path)

        _run(session, upload)

        prices = session.query(Price).order_by(Price.owner_id).all()
        fields = [(p.code, p.brand, p.description, p.price, p.amount, p.comment) for p in prices]
        assert fields == [
            ('A-1', 'ACME', 'Desc', 10.0, 1, 'c'),
            ('A-2', 'ACME', 'Desc', 10.0, 1, 'c'),
        ]

    def test_malformed_row_is_excluded(self, session, make_upload, add_nomenclature, write_xlsx):
        add_nomenclature('A-1', 'ACME')
        path = write_xlsx([
            ['X1', 'A-1', 'ACME', '', 10, 1],
            ['X2', 'A-1', 'ACME', '', 'ask us', 1],
            ['X3', 'A-1', 'ACME', '', 30, 3],
        ])
        upload = make_upload(path)

        summary, _ = _run(session, upload)

        assert summary.rows_total == 3
        assert summary.rows_loaded == 2
        assert summary.rows_error == 1
        assert sorted(p.owner_id for p in session.query(Price)) == ['X1', 'X3']

        error = session.query(UploadRowError).one()
        assert error.upload_id == upload.id
        assert error.no_row == 3
        assert error.text == 'Price is not defined'

        session.refresh(upload)
        assert upload.status == UploadStatus.DONE
        assert upload.rows_error == 1

    def test_brand_override(self, session, make_upload, write_xlsx):
        path = write_xlsx([['X1', 'A-1', 'IGNORED', '', 10, 1]])
        columns = {'owner_id': 1, 'code': 2, 'price': 5, 'amount': 6}
        upload = make_upload(path, brand='BOSCH', columns_config=json.dumps(columns))

        _run(session, upload)

        assert session.query(Price).one().brand == 'BOSCH'

    def test_small_batches(self, session, make_upload, write_xlsx):
        rows = [[f'X{i}', f'C-{i}', 'ACME', '', i, 1] for i in range(1, 8)]
        upload = make_upload(write_xlsx(rows))

        summary, _ = _run(session, upload, nomenclature_batch_size=3, price_batch_size=2)

        assert summary.catalog_created == 7
        assert summary.rows_loaded == 7
        assert session.query(Price).count() == 7

    def test_duplicate_new_product_fails_flush(self, session, make_upload, write_xlsx):
        path = write_xlsx([
            ['X1', 'NEW-1', 'ACME', '', 10, 1],
            ['X2', 'NEW-1', 'ACME', '', 12, 1],
        ])
        upload = make_upload(path)

        with pytest.raises(BulkWriteError) as exc_info:
            _run(session, upload)

        assert exc_info.value.upload_id == upload.id
        assert session.query(Nomenclature).count() == 0
        assert session.query(Price).count() == 0

        session.refresh(upload)
        assert upload.status == UploadStatus.FAILED

    def test_unsupported_format_writes_nothing(self, session, make_upload, tmp_path):
        path = tmp_path / 'prices.docx'
        path.write_bytes(b'irrelevant')
        upload = make_upload(path)

        with pytest.raises(UnsupportedFormatError):
            _run(session, upload)

        assert session.query(Price).count() == 0
        assert session.query(Nomenclature).count() == 0
        assert session.query(UploadRowError).count() == 0
        session.refresh(upload)
        assert upload.status == UploadStatus.FAILED

    def test_malformed_mapping(self, session, make_upload, write_xlsx):
        upload = make_upload(write_xlsx([['X1', 'A-1', 'ACME', '', 10, 1]]),
                             columns_config='{"code": ')

        with pytest.raises(ColumnMappingError):
            _run(session, upload)

        assert session.query(Price).count() == 0
        session.refresh(upload)
        assert upload.status == UploadStatus.FAILED

    def test_missing_file(self, session, make_upload, tmp_path):
        upload = make_upload(tmp_path / 'gone.xlsx')

        with pytest.raises(FileReadError):
            _run(session, upload)

        session.refresh(upload)
        assert upload.status == UploadStatus.FAILED

    def test_second_pass_miss_is_row_error(self, session, make_upload, write_xlsx):
        path = write_xlsx([['X1', 'A-1', 'ACME', '', 10, 1]])
        upload = make_upload(path)
        orchestrator = IngestionOrchestrator(session, upload)
        orchestrator.resolver.resolve = lambda code, brand: None

        summary = orchestrator.run()

        assert summary.catalog_created == 1
        assert summary.rows_loaded == 0
        assert summary.rows_error == 1
        error = session.query(UploadRowError).one()
        assert error.no_row == 2
        assert error.text == SECOND_PASS_MISS_MESSAGE

    def test_summary_dict(self, session, make_upload, write_xlsx):
        upload = make_upload(write_xlsx([['X1', 'A-1', 'ACME', '', 10, 1]]))

        summary, _ = _run(session, upload)

        assert summary.to_dict() == {
            'upload_id': upload.id,
            'state': 'done',
            'rows_total': 1,
            'rows_loaded': 1,
            'rows_error': 0,
            'catalog_created': 1,
        }

    def test_failed_error_write_still_excludes_row(self, engine, session, make_upload,
                                                   add_nomenclature, write_xlsx):
        add_nomenclature('A-1', 'ACME')
        upload = make_upload(write_xlsx([
            ['X1', 'A-1', 'ACME', '', 10, 1],
            ['X2', 'A-1', 'ACME', '', 'ask us', 1],
        ]))
        UploadRowError.__table__.drop(engine)
        orchestrator = IngestionOrchestrator(session, upload)

        summary = orchestrator.run()

        assert summary.state == IngestionState.DONE
        assert summary.rows_loaded == 1
        assert summary.rows_error == 1
        assert orchestrator.error_sink.failed == 1
        assert orchestrator.error_sink.recorded == 0
        assert [p.owner_id for p in session.query(Price)] == ['X1']

        session.refresh(upload)
        assert upload.status == UploadStatus.DONE
        assert upload.rows_error == 1


@pytest.fixture
def snapshot_engine(tmp_path):
    """
    File database in WAL mode with explicit BEGIN.

    Every connection is separate and reads from a snapshot taken at its
    first statement, the way InnoDB REPEATABLE READ behaves.
    """
    eng = create_engine(f"sqlite:///{tmp_path / 'snapshot.db'}")

    @event.listens_for(eng, 'connect')
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute('PRAGMA journal_mode=WAL')
        cursor.close()

    @event.listens_for(eng, 'begin')
    def _begin(conn):
        conn.exec_driver_sql('BEGIN')

    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


class TestSnapshotIsolation:
    """Test a run where the session and the bulk writers use separate connections."""

    def test_created_nomenclature_visible_to_second_pass(self, snapshot_engine, write_xlsx):
        path = write_xlsx([['X1', 'NEW-1', 'ACME', 'Widget', 100, 5]])
        session = sessionmaker(autoflush=False, bind=snapshot_engine)()
        upload = PriceListUpload(
            price_list_id=7, file_name='prices.xlsx', file_path=str(path),
            currency_value=1.0, markup=1.2, start_row=2, created_by=99,
            columns_config=json.dumps({'owner_id': 1, 'code': 2, 'brand': 3,
                                       'description': 4, 'price': 5, 'amount': 6})
        )
        session.add(upload)
        session.commit()

        try:
            summary = IngestionOrchestrator(session, upload).run()

            assert summary.catalog_created == 1
            assert summary.rows_loaded == 1
            assert summary.rows_error == 0

            price = session.query(Price).one()
            assert price.code == 'NEW-1'
            assert price.price == pytest.approx(120.0)
            assert session.query(UploadRowError).count() == 0
            session.refresh(upload)
            assert upload.status == UploadStatus.DONE
        finally:
            session.close()
