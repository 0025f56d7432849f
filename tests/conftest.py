"""
Pytest configuration and fixtures for price-list ingestion tests.
"""

import json
import os
import tempfile

# Module-level engines are created on import: point them at throwaway
# locations before any project module reads the settings.
_TMP = tempfile.mkdtemp(prefix='pricelist_tests_')
os.environ['DATABASE_URL'] = f"sqlite:///{os.path.join(_TMP, 'app.db')}"
os.environ['LOG_FILE'] = os.path.join(_TMP, 'ingestion.log')
os.environ['FATAL_ERROR_POLICY'] = 'halt'

import openpyxl
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from backend.models.schema import Base, Nomenclature, PriceListUpload, UploadStatus

DEFAULT_COLUMNS = {
    'owner_id': 1,
    'code': 2,
    'brand': 3,
    'description': 4,
    'price': 5,
    'amount': 6,
    'comment': 7,
}

HEADER = ['Owner', 'Code', 'Brand', 'Description', 'Price', 'Amount', 'Comment']


@pytest.fixture
def engine():
    """In-memory database shared by the session and the bulk writers."""
    eng = create_engine(
        'sqlite://',
        poolclass=StaticPool,
        connect_args={'check_same_thread': False}
    )
    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autoflush=False, bind=engine)


@pytest.fixture
def session(session_factory):
    """Create a new database session for a test."""
    sess = session_factory()
    yield sess
    sess.close()


@pytest.fixture
def write_xlsx(tmp_path):
    """Write rows into a one-sheet workbook and return its path."""

    def _write(rows, name='prices.xlsx', header=True):
        workbook = openpyxl.Workbook()
        sheet = workbook.active
        sheet.title = 'Prices'
        if header:
            sheet.append(HEADER)
        for row in rows:
            sheet.append(row)
        path = tmp_path / name
        workbook.save(path)
        return path

    return _write


@pytest.fixture
def make_upload(session):
    """Persist an upload descriptor with sensible defaults."""

    def _make(path, **overrides):
        values = {
            'price_list_id': 7,
            'status': int(UploadStatus.PENDING),
            'file_basename': os.path.basename(str(path)),
            'file_name': os.path.basename(str(path)),
            'file_path': str(path),
            'file_size': 0,
            'currency': 'USD',
            'currency_value': 1.0,
            'markup': 1.0,
            'comment_price': None,
            'columns_config': json.dumps(DEFAULT_COLUMNS),
            'start_row': 2,
            'created_by': 99,
        }
        values.update(overrides)
        upload = PriceListUpload(**values)
        session.add(upload)
        session.commit()
        return upload

    return _make


@pytest.fixture
def add_nomenclature(session):
    """Insert a catalog entry."""

    def _add(code, brand, description='', replace_code=''):
        entry = Nomenclature(code=code, brand=brand, description=description,
                             replace_code=replace_code, is_auto_added=False)
        session.add(entry)
        session.commit()
        return entry

    return _add
