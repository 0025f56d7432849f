"""
SQLAlchemy models for the price-list ingestion system.

This module defines the database schema using SQLAlchemy ORM,
matching the schema defined in Alembic migrations.
"""

from enum import IntEnum
from sqlalchemy import (
    Boolean, Column, Integer, String, Text, Numeric, TIMESTAMP,
    ForeignKey, Index, UniqueConstraint, text as sql_text
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class UploadStatus(IntEnum):
    """Lifecycle of a price-list upload."""
    PENDING = 0
    PROCESSING = 1
    DONE = 2
    FAILED = 3


class PriceListUpload(Base):
    """Represents one spreadsheet ingestion request tied to a price list."""

    __tablename__ = 'price_list_uploads'
    __table_args__ = (
        Index('idx_uploads_price_list', 'price_list_id'),
        Index('idx_uploads_status', 'status'),
        {'comment': 'Spreadsheet upload descriptors consumed by the ingestion worker'}
    )

    id = Column(
        Integer,
        primary_key=True,
        autoincrement=True,
        nullable=False
    )
    price_list_id = Column(
        Integer,
        nullable=False,
        comment='Owning price list'
    )
    status = Column(
        Integer,
        nullable=False,
        server_default=sql_text('0'),
        comment='0 pending, 1 processing, 2 done, 3 failed'
    )
    file_basename = Column(String(255), nullable=False, server_default='')
    file_name = Column(
        String(255),
        nullable=False,
        comment='Original file name, its extension selects the reader'
    )
    file_path = Column(
        String(512),
        nullable=False,
        server_default='',
        comment='Stored file location, relative to UPLOAD_ROOT unless absolute'
    )
    file_size = Column(Numeric(precision=20, scale=2, asdecimal=False), nullable=False, server_default=sql_text('0'))
    brand = Column(
        String(255),
        nullable=True,
        comment='File-level brand override, ignores the brand column when set'
    )
    currency = Column(String(10), nullable=False, server_default='')
    currency_value = Column(
        Numeric(precision=20, scale=6, asdecimal=False),
        nullable=False,
        server_default=sql_text('1'),
        comment='Currency multiplier applied to the file price'
    )
    markup = Column(
        Numeric(precision=20, scale=6, asdecimal=False),
        nullable=False,
        server_default=sql_text('1'),
        comment='Markup factor applied to the file price'
    )
    col_delimiter = Column(String(10), nullable=False, server_default='')
    character_set = Column(String(50), nullable=False, server_default='')
    comment_price = Column(
        Text,
        nullable=True,
        comment='Default comment for rows without one'
    )
    columns_config = Column(
        Text,
        nullable=False,
        server_default='{}',
        comment='JSON mapping of semantic field to 1-based column position'
    )
    start_row = Column(Integer, nullable=False, server_default=sql_text('1'))
    rows = Column(Integer, nullable=False, server_default=sql_text('0'))
    rows_loaded = Column(Integer, nullable=False, server_default=sql_text('0'))
    rows_error = Column(Integer, nullable=False, server_default=sql_text('0'))
    loaded_at = Column(TIMESTAMP, nullable=True)
    created_by = Column(Integer, nullable=False)

    row_errors = relationship('UploadRowError', back_populates='upload',
                              order_by='UploadRowError.no_row')

    def __repr__(self):
        return f"<PriceListUpload(id={self.id}, file_name='{self.file_name}', status={self.status})>"


class Nomenclature(Base):
    """Catalog entry keyed by (code, brand)."""

    __tablename__ = 'nomenclatures'
    __table_args__ = (
        UniqueConstraint('code', 'brand', name='uq_nomenclatures_code_brand'),
        {'comment': 'Reference catalog of products'}
    )

    id = Column(
        Integer,
        primary_key=True,
        autoincrement=True,
        nullable=False
    )
    code = Column(String(255), nullable=False)
    replace_code = Column(String(255), nullable=False, server_default='')
    brand = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, server_default='')
    is_auto_added = Column(
        Boolean,
        nullable=False,
        server_default='0',
        comment='True when created by the ingestion worker'
    )
    created_by = Column(Integer, nullable=True)
    updated_by = Column(Integer, nullable=True)
    created_at = Column(TIMESTAMP, server_default=sql_text('CURRENT_TIMESTAMP'), nullable=False)
    updated_at = Column(TIMESTAMP, server_default=sql_text('CURRENT_TIMESTAMP'), nullable=False)

    def __repr__(self):
        return f"<Nomenclature(id={self.id}, code='{self.code}', brand='{self.brand}')>"


class Price(Base):
    """A resolved price row loaded from an upload."""

    __tablename__ = 'prices'
    __table_args__ = (
        Index('idx_prices_price_list', 'price_list_id'),
        Index('idx_prices_upload', 'upload_id'),
        Index('idx_prices_nomenclature', 'nomenclature_id'),
        {'comment': 'Price rows produced by the ingestion worker'}
    )

    id = Column(
        Integer,
        primary_key=True,
        autoincrement=True,
        nullable=False
    )
    nomenclature_id = Column(
        Integer,
        ForeignKey('nomenclatures.id'),
        nullable=False
    )
    price_list_id = Column(Integer, nullable=False)
    upload_id = Column(
        Integer,
        ForeignKey('price_list_uploads.id', ondelete='CASCADE'),
        nullable=False
    )
    owner_id = Column(
        String(255),
        nullable=False,
        comment='Supplier-side identifier of the position'
    )
    code = Column(String(255), nullable=False)
    replace_code = Column(String(255), nullable=False, server_default='')
    brand = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, server_default='')
    price = Column(
        Numeric(precision=20, scale=6, asdecimal=False),
        nullable=False,
        comment='price_default * currency_value * markup'
    )
    price_default = Column(
        Numeric(precision=20, scale=6, asdecimal=False),
        nullable=False,
        comment='Price as read from the file'
    )
    amount = Column(Integer, nullable=False)
    comment = Column(Text, nullable=False, server_default='')
    created_by = Column(Integer, nullable=False)
    created_at = Column(TIMESTAMP, server_default=sql_text('CURRENT_TIMESTAMP'), nullable=False)

    def __repr__(self):
        return f"<Price(id={self.id}, code='{self.code}', price={self.price})>"


class UploadRowError(Base):
    """A row-level validation failure recorded against an upload."""

    __tablename__ = 'price_list_upload_rows'
    __table_args__ = (
        Index('idx_upload_rows_upload', 'upload_id', 'no_row'),
        {'comment': 'Row-level errors, append-only'}
    )

    id = Column(
        Integer,
        primary_key=True,
        autoincrement=True,
        nullable=False
    )
    upload_id = Column(
        Integer,
        ForeignKey('price_list_uploads.id', ondelete='CASCADE'),
        nullable=False
    )
    no_row = Column(Integer, nullable=False, comment='1-based sheet row number')
    text = Column(Text, nullable=False)
    created_at = Column(TIMESTAMP, server_default=sql_text('CURRENT_TIMESTAMP'), nullable=False)

    upload = relationship('PriceListUpload', back_populates='row_errors')

    def __repr__(self):
        return f"<UploadRowError(upload_id={self.upload_id}, no_row={self.no_row})>"
