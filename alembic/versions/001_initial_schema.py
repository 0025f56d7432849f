"""Initial schema for price-list ingestion

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Upload descriptors
    op.create_table(
        'price_list_uploads',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('price_list_id', sa.Integer(), nullable=False, comment='Owning price list'),
        sa.Column('status', sa.Integer(), server_default=sa.text('0'), nullable=False,
                  comment='0 pending, 1 processing, 2 done, 3 failed'),
        sa.Column('file_basename', sa.String(length=255), server_default='', nullable=False),
        sa.Column('file_name', sa.String(length=255), nullable=False,
                  comment='Original file name, its extension selects the reader'),
        sa.Column('file_path', sa.String(length=512), server_default='', nullable=False,
                  comment='Stored file location, relative to UPLOAD_ROOT unless absolute'),
        sa.Column('file_size', sa.Numeric(precision=20, scale=2), server_default=sa.text('0'), nullable=False),
        sa.Column('brand', sa.String(length=255), nullable=True,
                  comment='File-level brand override, ignores the brand column when set'),
        sa.Column('currency', sa.String(length=10), server_default='', nullable=False),
        sa.Column('currency_value', sa.Numeric(precision=20, scale=6), server_default=sa.text('1'),
                  nullable=False, comment='Currency multiplier applied to the file price'),
        sa.Column('markup', sa.Numeric(precision=20, scale=6), server_default=sa.text('1'),
                  nullable=False, comment='Markup factor applied to the file price'),
        sa.Column('col_delimiter', sa.String(length=10), server_default='', nullable=False),
        sa.Column('character_set', sa.String(length=50), server_default='', nullable=False),
        sa.Column('comment_price', sa.Text(), nullable=True, comment='Default comment for rows without one'),
        sa.Column('columns_config', sa.Text(), server_default='{}', nullable=False,
                  comment='JSON mapping of semantic field to 1-based column position'),
        sa.Column('start_row', sa.Integer(), server_default=sa.text('1'), nullable=False),
        sa.Column('rows', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('rows_loaded', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('rows_error', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('loaded_at', sa.TIMESTAMP(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        comment='Spreadsheet upload descriptors consumed by the ingestion worker'
    )
    op.create_index('idx_uploads_price_list', 'price_list_uploads', ['price_list_id'])
    op.create_index('idx_uploads_status', 'price_list_uploads', ['status'])

    # Nomenclature catalog
    op.create_table(
        'nomenclatures',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('code', sa.String(length=255), nullable=False),
        sa.Column('replace_code', sa.String(length=255), server_default='', nullable=False),
        sa.Column('brand', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), server_default='', nullable=False),
        sa.Column('is_auto_added', sa.Boolean(), server_default='0', nullable=False,
                  comment='True when created by the ingestion worker'),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('updated_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code', 'brand', name='uq_nomenclatures_code_brand'),
        comment='Reference catalog of products'
    )

    # Loaded prices
    op.create_table(
        'prices',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('nomenclature_id', sa.Integer(), nullable=False),
        sa.Column('price_list_id', sa.Integer(), nullable=False),
        sa.Column('upload_id', sa.Integer(), nullable=False),
        sa.Column('owner_id', sa.String(length=255), nullable=False,
                  comment='Supplier-side identifier of the position'),
        sa.Column('code', sa.String(length=255), nullable=False),
        sa.Column('replace_code', sa.String(length=255), server_default='', nullable=False),
        sa.Column('brand', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), server_default='', nullable=False),
        sa.Column('price', sa.Numeric(precision=20, scale=6), nullable=False,
                  comment='price_default * currency_value * markup'),
        sa.Column('price_default', sa.Numeric(precision=20, scale=6), nullable=False,
                  comment='Price as read from the file'),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('comment', sa.Text(), server_default='', nullable=False),
        sa.Column('created_by', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.ForeignKeyConstraint(['nomenclature_id'], ['nomenclatures.id']),
        sa.ForeignKeyConstraint(['upload_id'], ['price_list_uploads.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        comment='Price rows produced by the ingestion worker'
    )
    op.create_index('idx_prices_price_list', 'prices', ['price_list_id'])
    op.create_index('idx_prices_upload', 'prices', ['upload_id'])
    op.create_index('idx_prices_nomenclature', 'prices', ['nomenclature_id'])

    # Row-level errors
    op.create_table(
        'price_list_upload_rows',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('upload_id', sa.Integer(), nullable=False),
        sa.Column('no_row', sa.Integer(), nullable=False, comment='1-based sheet row number'),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.ForeignKeyConstraint(['upload_id'], ['price_list_uploads.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        comment='Row-level errors, append-only'
    )
    op.create_index('idx_upload_rows_upload', 'price_list_upload_rows', ['upload_id', 'no_row'])


def downgrade() -> None:
    op.drop_index('idx_upload_rows_upload', table_name='price_list_upload_rows')
    op.drop_table('price_list_upload_rows')

    op.drop_index('idx_prices_nomenclature', table_name='prices')
    op.drop_index('idx_prices_upload', table_name='prices')
    op.drop_index('idx_prices_price_list', table_name='prices')
    op.drop_table('prices')

    op.drop_table('nomenclatures')

    op.drop_index('idx_uploads_status', table_name='price_list_uploads')
    op.drop_index('idx_uploads_price_list', table_name='price_list_uploads')
    op.drop_table('price_list_uploads')
