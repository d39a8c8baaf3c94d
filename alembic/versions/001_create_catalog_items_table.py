"""Create catalog_items table.

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create catalog_items table."""
    op.create_table(
        'catalog_items',
        sa.Column('item_id', sa.String(100), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('stock_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        # Tombstone: deleted rows are kept so identities are never reissued
        sa.Column('deleted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.CheckConstraint('price > 0', name='ck_catalog_items_price_positive'),
        sa.CheckConstraint('stock_quantity >= 0', name='ck_catalog_items_stock_non_negative'),
        sa.CheckConstraint('version >= 1', name='ck_catalog_items_version_positive'),
    )

    op.create_index('ix_catalog_items_is_active', 'catalog_items', ['is_active'])
    op.create_index('ix_catalog_items_deleted', 'catalog_items', ['deleted'])

    # Search: live items by name and price
    op.create_index('ix_catalog_items_name', 'catalog_items', ['name'])
    op.create_index('ix_catalog_items_price', 'catalog_items', ['price'])


def downgrade() -> None:
    """Drop catalog_items table."""
    op.drop_index('ix_catalog_items_price', table_name='catalog_items')
    op.drop_index('ix_catalog_items_name', table_name='catalog_items')
    op.drop_index('ix_catalog_items_deleted', table_name='catalog_items')
    op.drop_index('ix_catalog_items_is_active', table_name='catalog_items')
    op.drop_table('catalog_items')
