"""Add category column to catalog_items.

Revision ID: 003
Revises: 002
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '003'
down_revision: Union[str, None] = '002'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add category column to catalog_items."""
    op.add_column('catalog_items', sa.Column('category', sa.String(100), nullable=True))

    # Browse by category
    op.create_index('ix_catalog_items_category', 'catalog_items', ['category'])


def downgrade() -> None:
    """Drop category column from catalog_items."""
    op.drop_index('ix_catalog_items_category', table_name='catalog_items')
    op.drop_column('catalog_items', 'category')
