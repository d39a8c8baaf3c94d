"""Create catalog_outbox table.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '002'
down_revision: Union[str, None] = '001'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create catalog_outbox table."""
    op.create_table(
        'catalog_outbox',
        sa.Column('event_id', sa.String(36), primary_key=True),
        sa.Column('item_id', sa.String(100), nullable=False, index=True),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('payload', postgresql.JSONB, nullable=False),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending', index=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('next_attempt_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()'), index=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('published_at', sa.DateTime(timezone=True), nullable=True),
        # One event per item version
        sa.UniqueConstraint('item_id', 'version', name='uq_catalog_outbox_item_version'),
    )

    # Relay scan: pending events in per-item version order
    op.create_index(
        'ix_catalog_outbox_status_item_version',
        'catalog_outbox',
        ['status', 'item_id', 'version'],
    )


def downgrade() -> None:
    """Drop catalog_outbox table."""
    op.drop_index('ix_catalog_outbox_status_item_version', table_name='catalog_outbox')
    op.drop_table('catalog_outbox')
