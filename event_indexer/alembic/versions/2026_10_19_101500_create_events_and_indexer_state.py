"""create_events_and_indexer_state

Revision ID: 2026_10_19_101500
Revises:
Create Date: 2026-10-19 10:15:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '2026_10_19_101500'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'events',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('contract_name', sa.String(length=128), nullable=False),
        sa.Column('contract_address', sa.String(length=42), nullable=False),
        sa.Column('event_name', sa.String(length=128), nullable=False),
        sa.Column('block_number', sa.BigInteger(), nullable=False),
        sa.Column('block_hash', sa.String(length=66), nullable=False),
        sa.Column('transaction_hash', sa.String(length=66), nullable=False),
        sa.Column('transaction_index', sa.Integer(), nullable=False),
        sa.Column('log_index', sa.Integer(), nullable=False),
        sa.Column('event_data', sa.JSON(), nullable=False),
        sa.Column('indexed_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('transaction_hash', 'log_index', name='uq_events_tx_log'),
    )
    op.create_index('ix_events_contract_name', 'events', ['contract_name'])
    op.create_index('ix_events_event_name', 'events', ['event_name'])
    op.create_index('ix_events_block_log', 'events', ['block_number', 'log_index'])
    op.create_index('ix_events_transaction_hash', 'events', ['transaction_hash'])

    op.create_table(
        'indexer_state',
        sa.Column('key', sa.String(length=64), primary_key=True),
        sa.Column('value', sa.Text(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table('indexer_state')
    op.drop_index('ix_events_transaction_hash', table_name='events')
    op.drop_index('ix_events_block_log', table_name='events')
    op.drop_index('ix_events_event_name', table_name='events')
    op.drop_index('ix_events_contract_name', table_name='events')
    op.drop_table('events')
