"""create transfer indexer tables

Revision ID: 20261016_000001
Revises:
Create Date: 2026-10-16

Creates the four tables of the transfer indexer:
- indexer_state: per (chain, contract) cursor with optimistic-lock version
- transfer_events: indexed ERC20 Transfer logs
- block_checkpoints: stored block hashes for reorg ancestor search
- reorg_records: audit trail of rollbacks
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '20261016_000001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create indexer tables."""
    op.create_table(
        'indexer_state',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('chain_id', sa.Integer(), nullable=False),
        sa.Column('contract_address', sa.String(42), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='running'),
        # Cursor
        sa.Column('start_block', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('last_indexed_block', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('last_block_hash', sa.String(66), nullable=True),
        sa.Column('current_block', sa.BigInteger(), nullable=False, server_default='0'),
        # Catch-up ownership
        sa.Column('is_catching_up', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('catchup_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('catchup_target_block', sa.BigInteger(), nullable=True),
        sa.Column('chunk_size', sa.Integer(), nullable=False),
        # Statistics and errors
        sa.Column('transfers_indexed', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('error_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('last_error_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_indexed_at', sa.DateTime(timezone=True), nullable=True),
        # Optimistic lock
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('chain_id', 'contract_address', name='uq_indexer_state_pair'),
    )
    op.create_index('ix_indexer_state_chain_id', 'indexer_state', ['chain_id'])

    op.create_table(
        'transfer_events',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('chain_id', sa.Integer(), nullable=False),
        sa.Column('contract_address', sa.String(42), nullable=False),
        sa.Column('block_number', sa.BigInteger(), nullable=False),
        sa.Column('block_hash', sa.String(66), nullable=False),
        sa.Column('log_index', sa.Integer(), nullable=False),
        sa.Column('tx_hash', sa.String(66), nullable=False),
        sa.Column('from_address', sa.String(42), nullable=False),
        sa.Column('to_address', sa.String(42), nullable=False),
        # Raw uint256 value
        sa.Column('amount', sa.Numeric(78, 0), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(
            'chain_id', 'contract_address', 'block_number', 'log_index',
            name='uq_transfer_events_log',
        ),
    )
    op.create_index('ix_transfer_events_block_number', 'transfer_events', ['block_number'])
    op.create_index('ix_transfer_events_tx_hash', 'transfer_events', ['tx_hash'])
    op.create_index('ix_transfer_events_from_address', 'transfer_events', ['from_address'])
    op.create_index('ix_transfer_events_to_address', 'transfer_events', ['to_address'])

    op.create_table(
        'block_checkpoints',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('chain_id', sa.Integer(), nullable=False),
        sa.Column('contract_address', sa.String(42), nullable=False),
        sa.Column('block_number', sa.BigInteger(), nullable=False),
        sa.Column('block_hash', sa.String(66), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(
            'chain_id', 'contract_address', 'block_number',
            name='uq_block_checkpoints_block',
        ),
    )

    op.create_table(
        'reorg_records',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('chain_id', sa.Integer(), nullable=False),
        sa.Column('contract_address', sa.String(42), nullable=False),
        sa.Column('detected_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('invalidated_from_block', sa.BigInteger(), nullable=False),
        sa.Column('invalidated_to_block', sa.BigInteger(), nullable=False),
        sa.Column('new_canonical_hash', sa.String(66), nullable=True),
        sa.Column('old_block_hash', sa.String(66), nullable=True),
        sa.Column('depth', sa.BigInteger(), nullable=False),
        sa.Column('events_deleted', sa.Integer(), nullable=False, server_default='0'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_reorg_records_chain_id', 'reorg_records', ['chain_id'])
    op.create_index('ix_reorg_records_detected_at', 'reorg_records', ['detected_at'])


def downgrade() -> None:
    """Drop indexer tables."""
    op.drop_index('ix_reorg_records_detected_at', table_name='reorg_records')
    op.drop_index('ix_reorg_records_chain_id', table_name='reorg_records')
    op.drop_table('reorg_records')
    op.drop_table('block_checkpoints')
    op.drop_index('ix_transfer_events_to_address', table_name='transfer_events')
    op.drop_index('ix_transfer_events_from_address', table_name='transfer_events')
    op.drop_index('ix_transfer_events_tx_hash', table_name='transfer_events')
    op.drop_index('ix_transfer_events_block_number', table_name='transfer_events')
    op.drop_table('transfer_events')
    op.drop_index('ix_indexer_state_chain_id', table_name='indexer_state')
    op.drop_table('indexer_state')
