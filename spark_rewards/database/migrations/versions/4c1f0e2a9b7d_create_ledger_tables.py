"""create_ledger_tables

Balances per address and the append-only balance change log. Amounts are
decimal text so attoFIL values never lose precision.

Revision ID: 4c1f0e2a9b7d
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '4c1f0e2a9b7d'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'scheduled_rewards',
        sa.Column('address', sa.String(42), primary_key=True, comment='Checksummed 0x address'),
        sa.Column('amount', sa.String(80), nullable=False, comment='Net attoFIL owed'),
    )
    op.create_table(
        'reward_log',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('address', sa.String(42), nullable=False),
        sa.Column('score', sa.String(80), nullable=True, comment='Only set for score increases'),
        sa.Column('delta', sa.String(80), nullable=False),
    )
    op.create_index('ix_reward_log_timestamp', 'reward_log', ['timestamp'])


def downgrade() -> None:
    op.drop_index('ix_reward_log_timestamp', table_name='reward_log')
    op.drop_table('reward_log')
    op.drop_table('scheduled_rewards')
