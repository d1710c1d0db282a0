"""lucky_money_schema

Revision ID: a1c3e5f7b901
Revises:
Create Date: 2026-10-19 10:12:44.318207

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a1c3e5f7b901'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

MONEY = sa.Numeric(18, 2)


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('telegram_id', sa.BigInteger(), nullable=False, comment='Telegram user ID'),
        sa.Column('username', sa.String(length=255), nullable=True),
        sa.Column('first_name', sa.String(length=255), nullable=True),
        sa.Column('language', sa.String(length=10), nullable=False, server_default='zh', comment='Message catalogue language'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_activity', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_telegram_id', 'users', ['telegram_id'], unique=True)

    op.create_table(
        'user_balances',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.BigInteger(), nullable=False, comment='Telegram user ID'),
        sa.Column('balance', MONEY, nullable=False, server_default='0', comment='Current balance'),
        sa.Column('total_sent', MONEY, nullable=False, server_default='0', comment='Total put into packets (all time)'),
        sa.Column('total_received', MONEY, nullable=False, server_default='0', comment='Total claimed from packets (all time)'),
        sa.Column('total_refunded', MONEY, nullable=False, server_default='0', comment='Unclaimed remainders returned (all time)'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('balance >= 0', name='ck_user_balances_non_negative'),
    )
    op.create_index('ix_user_balances_user_id', 'user_balances', ['user_id'], unique=True)

    op.create_table(
        'balance_transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.BigInteger(), nullable=False),
        sa.Column('transaction_type', sa.String(length=20), nullable=False),
        sa.Column('amount', MONEY, nullable=False, comment='Signed amount (negative for debits)'),
        sa.Column('balance_before', MONEY, nullable=False),
        sa.Column('balance_after', MONEY, nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('transaction_id', sa.String(length=255), nullable=True, comment='Unique transaction ID for idempotency'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_balance_transactions_user_id', 'balance_transactions', ['user_id'])
    op.create_index('ix_balance_transactions_transaction_type', 'balance_transactions', ['transaction_type'])
    op.create_index('ix_balance_transactions_transaction_id', 'balance_transactions', ['transaction_id'], unique=True)
    op.create_index('ix_balance_transactions_created_at', 'balance_transactions', ['created_at'])

    op.create_table(
        'chat_groups',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('chat_id', sa.BigInteger(), nullable=False),
        sa.Column('chat_type', sa.String(length=20), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=True),
        sa.Column('bot_status', sa.String(length=20), nullable=False, server_default='member', comment='creator, administrator, member, left, kicked'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_chat_groups_chat_id', 'chat_groups', ['chat_id'], unique=True)

    op.create_table(
        'red_packets',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('packet_id', sa.String(length=32), nullable=False, comment='Public id, RP + timestamp + 6 digits'),
        sa.Column('sender_id', sa.BigInteger(), nullable=False),
        sa.Column('origin_chat_id', sa.BigInteger(), nullable=False),
        sa.Column('message_id', sa.BigInteger(), nullable=True, comment='Chat message showing the packet'),
        sa.Column('total_amount', MONEY, nullable=False),
        sa.Column('total_count', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('mode', sa.String(length=10), nullable=False, server_default='random'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='active'),
        sa.Column('claimed_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('claimed_amount', MONEY, nullable=False, server_default='0'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('best_share_position', sa.Integer(), nullable=False, comment='Position of the first maximal share'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('claimed_count <= total_count', name='ck_red_packets_claimed_count'),
    )
    op.create_index('ix_red_packets_packet_id', 'red_packets', ['packet_id'], unique=True)
    op.create_index('ix_red_packets_sender_id', 'red_packets', ['sender_id'])
    op.create_index('ix_red_packets_origin_chat_id', 'red_packets', ['origin_chat_id'])
    op.create_index('ix_red_packets_status', 'red_packets', ['status'])
    op.create_index('ix_red_packets_created_at', 'red_packets', ['created_at'])
    op.create_index('ix_red_packets_expires_at', 'red_packets', ['expires_at'])
    op.create_index('ix_red_packets_sender_created', 'red_packets', ['sender_id', 'created_at'])

    op.create_table(
        'packet_shares',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('packet_id', sa.String(length=32), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, comment='0-based, shuffled order'),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('claimed_by', sa.BigInteger(), nullable=True),
        sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['packet_id'], ['red_packets.packet_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('packet_id', 'position', name='uq_packet_share_position'),
    )
    op.create_index('ix_packet_shares_packet_id', 'packet_shares', ['packet_id'])

    op.create_table(
        'claim_records',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('packet_id', sa.String(length=32), nullable=False),
        sa.Column('claimant_id', sa.BigInteger(), nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('claim_order', sa.Integer(), nullable=False, comment='1-based, dense'),
        sa.Column('is_best_luck', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['packet_id'], ['red_packets.packet_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('packet_id', 'claimant_id', name='uq_claim_packet_claimant'),
        sa.UniqueConstraint('packet_id', 'claim_order', name='uq_claim_packet_order'),
    )
    op.create_index('ix_claim_records_packet_id', 'claim_records', ['packet_id'])
    op.create_index('ix_claim_records_claimant_id', 'claim_records', ['claimant_id'])
    op.create_index('ix_claim_records_claimed_at', 'claim_records', ['claimed_at'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('claim_records')
    op.drop_table('packet_shares')
    op.drop_table('red_packets')
    op.drop_table('chat_groups')
    op.drop_table('balance_transactions')
    op.drop_table('user_balances')
    op.drop_table('users')
