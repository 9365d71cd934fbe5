"""
Initial sync schema: accounts, transactions, connections, audit log, rules

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 09:00:00
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('(CURRENT_TIMESTAMP)')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('(CURRENT_TIMESTAMP)')),
    ]


def upgrade() -> None:
    op.create_table(
        'user',
        sa.Column('id', sa.Integer(), primary_key=True, nullable=False),
        sa.Column('email', sa.String(length=320), nullable=False, unique=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        *_timestamps(),
    )

    op.create_table(
        'account',
        sa.Column('id', sa.Integer(), primary_key=True, nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column(
            'type',
            sa.Enum('checking', 'savings', 'credit', 'loan', 'other', name='account_type'),
            nullable=False,
            server_default='checking',
        ),
        sa.Column('institution', sa.String(length=120), nullable=True),
        sa.Column('provider_account_id', sa.String(length=128), nullable=True),
        sa.Column('balance', sa.Numeric(18, 4), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        *_timestamps(),
        sa.UniqueConstraint('user_id', 'name', name='uq_account_name'),
    )
    op.create_index('ix_account_provider_ref', 'account', ['user_id', 'provider_account_id'])

    op.create_table(
        'category',
        sa.Column('id', sa.Integer(), primary_key=True, nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('user_id', 'name', name='uq_category_name'),
    )

    op.create_table(
        'transaction',
        sa.Column('id', sa.Integer(), primary_key=True, nullable=False),
        sa.Column('account_id', sa.Integer(), sa.ForeignKey('account.id', ondelete='CASCADE'), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('amount', sa.Numeric(18, 4), nullable=False),
        sa.Column('category_id', sa.Integer(), sa.ForeignKey('category.id', ondelete='SET NULL'), nullable=True),
        sa.Column(
            'status',
            sa.Enum('pending', 'cleared', 'failed', name='txn_status'),
            nullable=False,
            server_default='pending',
        ),
        sa.Column('external_id', sa.String(length=255), nullable=True),
        sa.Column('transfer_id', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('account_id', 'external_id', name='uq_txn_account_external_id'),
    )
    op.create_index('ix_txn_natural_key', 'transaction', ['account_id', 'date', 'amount'])

    op.create_table(
        'bankconnection',
        sa.Column('id', sa.Integer(), primary_key=True, nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('scraper_slug', sa.String(length=50), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('encrypted_credentials', sa.Text(), nullable=False),
        sa.Column('encrypted_metadata', sa.Text(), nullable=True),
        sa.Column(
            'status',
            sa.Enum('idle', 'running', 'error', name='connection_status'),
            nullable=False,
            server_default='idle',
        ),
        sa.Column('date_format', sa.String(length=16), nullable=False, server_default='YYYY-MM-DD'),
        sa.Column('accounts_map', sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column(
            'frequency',
            sa.Enum('daily', 'weekly', 'monthly', 'manual', name='sync_frequency'),
            nullable=False,
            server_default='manual',
        ),
        sa.Column('preferred_time', sa.Time(), nullable=True),
        sa.Column('timezone', sa.String(length=64), nullable=False, server_default='UTC'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        sa.Column('last_run_at', sa.DateTime(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'auditlogentry',
        sa.Column('id', sa.Integer(), primary_key=True, nullable=False),
        sa.Column('connection_id', sa.Integer(), sa.ForeignKey('bankconnection.id', ondelete='CASCADE'), nullable=False),
        sa.Column('start_time', sa.DateTime(), nullable=False),
        sa.Column('end_time', sa.DateTime(), nullable=True),
        sa.Column(
            'status',
            sa.Enum('running', 'success', 'failed', name='audit_status'),
            nullable=False,
            server_default='running',
        ),
        sa.Column('inserts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('duplicates', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('skipped', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
    )
    op.create_index('ix_audit_connection_start', 'auditlogentry', ['connection_id', 'start_time'])

    op.create_table(
        'classificationrule',
        sa.Column('id', sa.Integer(), primary_key=True, nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('conditions', sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column('match_type', sa.String(length=20), nullable=True),
        sa.Column('match_value', sa.Text(), nullable=True),
        sa.Column('category_id', sa.Integer(), sa.ForeignKey('category.id', ondelete='CASCADE'), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        *_timestamps(),
    )


def downgrade() -> None:
    op.drop_table('classificationrule')
    op.drop_index('ix_audit_connection_start', table_name='auditlogentry')
    op.drop_table('auditlogentry')
    op.drop_table('bankconnection')
    op.drop_index('ix_txn_natural_key', table_name='transaction')
    op.drop_table('transaction')
    op.drop_table('category')
    op.drop_index('ix_account_provider_ref', table_name='account')
    op.drop_table('account')
    op.drop_table('user')
