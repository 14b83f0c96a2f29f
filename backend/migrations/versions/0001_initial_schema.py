"""Initial schema: parties, links, users, sessions, decision log, disconnects, audit

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18

This migration adds:
1. Retailers and companies (API keys, optional webhook endpoints)
2. Company-retailer links (one row per pair, soft-deactivated)
3. Users (global monthly spending limit, cached spend, version_id)
4. Session tokens (SHA-256 hashes only)
5. Transactions (write-once decision log, no foreign keys)
6. Disconnect requests
7. Audit entries (append-only)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. RETAILERS / COMPANIES
    # ==========================================================================
    for table in ('retailers', 'companies'):
        op.create_table(table,
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('name', sa.String(length=255), nullable=False),
            sa.Column('api_key', sa.String(length=128), nullable=False),
            sa.Column('webhook_url', sa.String(length=2048), nullable=True),
            sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
            sa.PrimaryKeyConstraint('id'),
            sqlite_autoincrement=True
        )
        with op.batch_alter_table(table, schema=None) as batch_op:
            batch_op.create_index(f'ix_{table}_api_key', ['api_key'], unique=True)
            batch_op.create_index(f'ix_{table}_is_active', ['is_active'], unique=False)

    # ==========================================================================
    # 2. COMPANY-RETAILER LINKS
    # ==========================================================================
    op.create_table('company_retailer_links',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('retailer_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ),
        sa.ForeignKeyConstraint(['retailer_id'], ['retailers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('company_id', 'retailer_id', name='uq_links_company_retailer'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('company_retailer_links', schema=None) as batch_op:
        batch_op.create_index('ix_links_retailer_status', ['retailer_id', 'status'], unique=False)
        batch_op.create_index('ix_links_company_status', ['company_id', 'status'], unique=False)

    # ==========================================================================
    # 3. USERS
    # ==========================================================================
    op.create_table('users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('first_name', sa.String(length=120), nullable=False, server_default=''),
        sa.Column('last_name', sa.String(length=120), nullable=False, server_default=''),
        sa.Column('company_id', sa.Integer(), nullable=True),
        sa.Column('retailer_id', sa.Integer(), nullable=True),
        sa.Column('role', sa.String(length=32), nullable=False, server_default='company_member'),
        sa.Column('spending_limit_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('spent_this_month_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_reset_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ),
        sa.ForeignKeyConstraint(['retailer_id'], ['retailers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('users', schema=None) as batch_op:
        batch_op.create_index('ix_users_company_id', ['company_id'], unique=False)
        batch_op.create_index('ix_users_retailer_id', ['retailer_id'], unique=False)

    # ==========================================================================
    # 4. SESSION TOKENS
    # ==========================================================================
    op.create_table('session_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('token_hash', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('session_tokens', schema=None) as batch_op:
        batch_op.create_index('ix_session_tokens_user', ['user_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_session_tokens_token_hash'), ['token_hash'], unique=True)

    # ==========================================================================
    # 5. TRANSACTIONS (write-once decision log)
    # ==========================================================================
    op.create_table('transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('retailer_id', sa.Integer(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('denial_reason', sa.String(length=32), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('balance_before_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('balance_after_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('transactions', schema=None) as batch_op:
        batch_op.create_index('ix_transactions_user_status_ts', ['user_id', 'status', 'timestamp'], unique=False)
        batch_op.create_index('ix_transactions_company_ts', ['company_id', 'timestamp'], unique=False)
        batch_op.create_index('ix_transactions_retailer_ts', ['retailer_id', 'timestamp'], unique=False)
        batch_op.create_index(batch_op.f('ix_transactions_timestamp'), ['timestamp'], unique=False)

    # ==========================================================================
    # 6. DISCONNECT REQUESTS
    # ==========================================================================
    op.create_table('disconnect_requests',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_id', sa.Integer(), nullable=False),
        sa.Column('retailer_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('requested_by', sa.String(length=64), nullable=False),
        sa.Column('processed_by', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ),
        sa.ForeignKeyConstraint(['retailer_id'], ['retailers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('disconnect_requests', schema=None) as batch_op:
        batch_op.create_index('ix_disconnect_requests_pair_status', ['company_id', 'retailer_id', 'status'], unique=False)
        batch_op.create_index('ix_disconnect_requests_retailer', ['retailer_id'], unique=False)

    # ==========================================================================
    # 7. AUDIT ENTRIES (append-only)
    # ==========================================================================
    op.create_table('audit_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('performed_by', sa.String(length=64), nullable=False),
        sa.Column('target_type', sa.String(length=32), nullable=False),
        sa.Column('target_id', sa.String(length=64), nullable=False),
        sa.Column('before_state', sa.JSON(), nullable=True),
        sa.Column('after_state', sa.JSON(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('audit_entries', schema=None) as batch_op:
        batch_op.create_index('ix_audit_entries_target', ['target_type', 'target_id'], unique=False)
        batch_op.create_index('ix_audit_entries_performed_by', ['performed_by'], unique=False)
        batch_op.create_index('ix_audit_entries_action', ['action'], unique=False)
        batch_op.create_index(batch_op.f('ix_audit_entries_timestamp'), ['timestamp'], unique=False)


def downgrade():
    op.drop_table('audit_entries')
    op.drop_table('disconnect_requests')
    op.drop_table('transactions')
    op.drop_table('session_tokens')
    op.drop_table('users')
    op.drop_table('company_retailer_links')
    op.drop_table('companies')
    op.drop_table('retailers')
