"""escrow schema: users, listings, transactions, milestones, disputes, payments, notifications, audit

Revision ID: 20261019_1200_escrow_schema
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_1200_escrow_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=20), nullable=False),
        sa.Column('full_name', sa.String(length=200), nullable=False),
        sa.Column('role', sa.Enum('USER', 'ADMIN', 'SUPPORT', 'FINANCE', 'COMPLIANCE', name='userrole'), nullable=False),
        sa.Column('kyc_tier', sa.Enum('TIER_0', 'TIER_1', 'TIER_2', name='kyctier'), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_users_id'), 'users', ['id'], unique=False)
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)
    op.create_index(op.f('ix_users_phone'), 'users', ['phone'], unique=True)

    op.create_table(
        'listings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('seller_id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('region', sa.String(length=100), nullable=False),
        sa.Column('district', sa.String(length=100), nullable=True),
        sa.Column('town', sa.String(length=100), nullable=True),
        sa.Column('price_ghs', sa.Numeric(precision=18, scale=2), nullable=False),
        sa.Column('status', sa.Enum('DRAFT', 'PUBLISHED', 'SUSPENDED', 'SOLD', name='listingstatus'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['seller_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_listings_id'), 'listings', ['id'], unique=False)
    op.create_index(op.f('ix_listings_seller_id'), 'listings', ['seller_id'], unique=False)

    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('listing_id', sa.Integer(), nullable=False),
        sa.Column('buyer_id', sa.Integer(), nullable=False),
        sa.Column('seller_id', sa.Integer(), nullable=False),
        sa.Column('offer_reference', sa.String(length=100), nullable=True),
        sa.Column('status', sa.Enum(
            'CREATED', 'ESCROW_REQUESTED', 'FUNDED', 'VERIFICATION_PERIOD', 'DISPUTED',
            'READY_TO_RELEASE', 'RELEASED', 'REFUNDED', 'CLOSED', name='transactionstatus'
        ), nullable=False),
        sa.Column('agreed_price_ghs', sa.Numeric(precision=18, scale=2), nullable=False),
        sa.Column('platform_fee_bps', sa.Integer(), nullable=False),
        sa.Column('platform_fee_ghs', sa.Numeric(precision=18, scale=2), nullable=False),
        sa.Column('seller_net_ghs', sa.Numeric(precision=18, scale=2), nullable=False),
        sa.Column('verification_days_min', sa.Integer(), nullable=False),
        sa.Column('verification_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('release_approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('release_approved_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.CheckConstraint('buyer_id <> seller_id', name='ck_transactions_distinct_parties'),
        sa.CheckConstraint('agreed_price_ghs > 0', name='ck_transactions_positive_price'),
        sa.ForeignKeyConstraint(['listing_id'], ['listings.id'], ),
        sa.ForeignKeyConstraint(['buyer_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['seller_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['release_approved_by'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_transactions_id'), 'transactions', ['id'], unique=False)
    op.create_index(op.f('ix_transactions_listing_id'), 'transactions', ['listing_id'], unique=False)
    op.create_index(op.f('ix_transactions_buyer_id'), 'transactions', ['buyer_id'], unique=False)
    op.create_index(op.f('ix_transactions_seller_id'), 'transactions', ['seller_id'], unique=False)
    op.create_index(op.f('ix_transactions_status'), 'transactions', ['status'], unique=False)

    op.create_table(
        'escrow_milestones',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('transaction_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('amount_ghs', sa.Numeric(precision=18, scale=2), nullable=False),
        sa.Column('sort_order', sa.Integer(), nullable=False),
        sa.Column('buyer_approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('seller_approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('requires_admin_approval', sa.Boolean(), nullable=False),
        sa.Column('admin_approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.CheckConstraint('amount_ghs >= 0', name='ck_escrow_milestones_amount'),
        sa.ForeignKeyConstraint(['transaction_id'], ['transactions.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_escrow_milestones_id'), 'escrow_milestones', ['id'], unique=False)
    op.create_index(op.f('ix_escrow_milestones_transaction_id'), 'escrow_milestones', ['transaction_id'], unique=False)

    op.create_table(
        'disputes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('transaction_id', sa.Integer(), nullable=False),
        sa.Column('raised_by_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.Enum('OPEN', 'RESOLVED', 'DISMISSED', name='disputestatus'), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('resolution_outcome', sa.Enum('RELEASE', 'REFUND', 'TERMINATE', name='disputeoutcome'), nullable=True),
        sa.Column('resolution_notes', sa.Text(), nullable=True),
        sa.Column('resolved_by_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['transaction_id'], ['transactions.id'], ),
        sa.ForeignKeyConstraint(['raised_by_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['resolved_by_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_disputes_id'), 'disputes', ['id'], unique=False)
    op.create_index(op.f('ix_disputes_transaction_id'), 'disputes', ['transaction_id'], unique=False)
    op.create_index(op.f('ix_disputes_status'), 'disputes', ['status'], unique=False)

    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('transaction_id', sa.Integer(), nullable=False),
        sa.Column('payer_user_id', sa.Integer(), nullable=True),
        sa.Column('payee_user_id', sa.Integer(), nullable=True),
        sa.Column('provider', sa.Enum('PAYSTACK', name='paymentprovider'), nullable=False),
        sa.Column('type', sa.Enum('TRANSACTION_FUNDING', 'SELLER_PAYOUT', 'REFUND', name='paymenttype'), nullable=False),
        sa.Column('status', sa.Enum('INITIATED', 'PENDING', 'SUCCESS', 'FAILED', name='paymentstatus'), nullable=False),
        sa.Column('amount_ghs', sa.Numeric(precision=18, scale=2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('provider_ref', sa.String(length=100), nullable=False),
        sa.Column('authorization_url', sa.Text(), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['transaction_id'], ['transactions.id'], ),
        sa.ForeignKeyConstraint(['payer_user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['payee_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_payments_id'), 'payments', ['id'], unique=False)
    op.create_index(op.f('ix_payments_transaction_id'), 'payments', ['transaction_id'], unique=False)
    op.create_index(op.f('ix_payments_type'), 'payments', ['type'], unique=False)
    op.create_index(op.f('ix_payments_status'), 'payments', ['status'], unique=False)
    op.create_index(op.f('ix_payments_provider_ref'), 'payments', ['provider_ref'], unique=True)

    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.Enum('TRANSACTION', 'DISPUTE', 'PAYMENT', 'SYSTEM', name='notificationtype'), nullable=False),
        sa.Column('channel', sa.Enum('SMS', 'EMAIL', 'IN_APP', name='notificationchannel'), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('status', sa.Enum('PENDING', 'SENT', 'DELIVERED', 'FAILED', 'READ', name='notificationstatus'), nullable=False),
        sa.Column('related_entity_type', sa.String(length=50), nullable=True),
        sa.Column('related_entity_id', sa.Integer(), nullable=True),
        sa.Column('extra_data', sa.JSON(), nullable=True),
        sa.Column('external_id', sa.String(length=255), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_notifications_id'), 'notifications', ['id'], unique=False)
    op.create_index(op.f('ix_notifications_user_id'), 'notifications', ['user_id'], unique=False)
    op.create_index(op.f('ix_notifications_type'), 'notifications', ['type'], unique=False)
    op.create_index(op.f('ix_notifications_status'), 'notifications', ['status'], unique=False)

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('entity_type', sa.String(length=50), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=100), nullable=False),
        sa.Column('diff', sa.JSON(), nullable=True),
        sa.Column('actor_type', sa.Enum('USER', 'SYSTEM', name='auditactortype'), nullable=False),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['actor_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_audit_logs_id'), 'audit_logs', ['id'], unique=False)
    op.create_index(op.f('ix_audit_logs_entity_type'), 'audit_logs', ['entity_type'], unique=False)
    op.create_index(op.f('ix_audit_logs_entity_id'), 'audit_logs', ['entity_id'], unique=False)
    op.create_index(op.f('ix_audit_logs_created_at'), 'audit_logs', ['created_at'], unique=False)


def downgrade() -> None:
    op.drop_table('audit_logs')
    op.drop_table('notifications')
    op.drop_table('payments')
    op.drop_table('disputes')
    op.drop_table('escrow_milestones')
    op.drop_table('transactions')
    op.drop_table('listings')
    op.drop_table('users')

    for enum_name in (
        'auditactortype', 'notificationstatus', 'notificationchannel', 'notificationtype',
        'paymentstatus', 'paymenttype', 'paymentprovider', 'disputeoutcome', 'disputestatus',
        'transactionstatus', 'listingstatus', 'kyctier', 'userrole',
    ):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)
