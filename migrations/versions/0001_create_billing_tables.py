"""create_billing_tables

Revision ID: 0001_create_billing_tables
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_create_billing_tables'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'tenants',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('subscription_status', sa.String(length=20), nullable=True),
        sa.Column('subscription_tier', sa.String(length=20), nullable=False),
        sa.Column('subscription_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_tenants')),
    )

    op.create_table(
        'plan_tier_mappings',
        sa.Column('plan_code', sa.String(length=255), nullable=False),
        sa.Column('tier', sa.String(length=20), nullable=False),
        sa.Column('interval', sa.String(length=20), nullable=True),
        sa.PrimaryKeyConstraint('plan_code', name=op.f('pk_plan_tier_mappings')),
    )

    op.create_table(
        'subscriptions',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('paystack_subscription_code', sa.String(length=255), nullable=True),
        sa.Column('paystack_plan_code', sa.String(length=255), nullable=True),
        sa.Column('paystack_customer_code', sa.String(length=255), nullable=True),
        sa.Column('paystack_email_token', sa.String(length=255), nullable=True),
        sa.Column('paystack_auth_code', sa.String(length=512), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('tier', sa.String(length=20), nullable=False),
        sa.Column('amount', sa.BigInteger(), nullable=True),
        sa.Column('current_period_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('current_period_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('next_payment_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('card_expiring', sa.Boolean(), nullable=False),
        sa.Column('card_expiry_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ['tenant_id'], ['tenants.id'],
            name=op.f('fk_subscriptions_tenant_id_tenants'),
            ondelete='CASCADE',
        ),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_subscriptions')),
    )
    op.create_index(op.f('ix_subscriptions_tenant_id'), 'subscriptions', ['tenant_id'], unique=False)
    op.create_index(
        op.f('ix_subscriptions_paystack_subscription_code'),
        'subscriptions',
        ['paystack_subscription_code'],
        unique=False,
    )
    op.create_index(op.f('ix_subscriptions_status'), 'subscriptions', ['status'], unique=False)

    op.create_table(
        'usage_records',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('subscription_id', sa.Uuid(), nullable=False),
        sa.Column('reference', sa.String(length=255), nullable=True),
        sa.Column('metric', sa.String(length=20), nullable=False),
        sa.Column('amount', sa.BigInteger(), nullable=True),
        sa.Column('paid', sa.Boolean(), nullable=False),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('period_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('period_end', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ['tenant_id'], ['tenants.id'],
            name=op.f('fk_usage_records_tenant_id_tenants'),
            ondelete='CASCADE',
        ),
        sa.ForeignKeyConstraint(
            ['subscription_id'], ['subscriptions.id'],
            name=op.f('fk_usage_records_subscription_id_subscriptions'),
            ondelete='CASCADE',
        ),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_usage_records')),
        sa.UniqueConstraint('reference', 'metric', name='uq_usage_records_reference_metric'),
    )
    op.create_index(op.f('ix_usage_records_tenant_id'), 'usage_records', ['tenant_id'], unique=False)
    op.create_index(
        op.f('ix_usage_records_subscription_id'), 'usage_records', ['subscription_id'], unique=False
    )
    op.create_index(op.f('ix_usage_records_reference'), 'usage_records', ['reference'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_usage_records_reference'), table_name='usage_records')
    op.drop_index(op.f('ix_usage_records_subscription_id'), table_name='usage_records')
    op.drop_index(op.f('ix_usage_records_tenant_id'), table_name='usage_records')
    op.drop_table('usage_records')
    op.drop_index(op.f('ix_subscriptions_status'), table_name='subscriptions')
    op.drop_index(op.f('ix_subscriptions_paystack_subscription_code'), table_name='subscriptions')
    op.drop_index(op.f('ix_subscriptions_tenant_id'), table_name='subscriptions')
    op.drop_table('subscriptions')
    op.drop_table('plan_tier_mappings')
    op.drop_table('tenants')
