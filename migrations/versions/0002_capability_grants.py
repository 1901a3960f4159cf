"""capability grants with usage history and device activations

Revision ID: 0002_capability_grants
Revises: 0001_users_catalog_orders
Create Date: 2026-10-12
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0002_capability_grants'
down_revision = '0001_users_catalog_orders'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'capability_grant',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('kind', sa.String(length=20), nullable=False),
        sa.Column('token', sa.String(length=128), nullable=False),
        sa.Column('owner_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('resource_id', sa.Integer(), sa.ForeignKey('product.id'), nullable=False),
        sa.Column('purchase_id', sa.Integer(), sa.ForeignKey('order.id'), nullable=False),
        sa.Column('used_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_uses', sa.Integer(), nullable=False),
        sa.Column('issued_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='active'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('license_type', sa.String(length=20), nullable=True),
        sa.Column('is_activated', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('activated_at', sa.DateTime(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
    )
    op.create_index(op.f('ix_capability_grant_token'), 'capability_grant', ['token'], unique=True)
    op.create_index(op.f('ix_capability_grant_resource_id'), 'capability_grant', ['resource_id'], unique=False)
    op.create_index(op.f('ix_capability_grant_purchase_id'), 'capability_grant', ['purchase_id'], unique=False)
    op.create_index(op.f('ix_capability_grant_expires_at'), 'capability_grant', ['expires_at'], unique=False)
    op.create_index('ix_capability_grant_owner_status', 'capability_grant', ['owner_id', 'status'], unique=False)
    op.create_index('ix_capability_grant_inactive_updated', 'capability_grant', ['is_active', 'updated_at'],
                    unique=False)

    op.create_table(
        'grant_usage',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('grant_id', sa.Integer(), sa.ForeignKey('capability_grant.id', ondelete='CASCADE'),
                  nullable=False),
        sa.Column('occurred_at', sa.DateTime(), nullable=False),
        sa.Column('action', sa.String(length=20), nullable=False),
        sa.Column('success', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.String(length=255), nullable=True),
        sa.Column('device_id', sa.String(length=128), nullable=True),
    )
    op.create_index(op.f('ix_grant_usage_grant_id'), 'grant_usage', ['grant_id'], unique=False)

    op.create_table(
        'device_activation',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('grant_id', sa.Integer(), sa.ForeignKey('capability_grant.id', ondelete='CASCADE'),
                  nullable=False),
        sa.Column('device_id', sa.String(length=128), nullable=False),
        sa.Column('device_name', sa.String(length=120), nullable=True),
        sa.Column('activated_at', sa.DateTime(), nullable=False),
        sa.Column('deactivated_at', sa.DateTime(), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.String(length=255), nullable=True),
    )
    op.create_index(op.f('ix_device_activation_grant_id'), 'device_activation', ['grant_id'], unique=False)
    op.create_index(op.f('ix_device_activation_device_id'), 'device_activation', ['device_id'], unique=False)


def downgrade():
    op.drop_index(op.f('ix_device_activation_device_id'), table_name='device_activation')
    op.drop_index(op.f('ix_device_activation_grant_id'), table_name='device_activation')
    op.drop_table('device_activation')
    op.drop_index(op.f('ix_grant_usage_grant_id'), table_name='grant_usage')
    op.drop_table('grant_usage')
    op.drop_index('ix_capability_grant_inactive_updated', table_name='capability_grant')
    op.drop_index('ix_capability_grant_owner_status', table_name='capability_grant')
    op.drop_index(op.f('ix_capability_grant_expires_at'), table_name='capability_grant')
    op.drop_index(op.f('ix_capability_grant_purchase_id'), table_name='capability_grant')
    op.drop_index(op.f('ix_capability_grant_resource_id'), table_name='capability_grant')
    op.drop_index(op.f('ix_capability_grant_token'), table_name='capability_grant')
    op.drop_table('capability_grant')
