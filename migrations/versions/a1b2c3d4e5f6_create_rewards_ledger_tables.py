"""Create points ledger, reward catalog and reward request tables.

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'a1b2c3d4e5f6'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """Create ledger tables."""
    op.create_table(
        'points_accounts',
        sa.Column('user_id', sa.String(128), nullable=False),
        sa.Column('total_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('available_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('earned_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('redeemed_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_updated', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('user_id'),
        sa.CheckConstraint('available_points >= 0', name='ck_points_accounts_available_non_negative'),
        sa.CheckConstraint(
            'available_points = earned_points - redeemed_points',
            name='ck_points_accounts_balance_consistent'
        ),
    )

    op.create_table(
        'point_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(128), nullable=False),
        sa.Column('transaction_type', sa.String(20), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('related_id', sa.String(128), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('amount > 0', name='ck_point_transactions_amount_positive'),
    )
    op.create_index('ix_point_transactions_user_created', 'point_transactions', ['user_id', 'created_at'])
    op.create_index('ix_point_transactions_related', 'point_transactions', ['related_id'])

    op.create_table(
        'reward_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('reward_type', sa.String(20), nullable=False),
        sa.Column('points_cost', sa.Integer(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('stock', sa.Integer(), nullable=True),
        sa.Column('discount_percentage', sa.Integer(), nullable=True),
        sa.Column('category', sa.String(50), nullable=True),
        sa.Column('image_url', sa.String(500), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('stock IS NULL OR stock >= 0', name='ck_reward_items_stock_non_negative'),
        sa.CheckConstraint('points_cost > 0', name='ck_reward_items_points_cost_positive'),
    )
    op.create_index('ix_reward_items_active_created', 'reward_items', ['is_active', 'created_at'])

    op.create_table(
        'reward_redemptions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(128), nullable=False),
        sa.Column('reward_id', sa.Integer(), nullable=False),
        sa.Column('request_id', sa.Integer(), nullable=True),
        sa.Column('transaction_id', sa.Integer(), nullable=True),
        sa.Column('redemption_code', sa.String(50), nullable=False),
        sa.Column('reward_name', sa.String(100), nullable=False),
        sa.Column('points_used', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('redeemed_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_reason', sa.String(500), nullable=True),
        sa.ForeignKeyConstraint(['transaction_id'], ['point_transactions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('redemption_code')
    )
    op.create_index('ix_reward_redemptions_user_redeemed', 'reward_redemptions', ['user_id', 'redeemed_at'])
    op.create_index('ix_reward_redemptions_status', 'reward_redemptions', ['status'])

    op.create_table(
        'reward_requests',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(128), nullable=False),
        sa.Column('user_name', sa.String(200), nullable=True),
        sa.Column('user_email', sa.String(200), nullable=True),
        sa.Column('reward_id', sa.Integer(), nullable=False),
        sa.Column('reward_name', sa.String(100), nullable=False),
        sa.Column('reward_points_cost', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('request_date', sa.DateTime(), nullable=False),
        sa.Column('processed_date', sa.DateTime(), nullable=True),
        sa.Column('processed_by', sa.String(128), nullable=True),
        sa.Column('admin_notes', sa.Text(), nullable=True),
        sa.Column('user_notes', sa.Text(), nullable=True),
        sa.Column('auto_reversed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_reward_requests_status_date', 'reward_requests', ['status', 'request_date'])
    op.create_index('ix_reward_requests_user_date', 'reward_requests', ['user_id', 'request_date'])


def downgrade():
    """Drop ledger tables."""
    op.drop_index('ix_reward_requests_user_date', 'reward_requests')
    op.drop_index('ix_reward_requests_status_date', 'reward_requests')
    op.drop_table('reward_requests')

    op.drop_index('ix_reward_redemptions_status', 'reward_redemptions')
    op.drop_index('ix_reward_redemptions_user_redeemed', 'reward_redemptions')
    op.drop_table('reward_redemptions')

    op.drop_index('ix_reward_items_active_created', 'reward_items')
    op.drop_table('reward_items')

    op.drop_index('ix_point_transactions_related', 'point_transactions')
    op.drop_index('ix_point_transactions_user_created', 'point_transactions')
    op.drop_table('point_transactions')

    op.drop_table('points_accounts')
