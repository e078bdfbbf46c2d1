"""create users, businesses and connection_attempts tables

Revision ID: 001
Revises:
Create Date: 2026-10-16

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email', name='uq_users_email'),
    )

    op.create_table(
        'businesses',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('owner_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('facebook_user_id', sa.String(length=100), nullable=True),
        sa.Column('facebook_page_id', sa.String(length=100), nullable=True),
        sa.Column('instagram_business_account_id', sa.String(length=100), nullable=True),
        sa.Column('instagram_username', sa.String(length=255), nullable=True),
        sa.Column('access_token', sa.Text(), nullable=True),
        sa.Column('token_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('available_page_ids', sa.Text(), nullable=True),
        sa.Column('selected_page_id', sa.String(length=100), nullable=True),
        sa.Column('last_ig_account_id_seen', sa.String(length=100), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('last_connection_error', sa.String(length=50), nullable=True),
        sa.Column('last_status_check_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('connection_retry_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['owner_id'], ['users.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_businesses_owner_id', 'businesses', ['owner_id'])
    op.create_index('ix_businesses_instagram_business_account_id', 'businesses', ['instagram_business_account_id'])

    op.create_table(
        'connection_attempts',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('owner_id', sa.Uuid(), nullable=False),
        sa.Column('facebook_user_id', sa.String(length=100), nullable=True),
        sa.Column('outcome', sa.String(length=20), nullable=False),
        sa.Column('error_reason', sa.String(length=50), nullable=True),
        sa.Column('pages_checked', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('page_ids', sa.Text(), nullable=True),
        sa.Column('instagram_account_ids', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['owner_id'], ['users.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_connection_attempts_owner_id', 'connection_attempts', ['owner_id'])


def downgrade():
    op.drop_index('ix_connection_attempts_owner_id', table_name='connection_attempts')
    op.drop_table('connection_attempts')

    op.drop_index('ix_businesses_instagram_business_account_id', table_name='businesses')
    op.drop_index('ix_businesses_owner_id', table_name='businesses')
    op.drop_table('businesses')

    op.drop_table('users')
