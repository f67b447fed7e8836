"""initial schema

Revision ID: 2026_10_17_0001
Revises:
Create Date: 2026-10-17 08:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_17_0001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create initial database schema."""

    # ========================================================================
    # Create accounts table
    # ========================================================================
    op.create_table(
        'accounts',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('username', sa.String(64), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('full_name', sa.String(255), nullable=False),
        sa.Column('password_hash', sa.String(255), nullable=False),
        sa.Column('refresh_token_hash', sa.String(64), nullable=True),
        sa.Column('avatar_url', sa.Text(), nullable=False),
        sa.Column('cover_image_url', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.UniqueConstraint('username', name='uq_accounts_username'),
        sa.UniqueConstraint('email', name='uq_accounts_email'),
        sa.CheckConstraint('username = lower(username)', name='ck_accounts_username_folded'),
        sa.CheckConstraint('email = lower(email)', name='ck_accounts_email_folded'),
    )

    # Indexes for accounts
    op.create_index(
        'idx_accounts_refresh_token_hash', 'accounts', ['refresh_token_hash'],
        postgresql_where=sa.text('refresh_token_hash IS NOT NULL'),
    )

    # ========================================================================
    # Create subscriptions table
    # ========================================================================
    op.create_table(
        'subscriptions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('subscriber_id', UUID(as_uuid=True), sa.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('channel_id', UUID(as_uuid=True), sa.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.UniqueConstraint('subscriber_id', 'channel_id', name='uq_subscription_edge'),
    )

    # Indexes for subscriptions
    op.create_index('idx_subscriptions_channel_id', 'subscriptions', ['channel_id'])
    op.create_index('idx_subscriptions_subscriber_id', 'subscriptions', ['subscriber_id'])

    # ========================================================================
    # Create videos table
    # ========================================================================
    op.create_table(
        'videos',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('owner_id', UUID(as_uuid=True), sa.ForeignKey('accounts.id', ondelete='SET NULL'), nullable=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('video_url', sa.Text(), nullable=False),
        sa.Column('thumbnail_url', sa.Text(), nullable=False),
        sa.Column('duration_seconds', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('views', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_published', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint('duration_seconds >= 0', name='ck_video_duration_non_negative'),
        sa.CheckConstraint('views >= 0', name='ck_video_views_non_negative'),
    )

    op.create_index('idx_videos_owner_id', 'videos', ['owner_id'])

    # ========================================================================
    # Create watch_history_entries table
    # ========================================================================
    op.create_table(
        'watch_history_entries',
        sa.Column('account_id', UUID(as_uuid=True), sa.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('video_id', UUID(as_uuid=True), nullable=False),
        sa.Column('watched_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.PrimaryKeyConstraint('account_id', 'position', name='pk_watch_history_entries'),
        sa.CheckConstraint('position >= 0', name='ck_watch_history_position_non_negative'),
    )

    op.create_index('idx_watch_history_video_id', 'watch_history_entries', ['video_id'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('watch_history_entries')
    op.drop_table('videos')
    op.drop_table('subscriptions')
    op.drop_table('accounts')
