"""Initial schema for feed synchronization and conflict tracking

Revision ID: 3f1c7a2be904
Revises:
Create Date: 2026-10-16

Creates the four tables of the sync engine:
- feed_connections: registered platform iCalendar feeds
- events: bookings, blocks and maintenance windows (feed-owned or manual)
- conflicts: derived groups of clashing events
- notification_preferences: per-user notification switches
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from booking_sync.models.base import GUID, get_json_type


# revision identifiers, used by Alembic.
revision: str = '3f1c7a2be904'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _base_columns() -> list:
    return [
        sa.Column('id', GUID(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True),
                  server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    ]


def upgrade() -> None:
    op.create_table('feed_connections',
        sa.Column('property_id', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('platform', sa.String(length=20), nullable=False),
        sa.Column('feed_url', sa.Text(), nullable=False),
        sa.Column('sync_frequency', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('last_synced', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_error_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sync_count', sa.Integer(), nullable=False),
        sa.Column('sync_lease_until', sa.DateTime(timezone=True), nullable=True),
        *_base_columns(),
    )
    with op.batch_alter_table('feed_connections', schema=None) as batch_op:
        batch_op.create_index('idx_connection_property', ['property_id'], unique=False)
        batch_op.create_index('idx_connection_user', ['user_id'], unique=False)
        batch_op.create_index('idx_connection_status', ['status'], unique=False)
        batch_op.create_index('idx_connection_deleted', ['deleted_at'], unique=False)
        batch_op.create_index(
            'uq_connection_property_platform_live',
            ['property_id', 'platform'],
            unique=True,
            sqlite_where=sa.text("deleted_at IS NULL AND status <> 'inactive'"),
            postgresql_where=sa.text("deleted_at IS NULL AND status <> 'inactive'"),
        )

    op.create_table('events',
        sa.Column('property_id', sa.String(length=64), nullable=False),
        sa.Column('connection_id', GUID(), nullable=True),
        sa.Column('platform', sa.String(length=20), nullable=False),
        sa.Column('external_uid', sa.String(length=512), nullable=True),
        sa.Column('summary', sa.String(length=500), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('event_type', sa.String(length=20), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        sa.ForeignKeyConstraint(['connection_id'], ['feed_connections.id'], ondelete='SET NULL'),
        *_base_columns(),
    )
    with op.batch_alter_table('events', schema=None) as batch_op:
        batch_op.create_index('idx_event_property_dates', ['property_id', 'start_date', 'end_date'], unique=False)
        batch_op.create_index('idx_event_connection', ['connection_id'], unique=False)
        batch_op.create_index('idx_event_status', ['status'], unique=False)
        batch_op.create_index('idx_event_deleted', ['deleted_at'], unique=False)
        batch_op.create_index(
            'uq_event_connection_uid_active',
            ['connection_id', 'external_uid'],
            unique=True,
            sqlite_where=sa.text('is_active = 1'),
            postgresql_where=sa.text('is_active'),
        )

    op.create_table('conflicts',
        sa.Column('property_id', sa.String(length=64), nullable=False),
        sa.Column('event_ids', get_json_type(), nullable=False),
        sa.Column('conflict_type', sa.String(length=20), nullable=False),
        sa.Column('severity', sa.String(length=20), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('detected_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolution_method', sa.String(length=20), nullable=True),
        sa.Column('resolution_notes', sa.Text(), nullable=True),
        *_base_columns(),
    )
    with op.batch_alter_table('conflicts', schema=None) as batch_op:
        batch_op.create_index('idx_conflict_property', ['property_id'], unique=False)
        batch_op.create_index('idx_conflict_status', ['status'], unique=False)
        batch_op.create_index('idx_conflict_type', ['conflict_type'], unique=False)
        batch_op.create_index('idx_conflict_deleted', ['deleted_at'], unique=False)
        batch_op.create_index('idx_conflict_property_active', ['property_id', 'is_active'], unique=False)

    op.create_table('notification_preferences',
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('new_booking', sa.Boolean(), nullable=False),
        sa.Column('modified_booking', sa.Boolean(), nullable=False),
        sa.Column('cancelled_booking', sa.Boolean(), nullable=False),
        sa.Column('conflict_detected', sa.Boolean(), nullable=False),
        sa.Column('sync_failure', sa.Boolean(), nullable=False),
        sa.Column('connection_change', sa.Boolean(), nullable=False),
        *_base_columns(),
    )
    with op.batch_alter_table('notification_preferences', schema=None) as batch_op:
        batch_op.create_index('uq_notification_preference_user', ['user_id'], unique=True)


def downgrade() -> None:
    with op.batch_alter_table('notification_preferences', schema=None) as batch_op:
        batch_op.drop_index('uq_notification_preference_user')
    op.drop_table('notification_preferences')

    with op.batch_alter_table('conflicts', schema=None) as batch_op:
        batch_op.drop_index('idx_conflict_property_active')
        batch_op.drop_index('idx_conflict_deleted')
        batch_op.drop_index('idx_conflict_type')
        batch_op.drop_index('idx_conflict_status')
        batch_op.drop_index('idx_conflict_property')
    op.drop_table('conflicts')

    with op.batch_alter_table('events', schema=None) as batch_op:
        batch_op.drop_index('uq_event_connection_uid_active')
        batch_op.drop_index('idx_event_deleted')
        batch_op.drop_index('idx_event_status')
        batch_op.drop_index('idx_event_connection')
        batch_op.drop_index('idx_event_property_dates')
    op.drop_table('events')

    with op.batch_alter_table('feed_connections', schema=None) as batch_op:
        batch_op.drop_index('uq_connection_property_platform_live')
        batch_op.drop_index('idx_connection_deleted')
        batch_op.drop_index('idx_connection_status')
        batch_op.drop_index('idx_connection_user')
        batch_op.drop_index('idx_connection_property')
    op.drop_table('feed_connections')
