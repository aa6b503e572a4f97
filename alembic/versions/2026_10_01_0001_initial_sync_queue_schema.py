"""Initial calsync schema

Revision ID: 2026_10_01_0001
Revises:
Create Date: 2026-10-01 00:01:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import JSON

# revision identifiers, used by Alembic.
revision: str = '2026_10_01_0001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the queue, integration, mapping and event tables"""

    op.create_table('sync_queue',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('operation', sa.String(50), nullable=False),
        sa.Column('integration_id', sa.String(36), nullable=True),
        sa.Column('event_id', sa.String(100), nullable=True),
        sa.Column('payload', JSON(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_retries', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('scheduled_for', sa.DateTime(), nullable=False),
        sa.Column('claimed_at', sa.DateTime(), nullable=True),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False)
    )
    op.create_index('idx_sync_queue_claim', 'sync_queue', ['status', 'priority', 'scheduled_for'])
    op.create_index('ix_sync_queue_integration_id', 'sync_queue', ['integration_id'])
    op.create_index('ix_sync_queue_event_id', 'sync_queue', ['event_id'])
    op.create_index('ix_sync_queue_status', 'sync_queue', ['status'])
    op.create_index('ix_sync_queue_priority', 'sync_queue', ['priority'])
    op.create_index('ix_sync_queue_scheduled_for', 'sync_queue', ['scheduled_for'])

    op.create_table('calendar_integrations',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('provider', sa.String(20), nullable=False),
        sa.Column('name', sa.String(200), nullable=False, server_default=''),
        sa.Column('calendar_target', sa.String(200), nullable=True),
        sa.Column('credentials', JSON(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('sync_direction', sa.String(20), nullable=False, server_default='BIDIRECTIONAL'),
        sa.Column('sync_token', sa.Text(), nullable=True),
        sa.Column('last_sync_at', sa.DateTime(), nullable=True),
        sa.Column('last_push_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True)
    )
    op.create_index('ix_calendar_integrations_provider', 'calendar_integrations', ['provider'])

    op.create_table('event_syncs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('event_id', sa.String(100), nullable=False),
        sa.Column('integration_id', sa.String(36), nullable=False),
        sa.Column('provider', sa.String(20), nullable=False),
        sa.Column('external_id', sa.String(255), nullable=True),
        sa.Column('sync_status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('last_sync_at', sa.DateTime(), nullable=True),
        sa.Column('last_sync_error', sa.Text(), nullable=True),
        sa.Column('conflict_data', JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('event_id', 'integration_id', name='uq_event_syncs_event_integration')
    )
    op.create_index('ix_event_syncs_event_id', 'event_syncs', ['event_id'])
    op.create_index('ix_event_syncs_integration_id', 'event_syncs', ['integration_id'])
    op.create_index('ix_event_syncs_external_id', 'event_syncs', ['external_id'])
    op.create_index('ix_event_syncs_sync_status', 'event_syncs', ['sync_status'])

    op.create_table('events',
        sa.Column('id', sa.String(100), primary_key=True),
        sa.Column('title', sa.String(200), nullable=False, server_default=''),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('start_time', sa.DateTime(), nullable=True),
        sa.Column('end_time', sa.DateTime(), nullable=True),
        sa.Column('all_day', sa.Boolean(), nullable=True),
        sa.Column('location', sa.String(200), nullable=True),
        sa.Column('attendees', JSON(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='scheduled'),
        sa.Column('field_updated_at', JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True)
    )
    op.create_index('ix_events_updated_at', 'events', ['updated_at'])


def downgrade() -> None:
    op.drop_index('ix_events_updated_at', table_name='events')
    op.drop_table('events')

    for name in ('ix_event_syncs_sync_status', 'ix_event_syncs_external_id',
                 'ix_event_syncs_integration_id', 'ix_event_syncs_event_id'):
        op.drop_index(name, table_name='event_syncs')
    op.drop_table('event_syncs')

    op.drop_index('ix_calendar_integrations_provider', table_name='calendar_integrations')
    op.drop_table('calendar_integrations')

    for name in ('ix_sync_queue_scheduled_for', 'ix_sync_queue_priority', 'ix_sync_queue_status',
                 'ix_sync_queue_event_id', 'ix_sync_queue_integration_id', 'idx_sync_queue_claim'):
        op.drop_index(name, table_name='sync_queue')
    op.drop_table('sync_queue')
