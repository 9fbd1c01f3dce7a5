"""initial schema: import pipeline + calendar sync

Revision ID: 001
Revises:
Create Date: 2026-10-17
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table('import_jobs',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('tenant_id', sa.Text(), nullable=False),
        sa.Column('status', sa.Text(), nullable=False, server_default='pending'),
        sa.Column('raw_sources', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('extracted', postgresql.JSONB(), nullable=True),
        sa.Column('confidence_map', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('suggestions', postgresql.JSONB(), nullable=True),
        sa.Column('errors', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('claimed_by', sa.Text(), nullable=True),
        sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'needs_review', 'completed', 'failed')",
            name='ck_import_jobs_status'),
        sa.CheckConstraint(
            "status <> 'processing' OR (claimed_by IS NOT NULL AND claimed_at IS NOT NULL)",
            name='ck_import_jobs_processing_claimed'),
    )
    op.create_index('idx_import_jobs_status_created', 'import_jobs', ['status', 'created_at'])
    op.create_index('idx_import_jobs_tenant', 'import_jobs', ['tenant_id'])
    op.create_index('idx_import_jobs_claimed_by', 'import_jobs', ['claimed_by'])

    op.create_table('worker_heartbeats',
        sa.Column('worker_id', sa.Text(), nullable=False),
        sa.Column('worker_type', sa.Text(), nullable=False),
        sa.Column('hostname', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('last_seen_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('worker_id'),
    )
    op.create_index('idx_heartbeats_last_seen', 'worker_heartbeats', ['last_seen_at'])

    op.create_table('state_transitions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('entity_type', sa.Text(), nullable=False),
        sa.Column('entity_id', sa.Text(), nullable=False),
        sa.Column('from_status', sa.Text(), nullable=True),
        sa.Column('to_status', sa.Text(), nullable=False),
        sa.Column('trigger', sa.Text(), nullable=True),
        sa.Column('operator', sa.Text(), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_transitions_entity', 'state_transitions', ['entity_type', 'entity_id'])

    op.create_table('calendar_sync_sources',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('tenant_id', sa.Text(), nullable=False),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('source_url', sa.Text(), nullable=False),
        sa.Column('sync_interval_minutes', sa.Integer(), nullable=False, server_default='60'),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('status', sa.Text(), nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('sync_interval_minutes > 0', name='ck_sources_interval_positive'),
        sa.CheckConstraint("status IN ('active', 'paused')", name='ck_sources_status'),
    )
    op.create_index('idx_sources_status', 'calendar_sync_sources', ['status'])
    op.create_index('idx_sources_tenant', 'calendar_sync_sources', ['tenant_id'])

    op.create_table('calendar_sync_runs',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('source_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('status', sa.Text(), nullable=False),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('events_processed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['source_id'], ['calendar_sync_sources.id']),
        sa.CheckConstraint('events_processed >= 0', name='ck_runs_events_non_negative'),
        sa.CheckConstraint("status IN ('success', 'failed')", name='ck_runs_status'),
    )
    op.create_index('idx_runs_source_started', 'calendar_sync_runs', ['source_id', 'started_at'])

    op.create_table('schedule_items',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('tenant_id', sa.Text(), nullable=False),
        sa.Column('source_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('external_uid', sa.Text(), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('starts_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('ends_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('location', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('fingerprint', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['source_id'], ['calendar_sync_sources.id']),
        sa.UniqueConstraint('tenant_id', 'external_uid', name='uq_schedule_items_tenant_uid'),
    )
    op.create_index('idx_schedule_items_starts', 'schedule_items', ['tenant_id', 'starts_at'])


def downgrade() -> None:
    op.drop_table('schedule_items')
    op.drop_table('calendar_sync_runs')
    op.drop_table('calendar_sync_sources')
    op.drop_table('state_transitions')
    op.drop_table('worker_heartbeats')
    op.drop_table('import_jobs')
