"""Initial Homes Calendar schema

Revision ID: 3f1a7c2e9b40
Revises:
Create Date: 2026-10-16

Creates the roster tables (profiles, children, homes and the links between
them), the shared calendar_events table, external calendar sources with
their event mappings, and encrypted Google OAuth connections.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from homes_calendar.models.base import GUID


# revision identifiers, used by Alembic.
revision: str = '3f1a7c2e9b40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _audit_columns() -> list:
    return [
        sa.Column('id', GUID(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    op.create_table('profiles',
        sa.Column('display_name', sa.String(length=100), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        *_audit_columns(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email')
    )
    op.create_table('children',
        sa.Column('name', sa.String(length=100), nullable=False),
        *_audit_columns(),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_table('homes',
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('address', sa.String(length=500), nullable=True),
        *_audit_columns(),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_table('child_guardians',
        sa.Column('child_id', GUID(), nullable=False),
        sa.Column('profile_id', GUID(), nullable=False),
        sa.Column('guardian_role', sa.String(length=50), nullable=False),
        *_audit_columns(),
        sa.ForeignKeyConstraint(['child_id'], ['children.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['profile_id'], ['profiles.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('child_id', 'profile_id', name='uq_child_guardian')
    )
    with op.batch_alter_table('child_guardians', schema=None) as batch_op:
        batch_op.create_index('idx_child_guardian_profile', ['profile_id'], unique=False)

    op.create_table('child_homes',
        sa.Column('child_id', GUID(), nullable=False),
        sa.Column('home_id', GUID(), nullable=False),
        *_audit_columns(),
        sa.ForeignKeyConstraint(['child_id'], ['children.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['home_id'], ['homes.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('child_id', 'home_id', name='uq_child_home')
    )
    op.create_table('home_memberships',
        sa.Column('home_id', GUID(), nullable=False),
        sa.Column('profile_id', GUID(), nullable=False),
        *_audit_columns(),
        sa.ForeignKeyConstraint(['home_id'], ['homes.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['profile_id'], ['profiles.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('home_id', 'profile_id', name='uq_home_membership')
    )

    op.create_table('google_calendar_connections',
        sa.Column('profile_id', GUID(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('access_token_encrypted', sa.Text(), nullable=False),
        sa.Column('refresh_token_encrypted', sa.Text(), nullable=True),
        sa.Column('token_expiry', sa.DateTime(timezone=True), nullable=True),
        sa.Column('scopes', sa.Text(), nullable=True),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        *_audit_columns(),
        sa.ForeignKeyConstraint(['profile_id'], ['profiles.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('google_calendar_connections', schema=None) as batch_op:
        batch_op.create_index('ix_google_connections_profile_email', ['profile_id', 'email'], unique=True)

    op.create_table('external_calendar_sources',
        sa.Column('provider', sa.String(length=20), nullable=False),
        sa.Column('child_id', GUID(), nullable=False),
        sa.Column('owner_id', GUID(), nullable=False),
        sa.Column('display_name', sa.String(length=200), nullable=False),
        sa.Column('connection_id', GUID(), nullable=True),
        sa.Column('calendar_id', sa.String(length=500), nullable=True),
        sa.Column('sync_token', sa.Text(), nullable=True),
        sa.Column('encrypted_url', sa.Text(), nullable=True),
        sa.Column('url_hash', sa.String(length=64), nullable=True),
        sa.Column('masked_url', sa.String(length=500), nullable=True),
        sa.Column('etag', sa.String(length=500), nullable=True),
        sa.Column('last_modified', sa.String(length=100), nullable=True),
        sa.Column('refresh_interval_minutes', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_sync_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('next_run_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_sync_status', sa.String(length=20), nullable=False),
        sa.Column('last_sync_error', sa.Text(), nullable=True),
        sa.Column('last_sync_error_code', sa.String(length=50), nullable=True),
        sa.Column('events_count', sa.Integer(), nullable=False),
        *_audit_columns(),
        sa.ForeignKeyConstraint(['child_id'], ['children.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['owner_id'], ['profiles.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['connection_id'], ['google_calendar_connections.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('external_calendar_sources', schema=None) as batch_op:
        batch_op.create_index('ix_sources_child_url_hash', ['child_id', 'url_hash'], unique=True)
        batch_op.create_index('ix_sources_due', ['is_active', 'next_run_at'], unique=False)

    op.create_table('calendar_events',
        sa.Column('child_id', GUID(), nullable=False),
        sa.Column('title', sa.String(length=300), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('start_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('all_day', sa.Boolean(), nullable=False),
        sa.Column('timezone', sa.String(length=64), nullable=True),
        sa.Column('event_type', sa.String(length=20), nullable=False),
        sa.Column('home_id', GUID(), nullable=True),
        sa.Column('from_home_id', GUID(), nullable=True),
        sa.Column('to_home_id', GUID(), nullable=True),
        sa.Column('from_location', sa.String(length=300), nullable=True),
        sa.Column('to_location', sa.String(length=300), nullable=True),
        sa.Column('travel_with', sa.String(length=200), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('proposed_by', GUID(), nullable=True),
        sa.Column('confirmed_by', GUID(), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejected_by', GUID(), nullable=True),
        sa.Column('rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('proposal_reason', sa.Text(), nullable=True),
        sa.Column('source', sa.String(length=20), nullable=False),
        sa.Column('external_provider', sa.String(length=50), nullable=True),
        sa.Column('external_calendar_id', sa.String(length=500), nullable=True),
        sa.Column('external_event_id', sa.String(length=1024), nullable=True),
        sa.Column('external_html_link', sa.Text(), nullable=True),
        sa.Column('external_source_id', GUID(), nullable=True),
        sa.Column('external_updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('recurrence_rule', sa.Text(), nullable=True),
        sa.Column('is_read_only', sa.Boolean(), nullable=False),
        sa.Column('is_home_stay_candidate', sa.Boolean(), nullable=False),
        sa.Column('candidate_reason', sa.String(length=50), nullable=True),
        sa.Column('candidate_home_id', GUID(), nullable=True),
        sa.Column('created_by', GUID(), nullable=True),
        sa.Column('is_deleted', sa.Boolean(), nullable=False),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_by', GUID(), nullable=True),
        *_audit_columns(),
        sa.CheckConstraint('end_at >= start_at', name='ck_calendar_events_range'),
        sa.ForeignKeyConstraint(['child_id'], ['children.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['home_id'], ['homes.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['from_home_id'], ['homes.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['to_home_id'], ['homes.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['candidate_home_id'], ['homes.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['external_source_id'], ['external_calendar_sources.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('calendar_events', schema=None) as batch_op:
        batch_op.create_index('idx_calendar_events_child_range', ['child_id', 'start_at', 'end_at'], unique=False)
        batch_op.create_index('idx_calendar_events_status', ['status'], unique=False)
        batch_op.create_index('idx_calendar_events_source', ['external_source_id'], unique=False)

    op.create_table('calendar_event_mappings',
        sa.Column('source_id', GUID(), nullable=False),
        sa.Column('external_event_id', sa.String(length=1024), nullable=False),
        sa.Column('event_id', GUID(), nullable=True),
        sa.Column('content_hash', sa.String(length=64), nullable=True),
        *_audit_columns(),
        sa.ForeignKeyConstraint(['source_id'], ['external_calendar_sources.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['event_id'], ['calendar_events.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source_id', 'external_event_id', name='uq_mapping_source_event')
    )


def downgrade() -> None:
    op.drop_table('calendar_event_mappings')
    with op.batch_alter_table('calendar_events', schema=None) as batch_op:
        batch_op.drop_index('idx_calendar_events_source')
        batch_op.drop_index('idx_calendar_events_status')
        batch_op.drop_index('idx_calendar_events_child_range')
    op.drop_table('calendar_events')
    with op.batch_alter_table('external_calendar_sources', schema=None) as batch_op:
        batch_op.drop_index('ix_sources_due')
        batch_op.drop_index('ix_sources_child_url_hash')
    op.drop_table('external_calendar_sources')
    with op.batch_alter_table('google_calendar_connections', schema=None) as batch_op:
        batch_op.drop_index('ix_google_connections_profile_email')
    op.drop_table('google_calendar_connections')
    op.drop_table('home_memberships')
    op.drop_table('child_homes')
    with op.batch_alter_table('child_guardians', schema=None) as batch_op:
        batch_op.drop_index('idx_child_guardian_profile')
    op.drop_table('child_guardians')
    op.drop_table('homes')
    op.drop_table('children')
    op.drop_table('profiles')
