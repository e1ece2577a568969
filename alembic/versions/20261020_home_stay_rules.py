"""Home-stay rules and dismissed candidates

Revision ID: 8c4d2b7e1f03
Revises: 3f1a7c2e9b40
Create Date: 2026-10-20

Adds calendar_events.candidate_dismissed so ignored candidates stay
ignored across syncs, and the home_stay_rules table.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from homes_calendar.models.base import GUID


# revision identifiers, used by Alembic.
revision: str = '8c4d2b7e1f03'
down_revision: Union[str, None] = '3f1a7c2e9b40'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    with op.batch_alter_table('calendar_events', schema=None) as batch_op:
        batch_op.add_column(
            sa.Column('candidate_dismissed', sa.Boolean(), server_default=sa.false(), nullable=False)
        )

    op.create_table('home_stay_rules',
        sa.Column('child_id', GUID(), nullable=False),
        sa.Column('source_id', GUID(), nullable=True),
        sa.Column('match_type', sa.String(length=20), nullable=False),
        sa.Column('match_value', sa.String(length=1024), nullable=False),
        sa.Column('home_id', GUID(), nullable=False),
        sa.Column('created_by', GUID(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('id', GUID(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['child_id'], ['children.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['source_id'], ['external_calendar_sources.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['home_id'], ['homes.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('home_stay_rules', schema=None) as batch_op:
        batch_op.create_index('ix_home_stay_rules_child', ['child_id', 'is_active'], unique=False)


def downgrade() -> None:
    with op.batch_alter_table('home_stay_rules', schema=None) as batch_op:
        batch_op.drop_index('ix_home_stay_rules_child')
    op.drop_table('home_stay_rules')
    with op.batch_alter_table('calendar_events', schema=None) as batch_op:
        batch_op.drop_column('candidate_dismissed')
