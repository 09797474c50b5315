"""analytics schema: raw inputs and derived caches

Revision ID: 001
Revises:
Create Date: 2025-01-06 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    # Inputs owned by ingestion / billing
    op.create_table(
        'activity_detail',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('activity_id', sa.String(128), nullable=False),
        sa.Column('provider', sa.String(32), nullable=False),
        sa.Column('payload', JSON, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('user_id', 'activity_id', 'provider', name='uq_activity_detail_key'),
    )
    op.create_index('ix_activity_detail_user_provider', 'activity_detail', ['user_id', 'provider'])

    op.create_table(
        'provider_activity',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('activity_id', sa.String(128), nullable=False),
        sa.Column('provider', sa.String(32), nullable=False),
        sa.Column('activity_date', sa.Date(), nullable=False),
        sa.Column('summary', JSON, nullable=False),
        sa.UniqueConstraint('user_id', 'activity_id', 'provider', name='uq_provider_activity_key'),
    )
    op.create_index('ix_provider_activity_user_date', 'provider_activity', ['user_id', 'activity_date'])

    op.create_table(
        'athlete_profile',
        sa.Column('user_id', sa.String(64), primary_key=True),
        sa.Column('birth_date', sa.Date(), nullable=True),
        sa.Column('max_heart_rate', sa.Integer(), nullable=True),
    )

    op.create_table(
        'subscriber',
        sa.Column('user_id', sa.String(64), primary_key=True),
        sa.Column('subscribed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('subscription_tier', sa.Text(), nullable=True),
    )

    # Derived caches
    op.create_table(
        'activity_chart_cache',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('activity_source', sa.String(32), nullable=False),
        sa.Column('activity_id', sa.String(128), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('series', JSON, nullable=True),
        sa.Column('zones', JSON, nullable=True),
        sa.Column('segments', JSON, nullable=True),
        sa.Column('stats', JSON, nullable=True),
        sa.Column('build_status', sa.String(16), nullable=False, server_default='pending'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('built_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('user_id', 'activity_source', 'activity_id', 'version', name='uq_activity_chart_cache_key'),
    )

    op.create_table(
        'activity_coordinates',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('activity_source', sa.String(32), nullable=False),
        sa.Column('activity_id', sa.String(128), nullable=False),
        sa.Column('coordinates', JSON, nullable=False),
        sa.Column('total_points', sa.Integer(), nullable=False),
        sa.Column('sampled_points', sa.Integer(), nullable=False),
        sa.Column('starting_latitude', sa.Float(), nullable=True),
        sa.Column('starting_longitude', sa.Float(), nullable=True),
        sa.Column('bounding_box', JSON, nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('user_id', 'activity_source', 'activity_id', name='uq_activity_coordinates_key'),
    )

    op.create_table(
        'efficiency_fingerprint',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('activity_id', sa.String(128), nullable=False),
        sa.Column('activity_source', sa.String(32), nullable=False),
        sa.Column('segments', JSON, nullable=False),
        sa.Column('alerts', JSON, nullable=False),
        sa.Column('recommendations', JSON, nullable=False),
        sa.Column('overall_score', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('analysis_version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('computed_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('user_id', 'activity_id', 'activity_source', name='uq_efficiency_fingerprint_key'),
    )

    op.create_table(
        'fitness_score_daily',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('calendar_date', sa.Date(), nullable=False),
        sa.Column('fitness_score', sa.Float(), nullable=False),
        sa.Column('capacity_score', sa.Float(), nullable=False),
        sa.Column('consistency_score', sa.Float(), nullable=False),
        sa.Column('recovery_balance_score', sa.Float(), nullable=False),
        sa.Column('daily_strain', sa.Float(), nullable=False, server_default='0'),
        sa.Column('atl_7day', sa.Float(), nullable=False, server_default='0'),
        sa.Column('ctl_42day', sa.Float(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('user_id', 'calendar_date', name='uq_fitness_score_daily_key'),
    )
    op.create_index('ix_fitness_score_daily_user_date', 'fitness_score_daily', ['user_id', 'calendar_date'])


def downgrade() -> None:
    op.drop_index('ix_fitness_score_daily_user_date', table_name='fitness_score_daily')
    op.drop_table('fitness_score_daily')
    op.drop_table('efficiency_fingerprint')
    op.drop_table('activity_coordinates')
    op.drop_table('activity_chart_cache')
    op.drop_table('subscriber')
    op.drop_table('athlete_profile')
    op.drop_index('ix_provider_activity_user_date', table_name='provider_activity')
    op.drop_table('provider_activity')
    op.drop_index('ix_activity_detail_user_provider', table_name='activity_detail')
    op.drop_table('activity_detail')
