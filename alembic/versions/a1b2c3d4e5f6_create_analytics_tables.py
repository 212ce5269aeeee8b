"""Create page-view analytics tables

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""
from datetime import datetime

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'a1b2c3d4e5f6'
down_revision = None
branch_labels = None
depends_on = None

id_type = sa.BigInteger().with_variant(sa.Integer(), 'sqlite')


def upgrade() -> None:
    op.create_table(
        'analytics_pageviews',
        sa.Column('id', id_type, primary_key=True, autoincrement=True),
        sa.Column('page_url', sa.String(length=500), nullable=False),
        sa.Column('page_title', sa.String(length=255), nullable=True),
        sa.Column('referrer', sa.String(length=500), nullable=True),
        sa.Column('referrer_domain', sa.String(length=255), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('device_type', sa.String(length=20), nullable=False),
        sa.Column('browser', sa.String(length=50), nullable=False),
        sa.Column('browser_version', sa.String(length=20), nullable=False),
        sa.Column('os', sa.String(length=50), nullable=False),
        sa.Column('country_code', sa.String(length=2), nullable=True),
        sa.Column('city', sa.String(length=100), nullable=True),
        sa.Column('ip_hash', sa.String(length=64), nullable=True),
        sa.Column('session_id', sa.String(length=128), nullable=False),
        sa.Column('is_unique_visitor', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('idx_pageviews_created_at', 'analytics_pageviews', ['created_at'])
    op.create_index('idx_pageviews_page_url', 'analytics_pageviews', ['page_url'])
    op.create_index('idx_pageviews_session_date', 'analytics_pageviews', ['session_id', 'created_at'])
    op.create_index('idx_pageviews_referrer_domain', 'analytics_pageviews', ['referrer_domain'])

    op.create_table(
        'analytics_daily',
        sa.Column('id', id_type, primary_key=True, autoincrement=True),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('page_url', sa.String(length=500), nullable=False),
        sa.Column('page_title', sa.String(length=255), nullable=True),
        sa.Column('views', sa.Integer(), nullable=False),
        sa.Column('unique_visitors', sa.Integer(), nullable=False),
        sa.Column('avg_time_on_page', sa.Integer(), nullable=False),
        sa.Column('bounce_rate', sa.Float(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('date', 'page_url', name='unique_date_page'),
    )
    op.create_index('idx_daily_date', 'analytics_daily', ['date'])
    op.create_index('idx_daily_page_url', 'analytics_daily', ['page_url'])

    op.create_table(
        'analytics_referrers',
        sa.Column('id', id_type, primary_key=True, autoincrement=True),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('referrer_domain', sa.String(length=255), nullable=False),
        sa.Column('referrer_url', sa.String(length=500), nullable=True),
        sa.Column('page_url', sa.String(length=500), nullable=False),
        sa.Column('visits', sa.Integer(), nullable=False),
        sa.Column('unique_visitors', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('date', 'referrer_domain', 'page_url', name='unique_date_referrer_page'),
    )
    op.create_index('idx_referrers_date', 'analytics_referrers', ['date'])
    op.create_index('idx_referrers_domain', 'analytics_referrers', ['referrer_domain'])

    op.create_table(
        'analytics_devices',
        sa.Column('id', id_type, primary_key=True, autoincrement=True),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('device_type', sa.String(length=20), nullable=False),
        sa.Column('browser', sa.String(length=50), nullable=False),
        sa.Column('os', sa.String(length=50), nullable=False),
        sa.Column('views', sa.Integer(), nullable=False),
        sa.Column('unique_visitors', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('date', 'device_type', 'browser', 'os', name='unique_date_device'),
    )
    op.create_index('idx_devices_date', 'analytics_devices', ['date'])

    op.create_table(
        'analytics_geo',
        sa.Column('id', id_type, primary_key=True, autoincrement=True),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('country_code', sa.String(length=2), nullable=False),
        sa.Column('city', sa.String(length=100), nullable=False),
        sa.Column('views', sa.Integer(), nullable=False),
        sa.Column('unique_visitors', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('date', 'country_code', 'city', name='unique_date_location'),
    )
    op.create_index('idx_geo_date', 'analytics_geo', ['date'])
    op.create_index('idx_geo_country', 'analytics_geo', ['country_code'])

    op.create_table(
        'analytics_summary',
        sa.Column('id', id_type, primary_key=True, autoincrement=True),
        sa.Column('stat_key', sa.String(length=100), nullable=False),
        sa.Column('stat_period', sa.String(length=20), nullable=False),
        sa.Column('stat_value', sa.Text(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('stat_key', 'stat_period', name='unique_stat'),
    )
    op.create_index('idx_summary_updated_at', 'analytics_summary', ['updated_at'])

    settings_table = op.create_table(
        'analytics_settings',
        sa.Column('id', id_type, primary_key=True, autoincrement=True),
        sa.Column('setting_key', sa.String(length=100), nullable=False, unique=True),
        sa.Column('setting_value', sa.Text(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )

    # Default engine settings
    now = datetime.utcnow()
    op.bulk_insert(settings_table, [
        {'setting_key': key, 'setting_value': value, 'updated_at': now}
        for key, value in [
            ('retention_days', '30'),
            ('track_logged_in_users', '0'),
            ('anonymize_ips', '1'),
            ('exclude_bots', '1'),
            ('last_cleanup', None),
            ('last_aggregation', None),
            ('aggregation_lock', None),
        ]
    ])


def downgrade() -> None:
    op.drop_table('analytics_settings')
    op.drop_index('idx_summary_updated_at', table_name='analytics_summary')
    op.drop_table('analytics_summary')
    op.drop_index('idx_geo_country', table_name='analytics_geo')
    op.drop_index('idx_geo_date', table_name='analytics_geo')
    op.drop_table('analytics_geo')
    op.drop_index('idx_devices_date', table_name='analytics_devices')
    op.drop_table('analytics_devices')
    op.drop_index('idx_referrers_domain', table_name='analytics_referrers')
    op.drop_index('idx_referrers_date', table_name='analytics_referrers')
    op.drop_table('analytics_referrers')
    op.drop_index('idx_daily_page_url', table_name='analytics_daily')
    op.drop_index('idx_daily_date', table_name='analytics_daily')
    op.drop_table('analytics_daily')
    op.drop_index('idx_pageviews_referrer_domain', table_name='analytics_pageviews')
    op.drop_index('idx_pageviews_session_date', table_name='analytics_pageviews')
    op.drop_index('idx_pageviews_page_url', table_name='analytics_pageviews')
    op.drop_index('idx_pageviews_created_at', table_name='analytics_pageviews')
    op.drop_table('analytics_pageviews')
