"""Tests for the rollup aggregator."""

from datetime import date, timedelta

from sqlalchemy.exc import OperationalError

import analytics_engine.crud as crud_module
from analytics_engine import crud
from analytics_engine.core.aggregation_service import WATERMARK_LAG, RollupAggregator, bounce_rate, run_aggregation
from analytics_engine.crud.settings import AGGREGATION_LOCK, LAST_AGGREGATION
from analytics_engine.models import AnalyticsDaily, AnalyticsDevice, AnalyticsGeo, AnalyticsReferrer

from conftest import NOW, add_view, make_context

TODAY = NOW.date()


def hours_ago(hours):
    return NOW - timedelta(hours=hours)


def seed_basic_day(db):
    """s1 views two pages, s2 bounces on /home, s3 views /home twice."""
    add_view(db, "/home", "s1", hours_ago(6), page_title="Home")
    add_view(db, "/about", "s1", hours_ago(5), page_title="About")
    add_view(db, "/home", "s2", hours_ago(4), page_title="Home")
    add_view(db, "/home", "s3", hours_ago(3), page_title="Home")
    add_view(db, "/home", "s3", hours_ago(2), page_title="Home page")


def daily_row(db, page_url, day=TODAY):
    return db.query(AnalyticsDaily).filter_by(date=day, page_url=page_url).one()


def snapshot(db):
    """Every summary row by natural key, without the bookkeeping timestamps."""
    return {
        "daily": sorted(
            (r.date, r.page_url, r.page_title, r.views, r.unique_visitors, r.bounce_rate)
            for r in db.query(AnalyticsDaily).all()
        ),
        "referrers": sorted(
            (r.date, r.referrer_domain, r.page_url, r.referrer_url, r.visits, r.unique_visitors)
            for r in db.query(AnalyticsReferrer).all()
        ),
        "devices": sorted(
            (r.date, r.device_type, r.browser, r.os, r.views, r.unique_visitors)
            for r in db.query(AnalyticsDevice).all()
        ),
        "geo": sorted(
            (r.date, r.country_code, r.city, r.views, r.unique_visitors)
            for r in db.query(AnalyticsGeo).all()
        ),
    }


class TestDailyRollup:
    def test_counts_unique_visitors_and_bounce_rate(self, db, context):
        seed_basic_day(db)

        result = run_aggregation(db, context)

        assert result.status == "completed"
        assert result.events_processed == 5
        assert result.dates_processed == [TODAY]

        home = daily_row(db, "/home")
        assert home.views == 4
        assert home.unique_visitors == 3
        assert home.bounce_rate == 66.67
        assert home.page_title == "Home page"
        assert home.avg_time_on_page == 0

        about = daily_row(db, "/about")
        assert about.views == 1
        assert about.unique_visitors == 1
        assert about.bounce_rate == 0.0

    def test_rerun_replaces_rows(self, db, context, clock):
        seed_basic_day(db)
        add_view(
            db, "/home", "s4", hours_ago(1),
            referrer="https://news.ycombinator.com/item", referrer_domain="news.ycombinator.com",
            device_type="mobile", browser="Safari", os="iOS", country_code="DE", city="Berlin",
        )
        run_aggregation(db, context)
        before = snapshot(db)
        assert all(before.values())

        # Pretend the watermark was lost and aggregate the same day again
        crud.set_timestamp_setting(db, LAST_AGGREGATION, NOW - timedelta(days=1))
        db.commit()
        clock.advance(minutes=5)
        result = run_aggregation(db, context)

        assert result.status == "completed"
        assert result.dates_processed == [TODAY]
        assert snapshot(db) == before
        assert daily_row(db, "/home").views == 5

    def test_day_split_across_runs_is_recomputed_in_full(self, db, context, clock):
        add_view(db, "/home", "s1", hours_ago(3))
        add_view(db, "/home", "s2", hours_ago(2))
        run_aggregation(db, context)
        assert daily_row(db, "/home").views == 2

        clock.advance(hours=1)
        add_view(db, "/home", "s3", NOW + timedelta(minutes=30))
        result = run_aggregation(db, context)

        assert result.events_processed == 1
        home = daily_row(db, "/home")
        assert home.views == 3
        assert home.unique_visitors == 3

    def test_events_on_several_days(self, db, context):
        add_view(db, "/home", "s1", NOW - timedelta(hours=20))
        add_view(db, "/home", "s1", NOW - timedelta(hours=1))

        result = run_aggregation(db, context)

        assert result.dates_processed == [TODAY - timedelta(days=1), TODAY]
        assert daily_row(db, "/home", TODAY - timedelta(days=1)).views == 1
        assert daily_row(db, "/home", TODAY).views == 1


class TestWatermark:
    def test_no_new_events_still_advances_watermark(self, db, context):
        result = run_aggregation(db, context)

        assert result.status == "completed"
        assert result.events_processed == 0
        assert result.rows_written == {}
        assert result.watermark == NOW - WATERMARK_LAG
        assert crud.get_timestamp_setting(db, LAST_AGGREGATION) == NOW - WATERMARK_LAG
        assert db.query(AnalyticsDaily).count() == 0
        assert crud.get_summary(db, "overview_7d", "7d")["value"]["total_views"] == 0

    def test_late_commit_is_picked_up_next_run(self, db, context, clock):
        add_view(db, "/home", "s1", hours_ago(1))
        run_aggregation(db, context)

        # Stamped before the run started but committed after it
        add_view(db, "/pricing", "s2", NOW - timedelta(seconds=10))
        clock.advance(minutes=5)
        result = run_aggregation(db, context)

        assert result.events_processed == 1
        assert daily_row(db, "/pricing").views == 1
        assert daily_row(db, "/home").views == 1

    def test_watermark_never_moves_backwards(self, db, context):
        crud.set_timestamp_setting(db, LAST_AGGREGATION, NOW)
        db.commit()

        result = run_aggregation(db, context)

        assert result.watermark == NOW
        assert crud.get_timestamp_setting(db, LAST_AGGREGATION) == NOW

    def test_events_before_watermark_are_skipped(self, db, context):
        crud.set_timestamp_setting(db, LAST_AGGREGATION, hours_ago(1))
        db.commit()
        add_view(db, "/old", "s1", hours_ago(2))
        add_view(db, "/new", "s1", hours_ago(0.5))

        result = run_aggregation(db, context)

        # The touched day is recomputed from every event that day
        assert result.events_processed == 1
        assert daily_row(db, "/old").views == 1
        assert daily_row(db, "/new").views == 1

    def test_failure_leaves_watermark_and_releases_lease(self, db, context, monkeypatch):
        add_view(db, "/home", "s1", hours_ago(1))

        def broken_upsert(*args, **kwargs):
            raise OperationalError("INSERT", {}, Exception("database is locked"))

        monkeypatch.setattr(crud_module, "upsert_rows", broken_upsert)
        result = run_aggregation(db, context)

        assert result.status == "failed"
        assert result.watermark == NOW - timedelta(days=1)
        assert "database is locked" in result.error
        assert crud.get_timestamp_setting(db, LAST_AGGREGATION) is None
        assert crud.get_setting(db, AGGREGATION_LOCK) is None
        assert db.query(AnalyticsDaily).count() == 0


class TestLease:
    def test_held_lease_skips_run(self, db, context, clock):
        assert crud.acquire_lease(db, AGGREGATION_LOCK, NOW, ttl_seconds=600)

        result = RollupAggregator(db, context).run()
        assert result.status == "locked"
        assert crud.get_timestamp_setting(db, LAST_AGGREGATION) is None

        # A crashed holder's lease expires
        clock.advance(seconds=601)
        assert RollupAggregator(db, context).run().status == "completed"

    def test_lease_released_after_run(self, db, context):
        run_aggregation(db, context)
        assert crud.get_setting(db, AGGREGATION_LOCK) is None

    def test_disabled_analytics(self, db, clock):
        context = make_context(clock, ANALYTICS_ENABLED=False)
        add_view(db, "/home", "s1", hours_ago(1))

        assert run_aggregation(db, context).status == "disabled"
        assert db.query(AnalyticsDaily).count() == 0
        assert crud.get_timestamp_setting(db, LAST_AGGREGATION) is None


class TestDimensionRollups:
    def test_referrers_devices_and_geo(self, db, context):
        add_view(
            db, "/home", "s1", hours_ago(3),
            referrer="https://www.google.com/search?q=a", referrer_domain="www.google.com",
            country_code="DE", city="Berlin",
        )
        add_view(
            db, "/home", "s2", hours_ago(2),
            referrer="https://www.google.com/search?q=b", referrer_domain="www.google.com",
            device_type="mobile", browser="Safari", os="iOS",
            country_code="US",
        )
        add_view(db, "/pricing", "s2", hours_ago(1))

        run_aggregation(db, context)

        referrer = db.query(AnalyticsReferrer).one()
        assert referrer.referrer_domain == "www.google.com"
        assert referrer.page_url == "/home"
        assert referrer.visits == 2
        assert referrer.unique_visitors == 2
        assert referrer.referrer_url == "https://www.google.com/search?q=b"

        devices = {
            (row.device_type, row.browser, row.os): row.views
            for row in db.query(AnalyticsDevice).all()
        }
        assert devices == {("desktop", "Chrome", "Windows"): 2, ("mobile", "Safari", "iOS"): 1}

        geo = {(row.country_code, row.city): row.views for row in db.query(AnalyticsGeo).all()}
        assert geo == {("DE", "Berlin"): 1, ("US", ""): 1}

    def test_summary_cache_refreshed(self, db, context):
        seed_basic_day(db)
        run_aggregation(db, context)

        cached = crud.get_summary(db, "overview_7d", "7d")
        assert cached["value"] == {"total_views": 5, "total_unique_visitors": 4, "unique_pages": 2}
        assert cached["updated_at"] == NOW
        assert crud.get_summary(db, "overview_all_time", "all_time") is not None

    def test_summary_windows_roll_forward_without_new_events(self, db, context, clock):
        add_view(db, "/home", "s1", hours_ago(1))
        run_aggregation(db, context)
        assert crud.get_summary(db, "overview_7d", "7d")["value"]["total_views"] == 1

        clock.advance(days=10)
        result = run_aggregation(db, context)

        assert result.events_processed == 0
        cached = crud.get_summary(db, "overview_7d", "7d")
        assert cached["value"]["total_views"] == 0
        assert cached["updated_at"] == NOW + timedelta(days=10)
        assert crud.get_summary(db, "overview_30d", "30d")["value"]["total_views"] == 1
        assert crud.get_summary(db, "overview_all_time", "all_time")["value"]["total_views"] == 1


def test_bounce_rate_helper():
    assert bounce_rate(2, 3) == 66.67
    assert bounce_rate(0, 1) == 0.0
    assert bounce_rate(0, 0) == 0.0


def test_dates_are_plain_dates(db, context):
    add_view(db, "/home", "s1", hours_ago(1))
    run_aggregation(db, context)
    assert isinstance(db.query(AnalyticsDaily.date).scalar(), date)
