"""Tests for the retention sweeper."""

from datetime import timedelta

from sqlalchemy.exc import OperationalError

import analytics_engine.crud as crud_module
from analytics_engine import crud
from analytics_engine.core.aggregation_service import run_aggregation
from analytics_engine.core.retention_service import RetentionSweeper, run_cleanup
from analytics_engine.crud.settings import LAST_CLEANUP, RETENTION_DAYS
from analytics_engine.models import AnalyticsDaily, PageView

from conftest import NOW, add_view, make_context


def test_purges_raw_events_and_keeps_summaries(db, context, clock):
    # Day 1: one event, rolled up the same day
    day_one = NOW - timedelta(days=40)
    clock.set(day_one + timedelta(hours=1))
    add_view(db, "/launch", "s1", day_one)
    assert run_aggregation(db, context).status == "completed"

    # Day 40: a recent event
    clock.set(NOW)
    recent_id = add_view(db, "/home", "s2", NOW - timedelta(hours=1))

    result = run_cleanup(db, context)

    assert result.status == "completed"
    assert result.retention_days == 30
    assert result.cutoff == NOW - timedelta(days=30)
    assert result.deleted == 1
    assert [row.id for row in db.query(PageView).all()] == [recent_id]

    launch = db.query(AnalyticsDaily).filter_by(page_url="/launch").one()
    assert launch.views == 1
    assert crud.get_timestamp_setting(db, LAST_CLEANUP) == NOW


def test_event_exactly_at_cutoff_is_kept(db, context):
    add_view(db, "/home", "s1", NOW - timedelta(days=30))
    assert run_cleanup(db, context).deleted == 0
    assert db.query(PageView).count() == 1


def test_stored_retention_overrides_config(db, context):
    add_view(db, "/home", "s1", NOW - timedelta(days=10))
    crud.update_setting(db, RETENTION_DAYS, "7", now=NOW)
    db.commit()
    context.settings_cache.invalidate()

    result = RetentionSweeper(db, context).run()

    assert result.retention_days == 7
    assert result.deleted == 1


def test_retention_read_fresh_every_run(db, context, session_factory):
    assert run_cleanup(db, context).retention_days == 30
    assert context.settings_cache.retention_days(db) == 30

    # Written by another process; this process's cache is never invalidated
    with session_factory() as other:
        crud.update_setting(other, RETENTION_DAYS, "7", now=NOW)
        other.commit()
    add_view(db, "/home", "s1", NOW - timedelta(days=10))

    with session_factory() as sweep_db:
        result = RetentionSweeper(sweep_db, context).run()

    assert result.retention_days == 7
    assert result.deleted == 1


def test_invalid_stored_retention_falls_back(db, context):
    crud.update_setting(db, RETENTION_DAYS, "soon", now=NOW)
    db.commit()
    assert run_cleanup(db, context).retention_days == context.settings.ANALYTICS_RETENTION_DAYS


def test_disabled_analytics(db, clock):
    context = make_context(clock, ANALYTICS_ENABLED=False)
    add_view(db, "/home", "s1", NOW - timedelta(days=90))

    assert run_cleanup(db, context).status == "disabled"
    assert db.query(PageView).count() == 1


def test_failure_keeps_data(db, context, monkeypatch):
    add_view(db, "/home", "s1", NOW - timedelta(days=90))

    def broken_delete(db, cutoff):
        raise OperationalError("DELETE", {}, Exception("database is locked"))

    monkeypatch.setattr(crud_module, "delete_older_than", broken_delete)
    result = run_cleanup(db, context)

    assert result.status == "failed"
    assert db.query(PageView).count() == 1
    assert crud.get_timestamp_setting(db, LAST_CLEANUP) is None
