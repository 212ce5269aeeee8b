"""Tests for the bulk insert buffer."""

import pytest
from sqlalchemy.exc import OperationalError

import analytics_engine.crud as crud_module
from analytics_engine.core.event_buffer import PageViewBuffer
from analytics_engine.models import PageView

from conftest import NOW


def row(page_url="/home"):
    return {"page_url": page_url, "session_id": "abc.123", "created_at": NOW}


def test_flushes_when_full(db, clock):
    buffer = PageViewBuffer(db, max_size=3, clock=clock)

    assert buffer.add(row()) == 0
    assert buffer.add(row()) == 0
    assert db.query(PageView).count() == 0

    assert buffer.add(row()) == 3
    assert len(buffer) == 0
    assert db.query(PageView).count() == 3


def test_flushes_when_oldest_row_is_due(db, clock):
    buffer = PageViewBuffer(db, max_size=100, max_age_seconds=30, clock=clock)
    buffer.add(row())

    clock.advance(seconds=29)
    assert buffer.flush_if_due() == 0

    clock.advance(seconds=1)
    assert buffer.flush_if_due() == 1
    assert buffer.flushed_total == 1


def test_explicit_flush(db, clock):
    buffer = PageViewBuffer(db, clock=clock)
    assert buffer.flush() == 0
    buffer.add(row("/a"))
    buffer.add(row("/b"))
    assert buffer.flush() == 2
    assert sorted(url for (url,) in db.query(PageView.page_url)) == ["/a", "/b"]


def test_rows_kept_when_insert_fails(db, clock, monkeypatch):
    buffer = PageViewBuffer(db, clock=clock)
    buffer.add(row())

    def broken_insert(db, rows):
        raise OperationalError("INSERT", {}, Exception("disk full"))

    monkeypatch.setattr(crud_module, "append_page_views", broken_insert)
    with pytest.raises(OperationalError):
        buffer.flush()
    assert len(buffer) == 1


def test_rejects_empty_capacity(db):
    with pytest.raises(ValueError):
        PageViewBuffer(db, max_size=0)
