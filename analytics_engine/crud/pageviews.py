"""Raw page view storage. Append and delete only; page views are never updated."""

from datetime import date, datetime
from typing import Iterable, List

from sqlalchemy import Date, func
from sqlalchemy.orm import Session

from ..models import PageView


def append_page_view(db: Session, **fields) -> int:
    """Insert one page view and return its id."""
    db_pageview = PageView(**fields)
    db.add(db_pageview)
    db.commit()
    db.refresh(db_pageview)
    return db_pageview.id


def append_page_views(db: Session, rows: Iterable[dict]) -> int:
    """Bulk insert page view rows in a single transaction."""
    pageviews = [PageView(**row) for row in rows]
    if not pageviews:
        return 0
    db.add_all(pageviews)
    db.commit()
    return len(pageviews)


def query_recent(db: Session, since: datetime) -> List[PageView]:
    """Page views created strictly after ``since``, oldest first."""
    return db.query(PageView).filter(
        PageView.created_at > since
    ).order_by(PageView.created_at, PageView.id).all()


def count_since(db: Session, since: datetime) -> int:
    """Number of page views created strictly after ``since``."""
    return db.query(func.count(PageView.id)).filter(
        PageView.created_at > since
    ).scalar() or 0


def touched_dates(db: Session, since: datetime) -> List[date]:
    """Distinct UTC dates of page views created strictly after ``since``, oldest first."""
    day = func.date(PageView.created_at, type_=Date)
    rows = db.query(day).filter(
        PageView.created_at > since
    ).distinct().order_by(day).all()
    return [value for (value,) in rows if value is not None]


def count_distinct_sessions(db: Session, since: datetime) -> int:
    return db.query(func.count(func.distinct(PageView.session_id))).filter(
        PageView.created_at >= since
    ).scalar() or 0


def has_recent_view(db: Session, session_id: str, page_url: str, since: datetime) -> bool:
    """True when the session already viewed the page at or after ``since``."""
    return db.query(PageView.id).filter(
        PageView.session_id == session_id,
        PageView.page_url == page_url,
        PageView.created_at >= since
    ).first() is not None


def delete_older_than(db: Session, cutoff: datetime) -> int:
    """Delete page views created before ``cutoff``. The caller owns the commit."""
    return db.query(PageView).filter(
        PageView.created_at < cutoff
    ).delete(synchronize_session=False)


def delete_all(db: Session) -> int:
    """Remove every raw page view. Only the dummy data seeder calls this."""
    return db.query(PageView).delete(synchronize_session=False)
