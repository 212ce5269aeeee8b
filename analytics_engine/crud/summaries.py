"""
Summary table writes.

Every summary row is keyed by its natural key and written as insert-or-replace,
so re-running a rollup for the same day produces the same rows instead of
double counting.
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from ..models import SUMMARY_MODELS, AnalyticsSummary

logger = logging.getLogger(__name__)

# Keeps each statement well under SQLite's bound parameter limit
UPSERT_BATCH_SIZE = 200

DIALECT_INSERTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


def _chunks(rows: List[dict], size: int):
    for start in range(0, len(rows), size):
        yield rows[start:start + size]


def upsert_rows(
    db: Session,
    model,
    rows: List[Dict[str, Any]],
    conflict_columns: Sequence[str],
    update_columns: Sequence[str],
) -> int:
    """
    Insert rows, replacing ``update_columns`` on natural-key conflicts.

    SQLite and PostgreSQL use ``INSERT ... ON CONFLICT DO UPDATE``; any other
    dialect falls back to a lookup per row. Nothing is committed here.
    """
    if not rows:
        return 0

    dialect_insert = DIALECT_INSERTS.get(db.get_bind().dialect.name)
    if dialect_insert is None:
        return _upsert_rows_orm(db, model, rows, conflict_columns, update_columns)

    for batch in _chunks(rows, UPSERT_BATCH_SIZE):
        stmt = dialect_insert(model).values(batch)
        stmt = stmt.on_conflict_do_update(
            index_elements=list(conflict_columns),
            set_={column: stmt.excluded[column] for column in update_columns},
        )
        db.execute(stmt)
    return len(rows)


def _upsert_rows_orm(db: Session, model, rows, conflict_columns, update_columns) -> int:
    for row in rows:
        existing = db.query(model).filter_by(
            **{column: row[column] for column in conflict_columns}
        ).first()
        if existing is None:
            db.add(model(**row))
            continue
        for column in update_columns:
            setattr(existing, column, row[column])
    db.flush()
    return len(rows)


def upsert_summary(db: Session, stat_key: str, stat_period: str, value: dict, now: datetime) -> None:
    upsert_rows(
        db,
        AnalyticsSummary,
        [{
            "stat_key": stat_key,
            "stat_period": stat_period,
            "stat_value": json.dumps(value),
            "updated_at": now,
        }],
        conflict_columns=("stat_key", "stat_period"),
        update_columns=("stat_value", "updated_at"),
    )


def get_summary(db: Session, stat_key: str, stat_period: str) -> Optional[Dict[str, Any]]:
    """Return the cached summary with its ``updated_at``, or None before the first rollup."""
    row = db.query(AnalyticsSummary).filter(
        AnalyticsSummary.stat_key == stat_key,
        AnalyticsSummary.stat_period == stat_period
    ).first()
    if row is None:
        return None
    try:
        value = json.loads(row.stat_value or "{}")
    except ValueError:
        logger.warning(f"Discarding unreadable summary cache row {stat_key}/{stat_period}")
        return None
    return {"value": value, "updated_at": row.updated_at}


def delete_all_summaries(db: Session) -> int:
    """Empty every rollup table and the summary cache. The caller owns the commit."""
    deleted = 0
    for model in SUMMARY_MODELS + (AnalyticsSummary,):
        deleted += db.query(model).delete(synchronize_session=False)
    return deleted
