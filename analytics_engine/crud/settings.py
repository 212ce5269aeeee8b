"""Engine key/value settings: watermarks, retention override and the rollup lease."""

import logging
from datetime import datetime, timedelta
from typing import Dict, Optional

from dateutil import parser
from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from ..core.clock import to_naive_utc, utcnow
from ..models import AnalyticsSetting

logger = logging.getLogger(__name__)

RETENTION_DAYS = "retention_days"
TRACK_LOGGED_IN_USERS = "track_logged_in_users"
ANONYMIZE_IPS = "anonymize_ips"
EXCLUDE_BOTS = "exclude_bots"
LAST_CLEANUP = "last_cleanup"
LAST_AGGREGATION = "last_aggregation"
AGGREGATION_LOCK = "aggregation_lock"

DEFAULT_SETTINGS = {
    RETENTION_DAYS: "30",
    TRACK_LOGGED_IN_USERS: "0",
    ANONYMIZE_IPS: "1",
    EXCLUDE_BOTS: "1",
    LAST_CLEANUP: None,
    LAST_AGGREGATION: None,
    AGGREGATION_LOCK: None,
}

# Keys an operator may change through the settings API
EDITABLE_SETTINGS = (RETENTION_DAYS, TRACK_LOGGED_IN_USERS, ANONYMIZE_IPS, EXCLUDE_BOTS)

# Fixed width so lease expiry strings compare correctly as text
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f"


def format_timestamp(value: datetime) -> str:
    return value.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored ISO-8601 value; malformed values read as missing."""
    if not value:
        return None
    try:
        parsed = parser.isoparse(value)
    except (ValueError, OverflowError):
        logger.warning(f"Ignoring malformed timestamp setting: {value!r}")
        return None
    return to_naive_utc(parsed)


def insert_default_settings(db: Session, now: Optional[datetime] = None, retention_days: Optional[int] = None) -> int:
    """Insert any default keys that are missing. Existing values are left alone."""
    now = now or utcnow()
    defaults = dict(DEFAULT_SETTINGS)
    if retention_days:
        defaults[RETENTION_DAYS] = str(retention_days)
    existing = {key for (key,) in db.query(AnalyticsSetting.setting_key).all()}
    created = 0
    for key, value in defaults.items():
        if key in existing:
            continue
        db.add(AnalyticsSetting(setting_key=key, setting_value=value, updated_at=now))
        created += 1
    if created:
        db.flush()
    return created


def get_setting(db: Session, key: str, default: Optional[str] = None) -> Optional[str]:
    row = db.query(AnalyticsSetting).filter(AnalyticsSetting.setting_key == key).first()
    if row is None or row.setting_value is None:
        return default
    return row.setting_value


def get_all_settings(db: Session) -> Dict[str, Optional[str]]:
    rows = db.query(AnalyticsSetting).order_by(AnalyticsSetting.setting_key).all()
    return {row.setting_key: row.setting_value for row in rows}


def update_setting(db: Session, key: str, value: Optional[str], now: Optional[datetime] = None) -> AnalyticsSetting:
    """Set a key, creating it when missing. The caller owns the commit."""
    now = now or utcnow()
    row = db.query(AnalyticsSetting).filter(AnalyticsSetting.setting_key == key).first()
    if row is None:
        row = AnalyticsSetting(setting_key=key, setting_value=value, updated_at=now)
        db.add(row)
    else:
        row.setting_value = value
        row.updated_at = now
    db.flush()
    return row


def get_timestamp_setting(db: Session, key: str) -> Optional[datetime]:
    return parse_timestamp(get_setting(db, key))


def set_timestamp_setting(db: Session, key: str, value: datetime, now: Optional[datetime] = None) -> AnalyticsSetting:
    return update_setting(db, key, format_timestamp(value), now=now or value)


def acquire_lease(db: Session, key: str, now: datetime, ttl_seconds: int) -> bool:
    """
    Try to take the advisory lease stored under ``key``.

    The lease row holds its expiry time. A conditional UPDATE only matches
    when the lease is free or expired, so when two runners race exactly one
    of them sees a matched row. Commits immediately so other sessions see it.
    """
    if db.query(AnalyticsSetting.id).filter(AnalyticsSetting.setting_key == key).first() is None:
        update_setting(db, key, None, now=now)
        db.commit()

    now_text = format_timestamp(now)
    expires_at = format_timestamp(now + timedelta(seconds=ttl_seconds))
    result = db.execute(
        update(AnalyticsSetting)
        .where(
            AnalyticsSetting.setting_key == key,
            or_(AnalyticsSetting.setting_value.is_(None), AnalyticsSetting.setting_value < now_text),
        )
        .values(setting_value=expires_at, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def release_lease(db: Session, key: str, now: Optional[datetime] = None) -> None:
    db.execute(
        update(AnalyticsSetting)
        .where(AnalyticsSetting.setting_key == key)
        .values(setting_value=None, updated_at=now or utcnow())
        .execution_options(synchronize_session=False)
    )
    db.commit()
