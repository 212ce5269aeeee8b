"""
Collaborators shared by the ingestion service, the jobs and the query layer.

Everything host-specific (time, randomness, rate limiting, geolocation and the
engine settings) is injected here so tests can swap any of it out.
"""

import logging
import secrets
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from sqlalchemy.orm import Session

from ..crud.settings import EDITABLE_SETTINGS, RETENTION_DAYS, get_all_settings
from .clock import Clock
from .config import Settings, settings as default_settings
from .geolocation import create_geo_resolver
from .rate_limiter import create_rate_limiter

logger = logging.getLogger(__name__)


class SettingsCache:
    """
    Caches the operator-editable engine settings.

    Watermarks and the lease are never cached; they are read fresh by the jobs,
    and the retention sweep re-reads its window every run.
    Anything that writes an editable key must call ``invalidate()``.
    """

    def __init__(self, fallback_retention_days: int):
        self.fallback_retention_days = fallback_retention_days
        self._values: Optional[Dict[str, Optional[str]]] = None

    def get(self, db: Session) -> Dict[str, Optional[str]]:
        if self._values is None:
            stored = get_all_settings(db)
            self._values = {key: stored.get(key) for key in EDITABLE_SETTINGS}
        return dict(self._values)

    def invalidate(self) -> None:
        self._values = None

    def retention_days(self, db: Session, fresh: bool = False) -> int:
        """Stored retention window, or the configured one when unset or invalid."""
        if fresh:
            self.invalidate()
        raw = self.get(db).get(RETENTION_DAYS)
        try:
            days = int(raw)
        except (TypeError, ValueError):
            return self.fallback_retention_days
        if days < 1:
            logger.warning(f"Ignoring non-positive retention_days={days}")
            return self.fallback_retention_days
        return days


@dataclass
class AnalyticsContext:
    settings: Settings
    clock: Clock = field(default_factory=Clock)
    rate_limiter: object = None
    geo_resolver: object = None
    token_bytes: Callable[[int], bytes] = secrets.token_bytes
    settings_cache: SettingsCache = None

    def __post_init__(self):
        if self.rate_limiter is None:
            self.rate_limiter = create_rate_limiter(self.settings, self.clock)
        if self.geo_resolver is None:
            self.geo_resolver = create_geo_resolver(self.settings)
        if self.settings_cache is None:
            self.settings_cache = SettingsCache(self.settings.ANALYTICS_RETENTION_DAYS)

    @property
    def enabled(self) -> bool:
        return self.settings.ANALYTICS_ENABLED


def build_context(app_settings: Optional[Settings] = None, **overrides) -> AnalyticsContext:
    return AnalyticsContext(settings=app_settings or default_settings, **overrides)
