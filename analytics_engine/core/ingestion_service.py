"""
Page view ingestion.

Validates one tracking payload, applies the per-IP rate limit, resolves the
visitor token and appends exactly one raw page view.
"""

import logging
from datetime import timedelta
from typing import Optional, Tuple
from urllib.parse import urlparse

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import crud
from ..models import PAGE_TITLE_MAX_LENGTH, PAGE_URL_MAX_LENGTH, REFERRER_MAX_LENGTH
from ..schemas import TrackRequest, TrackResponse
from .context import AnalyticsContext
from .errors import IngestionValidationError, RateLimitExceeded, TrackingFailed
from .geolocation import hash_ip
from .rate_limiter import rate_limit_key
from .session_resolver import SessionResolution, SessionResolver
from .user_agent import parse_user_agent

logger = logging.getLogger(__name__)

UNIQUE_VISITOR_WINDOW = timedelta(hours=24)


def extract_domain(url: Optional[str]) -> Optional[str]:
    """Host part of a URL, or None when there is none."""
    if not url:
        return None
    try:
        host = urlparse(url).hostname
    except ValueError:
        return None
    return host[:255] if host else None


def is_valid_page_url(page_url: str) -> bool:
    """Absolute http(s) URLs with a host, or site-relative paths."""
    if page_url.startswith("/") and not page_url.startswith("//"):
        return True
    try:
        parsed = urlparse(page_url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def validate_payload(payload: TrackRequest) -> str:
    """Check required fields and lengths; returns the stripped page URL."""
    page_url = (payload.page_url or "").strip()
    if not page_url:
        raise IngestionValidationError("Page URL is required", error_code="MISSING_FIELD", field="page_url")
    if len(page_url) > PAGE_URL_MAX_LENGTH:
        raise IngestionValidationError("URL exceeds maximum length", error_code="TOO_LONG", field="page_url")
    if not is_valid_page_url(page_url):
        raise IngestionValidationError("Page URL is not a valid URL", error_code="INVALID_PAYLOAD", field="page_url")
    if payload.page_title and len(payload.page_title) > PAGE_TITLE_MAX_LENGTH:
        raise IngestionValidationError("Page title exceeds maximum length", error_code="TOO_LONG", field="page_title")
    if payload.referrer and len(payload.referrer) > REFERRER_MAX_LENGTH:
        raise IngestionValidationError("Referrer URL exceeds maximum length", error_code="TOO_LONG", field="referrer")
    return page_url


class IngestionService:
    """Records page views reported by the tracking script."""

    def __init__(self, db: Session, context: AnalyticsContext):
        self.db = db
        self.context = context
        self.session_resolver = SessionResolver(context.token_bytes)

    def track(
        self,
        payload: TrackRequest,
        client_ip: str,
        cookie_session_id: Optional[str] = None,
        header_user_agent: Optional[str] = None,
    ) -> Tuple[TrackResponse, SessionResolution]:
        """
        Validate and store one page view.

        Returns the response body together with the session resolution so the
        HTTP layer can set the visitor cookie when a new token was minted.
        Raises ``IngestionValidationError``, ``RateLimitExceeded`` or
        ``TrackingFailed``; nothing is written in any of those cases.
        """
        page_url = validate_payload(payload)

        ip_hash = hash_ip(client_ip, self.context.settings.IP_HASH_SALT)
        decision = self.context.rate_limiter.hit(rate_limit_key(ip_hash))
        if not decision.allowed:
            logger.info(f"Rate limited tracking request from {ip_hash[:16]}")
            raise RateLimitExceeded(retry_after=decision.retry_after)

        session = self.session_resolver.resolve(payload.session_id, cookie_session_id)
        user_agent = payload.user_agent or header_user_agent or ""
        client = parse_user_agent(user_agent)
        location = self.context.geo_resolver.resolve(client_ip)
        now = self.context.clock.now()

        try:
            is_unique = not crud.has_recent_view(
                self.db, session.session_id, page_url, now - UNIQUE_VISITOR_WINDOW
            )
            pageview_id = crud.append_page_view(
                self.db,
                page_url=page_url,
                page_title=payload.page_title or None,
                referrer=payload.referrer or None,
                referrer_domain=extract_domain(payload.referrer),
                user_agent=user_agent or None,
                device_type=client.device_type,
                browser=client.browser,
                browser_version=client.browser_version,
                os=client.os,
                country_code=location.country_code,
                city=location.city,
                ip_hash=ip_hash,
                session_id=session.session_id,
                is_unique_visitor=is_unique,
                created_at=now,
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to store page view for {page_url}: {e}", exc_info=True)
            raise TrackingFailed("Failed to track analytics event") from e

        logger.debug(f"Tracked page view {pageview_id} for {page_url} (unique={is_unique})")
        response = TrackResponse(
            success=True,
            pageview_id=pageview_id,
            is_unique_visitor=is_unique,
            session_id=session.session_id,
        )
        return response, session
