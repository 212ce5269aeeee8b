"""
Error taxonomy for the analytics engine.

Every error carries a stable ``error_code`` that the API returns verbatim, so
the tracking script and the dashboard can branch on it without parsing text.
"""

from typing import Optional

from fastapi import status


class AnalyticsError(Exception):
    """Base class for errors that map onto an API error payload."""

    error_code = "ANALYTICS_ERROR"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, detail: str, field: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        self.field = field

    def to_dict(self) -> dict:
        payload = {"detail": self.detail, "error_code": self.error_code}
        if self.field:
            payload["field"] = self.field
        return payload


class IngestionValidationError(AnalyticsError):
    """Bad tracking payload; the client can fix it and resend."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str, error_code: str = "INVALID_PAYLOAD", field: Optional[str] = None):
        super().__init__(detail, field=field)
        self.error_code = error_code


class RateLimitExceeded(AnalyticsError):
    error_code = "RATE_LIMITED"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS

    def __init__(self, detail: str = "Too many requests", retry_after: int = 0):
        super().__init__(detail)
        self.retry_after = retry_after


class TrackingFailed(AnalyticsError):
    """The page view could not be stored. The event is dropped."""

    error_code = "TRACKING_FAILED"


class InvalidQuery(AnalyticsError):
    error_code = "INVALID_PAYLOAD"
    status_code = status.HTTP_400_BAD_REQUEST


class QueryFailed(AnalyticsError):
    error_code = "QUERY_FAILED"


class NotFound(AnalyticsError):
    error_code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND
