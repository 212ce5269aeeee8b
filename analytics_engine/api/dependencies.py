"""Shared FastAPI dependencies."""

from fastapi import Request

from ..core.context import AnalyticsContext


def get_context(request: Request) -> AnalyticsContext:
    """The analytics context the application was built with."""
    return request.app.state.analytics_context
