"""CRUD operations module."""

from .pageviews import (
    append_page_view,
    append_page_views,
    query_recent,
    count_since,
    touched_dates,
    count_distinct_sessions,
    has_recent_view,
    delete_older_than,
    delete_all
)
from .summaries import (
    upsert_rows,
    upsert_summary,
    get_summary,
    delete_all_summaries
)
from .settings import (
    insert_default_settings,
    get_setting,
    get_all_settings,
    update_setting,
    get_timestamp_setting,
    set_timestamp_setting,
    acquire_lease,
    release_lease
)


__all__ = [
    # Page views
    "append_page_view",
    "append_page_views",
    "query_recent",
    "count_since",
    "touched_dates",
    "count_distinct_sessions",
    "has_recent_view",
    "delete_older_than",
    "delete_all",

    # Summaries
    "upsert_rows",
    "upsert_summary",
    "get_summary",
    "delete_all_summaries",

    # Settings
    "insert_default_settings",
    "get_setting",
    "get_all_settings",
    "update_setting",
    "get_timestamp_setting",
    "set_timestamp_setting",
    "acquire_lease",
    "release_lease",
]
