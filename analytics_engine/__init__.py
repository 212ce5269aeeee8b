"""Page-view analytics engine: tracking, rollups, retention and statistics."""

__version__ = "1.0.0"
