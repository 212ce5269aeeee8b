"""Core module for the page analytics engine."""

from .config import settings
from .database import get_db, engine, Base

__all__ = [
    "settings",
    "get_db",
    "engine",
    "Base"
]
