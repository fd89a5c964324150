"""Persistence for token records."""
from .sqlite import DEFAULT_TIMEOUT, SQLiteTokenStore

__all__ = ["DEFAULT_TIMEOUT", "SQLiteTokenStore"]
