"""Database utilities for the retrieval engine."""

from .connection import close_pool, get_pool, get_sync_connection

__all__ = [
    "close_pool",
    "get_sync_connection",
    "get_pool",
]
