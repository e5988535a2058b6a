"""Shared psycopg connection pool for the knowledge store."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

import psycopg
from pgvector.psycopg import register_vector
from psycopg_pool import ConnectionPool, PoolTimeout

from translation_rag.config import Settings, get_settings

logger = logging.getLogger(__name__)

_pool: ConnectionPool | None = None
_pool_lock = threading.Lock()


def pool_options(settings: Settings) -> Dict[str, Any]:
    """Keyword arguments for :class:`ConnectionPool` derived from settings.

    The pool holds one connection per retrieval worker by default, and every
    statement is cancelled server-side once the source deadline has passed.
    """
    return {
        "conninfo": settings.database_url,
        "min_size": settings.pool_min_size,
        "max_size": settings.pool_max_size,
        "kwargs": {
            "connect_timeout": settings.connect_timeout_seconds,
            "options": f"-c statement_timeout={settings.statement_timeout_ms}",
        },
    }


def get_pool(settings: Optional[Settings] = None) -> ConnectionPool:
    """
    Return the process-wide pool, opening it on first use.

    Connections get the pgvector adapters registered once, when the pool
    creates them.

    Raises:
        psycopg.OperationalError: If unable to connect to database
    """
    global _pool
    with _pool_lock:
        if _pool is None:
            settings = settings or get_settings()
            options = pool_options(settings)
            logger.info(
                f"Opening database pool ({options['min_size']}-{options['max_size']} connections): "
                f"{settings.postgres_host}:{settings.postgres_port}/{settings.postgres_db}"
            )
            try:
                _pool = ConnectionPool(configure=register_vector, open=True, **options)
            except psycopg.Error as e:
                logger.error(f"Failed to open database pool: {e}")
                raise
    return _pool


@contextmanager
def get_sync_connection(settings: Optional[Settings] = None) -> Iterator[psycopg.Connection]:
    """
    Borrow a pooled connection for one knowledge-source query.

    Waiting for a free connection is bounded by ``source_timeout_seconds``.
    The pool rolls back and reclaims the connection when the block exits.

    Usage:
        ```python
        with get_sync_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT count(*) FROM romani_lexicon")
        ```

    Raises:
        psycopg_pool.PoolTimeout: If no connection frees up in time
        psycopg.DatabaseError: For errors raised by the query
    """
    settings = settings or get_settings()
    pool = get_pool(settings)
    try:
        with pool.connection(timeout=settings.source_timeout_seconds) as connection:
            yield connection
    except PoolTimeout as e:
        logger.warning(f"No database connection available: {e}")
        raise
    except psycopg.DatabaseError as e:
        logger.error(f"Database error: {e}")
        raise


def close_pool() -> None:
    """Close the shared pool; the next query opens a new one."""
    global _pool
    with _pool_lock:
        if _pool is not None:
            logger.info("Closing database pool")
            _pool.close()
            _pool = None
