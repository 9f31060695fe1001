"""
db/connection.py
----------------
Manages the PostgreSQL connection pool.
Uses psycopg2's SimpleConnectionPool for efficient connection reuse.
Store calls run in worker threads, so the pool is thread-safe.
"""

from contextlib import contextmanager
from typing import Iterator

import psycopg2
from psycopg2 import pool
from config import DATABASE_URL
from utils.logger import get_logger

logger = get_logger(__name__)

_pool: pool.ThreadedConnectionPool | None = None


def init_pool(min_conn: int = 1, max_conn: int = 5) -> None:
    """
    Initialize the database connection pool.

    Args:
        min_conn: Minimum number of connections to keep open.
        max_conn: Maximum number of connections allowed.

    Raises:
        psycopg2.OperationalError: If the database is unreachable.
    """
    global _pool
    if _pool is not None:
        return
    try:
        _pool = pool.ThreadedConnectionPool(min_conn, max_conn, DATABASE_URL)
        logger.info("Database connection pool initialized successfully.")
    except psycopg2.OperationalError as e:
        logger.error(f"Failed to initialize database pool: {e}")
        raise


def get_connection():
    """
    Get a connection from the pool.

    Raises:
        RuntimeError: If the pool has not been initialized.
    """
    if _pool is None:
        raise RuntimeError("Database pool not initialized. Call init_pool() first.")
    return _pool.getconn()


def release_connection(conn) -> None:
    """Return a connection back to the pool."""
    if _pool is not None:
        _pool.putconn(conn)


@contextmanager
def transaction() -> Iterator:
    """
    Borrow a connection for one transaction.

    Commits when the block exits normally, rolls back on any exception
    and always returns the connection to the pool.

    Usage:
        with transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(...)
    """
    conn = get_connection()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        release_connection(conn)


def close_pool() -> None:
    """Close all connections in the pool."""
    global _pool
    if _pool is not None:
        _pool.closeall()
        _pool = None
        logger.info("Database connection pool closed.")
