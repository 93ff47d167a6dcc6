"""
Health Facility Registry — Database Connection Module

Provides a thread-safe connection pool using psycopg2. Configuration
via environment variables with local development defaults.

When the database is unavailable, the app falls back to an in-memory
store so imports can still be exercised end to end.

Usage:
    from facility_registry import db

    if db.init_pool():
        with db.get_conn() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute("SELECT count(*) FROM health_facilities")
                print(cur.fetchone()["count"])
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import psycopg2
from psycopg2 import pool, extras  # noqa: F401  (extras re-exported for callers)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration (env vars with local defaults)
# ---------------------------------------------------------------------------

DB_CONFIG = {
    "host": os.environ.get("HFR_DB_HOST", "localhost"),
    "port": int(os.environ.get("HFR_DB_PORT", "5432")),
    "dbname": os.environ.get("HFR_DB_NAME", "hfr_registry"),
    "user": os.environ.get("HFR_DB_USER", "hfr"),
    "password": os.environ.get("HFR_DB_PASSWORD", "hfr_local_dev"),
}

SCHEMA_FILE = Path(__file__).resolve().parent / "schema.sql"

_pool: pool.ThreadedConnectionPool | None = None


# ---------------------------------------------------------------------------
# Pool lifecycle
# ---------------------------------------------------------------------------


def init_pool(minconn: int = 1, maxconn: int = 5) -> bool:
    """
    Initialize the connection pool.

    Returns True if the database is reachable and the pool is ready.
    Returns False on any failure — the app should fall back to memory mode.
    """
    global _pool
    try:
        _pool = pool.ThreadedConnectionPool(minconn, maxconn, **DB_CONFIG)
        conn = _pool.getconn()
        cur = conn.cursor()
        cur.execute("SELECT 1")
        cur.close()
        _pool.putconn(conn)
        logger.info(
            "Database pool initialized (%s@%s:%s/%s)",
            DB_CONFIG["user"],
            DB_CONFIG["host"],
            DB_CONFIG["port"],
            DB_CONFIG["dbname"],
        )
        return True
    except psycopg2.Error as e:
        logger.warning("Database unavailable, falling back to memory store: %s", e)
        if _pool is not None:
            _pool.closeall()
        _pool = None
        return False


def close_pool() -> None:
    """Close all pool connections. Called at app shutdown."""
    global _pool
    if _pool is not None:
        _pool.closeall()
        _pool = None
        logger.info("Database pool closed.")


def is_available() -> bool:
    """Check whether the database connection pool is active."""
    return _pool is not None


def init_schema() -> None:
    """Apply schema.sql (idempotent CREATE ... IF NOT EXISTS statements)."""
    ddl = SCHEMA_FILE.read_text(encoding="utf-8")
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(ddl)
    logger.info("Schema applied from %s", SCHEMA_FILE.name)


def connect():
    """Open a standalone connection outside the pool (CLI use)."""
    conn = psycopg2.connect(**DB_CONFIG)
    conn.autocommit = False
    return conn


# ---------------------------------------------------------------------------
# Connection context manager
# ---------------------------------------------------------------------------


class get_conn:
    """
    Context manager that checks out a connection from the pool.

    Commits on clean exit, rolls back on exception, always returns the
    connection to the pool.

    Usage::

        with db.get_conn() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute("SELECT ...")
                rows = cur.fetchall()
    """

    def __enter__(self):
        if _pool is None:
            raise RuntimeError("Database pool not initialized")
        self.conn = _pool.getconn()
        return self.conn

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.conn.rollback()
        else:
            self.conn.commit()
        _pool.putconn(self.conn)
        return False  # don't suppress exceptions
