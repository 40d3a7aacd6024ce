"""Database access layer using psycopg2.

Provides:
- get_conn(): connection from DATABASE_URL (or POSTGRES_URL)
- txn(): context manager for short, safe transactions

Only the candidates table lives here; conversation state is in memory.
"""

import os
from contextlib import contextmanager
from typing import Iterator

import psycopg2
from psycopg2.extensions import connection as PgConnection, cursor as PgCursor


def _get_dsn() -> str:
    dsn = os.environ.get("DATABASE_URL") or os.environ.get("POSTGRES_URL")
    if not dsn:
        raise RuntimeError("DATABASE_URL environment variable not set")
    return dsn


def get_conn() -> PgConnection:
    """Get a new database connection.

    Raises:
        RuntimeError: If neither DATABASE_URL nor POSTGRES_URL is set.
        psycopg2.Error: On connection failure.
    """
    return psycopg2.connect(_get_dsn())


@contextmanager
def txn(conn: PgConnection | None = None) -> Iterator[PgCursor]:
    """Context manager for a short, safe transaction.

    If conn is None, creates a new connection that is closed on exit.
    Commits on successful exit, rolls back on exception.

    Example:
        with txn() as cur:
            save_candidate(cur, name="Anna", phone="+7 999 123 45 67")
    """
    owns_conn = conn is None
    if owns_conn:
        conn = get_conn()

    try:
        with conn.cursor() as cur:
            yield cur
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        if owns_conn:
            conn.close()
