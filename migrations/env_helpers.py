"""Database URL helpers for Alembic migrations.

Kept apart from env.py so they can be tested without triggering
alembic.context at import time.

DATABASE_URL may be a URL (postgres://, postgresql://) or a libpq key=value
DSN, the same value infra.db hands to psycopg2.
"""

from __future__ import annotations

import os
from urllib.parse import quote_plus, urlparse, urlunparse

from psycopg2.extensions import parse_dsn

DRIVER_SCHEME = "postgresql+psycopg2://"


def _libpq_dsn_to_url(dsn: str) -> str:
    """Convert a libpq key=value DSN to a SQLAlchemy URL.

    A host starting with "/" is a unix socket directory and goes into the
    query string: postgresql+psycopg2://USER:PASS@/DB?host=/var/run/postgresql
    """
    params = parse_dsn(dsn)
    password = params.get("password") or os.environ.get("DB_PASSWORD", "")

    credentials = quote_plus(params.get("user", ""))
    if password:
        credentials += f":{quote_plus(password)}"
    dbname = quote_plus(params.get("dbname", ""))
    host = params.get("host", "localhost")

    if host.startswith("/"):
        return f"{DRIVER_SCHEME}{credentials}@/{dbname}?host={quote_plus(host)}"
    return f"{DRIVER_SCHEME}{credentials}@{host}:{params.get('port', '5432')}/{dbname}"


def _with_password(url: str, password: str) -> str:
    parsed = urlparse(url)
    if parsed.password:
        return url
    netloc = f"{quote_plus(parsed.username or '')}:{quote_plus(password)}@{parsed.hostname}"
    if parsed.port:
        netloc += f":{parsed.port}"
    return urlunparse(parsed._replace(netloc=netloc))


def _get_database_url() -> str:
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is required to run migrations")
    if "://" not in url:
        return _libpq_dsn_to_url(url)

    for scheme in ("postgres://", "postgresql://"):
        if url.startswith(scheme):
            url = DRIVER_SCHEME + url[len(scheme):]
            break

    db_password = os.environ.get("DB_PASSWORD", "")
    return _with_password(url, db_password) if db_password else url
