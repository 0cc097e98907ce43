from __future__ import annotations

import logging
import os
import sqlite3
from abc import ABC, abstractmethod
from typing import Any
from zoneinfo import ZoneInfo

from . import logging_bridge
from .dates import to_millis
from .models import Posting

LOG = logging.getLogger(__name__)

TABLE = "vacancy"

# VARCHAR width of the name and link columns; Postgres rejects longer values
COLUMN_WIDTH = 512

# driver identifier (lower-cased) -> dialect
_DRIVERS = {
    "sqlite": "sqlite",
    "sqlite3": "sqlite",
    "org.sqlite.jdbc": "sqlite",
    "postgresql": "postgresql",
    "postgres": "postgresql",
    "psycopg2": "postgresql",
    "org.postgresql.driver": "postgresql",
}

_DDL = {
    "sqlite": f"""
        CREATE TABLE IF NOT EXISTS {TABLE} (
          id INTEGER PRIMARY KEY,
          name VARCHAR({COLUMN_WIDTH}) UNIQUE,
          text TEXT,
          link VARCHAR({COLUMN_WIDTH}),
          date_add BIGINT
        );
    """,
    "postgresql": f"""
        CREATE TABLE IF NOT EXISTS {TABLE} (
          id SERIAL PRIMARY KEY NOT NULL,
          name VARCHAR({COLUMN_WIDTH}) UNIQUE,
          text TEXT,
          link VARCHAR({COLUMN_WIDTH}),
          date_add BIGINT
        );
    """,
}

# sqlite3 is qmark, psycopg2 is pyformat
_PLACEHOLDER = {"sqlite": "?", "postgresql": "%s"}


# ---- Exceptions -------------------------------------------------------------


class StorageError(Exception):
    """A database operation failed after the connection was established."""


class StorageConnectionError(StorageError):
    """Storage unreachable, driver unknown or not installed."""


# ---- Interface --------------------------------------------------------------


class PostingStore(ABC):
    """
    Durable posting storage as seen by the crawl engine.

    Contract:
      - latest_timestamp(): newest stored published_at as epoch ms, 0 if empty.
      - insert(posting): True if written, False if the name already exists.
        A duplicate NEVER raises; uniqueness lives in the storage layer.
    """

    @abstractmethod
    def latest_timestamp(self) -> int:
        raise NotImplementedError

    @abstractmethod
    def insert(self, posting: Posting) -> bool:
        raise NotImplementedError

    def close(self) -> None:
        """Release the connection, if any."""

    def __enter__(self) -> PostingStore:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()


# ---- DB-API implementation --------------------------------------------------


class SqlPostingStore(PostingStore):
    """
    PostingStore over a DB-API 2 connection (sqlite3 or psycopg2).

    The table is created on connect if missing. Each insert commits on its own,
    so a crash mid-run keeps everything inserted so far.
    """

    def __init__(self, conn: Any, dialect: str, tz: ZoneInfo) -> None:
        self._conn = conn
        self.dialect = dialect
        self.tz = tz
        p = _PLACEHOLDER[dialect]
        self._sql_insert = (
            f"INSERT INTO {TABLE} (name, text, link, date_add) VALUES ({p}, {p}, {p}, {p}) "
            f"ON CONFLICT (name) DO NOTHING"
        )
        self._sql_latest = f"SELECT MAX(date_add) FROM {TABLE}"
        self._sql_count = f"SELECT COUNT(*) FROM {TABLE}"
        self._sql_recent = f"SELECT name, link, date_add FROM {TABLE} ORDER BY date_add DESC, id DESC LIMIT {p}"
        self._ensure_schema()

    # ------------- constructors -------------
    @classmethod
    def connect(cls, driver: str, url: str, username: str, password: str, *, tz: ZoneInfo) -> SqlPostingStore:
        """
        Open a connection for the configured driver.

        driver: sqlite | sqlite3 | postgresql | postgres | psycopg2 | org.postgresql.Driver
        url:    sqlite  -> file path, "sqlite:///path" or ":memory:"
                postgres -> libpq URI/DSN; a leading "jdbc:" is stripped
        """
        dialect = _DRIVERS.get((driver or "").strip().lower())
        if dialect is None:
            raise StorageConnectionError(f"Unsupported database driver: {driver!r}")

        try:
            if dialect == "sqlite":
                conn = _connect_sqlite(url)
            else:
                conn = _connect_postgres(url, username, password)
        except StorageConnectionError:
            raise
        except Exception as e:
            logging_bridge.error({
                "component": "vacancy_watch.db",
                "op": "connect",
                "driver": driver,
                "error": repr(e),
            })
            raise StorageConnectionError(f"Cannot connect ({driver}): {e}") from e

        return cls(conn, dialect, tz)

    # ------------- PostingStore -------------
    def latest_timestamp(self) -> int:
        row = self._fetchone(self._sql_latest, op="latest_timestamp")
        return int(row[0]) if row and row[0] is not None else 0

    def insert(self, posting: Posting) -> bool:
        params = (
            _fit(posting.name),
            posting.body,
            _fit(posting.link),
            to_millis(posting.published_at, self.tz),
        )
        cur = self._conn.cursor()
        try:
            cur.execute(self._sql_insert, params)
            inserted = cur.rowcount == 1
            self._conn.commit()
        except Exception as e:
            self._rollback()
            logging_bridge.error({
                "component": "vacancy_watch.db",
                "op": "insert",
                "name": posting.name,
                "link": posting.link,
                "error": repr(e),
            })
            raise StorageError(f"insert failed for {posting.name!r}: {e}") from e
        finally:
            cur.close()
        if not inserted:
            LOG.debug("Duplicate vacancy ignored: %s", posting.name)
        return inserted

    # ------------- diagnostics -------------
    def latest(self, limit: int = 15) -> list[tuple[str, str, int]]:
        """Newest stored vacancies as (name, link, date_add ms), newest first."""
        cur = self._conn.cursor()
        try:
            cur.execute(self._sql_recent, (int(limit),))
            rows = cur.fetchall()
            self._conn.commit()
        except Exception as e:
            self._rollback()
            logging_bridge.error({"component": "vacancy_watch.db", "op": "latest", "error": repr(e)})
            raise StorageError(f"latest failed: {e}") from e
        finally:
            cur.close()
        return [(r[0], r[1], int(r[2])) for r in rows]

    def count(self) -> int:
        """Return total rows in the vacancy table."""
        row = self._fetchone(self._sql_count, op="count")
        return int(row[0] or 0) if row else 0

    def close(self) -> None:
        try:
            self._conn.close()
        except Exception:
            LOG.debug("SqlPostingStore.close() swallow", exc_info=True)

    # ------------- internals -------------
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        try:
            cur.execute(_DDL[self.dialect])
            self._conn.commit()
        except Exception as e:
            self._rollback()
            raise StorageConnectionError(f"Cannot create table {TABLE!r}: {e}") from e
        finally:
            cur.close()

    def _fetchone(self, sql: str, *, op: str) -> Any:
        cur = self._conn.cursor()
        try:
            cur.execute(sql)
            row = cur.fetchone()
            self._conn.commit()
            return row
        except Exception as e:
            self._rollback()
            logging_bridge.error({"component": "vacancy_watch.db", "op": op, "error": repr(e)})
            raise StorageError(f"{op} failed: {e}") from e
        finally:
            cur.close()

    def _rollback(self) -> None:
        try:
            self._conn.rollback()
        except Exception:
            LOG.debug("rollback failed", exc_info=True)


# ---- Internal utilities -----------------------------------------------------


def _fit(value: str) -> str:
    if len(value) > COLUMN_WIDTH:
        LOG.debug("Truncating %d-char value to %d: %.60s...", len(value), COLUMN_WIDTH, value)
    return value[:COLUMN_WIDTH]


def _strip_jdbc(url: str) -> str:
    url = (url or "").strip()
    return url[len("jdbc:"):] if url.lower().startswith("jdbc:") else url


def _connect_sqlite(url: str) -> Any:
    path = _strip_jdbc(url)
    for prefix in ("sqlite:///", "sqlite:"):
        if path.startswith(prefix):
            path = path[len(prefix):]
            break
    if not path:
        raise StorageConnectionError("Empty sqlite path")
    if path != ":memory:":
        d = os.path.dirname(os.path.abspath(path)) or "."
        os.makedirs(d, exist_ok=True)
    return sqlite3.connect(path, timeout=30.0)


def _connect_postgres(url: str, username: str, password: str) -> Any:
    try:
        import psycopg2
    except ImportError as e:
        raise StorageConnectionError("Driver 'psycopg2' is not installed") from e
    return psycopg2.connect(_strip_jdbc(url), user=username or None, password=password or None)
