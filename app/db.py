"""PostgreSQL access: a psycopg2 connection pool plus per-context query tracing.

Every statement run through this module (and through the SQLite store, which
calls ``record_query`` itself) is counted in a context-local trace, so tests
and request handlers can assert on how many queries an operation issued and
in what order.
"""

from __future__ import annotations

import contextvars
import logging
import os
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator

import psycopg2.extras
from psycopg2.pool import ThreadedConnectionPool

_logger = logging.getLogger("spark.db")
_query_logger = logging.getLogger("spark.db.query")

POOL_MIN = int(os.getenv("SPARK_DB_POOL_MIN", "1"))
POOL_MAX = int(os.getenv("SPARK_DB_POOL_MAX", "10"))
SLOW_QUERY_MS = float(os.getenv("SPARK_QUERY_SLOW_MS", "200"))
LOG_ALL_QUERIES = os.getenv("SPARK_QUERY_LOG", "").strip() == "1"


def get_db_url() -> str:
    url = os.getenv("DATABASE_URL") or os.getenv("SUPABASE_DB_URL")
    if not url:
        raise RuntimeError("DATABASE_URL or SUPABASE_DB_URL is required when USE_DB=1")
    return url


@dataclass
class _QueryTrace:
    queries: int = 0
    total_ms: float = 0.0
    acquire_ms: float = 0.0
    names: list = field(default_factory=list)


_TRACE: contextvars.ContextVar[_QueryTrace | None] = contextvars.ContextVar("spark_db_trace", default=None)
_PINNED: contextvars.ContextVar[Any | None] = contextvars.ContextVar("spark_db_pinned_conn", default=None)

_pool: ThreadedConnectionPool | None = None
_pool_lock = threading.Lock()


def _trace() -> _QueryTrace:
    trace = _TRACE.get()
    if trace is None:
        trace = _QueryTrace()
        _TRACE.set(trace)
    return trace


def reset_db_stats() -> None:
    _TRACE.set(_QueryTrace())


def get_db_stats() -> dict:
    trace = _trace()
    return {"queries": trace.queries, "total_ms": trace.total_ms, "acquire_ms": trace.acquire_ms}


def get_db_query_log() -> list:
    """Names of the statements run in this context since the last reset, oldest first."""
    return list(_trace().names)


def _loggable(params: Iterable[Any] | None) -> list | None:
    if params is None:
        return None
    shown = []
    for value in params:
        if isinstance(value, (bytes, bytearray, memoryview)):
            shown.append(f"<{len(value)} bytes>")
        elif isinstance(value, str) and len(value) > 80:
            shown.append(value[:40] + "...")
        elif isinstance(value, (list, tuple)) and len(value) > 10:
            shown.append(f"<{len(value)} items>")
        else:
            shown.append(value)
    return shown


def record_query(
    *,
    query_name: str | None,
    params: Iterable[Any] | None,
    elapsed_ms: float,
    rowcount: int | None,
) -> None:
    trace = _trace()
    trace.queries += 1
    trace.total_ms += elapsed_ms
    trace.names.append(query_name or "unnamed")

    slow = elapsed_ms >= SLOW_QUERY_MS
    if not (slow or LOG_ALL_QUERIES or _query_logger.isEnabledFor(logging.DEBUG)):
        return
    details = "query=%s ms=%.2f rowcount=%s params=%s"
    args = (query_name or "unnamed", elapsed_ms, rowcount, _loggable(params))
    if slow:
        _query_logger.warning("db_slow_query " + details, *args)
    elif LOG_ALL_QUERIES:
        _query_logger.info("db_query " + details, *args)
    else:
        _query_logger.debug("db_query " + details, *args)


def init_pool(minconn: int = POOL_MIN, maxconn: int = POOL_MAX) -> ThreadedConnectionPool:
    global _pool
    with _pool_lock:
        if _pool is None:
            _pool = ThreadedConnectionPool(minconn, maxconn, dsn=get_db_url())
            _logger.info("db_pool_opened min=%s max=%s", minconn, maxconn)
        return _pool


def close_pool() -> None:
    global _pool
    with _pool_lock:
        if _pool is not None:
            _pool.closeall()
            _pool = None
            _logger.info("db_pool_closed")


@contextmanager
def _borrowed() -> Iterator[Any]:
    pool = _pool or init_pool()
    started = time.perf_counter()
    conn = pool.getconn()
    _trace().acquire_ms += (time.perf_counter() - started) * 1000
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        pool.putconn(conn)


@contextmanager
def get_conn() -> Iterator[Any]:
    """Yield a connection that commits on success and rolls back on error.

    Inside ``transaction()`` this yields the pinned connection and leaves
    commit and rollback to the enclosing transaction.
    """
    pinned = _PINNED.get()
    if pinned is not None:
        yield pinned
        return
    with _borrowed() as conn:
        yield conn


@contextmanager
def transaction() -> Iterator[Any]:
    """Pin one connection for the block so every ``get_conn`` inside shares it."""
    pinned = _PINNED.get()
    if pinned is not None:
        yield pinned
        return
    with _borrowed() as conn:
        token = _PINNED.set(conn)
        try:
            yield conn
        finally:
            _PINNED.reset(token)


def _run(conn, sql: str, params: Iterable[Any] | None, query_name: str | None, consume) -> Any:
    started = time.perf_counter()
    with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
        cur.execute(sql, list(params or []))
        result = consume(cur)
        rowcount = cur.rowcount
    record_query(
        query_name=query_name,
        params=params,
        elapsed_ms=(time.perf_counter() - started) * 1000,
        rowcount=rowcount,
    )
    return result


def _all_rows(cur) -> list[dict]:
    return [dict(row) for row in cur.fetchall()] if cur.description else []


def fetch_one(conn, sql: str, params: Iterable[Any] | None = None, query_name: str | None = None) -> dict | None:
    row = _run(conn, sql, params, query_name, lambda cur: cur.fetchone())
    return dict(row) if row else None


def fetch_all(conn, sql: str, params: Iterable[Any] | None = None, query_name: str | None = None) -> list[dict]:
    return _run(conn, sql, params, query_name, _all_rows)


def execute(conn, sql: str, params: Iterable[Any] | None = None, query_name: str | None = None) -> int:
    return _run(conn, sql, params, query_name, lambda cur: cur.rowcount)


def execute_returning(
    conn, sql: str, params: Iterable[Any] | None = None, query_name: str | None = None
) -> tuple[list[dict], int]:
    """Run a write and return ``(rows from RETURNING, affected row count)``."""
    return _run(conn, sql, params, query_name, lambda cur: (_all_rows(cur), cur.rowcount))
