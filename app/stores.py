"""Embedded SQLite relational store for tests and local runs, plus the store factory."""

from __future__ import annotations

import json
import os
import sqlite3
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterable, List

from app.db import record_query
from app.query_builder import SQLITE
from entity_registry import MULTI_CHOICE_TYPES, NUMERIC_TYPES, EntityDefinition, FieldType
from spark.identifiers import quote_identifier
from spark.security import SecurityContext, require_context


@dataclass
class MutationResult:
    rows: List[dict] = field(default_factory=list)
    row_count: int = 0


TEAM_MEMBERS_DDL = """
create table if not exists "team_members" (
  "id" text primary key,
  "teamId" text not null,
  "userId" text not null,
  "role" text not null,
  "invitedBy" text,
  "joinedAt" text not null,
  "updatedAt" text not null,
  unique ("teamId", "userId")
)
"""


def _column_type(ftype: FieldType) -> str:
    if ftype in NUMERIC_TYPES:
        return "numeric"
    if ftype == FieldType.BOOLEAN:
        return "boolean"
    return "text"


def _bind(params: Iterable[Any] | None) -> list[Any]:
    bound: list[Any] = []
    for val in params or []:
        if isinstance(val, (list, tuple, dict)):
            bound.append(json.dumps(val, default=str))
        else:
            bound.append(val)
    return bound


class SqliteRelationalStore:
    """Relational store over one SQLite connection.

    SQLite has no row-level security, so the security context only matters
    here through the predicates the query builder puts into every statement.
    Calls are serialized on a re-entrant lock held for the whole of a
    transaction.
    """

    dialect = SQLITE

    def __init__(self, path: str = ":memory:") -> None:
        self._conn = sqlite3.connect(path, check_same_thread=False, isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._tx_depth = 0

    def close(self) -> None:
        self._conn.close()

    def _run(self, sql: str, params: Iterable[Any] | None, query_name: str | None) -> tuple[list[dict], int]:
        start = time.perf_counter()
        with self._lock:
            cur = self._conn.execute(sql, _bind(params))
            try:
                rows = [dict(r) for r in cur.fetchall()] if cur.description else []
                rowcount = cur.rowcount
            finally:
                cur.close()
        record_query(query_name=query_name, params=params, elapsed_ms=(time.perf_counter() - start) * 1000, rowcount=rowcount)
        return rows, rowcount

    def query_one(self, sql: str, params: Iterable[Any] | None, ctx: SecurityContext, query_name: str | None = None) -> dict | None:
        require_context(ctx)
        rows, _ = self._run(sql, params, query_name)
        return rows[0] if rows else None

    def query_many(self, sql: str, params: Iterable[Any] | None, ctx: SecurityContext, query_name: str | None = None) -> list[dict]:
        require_context(ctx)
        rows, _ = self._run(sql, params, query_name)
        return rows

    def mutate(self, sql: str, params: Iterable[Any] | None, ctx: SecurityContext, query_name: str | None = None) -> MutationResult:
        require_context(ctx)
        rows, rowcount = self._run(sql, params, query_name)
        return MutationResult(rows=rows, row_count=len(rows) if rows else max(rowcount, 0))

    @contextmanager
    def transaction(self, ctx: SecurityContext):
        require_context(ctx)
        with self._lock:
            if self._tx_depth:
                self._tx_depth += 1
                try:
                    yield self
                finally:
                    self._tx_depth -= 1
                return
            self._conn.execute("BEGIN")
            self._tx_depth = 1
            try:
                yield self
            except Exception:
                self._conn.execute("ROLLBACK")
                raise
            else:
                self._conn.execute("COMMIT")
            finally:
                self._tx_depth = 0

    def ensure_entity_table(self, definition: EntityDefinition) -> None:
        columns = [
            '"id" text primary key',
            '"userId" text not null',
            '"teamId" text',
            '"createdAt" text not null',
            '"updatedAt" text not null',
        ]
        for f in definition.fields:
            ftype = FieldType(f.type)
            column_type = "text" if ftype in MULTI_CHOICE_TYPES else _column_type(ftype)
            columns.append(f"{quote_identifier(f.name, 'field')} {column_type}")
        table = quote_identifier(definition.table, "table")
        with self._lock:
            self._conn.execute(f"create table if not exists {table} ({', '.join(columns)})")

    def ensure_team_members_table(self) -> None:
        with self._lock:
            self._conn.execute(TEAM_MEMBERS_DDL)


def build_store():
    """Return the PostgreSQL store when ``USE_DB=1``, else an SQLite one."""
    if os.getenv("USE_DB", "0") == "1":
        from app.stores_db import DbRelationalStore

        return DbRelationalStore()
    return SqliteRelationalStore(os.getenv("SPARK_SQLITE_PATH", ":memory:"))
