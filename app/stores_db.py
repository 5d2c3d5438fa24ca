"""PostgreSQL relational store backed by the psycopg2 pool."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterable

import psycopg2.extras

from app.db import execute, execute_returning, fetch_all, fetch_one, get_conn, transaction
from app.query_builder import POSTGRES
from app.stores import MutationResult
from spark.security import SecurityContext, require_context

logger = logging.getLogger("spark.db")

_SET_CONTEXT_SQL = "select set_config('app.current_user_id', %s, true), set_config('app.current_team_id', %s, true)"


def _adapt(params: Iterable[Any] | None) -> list[Any]:
    adapted: list[Any] = []
    for val in params or []:
        if isinstance(val, dict):
            adapted.append(psycopg2.extras.Json(val))
        elif isinstance(val, tuple):
            adapted.append(list(val))
        else:
            adapted.append(val)
    return adapted


def apply_security_context(conn, ctx: SecurityContext) -> None:
    """Expose the context to row-level-security policies for the current transaction."""
    execute(conn, _SET_CONTEXT_SQL, [ctx.user_id, ctx.team_id or ""], query_name="security_context.set")


class DbRelationalStore:
    dialect = POSTGRES

    def query_one(self, sql: str, params: Iterable[Any] | None, ctx: SecurityContext, query_name: str | None = None) -> dict | None:
        require_context(ctx)
        with get_conn() as conn:
            apply_security_context(conn, ctx)
            return fetch_one(conn, sql, _adapt(params), query_name=query_name)

    def query_many(self, sql: str, params: Iterable[Any] | None, ctx: SecurityContext, query_name: str | None = None) -> list[dict]:
        require_context(ctx)
        with get_conn() as conn:
            apply_security_context(conn, ctx)
            return fetch_all(conn, sql, _adapt(params), query_name=query_name)

    def mutate(self, sql: str, params: Iterable[Any] | None, ctx: SecurityContext, query_name: str | None = None) -> MutationResult:
        require_context(ctx)
        with get_conn() as conn:
            apply_security_context(conn, ctx)
            rows, rowcount = execute_returning(conn, sql, _adapt(params), query_name=query_name)
        return MutationResult(rows=rows, row_count=max(rowcount, 0))

    @contextmanager
    def transaction(self, ctx: SecurityContext):
        require_context(ctx)
        with transaction() as conn:
            apply_security_context(conn, ctx)
            logger.debug("db_tx begin user_id=%s team_id=%s", ctx.user_id, ctx.team_id)
            yield self
