"""Parameterized SQL for registry-defined entity tables."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, List

from entity_registry import SYSTEM_FIELDS, EntityDefinition
from spark.errors import InvalidFilterFieldError, InvalidPaginationError, NoFieldsToUpdateError
from spark.identifiers import quote_identifier, validate_identifier
from spark.security import SecurityContext

logger = logging.getLogger("spark.engine")

DEFAULT_LIMIT = 20
DEFAULT_ORDER_BY = "createdAt"
DEFAULT_ORDER_DIR = "desc"


@dataclass(frozen=True)
class Dialect:
    name: str
    placeholder: str
    like_operator: str
    now_sql: str
    array_params: bool

    def membership(self, column_sql: str, values: Iterable[Any]) -> tuple[str, list]:
        values = list(values)
        if self.array_params:
            return f"{column_sql} = ANY({self.placeholder})", [values]
        if not values:
            return "1 = 0", []
        marks = ", ".join([self.placeholder] * len(values))
        return f"{column_sql} IN ({marks})", values


POSTGRES = Dialect(name="postgres", placeholder="%s", like_operator="ILIKE", now_sql="now()", array_params=True)
SQLITE = Dialect(
    name="sqlite",
    placeholder="?",
    like_operator="LIKE",
    now_sql="strftime('%Y-%m-%dT%H:%M:%fZ', 'now')",
    array_params=False,
)


@dataclass(frozen=True)
class Query:
    sql: str
    params: List[Any] = field(default_factory=list)
    name: str | None = None


class _Where:
    """WHERE clause that always starts with the security-context predicate."""

    def __init__(self, dialect: Dialect, ctx: SecurityContext) -> None:
        self._dialect = dialect
        self.parts: list[str] = [f"{quote_identifier(ctx.scope_column())} = {dialect.placeholder}"]
        self.params: list[Any] = [ctx.scope_value()]

    def equals(self, column: str, value: Any) -> None:
        column_sql = quote_identifier(column, "field")
        if value is None:
            self.parts.append(f"{column_sql} IS NULL")
        elif isinstance(value, (list, tuple, set, frozenset)):
            clause, params = self._dialect.membership(column_sql, value)
            self.parts.append(clause)
            self.params.extend(params)
        else:
            self.parts.append(f"{column_sql} = {self._dialect.placeholder}")
            self.params.append(value)

    def add(self, clause: str, params: Iterable[Any] = ()) -> None:
        self.parts.append(clause)
        self.params.extend(params)

    def sql(self) -> str:
        return "WHERE " + " AND ".join(self.parts)


class QueryBuilder:
    def __init__(self, definition: EntityDefinition, dialect: Dialect = POSTGRES) -> None:
        self.definition = definition
        self.dialect = dialect
        self.table = quote_identifier(definition.table, "table")
        self.field_names = [validate_identifier(name, "field") for name in definition.field_names()]
        self.columns = list(SYSTEM_FIELDS) + self.field_names
        self.searchable = [name for name in definition.searchable_fields() if name in self.field_names]
        self._select = ", ".join(quote_identifier(c) for c in self.columns)

    def _name(self, op: str) -> str:
        return f"{self.definition.slug}.{op}"

    def where(
        self,
        ctx: SecurityContext,
        filters: dict | None = None,
        team_id: str | None = None,
        search: str | None = None,
    ) -> _Where:
        where = _Where(self.dialect, ctx)
        effective = dict(filters or {})
        if team_id:
            effective["teamId"] = team_id
        for key, value in effective.items():
            if key not in self.columns:
                raise InvalidFilterFieldError(message=f'Invalid filter field: "{key}"', field_name=str(key))
            where.equals(key, value)
        term = search.strip() if isinstance(search, str) else ""
        if term and self.searchable:
            p = self.dialect.placeholder
            op = self.dialect.like_operator
            ors = " OR ".join(f"{quote_identifier(name)} {op} {p}" for name in self.searchable)
            where.add(f"({ors})", [f"%{term}%"] * len(self.searchable))
        return where

    def select_by_id(self, record_id: str, ctx: SecurityContext) -> Query:
        where = _Where(self.dialect, ctx)
        where.equals("id", record_id)
        return Query(f"SELECT {self._select} FROM {self.table} {where.sql()}", where.params, self._name("get"))

    def exists(self, record_id: str, ctx: SecurityContext) -> Query:
        where = _Where(self.dialect, ctx)
        where.equals("id", record_id)
        return Query(
            f"SELECT EXISTS(SELECT 1 FROM {self.table} {where.sql()}) AS found",
            where.params,
            self._name("exists"),
        )

    def count(
        self,
        ctx: SecurityContext,
        filters: dict | None = None,
        team_id: str | None = None,
        search: str | None = None,
    ) -> Query:
        where = self.where(ctx, filters, team_id, search)
        return Query(f"SELECT COUNT(*) AS count FROM {self.table} {where.sql()}", where.params, self._name("count"))

    def select_page(
        self,
        ctx: SecurityContext,
        filters: dict | None = None,
        team_id: str | None = None,
        search: str | None = None,
        order_by: str | None = None,
        order_dir: str | None = None,
        limit: int = DEFAULT_LIMIT,
        offset: int = 0,
    ) -> Query:
        _check_pagination(limit, offset)
        where = self.where(ctx, filters, team_id, search)
        column = order_by or DEFAULT_ORDER_BY
        if column not in self.columns:
            logger.debug("order_by_fallback entity=%s requested=%s", self.definition.slug, column)
            column = DEFAULT_ORDER_BY
        direction = "ASC" if str(order_dir or DEFAULT_ORDER_DIR).lower() == "asc" else "DESC"
        p = self.dialect.placeholder
        order = f"{quote_identifier(column)} {direction}"
        if column != "id":
            order += f', "id" {direction}'
        sql = f"SELECT {self._select} FROM {self.table} {where.sql()} ORDER BY {order} LIMIT {p} OFFSET {p}"
        return Query(sql, where.params + [limit, offset], self._name("list"))

    def insert(self, ctx: SecurityContext, record_id: str, data: dict) -> Query:
        p = self.dialect.placeholder
        now = self.dialect.now_sql
        columns = ["id", "userId", "teamId", "createdAt", "updatedAt"]
        values = [p, p, p, now, now]
        params: list[Any] = [record_id, ctx.user_id, ctx.team_id]
        for name in self.field_names:
            if data.get(name) is not None:
                columns.append(name)
                values.append(p)
                params.append(data[name])
        sql = (
            f"INSERT INTO {self.table} ({', '.join(quote_identifier(c) for c in columns)}) "
            f"VALUES ({', '.join(values)}) RETURNING {self._select}"
        )
        return Query(sql, params, self._name("create"))

    def writable_fields(self, data: dict) -> list[str]:
        return [name for name in self.field_names if name in data]

    def update(self, record_id: str, ctx: SecurityContext, data: dict) -> Query:
        names = self.writable_fields(data)
        if not names:
            raise NoFieldsToUpdateError(message="No fields to update")
        p = self.dialect.placeholder
        sets = [f"{quote_identifier(name)} = {p}" for name in names]
        sets.append(f'"updatedAt" = {self.dialect.now_sql}')
        where = _Where(self.dialect, ctx)
        where.equals("id", record_id)
        sql = f"UPDATE {self.table} SET {', '.join(sets)} {where.sql()} RETURNING {self._select}"
        return Query(sql, [data[name] for name in names] + where.params, self._name("update"))

    def delete_by_id(self, record_id: str, ctx: SecurityContext) -> Query:
        where = _Where(self.dialect, ctx)
        where.equals("id", record_id)
        return Query(f"DELETE FROM {self.table} {where.sql()}", where.params, self._name("delete"))

    def delete_many(self, record_ids: Iterable[str], ctx: SecurityContext) -> Query:
        where = _Where(self.dialect, ctx)
        where.equals("id", list(record_ids))
        return Query(f"DELETE FROM {self.table} {where.sql()}", where.params, self._name("delete_many"))


def _check_pagination(limit: Any, offset: Any) -> None:
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise InvalidPaginationError(message=f"limit must be a positive integer, got {limit!r}")
    if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
        raise InvalidPaginationError(message=f"offset must be a non-negative integer, got {offset!r}")
