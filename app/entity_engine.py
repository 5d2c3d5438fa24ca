"""Generic CRUD over registry-defined entities.

The engine resolves an entity definition by slug, validates payloads,
builds parameterized SQL scoped to the caller's security context, runs it
through a relational store and fires before/after hooks around mutations.

    engine = EntityEngine(registry, store, hooks)
    ctx = SecurityContext(user_id="user-1", team_id="team-1")
    row = engine.create("customers", ctx, {"name": "Acme", "status": "active"})
    page = engine.list("customers", ctx, ListOptions(where={"status": "active"}))
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

from app.field_validation import validate_entity_data
from app.field_values import row_from_storage, to_storage
from app.query_builder import DEFAULT_LIMIT, DEFAULT_ORDER_BY, DEFAULT_ORDER_DIR, Query, QueryBuilder
from entity_registry import EntityDefinition, EntityRegistry
from hook_registry import Abort, HookContext, HookRegistry
from spark.errors import (
    EntityCreateFailedError,
    EntityNotFoundError,
    HookVetoError,
    MissingArgumentError,
    NoFieldsToUpdateError,
    ValidationError,
)
from spark.security import SecurityContext, require_context

logger = logging.getLogger("spark.engine")

EntityRow = Dict[str, Any]


@dataclass
class ListOptions:
    where: Dict[str, Any] = field(default_factory=dict)
    team_id: str | None = None
    search: str | None = None
    order_by: str = DEFAULT_ORDER_BY
    order_dir: str = DEFAULT_ORDER_DIR
    limit: int = DEFAULT_LIMIT
    offset: int = 0


@dataclass
class ListResult:
    data: List[EntityRow]
    total: int
    limit: int
    offset: int

    def as_dict(self) -> dict:
        return {"data": self.data, "total": self.total, "limit": self.limit, "offset": self.offset}


def _require_id(record_id: Any) -> str:
    if not isinstance(record_id, str) or not record_id.strip():
        raise MissingArgumentError(message="Entity ID is required", argument="id")
    return record_id


class EntityEngine:
    def __init__(self, registry: EntityRegistry, store, hooks: HookRegistry | None = None) -> None:
        self._registry = registry
        self._store = store
        self._hooks = hooks or HookRegistry()

    @property
    def hooks(self) -> HookRegistry:
        return self._hooks

    def _resolve(self, slug: str) -> tuple[EntityDefinition, QueryBuilder]:
        definition = self._registry.require(slug)
        return definition, QueryBuilder(definition, self._store.dialect)

    def _one(self, query: Query, ctx: SecurityContext) -> dict | None:
        return self._store.query_one(query.sql, query.params, ctx, query_name=query.name)

    def _many(self, query: Query, ctx: SecurityContext) -> list[dict]:
        return self._store.query_many(query.sql, query.params, ctx, query_name=query.name)

    def _mutate(self, query: Query, ctx: SecurityContext):
        return self._store.mutate(query.sql, query.params, ctx, query_name=query.name)

    def _before(self, slug: str, operation: str, ctx: SecurityContext, data: dict | None, previous: dict | None) -> dict | None:
        context = HookContext(
            entity=slug,
            operation=operation,
            user_id=ctx.user_id,
            team_id=ctx.team_id,
            data=data,
            previous_data=previous,
        )
        decision = self._hooks.execute_before_hooks(slug, operation, context)
        if isinstance(decision, Abort):
            raise HookVetoError(message=decision.reason, entity=slug, operation=operation)
        return decision.data if decision.data is not None else data

    def _after(self, slug: str, operation: str, ctx: SecurityContext, data: dict | None, previous: dict | None) -> None:
        context = HookContext(
            entity=slug,
            operation=operation,
            user_id=ctx.user_id,
            team_id=ctx.team_id,
            data=data,
            previous_data=previous,
        )
        self._hooks.execute_after_hooks(slug, operation, context)

    def _validate(self, definition: EntityDefinition, data: dict, is_update: bool) -> None:
        result = validate_entity_data(definition, data, is_update=is_update)
        if not result.valid:
            raise ValidationError(message="Validation failed", errors=list(result.errors))

    # Reads

    def get_by_id(self, slug: str, record_id: str, ctx: SecurityContext) -> EntityRow | None:
        _require_id(record_id)
        require_context(ctx)
        definition, builder = self._resolve(slug)
        row = self._one(builder.select_by_id(record_id, ctx), ctx)
        return row_from_storage(row, definition) if row else None

    def list(self, slug: str, ctx: SecurityContext, options: ListOptions | None = None) -> ListResult:
        """Return one page plus the total matching the same filters.

        The total is counted first, in its own statement, so under concurrent
        writes it may briefly disagree with the page that follows.
        """
        require_context(ctx)
        options = options or ListOptions()
        definition, builder = self._resolve(slug)
        page_query = builder.select_page(
            ctx,
            filters=options.where,
            team_id=options.team_id,
            search=options.search,
            order_by=options.order_by,
            order_dir=options.order_dir,
            limit=options.limit,
            offset=options.offset,
        )
        count_row = self._one(builder.count(ctx, options.where, options.team_id, options.search), ctx)
        total = int((count_row or {}).get("count") or 0)
        rows = self._many(page_query, ctx)
        return ListResult(
            data=[row_from_storage(r, definition) for r in rows],
            total=total,
            limit=options.limit,
            offset=options.offset,
        )

    def exists(self, slug: str, record_id: str, ctx: SecurityContext) -> bool:
        if not isinstance(record_id, str) or not record_id.strip():
            return False
        if not isinstance(ctx, SecurityContext) or not (ctx.user_id or "").strip():
            return False
        _, builder = self._resolve(slug)
        row = self._one(builder.exists(record_id, ctx), ctx)
        return bool((row or {}).get("found"))

    def count(self, slug: str, ctx: SecurityContext, where: dict | None = None) -> int:
        require_context(ctx)
        _, builder = self._resolve(slug)
        row = self._one(builder.count(ctx, where), ctx)
        return int((row or {}).get("count") or 0)

    # Mutations

    def create(self, slug: str, ctx: SecurityContext, data: dict) -> EntityRow:
        require_context(ctx, require_team=True)
        definition, builder = self._resolve(slug)
        payload = dict(data or {})
        self._validate(definition, payload, is_update=False)
        final = self._before(slug, "create", ctx, payload, None)
        if final is not payload:
            self._validate(definition, final, is_update=False)
        result = self._mutate(builder.insert(ctx, str(uuid.uuid4()), to_storage(definition, final)), ctx)
        if not result.rows:
            raise EntityCreateFailedError(message="Failed to create entity", slug=slug)
        created = row_from_storage(result.rows[0], definition)
        logger.info("entity_created entity=%s id=%s user_id=%s team_id=%s", slug, created.get("id"), ctx.user_id, ctx.team_id)
        self._after(slug, "create", ctx, created, None)
        return created

    def update(self, slug: str, record_id: str, ctx: SecurityContext, data: dict) -> EntityRow:
        _require_id(record_id)
        require_context(ctx)
        if not data:
            raise NoFieldsToUpdateError(message="No fields to update")
        definition, builder = self._resolve(slug)
        payload = dict(data)
        if not builder.writable_fields(payload):
            raise NoFieldsToUpdateError(message="No fields to update")
        self._validate(definition, payload, is_update=True)
        current = self._one(builder.select_by_id(record_id, ctx), ctx)
        if not current:
            raise EntityNotFoundError(message="Entity not found or not authorized", slug=slug, record_id=record_id)
        previous = row_from_storage(current, definition)
        final = self._before(slug, "update", ctx, payload, previous)
        if final is not payload:
            self._validate(definition, final, is_update=True)
        result = self._mutate(builder.update(record_id, ctx, to_storage(definition, final)), ctx)
        if not result.rows:
            raise EntityNotFoundError(message="Entity not found or not authorized", slug=slug, record_id=record_id)
        updated = row_from_storage(result.rows[0], definition)
        logger.info("entity_updated entity=%s id=%s user_id=%s", slug, record_id, ctx.user_id)
        self._after(slug, "update", ctx, updated, previous)
        return updated

    def delete(self, slug: str, record_id: str, ctx: SecurityContext) -> bool:
        _require_id(record_id)
        require_context(ctx)
        definition, builder = self._resolve(slug)
        current = self._one(builder.select_by_id(record_id, ctx), ctx)
        if not current:
            return False
        previous = row_from_storage(current, definition)
        self._before(slug, "delete", ctx, None, previous)
        result = self._mutate(builder.delete_by_id(record_id, ctx), ctx)
        deleted = result.row_count > 0
        if deleted:
            logger.info("entity_deleted entity=%s id=%s user_id=%s", slug, record_id, ctx.user_id)
            self._after(slug, "delete", ctx, None, previous)
        return deleted

    def delete_many(self, slug: str, record_ids: Iterable[str], ctx: SecurityContext, execute_hooks: bool = False) -> int:
        """Delete several rows and return how many went.

        Without hooks this is one batched statement. With ``execute_hooks``
        each id goes through ``delete`` so hooks fire per row; those deletes
        are sequential and not wrapped in one transaction.
        """
        ids = [i for i in (record_ids or []) if isinstance(i, str) and i.strip()]
        if not ids:
            raise MissingArgumentError(message="At least one ID is required", argument="ids")
        require_context(ctx)
        _, builder = self._resolve(slug)
        if execute_hooks:
            return sum(1 for record_id in ids if self.delete(slug, record_id, ctx))
        result = self._mutate(builder.delete_many(ids, ctx), ctx)
        logger.info("entity_deleted_many entity=%s requested=%s deleted=%s", slug, len(ids), result.row_count)
        return result.row_count
