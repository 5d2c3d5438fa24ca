"""In-memory entity registry holding validated entity definitions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Tuple

from spark.errors import (
    EntityAlreadyRegisteredError,
    EntityNotFoundInRegistryError,
    InvalidEntityDefinitionError,
)
from spark.identifiers import is_safe_identifier

logger = logging.getLogger("spark.registry")

SYSTEM_FIELDS: Tuple[str, ...] = ("id", "userId", "teamId", "createdAt", "updatedAt")


class FieldType(str, Enum):
    TEXT = "text"
    TEXTAREA = "textarea"
    EMAIL = "email"
    URL = "url"
    PHONE = "phone"
    MARKDOWN = "markdown"
    RICHTEXT = "richtext"
    CODE = "code"
    NUMBER = "number"
    RANGE = "range"
    RATING = "rating"
    BOOLEAN = "boolean"
    SELECT = "select"
    RADIO = "radio"
    BUTTONGROUP = "buttongroup"
    MULTISELECT = "multiselect"
    TAGS = "tags"
    DATE = "date"
    DATETIME = "datetime"
    JSON = "json"
    RELATION = "relation"


NUMERIC_TYPES = frozenset({FieldType.NUMBER, FieldType.RANGE, FieldType.RATING})
SINGLE_CHOICE_TYPES = frozenset({FieldType.SELECT, FieldType.RADIO, FieldType.BUTTONGROUP})
MULTI_CHOICE_TYPES = frozenset({FieldType.MULTISELECT, FieldType.TAGS})


@dataclass(frozen=True)
class FieldOption:
    value: Any
    label: str | None = None


@dataclass(frozen=True)
class FieldDefinition:
    name: str
    type: FieldType = FieldType.TEXT
    required: bool = False
    searchable: bool = False
    options: Tuple[FieldOption, ...] = ()
    # Raises ValueError with a user-facing message when the value is rejected.
    validator: Callable[[Any], Any] | None = field(default=None, compare=False)

    def option_values(self) -> list:
        return [opt.value for opt in self.options]


@dataclass(frozen=True)
class EntityDefinition:
    slug: str
    fields: Tuple[FieldDefinition, ...] = ()
    table_name: str | None = None

    @property
    def table(self) -> str:
        return self.table_name or self.slug

    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]

    def searchable_fields(self) -> list[str]:
        return [f.name for f in self.fields if f.searchable]

    def get_field(self, name: str) -> FieldDefinition | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None


def definition_errors(definition: EntityDefinition) -> list[str]:
    errors: list[str] = []
    if not isinstance(definition.slug, str) or not definition.slug.strip():
        errors.append("slug is required")
    if not is_safe_identifier(definition.table):
        errors.append(f'table name "{definition.table}" is not a safe identifier')
    seen: set[str] = set()
    for f in definition.fields:
        if not is_safe_identifier(f.name):
            errors.append(f'field name "{f.name}" is not a safe identifier')
            continue
        if f.name in SYSTEM_FIELDS:
            errors.append(f'field "{f.name}" collides with a system column')
        if f.name in seen:
            errors.append(f'field "{f.name}" is declared more than once')
        seen.add(f.name)
        if f.type in SINGLE_CHOICE_TYPES and not f.options:
            logger.warning("entity_field_without_options entity=%s field=%s", definition.slug, f.name)
    return errors


def _parse_option(raw: Any) -> FieldOption:
    if isinstance(raw, FieldOption):
        return raw
    if isinstance(raw, dict) and "value" in raw:
        return FieldOption(value=raw["value"], label=raw.get("label"))
    return FieldOption(value=raw)


def _parse_field(raw: Any) -> FieldDefinition:
    if isinstance(raw, FieldDefinition):
        return raw
    if not isinstance(raw, dict):
        raise InvalidEntityDefinitionError(message="field definition must be an object", errors=[repr(raw)])
    try:
        field_type = FieldType(raw.get("type") or FieldType.TEXT.value)
    except ValueError:
        raise InvalidEntityDefinitionError(
            message=f"Unknown field type {raw.get('type')!r}",
            errors=[f'field "{raw.get("name")}" has unknown type {raw.get("type")!r}'],
        ) from None
    api = raw.get("api") if isinstance(raw.get("api"), dict) else {}
    validator = raw.get("validator")
    if validator is not None and not callable(validator):
        raise InvalidEntityDefinitionError(
            message=f"Validator for field {raw.get('name')!r} must be callable",
            errors=[f'field "{raw.get("name")}" has a non-callable validator'],
        )
    return FieldDefinition(
        name=raw.get("name") or "",
        type=field_type,
        required=bool(raw.get("required")),
        searchable=bool(raw.get("searchable", api.get("searchable", False))),
        options=tuple(_parse_option(opt) for opt in raw.get("options") or []),
        validator=validator,
    )


def parse_entity_definition(raw: Any, slug: str | None = None) -> EntityDefinition:
    if isinstance(raw, EntityDefinition):
        return raw
    if not isinstance(raw, dict):
        raise InvalidEntityDefinitionError(message="entity definition must be an object", errors=[repr(raw)])
    fields = raw.get("fields") or []
    if isinstance(fields, dict):
        fields = [{"name": name, **(spec if isinstance(spec, dict) else {})} for name, spec in fields.items()]
    return EntityDefinition(
        slug=raw.get("slug") or slug or "",
        table_name=raw.get("tableName") or raw.get("table_name"),
        fields=tuple(_parse_field(f) for f in fields),
    )


def load_entity_definitions(config: Any) -> list[EntityDefinition]:
    """Parse entity definitions from a list of mappings or a ``{slug: mapping}`` dict."""
    if isinstance(config, dict):
        return [parse_entity_definition(spec, slug=slug) for slug, spec in config.items()]
    if isinstance(config, (list, tuple)):
        return [parse_entity_definition(spec) for spec in config]
    raise InvalidEntityDefinitionError(message="entity config must be a list or an object", errors=[])


class EntityRegistry:
    def __init__(self, definitions: Iterable[EntityDefinition] | None = None) -> None:
        self._entities: Dict[str, EntityDefinition] = {}
        for definition in definitions or []:
            self.register(definition)

    def register(self, definition: EntityDefinition | dict) -> EntityDefinition:
        definition = parse_entity_definition(definition)
        errors = definition_errors(definition)
        if errors:
            raise InvalidEntityDefinitionError(
                message=f'Invalid entity configuration for "{definition.slug}": {", ".join(errors)}',
                errors=errors,
            )
        if definition.slug in self._entities:
            raise EntityAlreadyRegisteredError(
                message=f'Entity "{definition.slug}" is already registered',
                slug=definition.slug,
            )
        self._entities[definition.slug] = definition
        logger.info("entity_registered slug=%s table=%s fields=%s", definition.slug, definition.table, len(definition.fields))
        return definition

    def get(self, slug: str) -> EntityDefinition | None:
        return self._entities.get(slug)

    def require(self, slug: str) -> EntityDefinition:
        definition = self._entities.get(slug)
        if definition is None:
            raise EntityNotFoundInRegistryError(message=f'Entity "{slug}" not found in registry', slug=str(slug))
        return definition

    def list(self) -> List[EntityDefinition]:
        return [self._entities[slug] for slug in sorted(self._entities.keys())]

    def unregister(self, slug: str) -> bool:
        return self._entities.pop(slug, None) is not None

    def clear(self) -> None:
        self._entities.clear()

    def __contains__(self, slug: object) -> bool:
        return slug in self._entities
