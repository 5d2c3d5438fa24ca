"""Field value conversion at the boundary between the engine and storage.

Stores hand back whatever their driver produces: SQLite returns booleans as
0/1 and multi-choice lists as the JSON text they were written as. Rows are
decoded here against the entity's field definitions so callers see the
values they wrote, and can send a fetched row straight back to ``update``.
"""

from __future__ import annotations

import json
from typing import Any

from entity_registry import MULTI_CHOICE_TYPES, NUMERIC_TYPES, EntityDefinition, FieldType


def parse_number(text: str) -> int | float:
    text = text.strip()
    try:
        return int(text)
    except ValueError:
        return float(text)


def to_storage(definition: EntityDefinition, data: dict) -> dict:
    """Copy ``data`` with numeric strings parsed, so ``"2.5"`` is written as 2.5.

    Call after validation; every numeric string has been checked by then.
    """
    values = dict(data)
    for f in definition.fields:
        value = values.get(f.name)
        if isinstance(value, str) and FieldType(f.type) in NUMERIC_TYPES:
            values[f.name] = parse_number(value)
    return values


def _json_text(value: str) -> Any:
    try:
        return json.loads(value)
    except ValueError:
        return value


def decode_value(ftype: FieldType, value: Any) -> Any:
    if ftype == FieldType.BOOLEAN and isinstance(value, int) and not isinstance(value, bool):
        return bool(value)
    if ftype in MULTI_CHOICE_TYPES and isinstance(value, str):
        decoded = _json_text(value)
        return decoded if isinstance(decoded, list) else value
    if ftype == FieldType.JSON and isinstance(value, str) and value[:1] in ("{", "["):
        return _json_text(value)
    return value


def row_from_storage(row: dict, definition: EntityDefinition | None = None) -> dict:
    """Drop storage NULLs and decode declared fields.

    A missing key is the only way a column reads as absent.
    """
    types = {f.name: FieldType(f.type) for f in definition.fields} if definition else {}
    decoded = {}
    for key, value in row.items():
        if value is None:
            continue
        ftype = types.get(key)
        decoded[key] = decode_value(ftype, value) if ftype is not None else value
    return decoded
