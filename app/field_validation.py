"""Payload validation against registry field definitions."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, List

from entity_registry import (
    MULTI_CHOICE_TYPES,
    NUMERIC_TYPES,
    SINGLE_CHOICE_TYPES,
    EntityDefinition,
    FieldDefinition,
    FieldType,
)

logger = logging.getLogger("spark.validation")


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    return False


def is_finite_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return math.isfinite(value)
    if isinstance(value, str):
        try:
            return math.isfinite(float(value.strip()))
        except ValueError:
            return False
    return False


def validate_field_type(f: FieldDefinition, value: Any) -> str | None:
    ftype = FieldType(f.type)
    if ftype in NUMERIC_TYPES:
        if not is_finite_number(value):
            return f'Field "{f.name}" must be a number'
    elif ftype == FieldType.BOOLEAN:
        if not isinstance(value, bool):
            return f'Field "{f.name}" must be a boolean'
    elif ftype in SINGLE_CHOICE_TYPES:
        if f.options and value not in f.option_values():
            return f'Field "{f.name}" has invalid option value'
    elif ftype in MULTI_CHOICE_TYPES:
        if not isinstance(value, (list, tuple)):
            return f'Field "{f.name}" must be an array'
        if f.options:
            allowed = f.option_values()
            if any(item not in allowed for item in value):
                return f'Field "{f.name}" contains invalid option values'
    # text, date, json and the other types are checked by callers if at all
    return None


def run_field_validator(f: FieldDefinition, value: Any) -> str | None:
    """Return the validator's rejection message, or ``None`` if it accepts ``value``.

    Validators reject by raising ``ValueError``. Any other exception is
    logged and treated as acceptance, leaving the basic type check to decide.
    """
    try:
        f.validator(value)
    except ValueError as exc:
        return str(exc) or "Invalid value"
    except Exception:
        logger.warning("field_validator_failed field=%s", f.name, exc_info=True)
    return None


def validate_entity_data(definition: EntityDefinition, data: dict, is_update: bool = False) -> ValidationResult:
    """Check ``data`` against the entity's declared fields.

    On create every required field must be present and non-blank; on update
    the payload may be partial. ``None`` values are never type-checked. All
    problems are collected so a form can show them together.
    """
    if not isinstance(data, dict):
        return ValidationResult(valid=False, errors=["Entity data must be an object"])
    errors: list[str] = []
    for f in definition.fields:
        value = data.get(f.name)
        if not is_update and f.required and is_empty(value):
            errors.append(f'Field "{f.name}" is required')
            continue
        if value is None:
            continue
        if f.validator is not None:
            message = run_field_validator(f, value)
            if message is not None:
                errors.append(f'Field "{f.name}": {message}')
                continue
        error = validate_field_type(f, value)
        if error:
            errors.append(error)
    return ValidationResult(valid=not errors, errors=errors)
