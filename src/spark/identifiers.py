"""SQL identifier checks for registry-supplied table and column names."""

from __future__ import annotations

import re
from typing import Any

from .errors import InvalidIdentifierError

SAFE_SQL_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


def is_safe_identifier(value: Any) -> bool:
    return isinstance(value, str) and SAFE_SQL_IDENTIFIER.fullmatch(value) is not None


def validate_identifier(value: Any, kind: str = "identifier") -> str:
    """Return ``value`` unchanged if it is a safe SQL identifier.

    Only ``[A-Za-z_][A-Za-z0-9_]*`` is accepted, which rules out quotes,
    whitespace, statement terminators and comment sequences. Anything else
    raises InvalidIdentifierError; it always points at a broken entity
    configuration rather than bad user input.
    """
    if not is_safe_identifier(value):
        raise InvalidIdentifierError(
            message=f'Invalid {kind} name: "{value}" contains unsafe characters',
            value=str(value),
            kind=kind,
        )
    return value


def quote_identifier(value: Any, kind: str = "identifier") -> str:
    return f'"{validate_identifier(value, kind)}"'
