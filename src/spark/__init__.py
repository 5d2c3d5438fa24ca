"""Spark kernel utilities."""

from .errors import SparkError
from .identifiers import is_safe_identifier, quote_identifier, validate_identifier
from .security import SecurityContext
from .team_roles import TeamRole

__all__ = [
    "SecurityContext",
    "SparkError",
    "TeamRole",
    "is_safe_identifier",
    "quote_identifier",
    "validate_identifier",
]
