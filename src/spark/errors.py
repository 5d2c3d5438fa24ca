"""Typed errors raised by the entity engine and team membership core."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar, List


@dataclass(eq=False)
class SparkError(Exception):
    message: str

    code: ClassVar[str] = "SPARK_ERROR"

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        return self.message


# Configuration errors: a misconfigured registry, fatal for the call.


@dataclass(eq=False)
class ConfigurationError(SparkError):
    code: ClassVar[str] = "CONFIGURATION_ERROR"


@dataclass(eq=False)
class InvalidIdentifierError(ConfigurationError):
    value: str = ""
    kind: str = "identifier"

    code: ClassVar[str] = "INVALID_IDENTIFIER"


@dataclass(eq=False)
class EntityNotFoundInRegistryError(ConfigurationError):
    slug: str = ""

    code: ClassVar[str] = "ENTITY_NOT_IN_REGISTRY"


@dataclass(eq=False)
class EntityAlreadyRegisteredError(ConfigurationError):
    slug: str = ""

    code: ClassVar[str] = "ENTITY_ALREADY_REGISTERED"


@dataclass(eq=False)
class InvalidEntityDefinitionError(ConfigurationError):
    errors: List[str] = field(default_factory=list)

    code: ClassVar[str] = "INVALID_ENTITY_DEFINITION"


# Input errors: recoverable, reported back to the caller.


@dataclass(eq=False)
class InputError(SparkError):
    code: ClassVar[str] = "INPUT_ERROR"


@dataclass(eq=False)
class MissingArgumentError(InputError):
    argument: str = ""

    code: ClassVar[str] = "MISSING_ARGUMENT"


@dataclass(eq=False)
class NoFieldsToUpdateError(InputError):
    code: ClassVar[str] = "NO_FIELDS_TO_UPDATE"


@dataclass(eq=False)
class ValidationError(InputError):
    errors: List[str] = field(default_factory=list)

    code: ClassVar[str] = "VALIDATION_FAILED"

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        if not self.errors:
            return self.message
        return f"{self.message}: {', '.join(self.errors)}"


@dataclass(eq=False)
class InvalidFilterFieldError(InputError):
    field_name: str = ""

    code: ClassVar[str] = "INVALID_FILTER_FIELD"


@dataclass(eq=False)
class InvalidPaginationError(InputError):
    code: ClassVar[str] = "INVALID_PAGINATION"


@dataclass(eq=False)
class InvalidRoleError(InputError):
    role: str = ""

    code: ClassVar[str] = "INVALID_ROLE"


@dataclass(eq=False)
class HookVetoError(InputError):
    entity: str = ""
    operation: str = ""

    code: ClassVar[str] = "HOOK_VETO"


# State errors.


@dataclass(eq=False)
class StateError(SparkError):
    code: ClassVar[str] = "STATE_ERROR"


@dataclass(eq=False)
class EntityNotFoundError(StateError):
    slug: str = ""
    record_id: str = ""

    code: ClassVar[str] = "ENTITY_NOT_FOUND"


@dataclass(eq=False)
class EntityCreateFailedError(StateError):
    slug: str = ""

    code: ClassVar[str] = "ENTITY_CREATE_FAILED"


@dataclass(eq=False)
class TeamMemberNotFoundError(StateError):
    team_id: str = ""
    user_id: str = ""

    code: ClassVar[str] = "TEAM_MEMBER_NOT_FOUND"


# Invariant violations around team ownership.


@dataclass(eq=False)
class InvariantError(SparkError):
    code: ClassVar[str] = "INVARIANT_VIOLATION"


@dataclass(eq=False)
class AlreadyMemberError(InvariantError):
    team_id: str = ""
    user_id: str = ""

    code: ClassVar[str] = "ALREADY_MEMBER"


@dataclass(eq=False)
class CannotRemoveOwnerError(InvariantError):
    team_id: str = ""

    code: ClassVar[str] = "CANNOT_REMOVE_OWNER"


@dataclass(eq=False)
class CannotChangeOwnerRoleError(InvariantError):
    team_id: str = ""

    code: ClassVar[str] = "CANNOT_CHANGE_OWNER_ROLE"


@dataclass(eq=False)
class OwnershipTransferRequiredError(InvariantError):
    team_id: str = ""

    code: ClassVar[str] = "OWNERSHIP_TRANSFER_REQUIRED"


@dataclass(eq=False)
class NotOwnerError(InvariantError):
    team_id: str = ""
    user_id: str = ""

    code: ClassVar[str] = "NOT_OWNER"


@dataclass(eq=False)
class NotATeamMemberError(InvariantError):
    team_id: str = ""
    user_id: str = ""

    code: ClassVar[str] = "NOT_A_TEAM_MEMBER"


@dataclass(eq=False)
class SameOwnerError(InvariantError):
    team_id: str = ""

    code: ClassVar[str] = "SAME_OWNER"
