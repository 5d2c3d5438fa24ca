"""Team role hierarchy: owner > admin > member > viewer."""

from __future__ import annotations

from enum import Enum
from typing import Any, Iterable

from .errors import InvalidRoleError


class TeamRole(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"
    VIEWER = "viewer"

    def __str__(self) -> str:
        return self.value


ROLE_HIERARCHY: dict[TeamRole, int] = {
    TeamRole.OWNER: 100,
    TeamRole.ADMIN: 50,
    TeamRole.MEMBER: 10,
    TeamRole.VIEWER: 1,
}

MANAGER_ROLES = (TeamRole.OWNER, TeamRole.ADMIN)
DEFAULT_TEAM_ROLE = TeamRole.MEMBER


def parse_role(value: Any) -> TeamRole:
    if isinstance(value, TeamRole):
        return value
    if isinstance(value, str):
        try:
            return TeamRole(value.strip().lower())
        except ValueError:
            pass
    raise InvalidRoleError(message=f"Unknown team role: {value!r}", role=str(value))


def role_level(role: Any) -> int:
    return ROLE_HIERARCHY[parse_role(role)]


def compare_roles(left: Any, right: Any) -> int:
    """Negative, zero or positive as ``left`` ranks below, equal to or above ``right``."""
    return role_level(left) - role_level(right)


def is_at_least(role: Any, minimum: Any) -> bool:
    return compare_roles(role, minimum) >= 0


def has_role_permission(role: Any, allowed_roles: Iterable[Any]) -> bool:
    if role is None:
        return False
    current = parse_role(role)
    return any(current == parse_role(allowed) for allowed in allowed_roles)


def can_manage(actor_role: Any, target_role: Any) -> bool:
    """Whether ``actor_role`` may change or remove a member holding ``target_role``.

    Management requires a strictly higher level and only owners and admins
    manage anyone. Owners are never managed; ownership moves by transfer.
    """
    actor = parse_role(actor_role)
    target = parse_role(target_role)
    if target == TeamRole.OWNER or actor not in MANAGER_ROLES:
        return False
    return ROLE_HIERARCHY[actor] > ROLE_HIERARCHY[target]


def sorted_by_hierarchy(roles: Iterable[Any]) -> list[TeamRole]:
    return sorted((parse_role(r) for r in roles), key=lambda r: ROLE_HIERARCHY[r], reverse=True)
