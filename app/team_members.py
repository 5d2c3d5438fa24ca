"""Team membership: members, roles and the single-owner invariant."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Iterable

from spark.errors import (
    AlreadyMemberError,
    CannotChangeOwnerRoleError,
    CannotRemoveOwnerError,
    MissingArgumentError,
    NotATeamMemberError,
    NotOwnerError,
    OwnershipTransferRequiredError,
    SameOwnerError,
    TeamMemberNotFoundError,
)
from spark.security import SecurityContext
from spark.team_roles import MANAGER_ROLES, ROLE_HIERARCHY, TeamRole, has_role_permission, parse_role

logger = logging.getLogger("spark.teams")

_COLUMNS = '"id", "teamId", "userId", "role", "invitedBy", "joinedAt", "updatedAt"'


def _require(value: Any, argument: str, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise MissingArgumentError(message=f"{label} is required", argument=argument)
    return value


def _member_from_row(row: dict | None) -> dict | None:
    if not row:
        return None
    member = {key: value for key, value in row.items() if value is not None}
    member["role"] = parse_role(member["role"])
    return member


def _role_sort_key(member: dict) -> tuple:
    return (-ROLE_HIERARCHY.get(member["role"], 0), str(member.get("joinedAt") or ""))


class TeamMemberService:
    def __init__(self, store) -> None:
        self._store = store
        self._p = store.dialect.placeholder
        self._now = store.dialect.now_sql

    def _select(self, where: str) -> str:
        return f'select {_COLUMNS} from "team_members" where {where}'

    def _rows(self, where: str, params: list, ctx: SecurityContext, query_name: str) -> list[dict]:
        rows = self._store.query_many(self._select(where), params, ctx, query_name=query_name)
        return [_member_from_row(r) for r in rows]

    # Queries

    def get_by_team_and_user(self, team_id: str, user_id: str) -> dict | None:
        if not team_id or not user_id:
            return None
        p = self._p
        row = self._store.query_one(
            self._select(f'"teamId" = {p} and "userId" = {p}'),
            [team_id, user_id],
            SecurityContext(user_id=user_id, team_id=team_id),
            query_name="team_members.get",
        )
        return _member_from_row(row)

    def get_role(self, team_id: str, user_id: str) -> TeamRole | None:
        member = self.get_by_team_and_user(team_id, user_id)
        return member["role"] if member else None

    def is_member(self, team_id: str, user_id: str) -> bool:
        return self.get_by_team_and_user(team_id, user_id) is not None

    def has_permission(self, user_id: str, team_id: str, allowed_roles: Iterable[Any] = MANAGER_ROLES) -> bool:
        if not user_id or not team_id:
            return False
        role = self.get_role(team_id, user_id)
        if role is None:
            return False
        return has_role_permission(role, allowed_roles)

    def list_by_team(self, team_id: str, requesting_user_id: str) -> list[dict]:
        _require(team_id, "team_id", "Team ID")
        ctx = SecurityContext(user_id=_require(requesting_user_id, "user_id", "User ID"), team_id=team_id)
        members = self._rows(f'"teamId" = {self._p}', [team_id], ctx, "team_members.list_by_team")
        return sorted(members, key=_role_sort_key)

    def list_by_user(self, user_id: str) -> list[dict]:
        _require(user_id, "user_id", "User ID")
        members = self._rows(
            f'"userId" = {self._p}', [user_id], SecurityContext(user_id=user_id), "team_members.list_by_user"
        )
        return sorted(members, key=_role_sort_key)

    def list_by_role(self, team_id: str, role: Any, requesting_user_id: str) -> list[dict]:
        _require(team_id, "team_id", "Team ID")
        role = parse_role(role)
        ctx = SecurityContext(user_id=_require(requesting_user_id, "user_id", "User ID"), team_id=team_id)
        p = self._p
        return self._rows(
            f'"teamId" = {p} and "role" = {p} order by "joinedAt" asc',
            [team_id, role.value],
            ctx,
            "team_members.list_by_role",
        )

    def get_recently_joined(self, team_id: str, requesting_user_id: str, limit: int = 10) -> list[dict]:
        _require(team_id, "team_id", "Team ID")
        ctx = SecurityContext(user_id=_require(requesting_user_id, "user_id", "User ID"), team_id=team_id)
        p = self._p
        return self._rows(
            f'"teamId" = {p} order by "joinedAt" desc limit {p}',
            [team_id, int(limit)],
            ctx,
            "team_members.recently_joined",
        )

    def list_invited_by(self, team_id: str, invited_by: str, requesting_user_id: str) -> list[dict]:
        _require(team_id, "team_id", "Team ID")
        _require(invited_by, "invited_by", "Invited by user ID")
        ctx = SecurityContext(user_id=_require(requesting_user_id, "user_id", "User ID"), team_id=team_id)
        p = self._p
        return self._rows(
            f'"teamId" = {p} and "invitedBy" = {p} order by "joinedAt" desc',
            [team_id, invited_by],
            ctx,
            "team_members.list_invited_by",
        )

    def get_owner(self, team_id: str, requesting_user_id: str) -> dict | None:
        owners = self.list_by_role(team_id, TeamRole.OWNER, requesting_user_id)
        return owners[0] if owners else None

    def count(self, team_id: str, requesting_user_id: str) -> int:
        if not team_id or not requesting_user_id:
            return 0
        row = self._store.query_one(
            f'select count(*) as count from "team_members" where "teamId" = {self._p}',
            [team_id],
            SecurityContext(user_id=requesting_user_id, team_id=team_id),
            query_name="team_members.count",
        )
        return int((row or {}).get("count") or 0)

    def count_by_role(self, team_id: str, requesting_user_id: str) -> dict[str, int]:
        if not team_id or not requesting_user_id:
            return {}
        rows = self._store.query_many(
            f'select "role", count(*) as count from "team_members" where "teamId" = {self._p} group by "role"',
            [team_id],
            SecurityContext(user_id=requesting_user_id, team_id=team_id),
            query_name="team_members.count_by_role",
        )
        return {row["role"]: int(row["count"]) for row in rows}

    # Mutations

    def add(self, team_id: str, user_id: str, role: Any, invited_by: str | None = None) -> dict:
        _require(team_id, "team_id", "Team ID")
        _require(user_id, "user_id", "User ID")
        role = parse_role(role)
        if self.get_by_team_and_user(team_id, user_id):
            raise AlreadyMemberError(
                message="User is already a member of this team", team_id=team_id, user_id=user_id
            )
        p = self._p
        ctx = SecurityContext(user_id=invited_by or user_id, team_id=team_id)
        result = self._store.mutate(
            f'insert into "team_members" ({_COLUMNS}) '
            f"values ({p}, {p}, {p}, {p}, {p}, {self._now}, {self._now}) returning {_COLUMNS}",
            [str(uuid.uuid4()), team_id, user_id, role.value, invited_by],
            ctx,
            query_name="team_members.insert",
        )
        member = _member_from_row(result.rows[0] if result.rows else None)
        if member is None:
            raise TeamMemberNotFoundError(message="Failed to add team member", team_id=team_id, user_id=user_id)
        logger.info("team_member_added team_id=%s user_id=%s role=%s invited_by=%s", team_id, user_id, role, invited_by)
        return member

    def remove(self, team_id: str, user_id: str) -> bool:
        """Remove a member; returns False when the user was not a member."""
        _require(team_id, "team_id", "Team ID")
        _require(user_id, "user_id", "User ID")
        role = self.get_role(team_id, user_id)
        if role is None:
            return False
        if role == TeamRole.OWNER:
            raise CannotRemoveOwnerError(
                message="Cannot remove team owner. Transfer ownership first.", team_id=team_id
            )
        p = self._p
        self._store.mutate(
            f'delete from "team_members" where "teamId" = {p} and "userId" = {p}',
            [team_id, user_id],
            SecurityContext(user_id=user_id, team_id=team_id),
            query_name="team_members.delete",
        )
        logger.info("team_member_removed team_id=%s user_id=%s", team_id, user_id)
        return True

    def _set_role(self, team_id: str, user_id: str, role: TeamRole, ctx: SecurityContext, query_name: str) -> dict | None:
        p = self._p
        result = self._store.mutate(
            f'update "team_members" set "role" = {p}, "updatedAt" = {self._now} '
            f'where "teamId" = {p} and "userId" = {p} returning {_COLUMNS}',
            [role.value, team_id, user_id],
            ctx,
            query_name=query_name,
        )
        return _member_from_row(result.rows[0] if result.rows else None)

    def update_role(self, team_id: str, user_id: str, role: Any) -> dict:
        _require(team_id, "team_id", "Team ID")
        _require(user_id, "user_id", "User ID")
        role = parse_role(role)
        current = self.get_role(team_id, user_id)
        if current is None:
            raise TeamMemberNotFoundError(message="Team member not found", team_id=team_id, user_id=user_id)
        if current == TeamRole.OWNER:
            raise CannotChangeOwnerRoleError(
                message="Cannot change owner role. Transfer ownership first.", team_id=team_id
            )
        if role == TeamRole.OWNER:
            raise OwnershipTransferRequiredError(
                message="Ownership can only be granted by transferring it.", team_id=team_id
            )
        member = self._set_role(team_id, user_id, role, SecurityContext(user_id=user_id, team_id=team_id), "team_members.update_role")
        if member is None:
            raise TeamMemberNotFoundError(message="Team member not found", team_id=team_id, user_id=user_id)
        logger.info("team_member_role_updated team_id=%s user_id=%s from=%s to=%s", team_id, user_id, current, role)
        return member

    def transfer_ownership(self, team_id: str, new_owner_id: str, current_owner_id: str) -> dict:
        """Make ``new_owner_id`` the owner and demote the current owner to admin.

        Both role writes run in one store transaction, so a failure between
        them leaves the team with its original owner.
        """
        _require(team_id, "team_id", "Team ID")
        _require(new_owner_id, "new_owner_id", "New owner ID")
        _require(current_owner_id, "current_owner_id", "Current owner ID")
        if new_owner_id == current_owner_id:
            raise SameOwnerError(message="New owner must be different from current owner", team_id=team_id)
        if self.get_role(team_id, current_owner_id) != TeamRole.OWNER:
            raise NotOwnerError(
                message="Only the current owner can transfer ownership", team_id=team_id, user_id=current_owner_id
            )
        if not self.is_member(team_id, new_owner_id):
            raise NotATeamMemberError(
                message="New owner must be an existing team member", team_id=team_id, user_id=new_owner_id
            )
        ctx = SecurityContext(user_id=current_owner_id, team_id=team_id)
        with self._store.transaction(ctx):
            previous_owner = self._set_role(team_id, current_owner_id, TeamRole.ADMIN, ctx, "team_members.demote_owner")
            new_owner = self._set_role(team_id, new_owner_id, TeamRole.OWNER, ctx, "team_members.promote_owner")
            if previous_owner is None or new_owner is None:
                raise TeamMemberNotFoundError(message="Failed to transfer ownership", team_id=team_id)
        logger.info("team_ownership_transferred team_id=%s from=%s to=%s", team_id, current_owner_id, new_owner_id)
        return {"previous_owner": previous_owner, "new_owner": new_owner}
