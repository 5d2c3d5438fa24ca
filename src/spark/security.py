"""Security context threaded through every data-access call."""

from __future__ import annotations

from dataclasses import dataclass

from .errors import MissingArgumentError


@dataclass(frozen=True)
class SecurityContext:
    """Identity a query runs as.

    With a ``team_id`` the context scopes rows to that team; without one it
    scopes rows to those created by ``user_id``.
    """

    user_id: str
    team_id: str | None = None

    @property
    def is_team_scoped(self) -> bool:
        return bool(self.team_id)

    def scope_column(self) -> str:
        return "teamId" if self.is_team_scoped else "userId"

    def scope_value(self) -> str:
        return self.team_id if self.is_team_scoped else self.user_id

    def for_team(self, team_id: str | None) -> "SecurityContext":
        return SecurityContext(user_id=self.user_id, team_id=team_id)


def require_context(ctx: SecurityContext | None, require_team: bool = False) -> SecurityContext:
    if not isinstance(ctx, SecurityContext) or not _present(ctx.user_id):
        raise MissingArgumentError(message="User ID is required for authentication", argument="user_id")
    if require_team and not _present(ctx.team_id):
        raise MissingArgumentError(message="Team ID is required", argument="team_id")
    return ctx


def _present(value: str | None) -> bool:
    return isinstance(value, str) and bool(value.strip())
