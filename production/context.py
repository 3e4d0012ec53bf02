from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

from .errors import Forbidden


@dataclass(frozen=True)
class CallerContext:
    user_id: UUID
    roles: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_admin(self) -> bool:
        return "admin" in self.roles

    def has_role(self, role: str) -> bool:
        return role in self.roles


def require_admin(ctx: CallerContext, action: str) -> None:
    if not ctx.is_admin:
        raise Forbidden("admin_required", f"Only admins can {action}", action=action)


def require_any_role(ctx: CallerContext, roles: tuple[str, ...], action: str) -> None:
    if ctx.is_admin:
        return
    if not any(ctx.has_role(role) for role in roles):
        raise Forbidden(
            "role_required",
            f"Caller lacks a role allowed to {action}",
            action=action,
            allowed_roles=list(roles),
        )
