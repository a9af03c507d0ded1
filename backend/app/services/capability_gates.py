"""Capability oracle plus the review and execution gates built on it."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING
from uuid import UUID

from app.core.errors import ForbiddenError
from app.models.roles import GatewayEditor, SuperManager
from app.models.teams import TeamMembership

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

    from app.models.base import QueryModel


class Role(StrEnum):
    SUPER_MANAGER = "super_manager"
    GATEWAY_EDITOR = "gateway_editor"


_ROLE_MODELS: dict[Role, type[QueryModel]] = {
    Role.SUPER_MANAGER: SuperManager,
    Role.GATEWAY_EDITOR: GatewayEditor,
}
_ROLE_LABELS = {
    Role.SUPER_MANAGER: "super manager",
    Role.GATEWAY_EDITOR: "gateway editor",
}


def role_model(role: Role) -> type[QueryModel]:
    """Return the table whose rows grant ``role``."""
    return _ROLE_MODELS[role]


def role_label(role: Role) -> str:
    return _ROLE_LABELS[role]


@dataclass(frozen=True, slots=True)
class RoleFlags:
    """Derived capability view for one user, computed at read time."""

    user_id: UUID
    is_super_manager: bool
    is_gateway_editor: bool


class CapabilityOracle:
    """Answer role and membership questions straight from the store.

    Nothing is cached: a grant revoked between two requests must be honoured
    by the second one.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def has_role(self, user_id: UUID, role: Role) -> bool:
        model = role_model(role)
        row = await model.objects.by_id(user_id).first(self.session)
        return row is not None

    async def is_member(self, user_id: UUID, team_id: UUID) -> bool:
        row = await TeamMembership.objects.filter_by(user_id=user_id, team_id=team_id).first(
            self.session,
        )
        return row is not None

    async def role_flags(self, user_id: UUID) -> RoleFlags:
        return RoleFlags(
            user_id=user_id,
            is_super_manager=await self.has_role(user_id, Role.SUPER_MANAGER),
            is_gateway_editor=await self.has_role(user_id, Role.GATEWAY_EDITOR),
        )


async def require_super_manager(oracle: CapabilityOracle, user_id: UUID) -> None:
    """Review gate: only Super Managers may record approval decisions."""
    if not await oracle.has_role(user_id, Role.SUPER_MANAGER):
        raise ForbiddenError("Super manager access required")


async def require_gateway_editor(oracle: CapabilityOracle, user_id: UUID) -> None:
    """Execution gate: only Gateway Editors may move execution status."""
    if not await oracle.has_role(user_id, Role.GATEWAY_EDITOR):
        raise ForbiddenError("Gateway editor access required")
