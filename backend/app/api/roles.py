"""Capability administration and the caller's derived role flags."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from fastapi import APIRouter, status

from app.api.deps import AUTH_DEP, SESSION_DEP
from app.core.auth import AuthContext
from app.schemas.common import OkResponse
from app.schemas.roles import RoleFlagsRead, RoleGrantCreate, RoleGrantRead
from app.services.capability_gates import CapabilityOracle, Role, require_super_manager
from app.services.role_grants import RoleGrant, grant_role, list_role_holders, revoke_role

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

admin_router = APIRouter(prefix="/admin", tags=["admin"])
me_router = APIRouter(prefix="/me", tags=["me"])


def _as_read(grant: RoleGrant) -> RoleGrantRead:
    return RoleGrantRead(
        user_id=grant.user_id,
        username=grant.username,
        role=grant.role.value,
        added_at=grant.added_at,
    )


async def _list(session: AsyncSession, auth: AuthContext, role: Role) -> list[RoleGrantRead]:
    await require_super_manager(CapabilityOracle(session), auth.user_id)
    return [_as_read(grant) for grant in await list_role_holders(session, role=role)]


@admin_router.get("/super-managers", response_model=list[RoleGrantRead])
async def list_super_managers(
    session: AsyncSession = SESSION_DEP,
    auth: AuthContext = AUTH_DEP,
) -> list[RoleGrantRead]:
    return await _list(session, auth, Role.SUPER_MANAGER)


@admin_router.post(
    "/super-managers",
    response_model=RoleGrantRead,
    status_code=status.HTTP_201_CREATED,
)
async def add_super_manager(
    payload: RoleGrantCreate,
    session: AsyncSession = SESSION_DEP,
    auth: AuthContext = AUTH_DEP,
) -> RoleGrantRead:
    grant = await grant_role(
        session,
        granted_by=auth.user_id,
        user_id=payload.user_id,
        role=Role.SUPER_MANAGER,
    )
    return _as_read(grant)


@admin_router.delete("/super-managers/{user_id}", response_model=OkResponse)
async def remove_super_manager(
    user_id: UUID,
    session: AsyncSession = SESSION_DEP,
    auth: AuthContext = AUTH_DEP,
) -> OkResponse:
    await revoke_role(session, revoked_by=auth.user_id, user_id=user_id, role=Role.SUPER_MANAGER)
    return OkResponse()


@admin_router.get("/gateway-editors", response_model=list[RoleGrantRead])
async def list_gateway_editors(
    session: AsyncSession = SESSION_DEP,
    auth: AuthContext = AUTH_DEP,
) -> list[RoleGrantRead]:
    return await _list(session, auth, Role.GATEWAY_EDITOR)


@admin_router.post(
    "/gateway-editors",
    response_model=RoleGrantRead,
    status_code=status.HTTP_201_CREATED,
)
async def add_gateway_editor(
    payload: RoleGrantCreate,
    session: AsyncSession = SESSION_DEP,
    auth: AuthContext = AUTH_DEP,
) -> RoleGrantRead:
    grant = await grant_role(
        session,
        granted_by=auth.user_id,
        user_id=payload.user_id,
        role=Role.GATEWAY_EDITOR,
    )
    return _as_read(grant)


@admin_router.delete("/gateway-editors/{user_id}", response_model=OkResponse)
async def remove_gateway_editor(
    user_id: UUID,
    session: AsyncSession = SESSION_DEP,
    auth: AuthContext = AUTH_DEP,
) -> OkResponse:
    await revoke_role(session, revoked_by=auth.user_id, user_id=user_id, role=Role.GATEWAY_EDITOR)
    return OkResponse()


@me_router.get("/roles", response_model=RoleFlagsRead)
async def get_my_roles(
    session: AsyncSession = SESSION_DEP,
    auth: AuthContext = AUTH_DEP,
) -> RoleFlagsRead:
    """Derive the caller's capabilities from current grants."""
    flags = await CapabilityOracle(session).role_flags(auth.user_id)
    return RoleFlagsRead(
        user_id=flags.user_id,
        is_super_manager=flags.is_super_manager,
        is_gateway_editor=flags.is_gateway_editor,
    )
