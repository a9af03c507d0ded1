"""Grant, revoke, and list Super Manager and Gateway Editor capabilities."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import col, select

from app.core.errors import ConflictError, InternalError, NotFoundError
from app.core.logging import get_logger
from app.core.time import utcnow
from app.models.users import User
from app.services.capability_gates import (
    CapabilityOracle,
    Role,
    require_super_manager,
    role_label,
    role_model,
)

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class RoleGrant:
    user_id: UUID
    username: str | None
    role: Role
    added_at: datetime


async def grant_role(
    session: AsyncSession,
    *,
    granted_by: UUID,
    user_id: UUID,
    role: Role,
) -> RoleGrant:
    """Grant ``role`` to ``user_id``; only Super Managers may grant."""
    await require_super_manager(CapabilityOracle(session), granted_by)
    user = await User.objects.by_id(user_id).first(session)
    if user is None:
        raise NotFoundError("User not found")
    model = role_model(role)
    if await model.objects.by_id(user_id).first(session) is not None:
        raise ConflictError(f"User is already a {role_label(role)}")

    added_at = utcnow()
    session.add(model(user_id=user_id, added_at=added_at))
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise ConflictError(f"User is already a {role_label(role)}") from exc
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.exception("roles.grant_failed", extra={"role": role.value, "user_id": str(user_id)})
        raise InternalError(f"Failed to add {role_label(role)}") from exc
    logger.info(
        "roles.granted",
        extra={"role": role.value, "user_id": str(user_id), "granted_by": str(granted_by)},
    )
    return RoleGrant(user_id=user_id, username=user.username, role=role, added_at=added_at)


async def revoke_role(
    session: AsyncSession,
    *,
    revoked_by: UUID,
    user_id: UUID,
    role: Role,
) -> bool:
    """Remove ``role`` from ``user_id``; return False when it was not held.

    Takes effect on the target user's next request.
    """
    await require_super_manager(CapabilityOracle(session), revoked_by)
    model = role_model(role)
    try:
        result = await session.exec(delete(model).where(col(model.user_id) == user_id))
        removed = result.rowcount > 0
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.exception("roles.revoke_failed", extra={"role": role.value, "user_id": str(user_id)})
        raise InternalError(f"Failed to remove {role_label(role)}") from exc
    logger.info(
        "roles.revoked",
        extra={
            "role": role.value,
            "user_id": str(user_id),
            "revoked_by": str(revoked_by),
            "removed": removed,
        },
    )
    return removed


async def list_role_holders(session: AsyncSession, *, role: Role) -> list[RoleGrant]:
    """Return every holder of ``role`` in grant order."""
    model = role_model(role)
    statement = (
        select(model, User)
        .join(User, col(User.id) == col(model.user_id))
        .order_by(col(model.added_at).asc())
    )
    rows = (await session.exec(statement)).all()
    return [
        RoleGrant(user_id=grant.user_id, username=user.username, role=role, added_at=grant.added_at)
        for grant, user in rows
    ]
