# ruff: noqa: S101
from __future__ import annotations

from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.errors import ConflictError, ForbiddenError, NotFoundError
from app.models.roles import SuperManager
from app.models.users import User
from app.services.capability_gates import CapabilityOracle, Role
from app.services.role_grants import grant_role, list_role_holders, revoke_role


@pytest.mark.asyncio
async def test_super_manager_grants_and_revokes_gateway_editor() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.connect() as conn, conn.begin():
        await conn.run_sync(SQLModel.metadata.create_all)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    async with session_maker() as session:
        admin = User(username="admin", email="admin@example.com")
        operator = User(username="operator", email="operator@example.com")
        session.add_all([admin, operator])
        session.add(SuperManager(user_id=admin.id))
        await session.commit()

        grant = await grant_role(
            session,
            granted_by=admin.id,
            user_id=operator.id,
            role=Role.GATEWAY_EDITOR,
        )
        assert grant.username == "operator"
        oracle = CapabilityOracle(session)
        flags = await oracle.role_flags(operator.id)
        assert flags.is_gateway_editor is True
        assert flags.is_super_manager is False

        with pytest.raises(ConflictError):
            await grant_role(
                session,
                granted_by=admin.id,
                user_id=operator.id,
                role=Role.GATEWAY_EDITOR,
            )
        with pytest.raises(NotFoundError):
            await grant_role(session, granted_by=admin.id, user_id=uuid4(), role=Role.GATEWAY_EDITOR)

        holders = await list_role_holders(session, role=Role.GATEWAY_EDITOR)
        assert [holder.username for holder in holders] == ["operator"]

        assert await revoke_role(
            session,
            revoked_by=admin.id,
            user_id=operator.id,
            role=Role.GATEWAY_EDITOR,
        ) is True
        assert await revoke_role(
            session,
            revoked_by=admin.id,
            user_id=operator.id,
            role=Role.GATEWAY_EDITOR,
        ) is False
        assert await oracle.has_role(operator.id, Role.GATEWAY_EDITOR) is False
    await engine.dispose()


@pytest.mark.asyncio
async def test_only_super_managers_may_grant() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.connect() as conn, conn.begin():
        await conn.run_sync(SQLModel.metadata.create_all)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    async with session_maker() as session:
        first = User(username="first", email="first@example.com")
        second = User(username="second", email="second@example.com")
        session.add_all([first, second])
        await session.commit()

        with pytest.raises(ForbiddenError):
            await grant_role(session, granted_by=first.id, user_id=second.id, role=Role.SUPER_MANAGER)
        with pytest.raises(ForbiddenError):
            await revoke_role(session, revoked_by=first.id, user_id=second.id, role=Role.SUPER_MANAGER)
        assert await list_role_holders(session, role=Role.SUPER_MANAGER) == []
    await engine.dispose()
