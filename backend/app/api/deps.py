"""Shared FastAPI dependencies for route modules."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Depends, Request

from app.core.auth import AuthContext, get_auth_context
from app.db.session import get_session
from app.services.change_request_automation import ChangeRequestAutomation
from app.services.change_request_lifecycle import ChangeRequestLifecycle

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

SESSION_DEP = Depends(get_session)
AUTH_DEP = Depends(get_auth_context)


def get_automation(request: Request) -> ChangeRequestAutomation | None:
    """Return the coordinator installed by the app lifespan, if any."""
    return getattr(request.app.state, "change_request_automation", None)


AUTOMATION_DEP = Depends(get_automation)


def get_lifecycle(
    session: AsyncSession = SESSION_DEP,
    automation: ChangeRequestAutomation | None = AUTOMATION_DEP,
) -> ChangeRequestLifecycle:
    return ChangeRequestLifecycle(session, automation=automation)


__all__ = [
    "AUTH_DEP",
    "AUTOMATION_DEP",
    "SESSION_DEP",
    "AuthContext",
    "get_automation",
    "get_lifecycle",
]
