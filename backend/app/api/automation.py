"""Automation endpoints polled or triggered by CI/CD pipelines."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from app.api.deps import AUTH_DEP, AUTOMATION_DEP, SESSION_DEP
from app.core.auth import AuthContext
from app.schemas.change_requests import AutomationTriggerRead, ChangeRequestCIStatus
from app.services.change_request_automation import ChangeRequestAutomation, build_ci_status

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

router = APIRouter(prefix="/automation/change-requests", tags=["automation"])


@router.get("/{change_request_id}/status", response_model=ChangeRequestCIStatus)
async def get_ci_status(
    change_request_id: UUID,
    session: AsyncSession = SESSION_DEP,
) -> ChangeRequestCIStatus:
    """Report whether a change request is ready to deploy; no auth required."""
    return await build_ci_status(session, change_request_id=change_request_id)


@router.post("/{change_request_id}/trigger", response_model=AutomationTriggerRead)
async def trigger_automation(
    change_request_id: UUID,
    automation: ChangeRequestAutomation | None = AUTOMATION_DEP,
    _auth: AuthContext = AUTH_DEP,
) -> AutomationTriggerRead:
    """Run the coordinator inline; a no-op when execution already started."""
    if automation is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Automation is not running",
        )
    transitioned = await automation.process_approved(change_request_id)
    message = (
        "Execution started"
        if transitioned
        else "Change request is not approved and in DRAFT; nothing to do"
    )
    return AutomationTriggerRead(
        change_request_id=change_request_id,
        transitioned=transitioned,
        message=message,
    )
