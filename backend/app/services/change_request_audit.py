"""Append-only audit trail for change request lifecycle events."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from sqlmodel import col, select

from app.core.time import utcnow
from app.models.change_requests import ChangeRequestHistory
from app.services.change_request_policy import HistoryEventType

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession


def record_event(
    session: AsyncSession,
    *,
    change_request_id: UUID,
    actor_user_id: UUID,
    event_type: HistoryEventType,
    new_status: str = "",
    old_status: str | None = None,
) -> ChangeRequestHistory:
    """Stage one audit entry on the caller's transaction.

    The entry is only added to the session; it commits (or rolls back)
    together with the caller's primary write.
    """
    entry = ChangeRequestHistory(
        change_request_id=change_request_id,
        actor_user_id=actor_user_id,
        event_type=event_type.value,
        old_status=old_status,
        new_status=new_status,
        created_at=utcnow(),
    )
    session.add(entry)
    return entry


async def list_history(
    session: AsyncSession,
    *,
    change_request_id: UUID,
) -> list[ChangeRequestHistory]:
    """Return a change request's audit entries, oldest first."""
    statement = (
        select(ChangeRequestHistory)
        .where(col(ChangeRequestHistory.change_request_id) == change_request_id)
        .order_by(col(ChangeRequestHistory.created_at).asc(), col(ChangeRequestHistory.id).asc())
    )
    return list((await session.exec(statement)).all())
