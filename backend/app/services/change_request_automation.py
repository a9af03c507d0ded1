"""Automation coordinator that starts execution of approved change requests.

After approval the coordinator moves ``DRAFT`` to ``IN_PROGRESS`` on behalf of
the system actor and then notifies CI/CD through a best-effort webhook.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING
from uuid import UUID

import httpx
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import col

from app.core.config import settings
from app.core.errors import InternalError, NotFoundError
from app.core.logging import get_logger
from app.core.time import utcnow
from app.models.change_requests import ChangeRequest
from app.models.teams import Team
from app.schemas.change_requests import ChangeRequestCIStatus
from app.services.background_tasks import BackgroundTaskRunner, QueuedTask
from app.services.change_request_audit import record_event
from app.services.change_request_policy import (
    SYSTEM_ACTOR_ID,
    ApprovalStatus,
    ExecutionStatus,
    HistoryEventType,
    can_execute,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import async_sessionmaker
    from sqlmodel.ext.asyncio.session import AsyncSession

logger = get_logger(__name__)
AUTOMATION_TASK_TYPE = "change_request_automation"
WEBHOOK_TASK_TYPE = "change_request_webhook"


def build_webhook_payload(change_request: ChangeRequest) -> dict[str, object]:
    """Describe a change request for the CI/CD webhook consumer."""
    return {
        "cr_id": str(change_request.id),
        "title": change_request.title,
        "config_changes": change_request.config_changes_payload,
        "approval_status": change_request.approval_status,
        "execution_status": change_request.execution_status,
        "requester_user_id": str(change_request.requester_user_id),
        "requester_team_id": str(change_request.requester_team_id),
        "timestamp": int(time.time()),
    }


def automation_task(change_request_id: UUID) -> QueuedTask:
    return QueuedTask(
        task_type=AUTOMATION_TASK_TYPE,
        payload={"change_request_id": str(change_request_id)},
    )


def decode_automation_task(task: QueuedTask) -> UUID:
    """Return the change request id carried by an automation task."""
    if task.task_type != AUTOMATION_TASK_TYPE:
        raise ValueError(
            f"Unexpected task_type={task.task_type!r}; expected {AUTOMATION_TASK_TYPE!r}",
        )
    return UUID(task.payload["change_request_id"])


def webhook_task(payload: dict[str, object]) -> QueuedTask:
    return QueuedTask(task_type=WEBHOOK_TASK_TYPE, payload=dict(payload))


async def build_ci_status(
    session: AsyncSession,
    *,
    change_request_id: UUID,
) -> ChangeRequestCIStatus:
    """Return the status projection CI/CD pipelines poll before deploying."""
    change_request = await ChangeRequest.objects.by_id(change_request_id).fresh().first(session)
    if change_request is None:
        raise NotFoundError("Change request not found")
    team = await Team.objects.by_id(change_request.requester_team_id).first(session)
    return ChangeRequestCIStatus(
        cr_id=change_request.id,
        title=change_request.title,
        approval_status=ApprovalStatus(change_request.approval_status),
        execution_status=ExecutionStatus(change_request.execution_status),
        can_execute=can_execute(
            approval_status=change_request.approval_status,
            execution_status=change_request.execution_status,
        ),
        config_changes=change_request.config_changes_payload,
        requester_team=team.name if team is not None else None,
        created_at=change_request.created_at,
    )


class CiWebhookNotifier:
    """Outbound CI/CD notification with a bounded timeout and no retries."""

    def __init__(
        self,
        *,
        url: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = (url if url is not None else settings.webhook_url).strip()
        self.timeout_seconds = float(
            timeout_seconds if timeout_seconds is not None else settings.webhook_timeout_seconds,
        )
        self.transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    async def notify(self, payload: dict[str, object]) -> bool:
        """POST ``payload`` once; return whether the receiver accepted it."""
        if not self.enabled:
            logger.info("automation.webhook.disabled", extra={"cr_id": payload.get("cr_id")})
            return False
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds,
                headers={"Content-Type": "application/json"},
                transport=self.transport,
            ) as client:
                response = await client.post(self.url, json=payload)
        except httpx.HTTPError as exc:
            logger.warning(
                "automation.webhook.delivery_failed",
                extra={"cr_id": payload.get("cr_id"), "error": str(exc)},
            )
            return False
        if not response.is_success:
            logger.warning(
                "automation.webhook.rejected",
                extra={"cr_id": payload.get("cr_id"), "status_code": response.status_code},
            )
            return False
        logger.info(
            "automation.webhook.delivered",
            extra={"cr_id": payload.get("cr_id"), "status_code": response.status_code},
        )
        return True


class ChangeRequestAutomation:
    """Start execution for approved change requests, at most once each."""

    def __init__(
        self,
        *,
        session_maker: async_sessionmaker[AsyncSession],
        runner: BackgroundTaskRunner,
        notifier: CiWebhookNotifier | None = None,
    ) -> None:
        self._session_maker = session_maker
        self._runner = runner
        self._notifier = notifier or CiWebhookNotifier()
        runner.register(AUTOMATION_TASK_TYPE, self._handle_automation_task)
        runner.register(WEBHOOK_TASK_TYPE, self._handle_webhook_task)

    def schedule(self, change_request_id: UUID) -> bool:
        """Queue ``process_approved`` without waiting for it."""
        queued = self._runner.enqueue(automation_task(change_request_id))
        logger.info(
            "automation.queue.enqueued" if queued else "automation.queue.enqueue_failed",
            extra={"cr_id": str(change_request_id)},
        )
        return queued

    async def _handle_automation_task(self, task: QueuedTask) -> None:
        await self.process_approved(decode_automation_task(task))

    async def _handle_webhook_task(self, task: QueuedTask) -> None:
        await self._notifier.notify(task.payload)

    async def process_approved(self, change_request_id: UUID) -> bool:
        """Move ``APPROVED``/``DRAFT`` to ``IN_PROGRESS``.

        Returns False without writing when the change request is not
        executable, including when another invocation already moved it.
        """
        async with self._session_maker() as session:
            change_request = await ChangeRequest.objects.by_id(change_request_id).fresh().first(
                session,
            )
            if change_request is None:
                raise NotFoundError("Change request not found")
            if not can_execute(
                approval_status=change_request.approval_status,
                execution_status=change_request.execution_status,
            ):
                logger.info(
                    "automation.execution.skipped",
                    extra={
                        "cr_id": str(change_request_id),
                        "approval_status": change_request.approval_status,
                        "execution_status": change_request.execution_status,
                    },
                )
                return False

            statement = (
                update(ChangeRequest)
                .where(col(ChangeRequest.id) == change_request_id)
                .where(col(ChangeRequest.approval_status) == ApprovalStatus.APPROVED.value)
                .where(col(ChangeRequest.execution_status) == ExecutionStatus.DRAFT.value)
                .values(
                    execution_status=ExecutionStatus.IN_PROGRESS.value,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            try:
                result = await session.exec(statement)
                if result.rowcount != 1:
                    await session.rollback()
                    logger.info(
                        "automation.execution.lost_race",
                        extra={"cr_id": str(change_request_id)},
                    )
                    return False
                record_event(
                    session,
                    change_request_id=change_request_id,
                    actor_user_id=SYSTEM_ACTOR_ID,
                    event_type=HistoryEventType.STATUS_CHANGE,
                    old_status=ExecutionStatus.DRAFT.value,
                    new_status=ExecutionStatus.IN_PROGRESS.value,
                )
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.exception(
                    "automation.execution.write_failed",
                    extra={"cr_id": str(change_request_id)},
                )
                raise InternalError("Failed to start change request execution") from exc

            await session.refresh(change_request)
            payload = build_webhook_payload(change_request)

        logger.info(
            "automation.execution.started",
            extra={"cr_id": str(change_request_id)},
        )
        if self._notifier.enabled:
            self._runner.enqueue(webhook_task(payload))
        return True
