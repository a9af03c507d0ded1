"""Change request lifecycle engine.

Every mutation follows the same shape: load the record fresh, check
preconditions, then apply a conditional ``UPDATE`` keyed on the status that
was checked and stage the audit entry in the same transaction. A zero row
count means a concurrent writer got there first and the whole write rolls
back, so each status value has exactly one winning transition.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import col, select

from app.core.config import settings
from app.core.errors import (
    ChangeRequestError,
    ForbiddenError,
    InternalError,
    InvalidDecisionError,
    InvalidPayloadError,
    InvalidStateError,
    InvalidValueError,
    NotFoundError,
    UnauthorizedError,
)
from app.core.logging import get_logger
from app.core.time import utcnow
from app.models.change_requests import (
    ChangeRequest,
    ChangeRequestComment,
    ChangeRequestHistory,
    ChangeRequestReview,
)
from app.services.capability_gates import (
    CapabilityOracle,
    require_gateway_editor,
    require_super_manager,
)
from app.services.change_request_audit import list_history, record_event
from app.services.change_request_policy import (
    EDITABLE_APPROVAL_STATUSES,
    REVIEW_OUTCOMES,
    ApprovalStatus,
    HistoryEventType,
    is_editable,
    parse_execution_status,
    parse_review_decision,
    validate_approval_transition,
    validate_config_payload,
    validate_execution_transition,
)

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

logger = get_logger(__name__)


class AutomationScheduler(Protocol):
    def schedule(self, change_request_id: UUID) -> bool: ...


@dataclass(frozen=True)
class ChangeRequestFilters:
    approval_status: str | None = None
    execution_status: str | None = None
    requester_team_id: UUID | None = None
    requester_user_id: UUID | None = None


@dataclass
class ChangeRequestDetail:
    change_request: ChangeRequest
    reviews: list[ChangeRequestReview] = field(default_factory=list)
    comments: list[ChangeRequestComment] = field(default_factory=list)
    history: list[ChangeRequestHistory] = field(default_factory=list)


class ChangeRequestLifecycle:
    """Create, edit, review, execute, and discuss change requests."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        oracle: CapabilityOracle | None = None,
        automation: AutomationScheduler | None = None,
        page_size: int | None = None,
    ) -> None:
        self.session = session
        self.oracle = oracle or CapabilityOracle(session)
        self.automation = automation
        self.page_size = max(1, page_size or settings.change_request_page_size)

    async def _require(self, change_request_id: UUID) -> ChangeRequest:
        change_request = await ChangeRequest.objects.by_id(change_request_id).fresh().first(
            self.session,
        )
        if change_request is None:
            raise NotFoundError("Change request not found")
        return change_request

    @asynccontextmanager
    async def _write(self, *, action: str, change_request_id: UUID) -> AsyncIterator[None]:
        try:
            yield
            await self.session.commit()
        except ChangeRequestError:
            await self.session.rollback()
            raise
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.exception(
                "change_request.write_failed",
                extra={"action": action, "cr_id": str(change_request_id)},
            )
            raise InternalError(f"Failed to {action}") from exc

    async def _apply(self, change_request_id: UUID, *conditions: object, **values: object) -> bool:
        statement = (
            update(ChangeRequest)
            .where(col(ChangeRequest.id) == change_request_id, *conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.exec(statement)
        return result.rowcount == 1

    def _dispatch_automation(self, change_request_id: UUID) -> None:
        if self.automation is None:
            logger.info(
                "change_request.automation.unavailable",
                extra={"cr_id": str(change_request_id)},
            )
            return
        try:
            self.automation.schedule(change_request_id)
        except Exception:
            # Approval is already committed; automation is best-effort.
            logger.exception(
                "change_request.automation.dispatch_failed",
                extra={"cr_id": str(change_request_id)},
            )

    async def create(
        self,
        *,
        requester_user_id: UUID,
        requester_team_id: UUID,
        title: str,
        config_changes_payload: str,
    ) -> ChangeRequest:
        if not await self.oracle.is_member(requester_user_id, requester_team_id):
            raise UnauthorizedError("User is not a member of the specified team")
        title_text = (title or "").strip()
        if not title_text:
            raise InvalidValueError("Title is required")
        payload_error = validate_config_payload(config_changes_payload)
        if payload_error is not None:
            raise InvalidPayloadError(payload_error)

        now = utcnow()
        change_request = ChangeRequest(
            requester_user_id=requester_user_id,
            requester_team_id=requester_team_id,
            title=title_text,
            config_changes_payload=config_changes_payload,
            created_at=now,
            updated_at=now,
        )
        async with self._write(action="create change request", change_request_id=change_request.id):
            self.session.add(change_request)
            await self.session.flush()
            record_event(
                self.session,
                change_request_id=change_request.id,
                actor_user_id=requester_user_id,
                event_type=HistoryEventType.CREATED,
                new_status=change_request.approval_status,
            )
        logger.info(
            "change_request.created",
            extra={"cr_id": str(change_request.id), "team_id": str(requester_team_id)},
        )
        return change_request

    async def update(
        self,
        change_request_id: UUID,
        *,
        caller_user_id: UUID,
        title: str | None = None,
        config_changes_payload: str | None = None,
    ) -> ChangeRequest:
        """Edit title and/or payload; blank values leave the field unchanged."""
        change_request = await self._require(change_request_id)
        if change_request.requester_user_id != caller_user_id:
            raise ForbiddenError("Only the requester can update this change request")
        if not is_editable(change_request.approval_status):
            raise InvalidStateError("Cannot update an approved change request")

        values: dict[str, object] = {"updated_at": utcnow()}
        title_text = (title or "").strip()
        if title_text:
            values["title"] = title_text
        payload_text = (config_changes_payload or "").strip()
        if payload_text:
            payload_error = validate_config_payload(payload_text)
            if payload_error is not None:
                raise InvalidPayloadError(payload_error)
            values["config_changes_payload"] = payload_text

        status_value = change_request.approval_status
        async with self._write(action="update change request", change_request_id=change_request_id):
            applied = await self._apply(
                change_request_id,
                col(ChangeRequest.approval_status).in_(
                    [status.value for status in EDITABLE_APPROVAL_STATUSES],
                ),
                **values,
            )
            if not applied:
                raise InvalidStateError("Cannot update an approved change request")
            record_event(
                self.session,
                change_request_id=change_request_id,
                actor_user_id=caller_user_id,
                event_type=HistoryEventType.UPDATED,
                old_status=status_value,
                new_status=status_value,
            )
        await self.session.refresh(change_request)
        logger.info(
            "change_request.updated",
            extra={"cr_id": str(change_request_id), "fields": sorted(values)},
        )
        return change_request

    async def record_review(
        self,
        change_request_id: UUID,
        *,
        reviewer_user_id: UUID,
        decision: str,
    ) -> ChangeRequest:
        """Apply a Super Manager decision to a pending change request."""
        await require_super_manager(self.oracle, reviewer_user_id)
        change_request = await self._require(change_request_id)
        if change_request.approval_status != ApprovalStatus.PENDING_APPROVAL:
            raise InvalidStateError("Change request is not pending approval")
        review_decision = parse_review_decision(decision)
        if review_decision is None:
            raise InvalidDecisionError("Invalid review decision. Must be APPROVED or REJECTED")
        target = REVIEW_OUTCOMES[review_decision]
        check = validate_approval_transition(current=change_request.approval_status, target=target)
        if not check.ok:
            raise InvalidStateError(check.reason or "Invalid approval transition")

        previous = change_request.approval_status
        now = utcnow()
        async with self._write(action="record review", change_request_id=change_request_id):
            applied = await self._apply(
                change_request_id,
                col(ChangeRequest.approval_status) == previous,
                approval_status=target.value,
                updated_at=now,
            )
            if not applied:
                raise InvalidStateError("Change request is not pending approval")
            self.session.add(
                ChangeRequestReview(
                    change_request_id=change_request_id,
                    reviewer_user_id=reviewer_user_id,
                    decision=review_decision.value,
                    reviewed_at=now,
                ),
            )
            record_event(
                self.session,
                change_request_id=change_request_id,
                actor_user_id=reviewer_user_id,
                event_type=HistoryEventType.STATUS_CHANGE,
                old_status=previous,
                new_status=target.value,
            )
        await self.session.refresh(change_request)
        logger.info(
            "change_request.reviewed",
            extra={"cr_id": str(change_request_id), "decision": review_decision.value},
        )
        if target == ApprovalStatus.APPROVED:
            self._dispatch_automation(change_request_id)
        return change_request

    async def update_execution_status(
        self,
        change_request_id: UUID,
        *,
        caller_user_id: UUID,
        execution_status: str,
    ) -> ChangeRequest:
        """Move execution status; requires approval first, then the editor role."""
        change_request = await self._require(change_request_id)
        if change_request.approval_status != ApprovalStatus.APPROVED:
            raise InvalidStateError("Change request must be approved before execution")
        target = parse_execution_status(execution_status)
        if target is None:
            raise InvalidValueError(
                "Invalid execution status. Must be DRAFT, IN_PROGRESS, COMPLETED or CANCELED",
            )
        await require_gateway_editor(self.oracle, caller_user_id)
        check = validate_execution_transition(
            approval_status=change_request.approval_status,
            current=change_request.execution_status,
            target=target,
        )
        if not check.ok:
            raise InvalidStateError(check.reason or "Invalid execution transition")

        previous = change_request.execution_status
        async with self._write(action="update execution status", change_request_id=change_request_id):
            applied = await self._apply(
                change_request_id,
                col(ChangeRequest.approval_status) == ApprovalStatus.APPROVED.value,
                col(ChangeRequest.execution_status) == previous,
                execution_status=target.value,
                updated_at=utcnow(),
            )
            if not applied:
                raise InvalidStateError("Execution status changed concurrently; reload and retry")
            record_event(
                self.session,
                change_request_id=change_request_id,
                actor_user_id=caller_user_id,
                event_type=HistoryEventType.STATUS_CHANGE,
                old_status=previous,
                new_status=target.value,
            )
        await self.session.refresh(change_request)
        logger.info(
            "change_request.execution_status_changed",
            extra={"cr_id": str(change_request_id), "from": previous, "to": target.value},
        )
        return change_request

    async def add_comment(
        self,
        change_request_id: UUID,
        *,
        author_user_id: UUID,
        text: str,
    ) -> ChangeRequestComment:
        await self._require(change_request_id)
        body = (text or "").strip()
        if not body:
            raise InvalidValueError("Comment text is required")
        comment = ChangeRequestComment(
            change_request_id=change_request_id,
            author_user_id=author_user_id,
            body=body,
            created_at=utcnow(),
        )
        async with self._write(action="add comment", change_request_id=change_request_id):
            self.session.add(comment)
            record_event(
                self.session,
                change_request_id=change_request_id,
                actor_user_id=author_user_id,
                event_type=HistoryEventType.COMMENT_ADDED,
            )
        return comment

    async def get(self, change_request_id: UUID) -> ChangeRequest:
        return await self._require(change_request_id)

    async def list_comments(self, change_request_id: UUID) -> list[ChangeRequestComment]:
        await self._require(change_request_id)
        return await ChangeRequestComment.objects.filter_by(
            change_request_id=change_request_id,
        ).order_by(
            col(ChangeRequestComment.created_at).asc(),
        ).all(self.session)

    async def list_reviews(self, change_request_id: UUID) -> list[ChangeRequestReview]:
        return await ChangeRequestReview.objects.filter_by(
            change_request_id=change_request_id,
        ).order_by(
            col(ChangeRequestReview.reviewed_at).asc(),
        ).all(self.session)

    async def list_history(self, change_request_id: UUID) -> list[ChangeRequestHistory]:
        await self._require(change_request_id)
        return await list_history(self.session, change_request_id=change_request_id)

    async def get_detail(self, change_request_id: UUID) -> ChangeRequestDetail:
        change_request = await self._require(change_request_id)
        return ChangeRequestDetail(
            change_request=change_request,
            reviews=await self.list_reviews(change_request_id),
            comments=await self.list_comments(change_request_id),
            history=await list_history(self.session, change_request_id=change_request_id),
        )

    async def list_change_requests(
        self,
        *,
        filters: ChangeRequestFilters | None = None,
        page: int = 1,
    ) -> list[ChangeRequest]:
        """Return one page of change requests, newest first."""
        filters = filters or ChangeRequestFilters()
        statement = select(ChangeRequest)
        if filters.approval_status:
            statement = statement.where(
                col(ChangeRequest.approval_status) == filters.approval_status,
            )
        if filters.execution_status:
            statement = statement.where(
                col(ChangeRequest.execution_status) == filters.execution_status,
            )
        if filters.requester_team_id is not None:
            statement = statement.where(
                col(ChangeRequest.requester_team_id) == filters.requester_team_id,
            )
        if filters.requester_user_id is not None:
            statement = statement.where(
                col(ChangeRequest.requester_user_id) == filters.requester_user_id,
            )
        page_number = max(1, page)
        statement = (
            statement.order_by(col(ChangeRequest.created_at).desc(), col(ChangeRequest.id).desc())
            .offset((page_number - 1) * self.page_size)
            .limit(self.page_size)
            .execution_options(populate_existing=True)
        )
        return list((await self.session.exec(statement)).all())
