"""Change request workflow API for gateway configuration changes."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from app.api.deps import AUTH_DEP, get_lifecycle
from app.core.auth import AuthContext
from app.models.change_requests import (
    ChangeRequest,
    ChangeRequestComment,
    ChangeRequestHistory,
    ChangeRequestReview,
)
from app.schemas.change_requests import (
    ChangeRequestCommentCreate,
    ChangeRequestCommentRead,
    ChangeRequestCreate,
    ChangeRequestDetailRead,
    ChangeRequestHistoryRead,
    ChangeRequestRead,
    ChangeRequestReviewCreate,
    ChangeRequestReviewRead,
    ChangeRequestUpdate,
    ExecutionStatusUpdate,
)
from app.services.change_request_lifecycle import ChangeRequestFilters, ChangeRequestLifecycle
from app.services.change_request_policy import ApprovalStatus, ExecutionStatus

router = APIRouter(prefix="/change-requests", tags=["change-requests"])
LIFECYCLE_DEP = Depends(get_lifecycle)
APPROVAL_STATUS_QUERY = Query(default=None)
EXECUTION_STATUS_QUERY = Query(default=None)
TEAM_ID_QUERY = Query(default=None)
USER_ID_QUERY = Query(default=None)
PAGE_QUERY = Query(default=1)


def _as_read(row: ChangeRequest) -> ChangeRequestRead:
    return ChangeRequestRead(
        id=row.id,
        requester_user_id=row.requester_user_id,
        requester_team_id=row.requester_team_id,
        title=row.title,
        config_changes_payload=row.config_changes_payload,
        approval_status=row.approval_status,  # type: ignore[arg-type]
        execution_status=row.execution_status,  # type: ignore[arg-type]
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _review_read(row: ChangeRequestReview) -> ChangeRequestReviewRead:
    return ChangeRequestReviewRead(
        id=row.id,
        change_request_id=row.change_request_id,
        reviewer_user_id=row.reviewer_user_id,
        decision=row.decision,
        reviewed_at=row.reviewed_at,
    )


def _comment_read(row: ChangeRequestComment) -> ChangeRequestCommentRead:
    return ChangeRequestCommentRead(
        id=row.id,
        change_request_id=row.change_request_id,
        author_user_id=row.author_user_id,
        comment_text=row.body,
        created_at=row.created_at,
    )


def _history_read(row: ChangeRequestHistory) -> ChangeRequestHistoryRead:
    return ChangeRequestHistoryRead(
        id=row.id or 0,
        change_request_id=row.change_request_id,
        actor_user_id=row.actor_user_id,
        event_type=row.event_type,
        old_status=row.old_status,
        new_status=row.new_status,
        created_at=row.created_at,
    )


@router.get("", response_model=list[ChangeRequestRead])
async def list_change_requests(
    approval_status: ApprovalStatus | None = APPROVAL_STATUS_QUERY,
    execution_status: ExecutionStatus | None = EXECUTION_STATUS_QUERY,
    team_id: UUID | None = TEAM_ID_QUERY,
    user_id: UUID | None = USER_ID_QUERY,
    page: int = PAGE_QUERY,
    lifecycle: ChangeRequestLifecycle = LIFECYCLE_DEP,
    _auth: AuthContext = AUTH_DEP,
) -> list[ChangeRequestRead]:
    """List change requests newest first, one page at a time."""
    filters = ChangeRequestFilters(
        approval_status=approval_status.value if approval_status else None,
        execution_status=execution_status.value if execution_status else None,
        requester_team_id=team_id,
        requester_user_id=user_id,
    )
    rows = await lifecycle.list_change_requests(filters=filters, page=page)
    return [_as_read(row) for row in rows]


@router.post("", response_model=ChangeRequestRead, status_code=status.HTTP_201_CREATED)
async def create_change_request(
    payload: ChangeRequestCreate,
    lifecycle: ChangeRequestLifecycle = LIFECYCLE_DEP,
    auth: AuthContext = AUTH_DEP,
) -> ChangeRequestRead:
    """Submit a new change request on behalf of one of the caller's teams."""
    row = await lifecycle.create(
        requester_user_id=auth.user_id,
        requester_team_id=payload.requester_team_id,
        title=payload.title,
        config_changes_payload=payload.config_changes_payload,
    )
    return _as_read(row)


@router.get("/{change_request_id}", response_model=ChangeRequestDetailRead)
async def get_change_request(
    change_request_id: UUID,
    lifecycle: ChangeRequestLifecycle = LIFECYCLE_DEP,
    _auth: AuthContext = AUTH_DEP,
) -> ChangeRequestDetailRead:
    """Fetch a change request with its reviews, comments, and history."""
    detail = await lifecycle.get_detail(change_request_id)
    base = _as_read(detail.change_request)
    return ChangeRequestDetailRead(
        **base.model_dump(),
        reviews=[_review_read(row) for row in detail.reviews],
        comments=[_comment_read(row) for row in detail.comments],
        history=[_history_read(row) for row in detail.history],
    )


@router.put("/{change_request_id}", response_model=ChangeRequestRead)
async def update_change_request(
    change_request_id: UUID,
    payload: ChangeRequestUpdate,
    lifecycle: ChangeRequestLifecycle = LIFECYCLE_DEP,
    auth: AuthContext = AUTH_DEP,
) -> ChangeRequestRead:
    """Edit title and/or payload while the change request is still editable."""
    row = await lifecycle.update(
        change_request_id,
        caller_user_id=auth.user_id,
        title=payload.title,
        config_changes_payload=payload.config_changes_payload,
    )
    return _as_read(row)


@router.post("/{change_request_id}/review", response_model=ChangeRequestRead)
async def review_change_request(
    change_request_id: UUID,
    payload: ChangeRequestReviewCreate,
    lifecycle: ChangeRequestLifecycle = LIFECYCLE_DEP,
    auth: AuthContext = AUTH_DEP,
) -> ChangeRequestRead:
    """Approve or reject a pending change request (Super Managers only)."""
    row = await lifecycle.record_review(
        change_request_id,
        reviewer_user_id=auth.user_id,
        decision=payload.review_decision,
    )
    return _as_read(row)


@router.put("/{change_request_id}/execution-status", response_model=ChangeRequestRead)
async def update_execution_status(
    change_request_id: UUID,
    payload: ExecutionStatusUpdate,
    lifecycle: ChangeRequestLifecycle = LIFECYCLE_DEP,
    auth: AuthContext = AUTH_DEP,
) -> ChangeRequestRead:
    """Move execution status of an approved change request (Gateway Editors only)."""
    row = await lifecycle.update_execution_status(
        change_request_id,
        caller_user_id=auth.user_id,
        execution_status=payload.execution_status,
    )
    return _as_read(row)


@router.post(
    "/{change_request_id}/comments",
    response_model=ChangeRequestCommentRead,
    status_code=status.HTTP_201_CREATED,
)
async def add_comment(
    change_request_id: UUID,
    payload: ChangeRequestCommentCreate,
    lifecycle: ChangeRequestLifecycle = LIFECYCLE_DEP,
    auth: AuthContext = AUTH_DEP,
) -> ChangeRequestCommentRead:
    row = await lifecycle.add_comment(
        change_request_id,
        author_user_id=auth.user_id,
        text=payload.comment_text,
    )
    return _comment_read(row)


@router.get("/{change_request_id}/comments", response_model=list[ChangeRequestCommentRead])
async def list_comments(
    change_request_id: UUID,
    lifecycle: ChangeRequestLifecycle = LIFECYCLE_DEP,
    _auth: AuthContext = AUTH_DEP,
) -> list[ChangeRequestCommentRead]:
    rows = await lifecycle.list_comments(change_request_id)
    return [_comment_read(row) for row in rows]


@router.get("/{change_request_id}/history", response_model=list[ChangeRequestHistoryRead])
async def list_history(
    change_request_id: UUID,
    lifecycle: ChangeRequestLifecycle = LIFECYCLE_DEP,
    _auth: AuthContext = AUTH_DEP,
) -> list[ChangeRequestHistoryRead]:
    """Return the audit trail oldest first."""
    rows = await lifecycle.list_history(change_request_id)
    return [_history_read(row) for row in rows]
