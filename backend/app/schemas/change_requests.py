"""Schemas for change request workflow APIs."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import Field, field_validator
from sqlmodel import SQLModel

from app.services.change_request_policy import ApprovalStatus, ExecutionStatus

_RUNTIME_TYPE_REFERENCES = (datetime, UUID, ApprovalStatus, ExecutionStatus)


def _normalize_optional_text(value: object) -> object | None:
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip()
        return text or None
    return value


class ChangeRequestCreate(SQLModel):
    """Payload for submitting a configuration change request."""

    title: str
    config_changes_payload: str
    requester_team_id: UUID


class ChangeRequestUpdate(SQLModel):
    """Partial edit of title and/or payload; blank fields are left unchanged."""

    title: str | None = None
    config_changes_payload: str | None = None

    @field_validator("title", "config_changes_payload", mode="before")
    @classmethod
    def normalize_optional_text(cls, value: object) -> object | None:
        return _normalize_optional_text(value)


class ChangeRequestReviewCreate(SQLModel):
    """Super Manager decision: ``APPROVED`` or ``REJECTED``."""

    review_decision: str


class ExecutionStatusUpdate(SQLModel):
    """Gateway Editor request to move the execution status."""

    execution_status: str


class ChangeRequestCommentCreate(SQLModel):
    comment_text: str


class ChangeRequestRead(SQLModel):
    """Read model for change request records."""

    id: UUID
    requester_user_id: UUID
    requester_team_id: UUID
    title: str
    config_changes_payload: str
    approval_status: ApprovalStatus
    execution_status: ExecutionStatus
    created_at: datetime
    updated_at: datetime


class ChangeRequestReviewRead(SQLModel):
    id: UUID
    change_request_id: UUID
    reviewer_user_id: UUID
    decision: str
    reviewed_at: datetime


class ChangeRequestCommentRead(SQLModel):
    id: UUID
    change_request_id: UUID
    author_user_id: UUID
    comment_text: str
    created_at: datetime


class ChangeRequestHistoryRead(SQLModel):
    """Audit entry; ``actor_user_id`` is the nil UUID for automation."""

    id: int
    change_request_id: UUID
    actor_user_id: UUID
    event_type: str
    old_status: str | None = None
    new_status: str
    created_at: datetime


class ChangeRequestDetailRead(ChangeRequestRead):
    """Change request with its reviews, comments, and audit trail."""

    reviews: list[ChangeRequestReviewRead] = Field(default_factory=list)
    comments: list[ChangeRequestCommentRead] = Field(default_factory=list)
    history: list[ChangeRequestHistoryRead] = Field(default_factory=list)


class ChangeRequestCIStatus(SQLModel):
    """Projection consumed by CI/CD pipelines polling for executable work."""

    cr_id: UUID
    title: str
    approval_status: ApprovalStatus
    execution_status: ExecutionStatus
    can_execute: bool
    config_changes: str
    requester_team: str | None = None
    created_at: datetime


class AutomationTriggerRead(SQLModel):
    change_request_id: UUID
    transitioned: bool
    message: str
