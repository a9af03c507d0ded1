"""Change request records with their reviews, comments, and audit history."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import Column, DateTime, Text, UniqueConstraint
from sqlmodel import Field

from app.core.time import utcnow
from app.models.base import QueryModel
from app.services.change_request_policy import ApprovalStatus, ExecutionStatus

RUNTIME_ANNOTATION_TYPES = (datetime,)


class ChangeRequest(QueryModel, table=True):
    """Gateway configuration change tracked through approval and execution."""

    __tablename__ = "change_requests"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    requester_user_id: UUID = Field(foreign_key="users.id", index=True)
    requester_team_id: UUID = Field(foreign_key="teams.id", index=True)
    title: str
    config_changes_payload: str = Field(sa_column=Column(Text, nullable=False))
    approval_status: str = Field(default=ApprovalStatus.PENDING_APPROVAL.value, index=True)
    execution_status: str = Field(default=ExecutionStatus.DRAFT.value, index=True)
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_type=DateTime(timezone=True),
        index=True,
    )
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class ChangeRequestReview(QueryModel, table=True):
    """Immutable Super Manager decision on a change request."""

    __tablename__ = "change_request_reviews"  # pyright: ignore[reportAssignmentType]
    __table_args__ = (
        UniqueConstraint(
            "change_request_id",
            "reviewer_user_id",
            name="uq_change_request_reviews_cr_reviewer",
        ),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    change_request_id: UUID = Field(foreign_key="change_requests.id", index=True)
    reviewer_user_id: UUID = Field(foreign_key="users.id", index=True)
    decision: str
    reviewed_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class ChangeRequestComment(QueryModel, table=True):
    """Append-only discussion entry on a change request."""

    __tablename__ = "change_request_comments"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    change_request_id: UUID = Field(foreign_key="change_requests.id", index=True)
    author_user_id: UUID = Field(foreign_key="users.id", index=True)
    body: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_type=DateTime(timezone=True),
        index=True,
    )


class ChangeRequestHistory(QueryModel, table=True):
    """Append-only audit entry; the integer id breaks timestamp ties."""

    __tablename__ = "change_request_history"  # pyright: ignore[reportAssignmentType]

    id: int | None = Field(default=None, primary_key=True)
    change_request_id: UUID = Field(foreign_key="change_requests.id", index=True)
    # No FK: automation writes the reserved system actor id.
    actor_user_id: UUID = Field(index=True)
    event_type: str
    old_status: str | None = Field(default=None)
    new_status: str = Field(default="")
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_type=DateTime(timezone=True),
        index=True,
    )
