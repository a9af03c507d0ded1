"""Capability grants: a row's presence is the capability."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import DateTime
from sqlmodel import Field

from app.core.time import utcnow
from app.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)


class SuperManager(QueryModel, table=True):
    """User allowed to approve or reject change requests."""

    __tablename__ = "super_managers"  # pyright: ignore[reportAssignmentType]

    user_id: UUID = Field(foreign_key="users.id", primary_key=True)
    added_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class GatewayEditor(QueryModel, table=True):
    """User allowed to advance a change request's execution status."""

    __tablename__ = "gateway_editors"  # pyright: ignore[reportAssignmentType]

    user_id: UUID = Field(foreign_key="users.id", primary_key=True)
    added_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
