"""Schemas for capability grants and derived role flags."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlmodel import SQLModel

_RUNTIME_TYPE_REFERENCES = (datetime, UUID)


class RoleGrantCreate(SQLModel):
    user_id: UUID


class RoleGrantRead(SQLModel):
    """Read model for a Super Manager or Gateway Editor grant."""

    user_id: UUID
    username: str | None = None
    role: str
    added_at: datetime


class RoleFlagsRead(SQLModel):
    """Capabilities derived for the caller at request time."""

    user_id: UUID
    is_super_manager: bool
    is_gateway_editor: bool
