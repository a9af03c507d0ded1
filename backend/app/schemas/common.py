"""Shared schema primitives."""

from __future__ import annotations

from sqlmodel import SQLModel


class OkResponse(SQLModel):
    """Plain acknowledgement payload."""

    ok: bool = True
    message: str | None = None
