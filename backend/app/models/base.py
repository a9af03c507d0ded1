"""Shared SQLModel base with the ``objects`` query manager."""

from __future__ import annotations

from typing import ClassVar

from sqlmodel import SQLModel

from app.db.query_manager import ManagerDescriptor


class QueryModel(SQLModel, table=False):
    """Base for table models; adds ``Model.objects.by_id(...)``-style queries."""

    objects: ClassVar[ManagerDescriptor] = ManagerDescriptor()
