# ruff: noqa: S101
from __future__ import annotations

from datetime import timedelta

from sqlalchemy import DateTime
from sqlmodel import SQLModel

import app.models  # noqa: F401
from app.core.time import utcnow


def test_utcnow_is_timezone_aware() -> None:
    assert utcnow().utcoffset() == timedelta(0)


def test_every_timestamp_column_stores_timezone() -> None:
    columns = [
        f"{table.name}.{column.name}"
        for table in SQLModel.metadata.sorted_tables
        for column in table.columns
        if isinstance(column.type, DateTime)
    ]
    naive = [
        f"{table.name}.{column.name}"
        for table in SQLModel.metadata.sorted_tables
        for column in table.columns
        if isinstance(column.type, DateTime) and not column.type.timezone
    ]

    assert "change_requests.created_at" in columns
    assert "change_request_history.created_at" in columns
    assert "super_managers.added_at" in columns
    assert naive == []
