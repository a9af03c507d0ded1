"""Small chainable query helpers exposed on models as ``Model.objects``."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, TypeVar

from sqlalchemy import inspect as sa_inspect
from sqlmodel import SQLModel, select

if TYPE_CHECKING:
    from sqlalchemy.sql.elements import ColumnElement
    from sqlmodel.ext.asyncio.session import AsyncSession
    from sqlmodel.sql.expression import SelectOfScalar

ModelT = TypeVar("ModelT", bound=SQLModel)


class QuerySet(Generic[ModelT]):
    """Immutable wrapper around a ``select(Model)`` statement."""

    def __init__(self, model: type[ModelT], statement: SelectOfScalar[ModelT]) -> None:
        self.model = model
        self.statement = statement

    def filter(self, *conditions: ColumnElement[bool]) -> QuerySet[ModelT]:
        return QuerySet(self.model, self.statement.where(*conditions))

    def filter_by(self, **kwargs: Any) -> QuerySet[ModelT]:
        return QuerySet(self.model, self.statement.filter_by(**kwargs))

    def order_by(self, *clauses: Any) -> QuerySet[ModelT]:
        return QuerySet(self.model, self.statement.order_by(*clauses))

    def fresh(self) -> QuerySet[ModelT]:
        """Overwrite identity-map copies with the row as currently stored."""
        return QuerySet(self.model, self.statement.execution_options(populate_existing=True))

    async def first(self, session: AsyncSession) -> ModelT | None:
        return (await session.exec(self.statement.limit(1))).first()

    async def all(self, session: AsyncSession) -> list[ModelT]:
        return list((await session.exec(self.statement)).all())


class ModelManager(Generic[ModelT]):
    """Entry point for building querysets against one model."""

    def __init__(self, model: type[ModelT]) -> None:
        self.model = model

    def _queryset(self) -> QuerySet[ModelT]:
        return QuerySet(self.model, select(self.model))

    def by_id(self, obj_id: object) -> QuerySet[ModelT]:
        primary_key = sa_inspect(self.model).primary_key
        if len(primary_key) != 1:
            msg = f"{self.model.__name__} has a composite primary key; use filter_by()"
            raise TypeError(msg)
        return self._queryset().filter(primary_key[0] == obj_id)

    def filter(self, *conditions: ColumnElement[bool]) -> QuerySet[ModelT]:
        return self._queryset().filter(*conditions)

    def filter_by(self, **kwargs: Any) -> QuerySet[ModelT]:
        return self._queryset().filter_by(**kwargs)

    def all(self) -> QuerySet[ModelT]:
        return self._queryset()


class ManagerDescriptor:
    """Class-level descriptor returning a manager bound to the owning model."""

    def __get__(self, instance: object, owner: type[ModelT]) -> ModelManager[ModelT]:
        return ModelManager(owner)
