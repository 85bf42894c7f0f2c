"""Chainable query helpers exposed on models through `Model.objects`."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from sqlmodel import col, select

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession
    from sqlmodel.sql.expression import SelectOfScalar

ModelT = TypeVar("ModelT")


@dataclass(frozen=True)
class QuerySet(Generic[ModelT]):
    """Immutable wrapper around a select statement for one model."""

    model: type[ModelT]
    statement: SelectOfScalar[ModelT]

    def filter(self, *criteria: Any) -> QuerySet[ModelT]:
        return replace(self, statement=self.statement.where(*criteria))

    def filter_by(self, **kwargs: Any) -> QuerySet[ModelT]:
        return replace(self, statement=self.statement.filter_by(**kwargs))

    def order_by(self, *clauses: Any) -> QuerySet[ModelT]:
        return replace(self, statement=self.statement.order_by(*clauses))

    def limit(self, count: int) -> QuerySet[ModelT]:
        return replace(self, statement=self.statement.limit(count))

    async def all(self, session: AsyncSession) -> list[ModelT]:
        return list((await session.exec(self.statement)).all())

    async def first(self, session: AsyncSession) -> ModelT | None:
        return (await session.exec(self.statement)).first()


class ModelManager(Generic[ModelT]):
    """Entry point for building querysets against a table model."""

    def __init__(self, model: type[ModelT]) -> None:
        self.model = model

    def all(self) -> QuerySet[ModelT]:
        return QuerySet(self.model, select(self.model))

    def by_id(self, obj_id: Any) -> QuerySet[ModelT]:
        return self.filter(col(self.model.id) == obj_id)  # type: ignore[attr-defined]

    def by_ids(self, obj_ids: list[Any]) -> QuerySet[ModelT]:
        return self.filter(col(self.model.id).in_(obj_ids))  # type: ignore[attr-defined]

    def filter(self, *criteria: Any) -> QuerySet[ModelT]:
        return self.all().filter(*criteria)

    def filter_by(self, **kwargs: Any) -> QuerySet[ModelT]:
        return self.all().filter_by(**kwargs)


class ManagerDescriptor(Generic[ModelT]):
    """Class-level descriptor returning a manager bound to the owner model."""

    def __get__(self, instance: object, owner: type[ModelT]) -> ModelManager[ModelT]:
        return ModelManager(owner)
