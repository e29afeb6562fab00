"""Entity store: the filter/create/update/delete surface the engine consumes.

A thin repository over an ``AsyncSession``. Pipelines receive it explicitly
instead of reaching for a global session, and decide themselves when to
``commit`` or ``rollback``.
"""
from __future__ import annotations

import logging
from typing import Any, Sequence, TypeVar

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Base

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=Base)


class EntityStore:
    """Repository over a single async session."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, model: type[ModelT], entity_id: Any) -> ModelT | None:
        """Fetch one row by primary key."""
        if entity_id is None:
            return None
        return await self.session.get(model, entity_id)

    async def filter(
        self,
        model: type[ModelT],
        *,
        order_by: Sequence[Any] | None = None,
        limit: int | None = None,
        **criteria: Any,
    ) -> list[ModelT]:
        """Rows whose columns equal every keyword criterion.

        A list value is matched with ``IN``.
        """
        query = select(model)
        for column, value in criteria.items():
            attr = getattr(model, column)
            if isinstance(value, (list, tuple, set)):
                query = query.where(attr.in_(list(value)))
            else:
                query = query.where(attr == value)
        if order_by is not None:
            query = query.order_by(*order_by)
        else:
            query = query.order_by(model.id)
        if limit is not None:
            query = query.limit(limit)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def first(self, model: type[ModelT], **criteria: Any) -> ModelT | None:
        rows = await self.filter(model, limit=1, **criteria)
        return rows[0] if rows else None

    async def create(self, model: type[ModelT], **values: Any) -> ModelT:
        """Add a new row and flush so its primary key is assigned."""
        instance = model(**values)
        self.session.add(instance)
        await self.session.flush()
        return instance

    async def update(self, instance: ModelT, **values: Any) -> ModelT:
        for column, value in values.items():
            setattr(instance, column, value)
        await self.session.flush()
        return instance

    async def delete_where(self, model: type[ModelT], **criteria: Any) -> int:
        """Bulk delete; returns the number of removed rows."""
        statement = delete(model)
        for column, value in criteria.items():
            statement = statement.where(getattr(model, column) == value)
        result = await self.session.execute(statement)
        return result.rowcount or 0

    async def flush(self) -> None:
        await self.session.flush()

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()
