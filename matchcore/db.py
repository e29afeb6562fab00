"""SQLAlchemy 2.x async database setup.

This module defines the async engine and session factory but does not
hard-code any connection credentials.
"""

from __future__ import annotations

from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import settings
from .store import EntityStore


_pool_options = (
    {} if settings.db.url.startswith("sqlite")
    else {"pool_size": settings.db.pool_size, "max_overflow": settings.db.max_overflow}
)

engine: AsyncEngine = create_async_engine(settings.db.url, echo=settings.db.echo, future=True, **_pool_options)

AsyncSessionMaker = async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)


async def get_store() -> AsyncIterator[EntityStore]:
    """Entity store bound to a request-scoped session."""

    async with AsyncSessionMaker() as session:
        yield EntityStore(session)
