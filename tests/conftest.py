"""Shared fixtures: in-memory SQLite store and entity factories."""
from __future__ import annotations

from datetime import datetime
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from matchcore import models
from matchcore.config import settings
from matchcore.store import EntityStore


class Factory:
    """Creates rows through the store with sensible defaults."""

    def __init__(self, store: EntityStore) -> None:
        self.store = store

    async def user(self, **values: Any) -> models.User:
        values.setdefault("full_name", "Ada Lovelace")
        return await self.store.create(models.User, **values)

    async def candidate(self, **values: Any) -> models.Candidate:
        return await self.store.create(models.Candidate, **values)

    async def company(self, **values: Any) -> models.Company:
        values.setdefault("name", "Acme")
        return await self.store.create(models.Company, **values)

    async def job(self, **values: Any) -> models.Job:
        values.setdefault("title", "Frontend Engineer")
        values.setdefault("description", "<p>Build <b>React</b> interfaces</p>")
        return await self.store.create(models.Job, **values)

    async def application(self, job: models.Job, candidate: models.Candidate, **values: Any) -> models.Application:
        return await self.store.create(models.Application, job_id=job.id, candidate_id=candidate.id, **values)

    async def message(self, sender_id: int, receiver_id: int, at: datetime) -> models.DirectMessage:
        return await self.store.create(
            models.DirectMessage,
            sender_id=sender_id,
            receiver_id=receiver_id,
            content="hi",
            created_at=at,
            updated_at=at,
        )


@pytest.fixture(autouse=True)
def fast_retries(monkeypatch):
    monkeypatch.setattr(settings.evaluation, "oracle_backoff_s", 0.0)
    monkeypatch.setattr(settings.evaluation, "oracle_timeout_s", 5.0)


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def store(session_factory):
    async with session_factory() as session:
        yield EntityStore(session)


@pytest.fixture
def factory(store) -> Factory:
    return Factory(store)
