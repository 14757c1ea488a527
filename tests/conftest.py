"""Shared fixtures.

Tests run against a throwaway SQLite file through aiosqlite; the schema is
created from the ORM metadata for every test.
"""

from __future__ import annotations

from datetime import datetime

import pytest
import pytest_asyncio

from gitpulse.core.database import create_all, create_engine, create_session_factory
from gitpulse.dao import RepositoryDAO


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    """Keep host environment settings out of the tests."""
    for key in (
        "GITPULSE_ENV",
        "GITPULSE_DATABASE_URL",
        "GITPULSE_METRICS_CACHE_TTL",
        "GITPULSE_POOL_MAX_RETRIES",
        "GITPULSE_POOL_RETRY_DELAY",
        "GITPULSE_POOL_TASK_TIMEOUT",
        "GITPULSE_SYNC_INTERVAL",
        "GITPULSE_SYNC_CONCURRENCY",
        "GITHUB_TOKEN",
    ):
        monkeypatch.delenv(key, raising=False)


@pytest_asyncio.fixture
async def engine(tmp_path):
    eng = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await create_all(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory):
    """A session whose transaction is rolled back after the test."""
    async with session_factory() as s:
        yield s
        await s.rollback()


@pytest_asyncio.fixture
async def make_repository(session_factory):
    """Factory that commits a repository row and returns it."""
    dao = RepositoryDAO()
    counter = iter(range(1, 10_000))

    async def _make(
        full_name: str | None = None,
        *,
        tenant_id: int | None = None,
        last_sync_at: datetime | None = None,
        api_token: str | None = None,
    ):
        full_name = full_name or f"acme/repo-{next(counter)}"
        async with session_factory() as s:
            async with s.begin():
                return await dao.create(
                    s,
                    name=full_name.split("/", 1)[1],
                    full_name=full_name,
                    tenant_id=tenant_id,
                    last_sync_at=last_sync_at,
                    api_token=api_token,
                )

    return _make
