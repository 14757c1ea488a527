"""Tests for RepositoryService registration and watermark handling."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from gitpulse.dao import RepositoryDAO
from gitpulse.services import ConflictError, NotFoundError, ValidationError
from gitpulse.services.repository_service import EPOCH, RepositoryService


@pytest.fixture
def service():
    return RepositoryService(RepositoryDAO())


@pytest.mark.asyncio
async def test_create_defaults(service, session):
    repo = await service.create(session, full_name="acme/widgets", tenant_id=3)
    assert repo.name == "widgets"
    assert repo.clone_url == "https://github.com/acme/widgets.git"
    assert repo.platform == "github"
    assert repo.last_sync_at is None
    assert await service.list_ids(session, tenant_id=3) == [repo.id]


@pytest.mark.asyncio
async def test_create_rejects_duplicates(service, session):
    await service.create(session, full_name="acme/widgets")
    with pytest.raises(ConflictError):
        await service.create(session, full_name="/acme/widgets/")


@pytest.mark.asyncio
async def test_create_rejects_malformed(service, session):
    with pytest.raises(ValidationError):
        await service.create(session, full_name="widgets")


@pytest.mark.asyncio
async def test_get_missing(service, session):
    with pytest.raises(NotFoundError):
        await service.get(session, 42)
    assert await service.get_by_id(session, 42) is None


@pytest.mark.asyncio
async def test_watermark_advances_monotonically(service, session):
    repo = await service.create(session, full_name="acme/widgets")
    t1 = datetime(2024, 3, 1, tzinfo=timezone.utc)

    await service.advance_watermark(session, repo.id, t1)
    await service.advance_watermark(session, repo.id, t1 - timedelta(days=1))

    assert (await service.get(session, repo.id)).last_sync_at == t1


@pytest.mark.asyncio
async def test_reset_watermark(service, session):
    repo = await service.create(session, full_name="acme/widgets")
    await service.advance_watermark(session, repo.id, datetime(2024, 3, 1, tzinfo=timezone.utc))

    await service.reset_watermark(session, repo.id)

    assert (await service.get(session, repo.id)).last_sync_at == EPOCH


@pytest.mark.asyncio
async def test_tenant_listing(service, session):
    a = await service.create(session, full_name="acme/a", tenant_id=1)
    b = await service.create(session, full_name="acme/b", tenant_id=2)
    assert [r.id for r in await service.list(session)] == [a.id, b.id]
    assert [r.id for r in await service.list(session, tenant_id=2)] == [b.id]
