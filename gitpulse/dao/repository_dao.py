"""RepositoryDAO — repositories table operations."""

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from gitpulse.dao.base import BaseDAO
from gitpulse.models.commit import Commit
from gitpulse.models.pull_request import PullRequest
from gitpulse.models.repository import Repository


class RepositoryDAO(BaseDAO[Repository]):
    model = Repository

    async def list_all(
        self, session: AsyncSession, tenant_id: int | None = None
    ) -> list[Repository]:
        """All repositories ordered by id, optionally scoped to one tenant."""
        stmt = select(Repository).order_by(Repository.id)
        if tenant_id is not None:
            stmt = stmt.where(Repository.tenant_id == tenant_id)
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def list_ids(
        self, session: AsyncSession, tenant_id: int | None = None
    ) -> list[int]:
        stmt = select(Repository.id).order_by(Repository.id)
        if tenant_id is not None:
            stmt = stmt.where(Repository.tenant_id == tenant_id)
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def list_without_data(self, session: AsyncSession) -> list[Repository]:
        """Repositories missing commits or pull requests."""
        has_commits = select(Commit.id).where(Commit.repository_id == Repository.id).exists()
        has_prs = (
            select(PullRequest.id).where(PullRequest.repository_id == Repository.id).exists()
        )
        stmt = select(Repository).where(~has_commits | ~has_prs).order_by(Repository.id)
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def set_last_sync_at(
        self, session: AsyncSession, pk: int, when: datetime
    ) -> None:
        """Write the incremental watermark."""
        self._require_pk(pk)
        stmt = update(Repository).where(Repository.id == pk).values(last_sync_at=when)
        await session.execute(stmt)
