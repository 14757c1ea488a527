"""CommitDAO — commits table operations."""

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gitpulse.dao.base import BaseDAO
from gitpulse.models.commit import Commit


class CommitDAO(BaseDAO[Commit]):
    model = Commit

    async def list_in_range(
        self,
        session: AsyncSession,
        start: datetime,
        end: datetime,
        *,
        repository_ids: list[int] | None = None,
        author_ids: list[int] | None = None,
    ) -> list[Commit]:
        """Commits with ``start <= committed_at < end`` (metrics)."""
        stmt = select(Commit).where(Commit.committed_at >= start, Commit.committed_at < end)
        if repository_ids is not None:
            stmt = stmt.where(Commit.repository_id.in_(repository_ids))
        if author_ids is not None:
            stmt = stmt.where(Commit.author_id.in_(author_ids))
        stmt = stmt.order_by(Commit.committed_at, Commit.id)
        result = await session.execute(stmt)
        return list(result.scalars().all())
