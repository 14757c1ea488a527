"""PullRequestDAO — pull_requests table operations."""

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gitpulse.dao.base import BaseDAO
from gitpulse.models.pull_request import PullRequest

# Fields reconciled when a known PR is re-ingested.
LIFECYCLE_FIELDS = (
    "title",
    "body",
    "state",
    "is_draft",
    "merged_by_id",
    "additions",
    "deletions",
    "changed_files",
    "updated_at",
    "closed_at",
    "merged_at",
)


class PullRequestDAO(BaseDAO[PullRequest]):
    model = PullRequest

    async def get_by_number(
        self, session: AsyncSession, repository_id: int, number: int
    ) -> PullRequest | None:
        return await self.get_by_field(session, repository_id=repository_id, number=number)

    async def reconcile(self, session: AsyncSession, pr: PullRequest, **values) -> PullRequest:
        """Update the lifecycle fields of an existing PR in place."""
        for key in LIFECYCLE_FIELDS:
            if key in values:
                setattr(pr, key, values[key])
        await session.flush()
        return pr

    async def list_in_range(
        self,
        session: AsyncSession,
        start: datetime,
        end: datetime,
        *,
        repository_ids: list[int] | None = None,
        author_ids: list[int] | None = None,
    ) -> list[PullRequest]:
        """PRs with ``start <= created_at < end`` (metrics)."""
        stmt = select(PullRequest).where(
            PullRequest.created_at >= start, PullRequest.created_at < end
        )
        if repository_ids is not None:
            stmt = stmt.where(PullRequest.repository_id.in_(repository_ids))
        if author_ids is not None:
            stmt = stmt.where(PullRequest.author_id.in_(author_ids))
        stmt = stmt.order_by(PullRequest.created_at, PullRequest.id)
        result = await session.execute(stmt)
        return list(result.scalars().all())
