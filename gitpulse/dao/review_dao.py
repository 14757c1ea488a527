"""ReviewDAO — reviews table operations."""

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from gitpulse.dao.base import BaseDAO
from gitpulse.models.pull_request import PullRequest
from gitpulse.models.review import Review


class ReviewDAO(BaseDAO[Review]):
    model = Review

    async def list_in_range(
        self,
        session: AsyncSession,
        start: datetime,
        end: datetime,
        *,
        repository_ids: list[int] | None = None,
        reviewer_ids: list[int] | None = None,
    ) -> list[Review]:
        """Reviews with ``start <= submitted_at < end`` (metrics)."""
        stmt = select(Review).where(Review.submitted_at >= start, Review.submitted_at < end)
        if repository_ids is not None:
            stmt = stmt.join(PullRequest, PullRequest.id == Review.pull_request_id).where(
                PullRequest.repository_id.in_(repository_ids)
            )
        if reviewer_ids is not None:
            stmt = stmt.where(Review.reviewer_id.in_(reviewer_ids))
        stmt = stmt.order_by(Review.submitted_at, Review.id)
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def first_review_times(
        self, session: AsyncSession, pull_request_ids: list[int]
    ) -> dict[int, datetime]:
        """Map PR id -> earliest review submission time."""
        if not pull_request_ids:
            return {}
        stmt = (
            select(Review.pull_request_id, func.min(Review.submitted_at))
            .where(Review.pull_request_id.in_(pull_request_ids))
            .group_by(Review.pull_request_id)
        )
        result = await session.execute(stmt)
        return {pr_id: first for pr_id, first in result.all()}
