"""TeamDAO — teams + team_members table operations."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gitpulse.dao.base import BaseDAO
from gitpulse.models.team import Team, TeamMember


class TeamDAO(BaseDAO[Team]):
    model = Team

    async def member_ids(self, session: AsyncSession, team_id: int) -> list[int]:
        stmt = (
            select(TeamMember.user_id)
            .where(TeamMember.team_id == team_id)
            .order_by(TeamMember.user_id)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def add_member(self, session: AsyncSession, team_id: int, user_id: int) -> TeamMember:
        member = TeamMember(team_id=team_id, user_id=user_id)
        session.add(member)
        await session.flush()
        return member
