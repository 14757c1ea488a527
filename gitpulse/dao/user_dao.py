"""UserDAO — users table operations."""

from sqlalchemy.ext.asyncio import AsyncSession

from gitpulse.dao.base import BaseDAO
from gitpulse.models.user import User


class UserDAO(BaseDAO[User]):
    model = User

    async def get_by_remote_id(self, session: AsyncSession, remote_id: int) -> User | None:
        return await self.get_by_field(session, remote_id=remote_id)

    async def get_by_email(self, session: AsyncSession, email: str) -> User | None:
        return await self.get_by_field(session, email=email)

    async def get_by_login(self, session: AsyncSession, login: str) -> User | None:
        return await self.get_by_field(session, login=login)

    async def get_placeholder(self, session: AsyncSession, name: str) -> User | None:
        """A row known only by *name*: no remote id, email or login."""
        return await self.get_by_field(session, name=name, remote_id=None, email=None, login=None)
