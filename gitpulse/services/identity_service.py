"""IdentityService — resolve remote authors into canonical user rows."""

from __future__ import annotations

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from gitpulse.dao.user_dao import UserDAO
from gitpulse.models.user import User

log = structlog.get_logger("gitpulse.identity")


class IdentityService:
    """Stateless resolver: remote id, then email, then login.

    A remote numeric id is authoritative.  A row matched by email or login
    that already carries a *different* remote id belongs to someone else
    and is not reused.
    """

    def __init__(self, user_dao: UserDAO) -> None:
        self._user_dao = user_dao

    async def ensure_user(
        self,
        session: AsyncSession,
        name: str | None,
        email: str | None,
        login: str | None = None,
        remote_id: int | None = None,
        avatar_url: str | None = None,
    ) -> int:
        """Return the id of the user matching the given signals, creating it if needed."""
        email = email or None
        login = login or None

        display_name = name or login or email or "unknown"
        if remote_id is None and email is None and login is None:
            return await self._placeholder(session, display_name)

        user = await self._resolve(session, email, login, remote_id)
        if user is None:
            user = await self._user_dao.create(
                session,
                name=display_name,
                email=email,
                login=login,
                remote_id=remote_id,
                avatar_url=avatar_url,
            )
            log.debug("identity.created", user_id=user.id, login=login, remote_id=remote_id)
            return user.id

        await self._enrich(session, user, remote_id, avatar_url)
        return user.id

    async def _placeholder(self, session: AsyncSession, name: str) -> int:
        """Name-only actors share one row per name and never absorb a stronger identity."""
        user = await self._user_dao.get_placeholder(session, name)
        if user is None:
            user = await self._user_dao.create(session, name=name)
            log.debug("identity.placeholder_created", user_id=user.id)
        return user.id

    async def _resolve(
        self,
        session: AsyncSession,
        email: str | None,
        login: str | None,
        remote_id: int | None,
    ) -> User | None:
        if remote_id is not None:
            user = await self._user_dao.get_by_remote_id(session, remote_id)
            if user is not None:
                return user

        if email:
            user = await self._user_dao.get_by_email(session, email)
            if user is not None and self._compatible(user, remote_id):
                return user

        if login:
            user = await self._user_dao.get_by_login(session, login)
            if user is not None and self._compatible(user, remote_id):
                return user

        return None

    @staticmethod
    def _compatible(user: User, remote_id: int | None) -> bool:
        return remote_id is None or user.remote_id is None or user.remote_id == remote_id

    async def _enrich(
        self,
        session: AsyncSession,
        user: User,
        remote_id: int | None,
        avatar_url: str | None,
    ) -> None:
        changes = {}
        if remote_id is not None and user.remote_id is None:
            changes["remote_id"] = remote_id
        if avatar_url and not user.avatar_url:
            changes["avatar_url"] = avatar_url
        if changes:
            await self._user_dao.update(session, user.id, **changes)
            log.debug("identity.enriched", user_id=user.id, fields=sorted(changes))
