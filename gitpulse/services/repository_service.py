"""RepositoryService — repository lookup and watermark management."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from gitpulse.core.github import split_full_name
from gitpulse.dao.repository_dao import RepositoryDAO
from gitpulse.models.repository import Repository
from gitpulse.services import ConflictError, NotFoundError, ValidationError

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class RepositoryService:
    """Stateless service for repositories and their sync watermark."""

    def __init__(self, repository_dao: RepositoryDAO) -> None:
        self._repository_dao = repository_dao

    async def get(self, session: AsyncSession, repository_id: int) -> Repository:
        """Raises :class:`NotFoundError` if the repository does not exist."""
        repository = await self._repository_dao.get_by_id(session, repository_id)
        if repository is None:
            raise NotFoundError(f"repository {repository_id} not found")
        return repository

    async def get_by_id(self, session: AsyncSession, repository_id: int) -> Repository | None:
        return await self._repository_dao.get_by_id(session, repository_id)

    async def list(self, session: AsyncSession, tenant_id: int | None = None) -> list[Repository]:
        return await self._repository_dao.list_all(session, tenant_id=tenant_id)

    async def list_ids(self, session: AsyncSession, tenant_id: int | None = None) -> list[int]:
        return await self._repository_dao.list_ids(session, tenant_id=tenant_id)

    async def list_without_data(self, session: AsyncSession) -> list[Repository]:
        """Repositories that have never produced commits or pull requests."""
        return await self._repository_dao.list_without_data(session)

    async def create(
        self,
        session: AsyncSession,
        *,
        full_name: str,
        clone_url: str | None = None,
        api_url: str | None = None,
        api_token: str | None = None,
        tenant_id: int | None = None,
    ) -> Repository:
        """Register a repository.

        Raises :class:`ValidationError` for a malformed ``owner/name`` and
        :class:`ConflictError` if it is already registered.
        """
        try:
            owner, name = split_full_name(full_name)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        full_name = f"{owner}/{name}"
        if await self._repository_dao.get_by_field(session, full_name=full_name):
            raise ConflictError(f"repository {full_name} already registered")

        return await self._repository_dao.create(
            session,
            name=name,
            full_name=full_name,
            clone_url=clone_url or f"https://github.com/{full_name}.git",
            api_url=api_url,
            api_token=api_token,
            tenant_id=tenant_id,
        )

    async def reset_watermark(self, session: AsyncSession, repository_id: int) -> None:
        """Force the next collection to refetch the full history."""
        await self.get(session, repository_id)
        await self._repository_dao.set_last_sync_at(session, repository_id, EPOCH)

    async def advance_watermark(
        self, session: AsyncSession, repository_id: int, when: datetime
    ) -> None:
        """Move the watermark to *when*; a value older than the current one is ignored."""
        repository = await self.get(session, repository_id)
        current = repository.last_sync_at
        if current is not None and current > when:
            return
        await self._repository_dao.set_last_sync_at(session, repository_id, when)
