"""Generic base DAO — CRUD on top of the ORM."""

from typing import Any, Generic, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy import exists as sa_exists
from sqlalchemy.ext.asyncio import AsyncSession

from gitpulse.core.database import Base

ModelT = TypeVar("ModelT", bound=Base)


class BaseDAO(Generic[ModelT]):
    """Base data-access object. Subclasses set ``model`` class attribute."""

    model: type[ModelT]

    # Columns that callers may never overwrite through ``update``.
    immutable: frozenset[str] = frozenset({"id", "row_created_at", "row_updated_at"})

    @staticmethod
    def _require_pk(pk: Any) -> None:
        """Raise ValueError if *pk* is None."""
        if pk is None:
            raise ValueError("pk must not be None")

    async def get_by_id(self, session: AsyncSession, pk: Any) -> ModelT | None:
        self._require_pk(pk)
        return await session.get(self.model, pk)

    async def create(self, session: AsyncSession, **values: Any) -> ModelT:
        obj = self.model(**values)
        session.add(obj)
        await session.flush()
        await session.refresh(obj)
        return obj

    async def update(self, session: AsyncSession, pk: Any, **values: Any) -> ModelT | None:
        self._require_pk(pk)
        obj = await session.get(self.model, pk)
        if obj is None:
            return None
        column_keys = set(self.model.__mapper__.column_attrs.keys())
        for key in values:
            if key in self.immutable:
                raise AttributeError(f"'{key}' is immutable and cannot be updated")
            if key not in column_keys:
                raise AttributeError(f"{self.model.__name__} has no column '{key}'")
        for key, val in values.items():
            setattr(obj, key, val)
        await session.flush()
        await session.refresh(obj)
        return obj

    async def exists(self, session: AsyncSession, pk: Any) -> bool:
        """Check existence without loading the full ORM object."""
        self._require_pk(pk)
        table = self.model.__table__
        stmt = select(sa_exists().where(table.c.id == pk))
        result = await session.execute(stmt)
        return result.scalar_one()

    async def get_by_field(self, session: AsyncSession, **filters: Any) -> ModelT | None:
        """Return the first row matching all *filters*, or None.

        Usage::

            user = await dao.get_by_field(session, email="alice@example.com")

        Raises ``ValueError`` if called without any filters.
        """
        if not filters:
            raise ValueError("get_by_field() requires at least one filter")
        stmt = select(self.model)
        for key, val in filters.items():
            stmt = stmt.where(getattr(self.model, key) == val)
        stmt = stmt.order_by(self.model.__table__.c.id).limit(1)
        result = await session.execute(stmt)
        return result.scalars().first()

    async def count(self, session: AsyncSession, query: Select | None = None) -> int:
        """Return the row count for *query*, or total rows if query is None."""
        if query is None:
            query = select(func.count()).select_from(self.model.__table__)
        else:
            query = select(func.count()).select_from(query.subquery())

        result = await session.execute(query)
        return result.scalar_one()
