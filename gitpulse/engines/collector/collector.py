"""RepositoryCollector — page through one repository and upsert what it finds."""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import TypeVar

import structlog
from sqlalchemy.exc import DataError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gitpulse.core.github import split_full_name
from gitpulse.dao.commit_dao import CommitDAO
from gitpulse.dao.pull_request_dao import PullRequestDAO
from gitpulse.dao.repository_dao import RepositoryDAO
from gitpulse.dao.review_dao import ReviewDAO
from gitpulse.dao.user_dao import UserDAO
from gitpulse.engines.collector.errors import RateLimitError, RemoteError
from gitpulse.engines.collector.github_client import GitHubClient
from gitpulse.engines.collector.models import (
    ActorRef,
    CollectionResult,
    CommitNode,
    CommitPage,
    PullRequestNode,
    PullRequestPage,
    ReviewNode,
)
from gitpulse.engines.collector.strategies import CollectionStrategy, select_strategies
from gitpulse.models.repository import Repository
from gitpulse.services.identity_service import IdentityService
from gitpulse.services.repository_service import EPOCH, RepositoryService

log = structlog.get_logger("gitpulse.engine")

T = TypeVar("T")

# Failures of the bulk strategy that switch the run over to the fallback.
# Malformed page envelopes surface as KeyError/TypeError/AttributeError.
_FALLBACK_ERRORS = (RemoteError, KeyError, TypeError, AttributeError)

# A concurrent writer may win the race for the same natural key; the
# item is retried once and then found to exist.
_ITEM_ATTEMPTS = 2


class RepositoryCollector:
    """Incremental collector for a single repository.

    Pages are fetched strictly in cursor order.  Every item is written in
    its own transaction, so rows committed before a failure stay committed.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        repository_id: int,
        strategy: CollectionStrategy,
        fallback: CollectionStrategy | None = None,
        *,
        identity_service: IdentityService | None = None,
        repository_service: RepositoryService | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.repository_id = repository_id
        self._strategy = strategy
        self._fallback = fallback
        self.fell_back = False

        self._identity = identity_service or IdentityService(UserDAO())
        self._repositories = repository_service or RepositoryService(RepositoryDAO())
        self._commit_dao = CommitDAO()
        self._pr_dao = PullRequestDAO()
        self._review_dao = ReviewDAO()

        self.skipped_items = 0
        self.item_errors: list[str] = []

    @property
    def strategy_name(self) -> str:
        return self._strategy.name

    # ── public contract ───────────────────────────────────────────────────

    async def sync_all(self) -> CollectionResult:
        """Collect commits, then PRs with reviews, then advance the watermark.

        The watermark moves to the time this run *started*, so activity that
        lands while the run is in progress is picked up next time.
        """
        started_at = datetime.now(timezone.utc)
        result = CollectionResult(repository_id=self.repository_id)

        result.commit_count = await self.collect_commits()
        result.pull_request_count, result.review_count = (
            await self.collect_pull_requests_and_reviews()
        )
        await self.update_last_sync_at(started_at)

        result.skipped_items = self.skipped_items
        result.errors = list(self.item_errors)
        result.strategy = self.strategy_name
        result.fell_back = self.fell_back
        log.info(
            "collector.done",
            repository_id=self.repository_id,
            commits=result.commit_count,
            pull_requests=result.pull_request_count,
            reviews=result.review_count,
            skipped=result.skipped_items,
            strategy=result.strategy,
        )
        return result

    async def collect_commits(self) -> int:
        """Upsert commits since the watermark; return how many were new."""
        owner, repo, since = await self._load_target()
        inserted = 0
        async for page in self._pages("commits", owner, repo, since):
            self.skipped_items += page.skipped
            for node in page.items:
                if await self._persist_item("commit", node.oid, self._save_commit, node):
                    inserted += 1
        return inserted

    async def collect_pull_requests_and_reviews(self) -> tuple[int, int]:
        """Upsert PRs updated since the watermark and their reviews.

        Returns ``(new_pull_requests, new_reviews)``; reconciled PRs are
        not counted.
        """
        owner, repo, since = await self._load_target()
        new_prs = 0
        new_reviews = 0
        async for page in self._pages("pull_requests", owner, repo, since):
            self.skipped_items += page.skipped
            for node in page.items:
                self.skipped_items += node.skipped_reviews
                saved = await self._persist_item(
                    "pull_request", str(node.number), self._save_pull_request, node
                )
                if saved is None:
                    continue
                pr_id, created = saved
                if created:
                    new_prs += 1
                for review in node.reviews:
                    if await self._persist_item(
                        "review", review.id, self._save_review, pr_id, review
                    ):
                        new_reviews += 1
        return new_prs, new_reviews

    async def update_last_sync_at(self, when: datetime | None = None) -> None:
        when = when or datetime.now(timezone.utc)
        async with self._session_factory() as session:
            async with session.begin():
                await self._repositories.advance_watermark(session, self.repository_id, when)

    # ── paging ────────────────────────────────────────────────────────────

    async def _load_target(self) -> tuple[str, str, datetime]:
        async with self._session_factory() as session:
            repository = await self._repositories.get(session, self.repository_id)
            owner, repo = split_full_name(repository.full_name)
            return owner, repo, repository.last_sync_at or EPOCH

    async def _pages(
        self, kind: str, owner: str, repo: str, since: datetime
    ) -> AsyncIterator[CommitPage | PullRequestPage]:
        cursor: str | None = None
        page_no = 0
        while True:
            strategy = self._strategy
            fetch = (
                strategy.fetch_commit_page
                if kind == "commits"
                else strategy.fetch_pull_request_page
            )
            try:
                page = await fetch(owner, repo, since, cursor)
            except RateLimitError:
                raise
            except _FALLBACK_ERRORS as exc:
                if self._fallback is None or strategy is self._fallback:
                    raise
                log.warning(
                    "collector.fallback",
                    repository=f"{owner}/{repo}",
                    kind=kind,
                    failed=strategy.name,
                    fallback=self._fallback.name,
                    error=str(exc),
                )
                self._strategy = self._fallback
                self.fell_back = True
                # Cursors are strategy-specific; restart from the first page.
                cursor = None
                page_no = 0
                continue

            page_no += 1
            log.debug(
                "collector.page",
                repository=f"{owner}/{repo}",
                kind=kind,
                page=page_no,
                items=len(page.items),
                strategy=strategy.name,
            )
            yield page
            if not page.page_info.has_next_page or not page.page_info.end_cursor:
                return
            cursor = page.page_info.end_cursor

    # ── persistence ───────────────────────────────────────────────────────

    async def _persist_item(
        self,
        kind: str,
        key: str,
        save: Callable[..., Awaitable[T]],
        *args,
    ) -> T | None:
        """Run *save* in its own transaction; a bad item is logged and skipped."""
        for attempt in range(1, _ITEM_ATTEMPTS + 1):
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        return await save(session, *args)
            except IntegrityError as exc:
                if attempt < _ITEM_ATTEMPTS:
                    continue
                self._record_item_error(kind, key, exc)
            except (DataError, ValueError) as exc:
                self._record_item_error(kind, key, exc)
                break
        return None

    def _record_item_error(self, kind: str, key: str, exc: Exception) -> None:
        self.skipped_items += 1
        message = f"{kind} {key}: {type(exc).__name__}: {exc}"
        self.item_errors.append(message)
        log.warning(
            "collector.item_failed",
            repository_id=self.repository_id,
            kind=kind,
            key=key,
            error=str(exc),
        )

    async def _resolve(self, session: AsyncSession, actor: ActorRef | None) -> int | None:
        if actor is None or actor.is_empty:
            return None
        return await self._identity.ensure_user(
            session,
            actor.name,
            actor.email,
            login=actor.login,
            remote_id=actor.remote_id,
            avatar_url=actor.avatar_url,
        )

    async def _save_commit(self, session: AsyncSession, node: CommitNode) -> bool:
        if await self._commit_dao.exists(session, node.oid):
            return False
        author_id = await self._resolve(session, node.author)
        committer_id = await self._resolve(session, node.committer)
        await self._commit_dao.create(
            session, **node.to_row(self.repository_id, author_id, committer_id)
        )
        return True

    async def _save_pull_request(
        self, session: AsyncSession, node: PullRequestNode
    ) -> tuple[int, bool]:
        author_id = await self._resolve(session, node.author)
        merged_by_id = await self._resolve(session, node.merged_by)
        row = node.to_row(self.repository_id, author_id, merged_by_id)

        existing = await self._pr_dao.get_by_number(session, self.repository_id, node.number)
        if existing is not None:
            await self._pr_dao.reconcile(session, existing, **row)
            return existing.id, False

        pr = await self._pr_dao.create(session, **row)
        return pr.id, True

    async def _save_review(
        self, session: AsyncSession, pull_request_id: int, node: ReviewNode
    ) -> bool:
        if await self._review_dao.exists(session, node.id):
            return False
        reviewer_id = await self._resolve(session, node.author)
        await self._review_dao.create(session, **node.to_row(pull_request_id, reviewer_id))
        return True


@asynccontextmanager
async def open_collector(
    session_factory: async_sessionmaker[AsyncSession],
    repository: Repository,
) -> AsyncIterator[RepositoryCollector]:
    """Build a collector for *repository* with its own client; closes the client on exit."""
    client = GitHubClient(token=repository.api_token, api_base=repository.api_url)
    try:
        primary, fallback = select_strategies(client)
        yield RepositoryCollector(session_factory, repository.id, primary, fallback)
    finally:
        await client.close()
