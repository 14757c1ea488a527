"""Collection strategies — bulk GraphQL paging and per-item REST fallback."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Protocol

import structlog
from pydantic import ValidationError

from gitpulse.engines.collector.errors import (
    PermanentRemoteError,
    RateLimitError,
    RemoteError,
    StrategyUnavailableError,
)
from gitpulse.engines.collector.github_client import GitHubClient
from gitpulse.engines.collector.models import (
    CommitNode,
    CommitPage,
    PageInfo,
    PullRequestNode,
    PullRequestPage,
)

log = structlog.get_logger("gitpulse.engine")

COMMIT_PAGE_SIZE = 100
PULL_REQUEST_PAGE_SIZE = 50
REVIEWS_PER_PULL_REQUEST = 50
REVIEW_PAGE_SIZE = 100
REST_PAGE_SIZE = 100


class CollectionStrategy(Protocol):
    """Fetches one page at a time; ``cursor`` is opaque to the caller."""

    name: str

    async def fetch_commit_page(
        self, owner: str, repo: str, since: datetime, cursor: str | None
    ) -> CommitPage: ...

    async def fetch_pull_request_page(
        self, owner: str, repo: str, since: datetime, cursor: str | None
    ) -> PullRequestPage: ...


_ACTOR = "login avatarUrl ... on User { databaseId }"
_GIT_ACTOR = "name email user { login databaseId id avatarUrl }"
_REVIEW = f"id databaseId state body submittedAt author {{ {_ACTOR} }}"

COMMIT_HISTORY_QUERY = f"""
query($owner: String!, $name: String!, $since: GitTimestamp, $cursor: String) {{
  repository(owner: $owner, name: $name) {{
    defaultBranchRef {{
      target {{
        ... on Commit {{
          history(first: {COMMIT_PAGE_SIZE}, since: $since, after: $cursor) {{
            pageInfo {{ hasNextPage endCursor }}
            nodes {{
              oid
              message
              committedDate
              additions
              deletions
              author {{ {_GIT_ACTOR} }}
              committer {{ {_GIT_ACTOR} }}
            }}
          }}
        }}
      }}
    }}
  }}
}}
"""

PULL_REQUESTS_QUERY = f"""
query($owner: String!, $name: String!, $cursor: String) {{
  repository(owner: $owner, name: $name) {{
    pullRequests(
      first: {PULL_REQUEST_PAGE_SIZE}
      after: $cursor
      orderBy: {{ field: UPDATED_AT, direction: DESC }}
    ) {{
      pageInfo {{ hasNextPage endCursor }}
      nodes {{
        number
        title
        body
        state
        isDraft
        additions
        deletions
        changedFiles
        createdAt
        updatedAt
        closedAt
        mergedAt
        author {{ {_ACTOR} }}
        mergedBy {{ {_ACTOR} }}
        reviews(first: {REVIEWS_PER_PULL_REQUEST}) {{
          pageInfo {{ hasNextPage endCursor }}
          nodes {{ {_REVIEW} }}
        }}
      }}
    }}
  }}
}}
"""

REVIEWS_QUERY = f"""
query($owner: String!, $name: String!, $number: Int!, $cursor: String) {{
  repository(owner: $owner, name: $name) {{
    pullRequest(number: $number) {{
      reviews(first: {REVIEW_PAGE_SIZE}, after: $cursor) {{
        pageInfo {{ hasNextPage endCursor }}
        nodes {{ {_REVIEW} }}
      }}
    }}
  }}
}}
"""


def _iso(ts: datetime) -> str:
    return ts.isoformat().replace("+00:00", "Z")


def _parse_items(raw: list[dict[str, Any]], parse, kind: str, repo: str) -> tuple[list, int]:
    """Validate each raw item; invalid ones are logged and counted, not raised."""
    items = []
    skipped = 0
    for node in raw:
        try:
            items.append(parse(node))
        except ValidationError as exc:
            skipped += 1
            log.warning(
                "collector.invalid_item",
                kind=kind,
                repository=repo,
                errors=exc.error_count(),
            )
    return items, skipped


def _split_by_watermark(
    pull_requests: list[PullRequestNode], since: datetime
) -> tuple[list[PullRequestNode], bool]:
    """Keep PRs updated at/after *since*; report whether older ones were seen."""
    fresh = [pr for pr in pull_requests if pr.updated_at >= since]
    return fresh, len(fresh) < len(pull_requests)


class GraphQLStrategy:
    """Bulk strategy: one query per page of commits or PRs-with-reviews."""

    name = "graphql"

    def __init__(self, client: GitHubClient) -> None:
        self._client = client

    def available(self) -> bool:
        # GitHub's GraphQL endpoint rejects anonymous requests.
        return self._client.has_token

    async def fetch_commit_page(
        self, owner: str, repo: str, since: datetime, cursor: str | None
    ) -> CommitPage:
        if not self.available():
            raise StrategyUnavailableError("graphql requires an access token")
        data = await self._client.graphql(
            COMMIT_HISTORY_QUERY,
            {"owner": owner, "name": repo, "since": _iso(since), "cursor": cursor},
        )
        repository = self._repository(data, owner, repo)
        branch = repository.get("defaultBranchRef")
        if not branch:
            return CommitPage()  # empty repository
        history = (branch.get("target") or {}).get("history")
        if history is None:
            raise StrategyUnavailableError(f"no commit history for {owner}/{repo}")

        items, skipped = _parse_items(
            history.get("nodes") or [], CommitNode.from_graphql, "commit", f"{owner}/{repo}"
        )
        info = history.get("pageInfo") or {}
        return CommitPage(
            items=items,
            page_info=PageInfo(
                has_next_page=bool(info.get("hasNextPage")),
                end_cursor=info.get("endCursor"),
            ),
            skipped=skipped,
        )

    async def fetch_pull_request_page(
        self, owner: str, repo: str, since: datetime, cursor: str | None
    ) -> PullRequestPage:
        if not self.available():
            raise StrategyUnavailableError("graphql requires an access token")
        data = await self._client.graphql(
            PULL_REQUESTS_QUERY, {"owner": owner, "name": repo, "cursor": cursor}
        )
        connection = self._repository(data, owner, repo).get("pullRequests")
        if connection is None:
            raise StrategyUnavailableError(f"no pull request connection for {owner}/{repo}")

        raw = connection.get("nodes") or []
        await self._complete_reviews(owner, repo, raw, since)
        nodes, skipped = _parse_items(
            raw,
            PullRequestNode.from_graphql,
            "pull_request",
            f"{owner}/{repo}",
        )
        fresh, reached = _split_by_watermark(nodes, since)
        info = connection.get("pageInfo") or {}
        return PullRequestPage(
            items=fresh,
            page_info=PageInfo(
                has_next_page=bool(info.get("hasNextPage")) and not reached,
                end_cursor=info.get("endCursor"),
            ),
            skipped=skipped,
            reached_watermark=reached,
        )

    async def _complete_reviews(
        self, owner: str, repo: str, raw: list[dict[str, Any]], since: datetime
    ) -> None:
        """Page in reviews beyond the first batch, in place on each raw PR node."""
        for node in raw:
            connection = node.get("reviews") or {}
            info = connection.get("pageInfo") or {}
            number = node.get("number")
            updated = node.get("updatedAt")
            if not info.get("hasNextPage") or not number:
                continue
            if _is_stale(updated, since):
                continue  # dropped by the watermark anyway

            nodes = list(connection.get("nodes") or [])
            cursor = info.get("endCursor")
            while True:
                data = await self._client.graphql(
                    REVIEWS_QUERY,
                    {"owner": owner, "name": repo, "number": number, "cursor": cursor},
                )
                pull_request = self._repository(data, owner, repo).get("pullRequest") or {}
                page = pull_request.get("reviews") or {}
                nodes.extend(page.get("nodes") or [])
                page_info = page.get("pageInfo") or {}
                if not page_info.get("hasNextPage"):
                    break
                cursor = page_info.get("endCursor")
            node["reviews"] = {"nodes": nodes}

    @staticmethod
    def _repository(data: dict[str, Any], owner: str, repo: str) -> dict[str, Any]:
        repository = data.get("repository")
        if repository is None:
            raise PermanentRemoteError(f"repository {owner}/{repo} not found", status_code=404)
        return repository


class RestStrategy:
    """Per-item fallback: list endpoints plus one detail call per commit/PR.

    The cursor is the next REST page number, rendered as a string.
    """

    name = "rest"

    def __init__(self, client: GitHubClient) -> None:
        self._client = client

    def available(self) -> bool:
        return True

    async def fetch_commit_page(
        self, owner: str, repo: str, since: datetime, cursor: str | None
    ) -> CommitPage:
        page = int(cursor) if cursor else 1
        raw, has_next = await self._client.get_page(
            f"/repos/{owner}/{repo}/commits",
            {"since": _iso(since), "per_page": REST_PAGE_SIZE, "page": page},
        )

        detailed = []
        failed = 0
        for item in raw:
            sha = item.get("sha")
            stats = None
            if sha:
                try:
                    detail = await self._client.get(f"/repos/{owner}/{repo}/commits/{sha}")
                except RateLimitError:
                    raise
                except RemoteError as exc:
                    failed += 1
                    _log_item_failure("commit", f"{owner}/{repo}", sha, exc)
                    continue
                stats = detail.get("stats")
            detailed.append((item, stats))

        items, skipped = _parse_items(
            detailed, lambda pair: CommitNode.from_rest(*pair), "commit", f"{owner}/{repo}"
        )
        return CommitPage(
            items=items,
            page_info=PageInfo(has_next_page=has_next, end_cursor=str(page + 1)),
            skipped=skipped + failed,
        )

    async def fetch_pull_request_page(
        self, owner: str, repo: str, since: datetime, cursor: str | None
    ) -> PullRequestPage:
        page = int(cursor) if cursor else 1
        raw, has_next = await self._client.get_page(
            f"/repos/{owner}/{repo}/pulls",
            {
                "state": "all",
                "sort": "updated",
                "direction": "desc",
                "per_page": REST_PAGE_SIZE,
                "page": page,
            },
        )

        # Filter on the list payload first so stale PRs cost no detail calls.
        fresh_raw = []
        reached = False
        for item in raw:
            if _is_stale(item.get("updated_at"), since):
                reached = True
                continue
            fresh_raw.append(item)

        expanded = []
        failed = 0
        for item in fresh_raw:
            number = item.get("number")
            detail: dict[str, Any] = {}
            reviews: list[dict[str, Any]] = []
            if number:
                try:
                    detail = await self._client.get(f"/repos/{owner}/{repo}/pulls/{number}")
                    reviews = [
                        review
                        async for review in self._client.get_paginated(
                            f"/repos/{owner}/{repo}/pulls/{number}/reviews",
                            {"per_page": REVIEW_PAGE_SIZE},
                        )
                    ]
                except RateLimitError:
                    raise
                except RemoteError as exc:
                    failed += 1
                    _log_item_failure("pull_request", f"{owner}/{repo}", number, exc)
                    continue
            expanded.append((item, detail, reviews))

        items, skipped = _parse_items(
            expanded,
            lambda triple: PullRequestNode.from_rest(*triple),
            "pull_request",
            f"{owner}/{repo}",
        )
        return PullRequestPage(
            items=items,
            page_info=PageInfo(
                has_next_page=has_next and not reached,
                end_cursor=str(page + 1),
            ),
            skipped=skipped + failed,
            reached_watermark=reached,
        )


def _log_item_failure(kind: str, repo: str, key: object, exc: RemoteError) -> None:
    log.warning(
        "collector.item_fetch_failed",
        kind=kind,
        repository=repo,
        item=key,
        error=str(exc),
    )


def _parse_ts(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _is_stale(updated: str | None, since: datetime) -> bool:
    try:
        return bool(updated) and _parse_ts(updated) < since
    except ValueError:
        return False


def select_strategies(client: GitHubClient) -> tuple[CollectionStrategy, CollectionStrategy | None]:
    """Pick ``(primary, fallback)`` by probing what the client can do."""
    graphql = GraphQLStrategy(client)
    rest = RestStrategy(client)
    if graphql.available():
        return graphql, rest
    return rest, None
