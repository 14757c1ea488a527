"""Typed remote payloads for the collector.

Both strategies build the same DTOs, so everything downstream of a page
fetch is strategy-agnostic.  Malformed items fail pydantic validation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from gitpulse.core.github import extract_remote_id

ReviewState = Literal["approved", "changes_requested", "commented", "dismissed", "pending"]
PullRequestState = Literal["open", "closed", "merged"]


def _utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ActorRef(BaseModel):
    """A remote person: commit author/committer, PR author, reviewer."""

    model_config = ConfigDict(frozen=True)

    name: str | None = None
    email: str | None = None
    login: str | None = None
    remote_id: int | None = None
    avatar_url: str | None = None

    @property
    def is_empty(self) -> bool:
        return not (self.name or self.email or self.login or self.remote_id)

    @classmethod
    def from_graphql_git_actor(cls, actor: dict[str, Any] | None) -> ActorRef | None:
        """``{name, email, user{login, databaseId, id, avatarUrl}}``"""
        if not actor:
            return None
        user = actor.get("user") or {}
        return cls(
            name=actor.get("name"),
            email=actor.get("email") or None,
            login=user.get("login"),
            remote_id=user.get("databaseId") or extract_remote_id(user.get("id")),
            avatar_url=user.get("avatarUrl"),
        )

    @classmethod
    def from_graphql_user(cls, user: dict[str, Any] | None) -> ActorRef | None:
        """``{login, avatarUrl, databaseId}`` (PR author, merger, reviewer)."""
        if not user:
            return None
        return cls(
            name=user.get("login"),
            login=user.get("login"),
            remote_id=user.get("databaseId") or extract_remote_id(user.get("id")),
            avatar_url=user.get("avatarUrl"),
        )

    @classmethod
    def from_rest_git_actor(
        cls, git_actor: dict[str, Any] | None, account: dict[str, Any] | None
    ) -> ActorRef | None:
        """REST commit: ``commit.author`` plus the top-level linked ``author`` account."""
        if not git_actor and not account:
            return None
        git_actor = git_actor or {}
        account = account or {}
        return cls(
            name=git_actor.get("name") or account.get("login"),
            email=git_actor.get("email") or None,
            login=account.get("login"),
            remote_id=account.get("id"),
            avatar_url=account.get("avatar_url"),
        )

    @classmethod
    def from_rest_user(cls, user: dict[str, Any] | None) -> ActorRef | None:
        if not user:
            return None
        return cls(
            name=user.get("login"),
            login=user.get("login"),
            remote_id=user.get("id"),
            avatar_url=user.get("avatar_url"),
        )


class CommitNode(BaseModel):
    oid: str = Field(min_length=1)
    message: str = ""
    committed_at: datetime
    additions: int = Field(default=0, ge=0)
    deletions: int = Field(default=0, ge=0)
    author: ActorRef | None = None
    committer: ActorRef | None = None

    @field_validator("committed_at")
    @classmethod
    def _normalize_ts(cls, v: datetime) -> datetime:
        return _utc(v)

    @classmethod
    def from_graphql(cls, node: dict[str, Any]) -> CommitNode:
        return cls(
            oid=node.get("oid") or "",
            message=node.get("message") or "",
            committed_at=node.get("committedDate"),
            additions=node.get("additions") or 0,
            deletions=node.get("deletions") or 0,
            author=ActorRef.from_graphql_git_actor(node.get("author")),
            committer=ActorRef.from_graphql_git_actor(node.get("committer")),
        )

    @classmethod
    def from_rest(cls, item: dict[str, Any], stats: dict[str, Any] | None = None) -> CommitNode:
        commit = item.get("commit") or {}
        git_committer = commit.get("committer") or {}
        stats = stats or item.get("stats") or {}
        return cls(
            oid=item.get("sha") or "",
            message=commit.get("message") or "",
            committed_at=git_committer.get("date") or (commit.get("author") or {}).get("date"),
            additions=stats.get("additions") or 0,
            deletions=stats.get("deletions") or 0,
            author=ActorRef.from_rest_git_actor(commit.get("author"), item.get("author")),
            committer=ActorRef.from_rest_git_actor(git_committer, item.get("committer")),
        )

    def to_row(
        self, repository_id: int, author_id: int | None, committer_id: int | None
    ) -> dict[str, Any]:
        return {
            "id": self.oid,
            "repository_id": repository_id,
            "author_id": author_id,
            "committer_id": committer_id,
            "message": self.message,
            "committed_at": self.committed_at,
            "additions": self.additions,
            "deletions": self.deletions,
        }


class ReviewNode(BaseModel):
    id: str = Field(min_length=1)
    state: ReviewState
    body: str | None = None
    submitted_at: datetime
    author: ActorRef | None = None

    @field_validator("state", mode="before")
    @classmethod
    def _lower_state(cls, v: Any) -> Any:
        return v.lower() if isinstance(v, str) else v

    @field_validator("submitted_at")
    @classmethod
    def _normalize_ts(cls, v: datetime) -> datetime:
        return _utc(v)

    @classmethod
    def from_graphql(cls, node: dict[str, Any]) -> ReviewNode:
        review_id = node.get("databaseId") or node.get("id")
        return cls(
            id=str(review_id) if review_id is not None else "",
            state=node.get("state"),
            body=node.get("body") or None,
            submitted_at=node.get("submittedAt"),
            author=ActorRef.from_graphql_user(node.get("author")),
        )

    @classmethod
    def from_rest(cls, item: dict[str, Any]) -> ReviewNode:
        review_id = item.get("id")
        return cls(
            id=str(review_id) if review_id is not None else "",
            state=item.get("state"),
            body=item.get("body") or None,
            submitted_at=item.get("submitted_at"),
            author=ActorRef.from_rest_user(item.get("user")),
        )

    def to_row(self, pull_request_id: int, reviewer_id: int | None) -> dict[str, Any]:
        return {
            "id": self.id,
            "pull_request_id": pull_request_id,
            "reviewer_id": reviewer_id,
            "state": self.state,
            "body": self.body,
            "submitted_at": self.submitted_at,
        }


class PullRequestNode(BaseModel):
    number: int = Field(gt=0)
    title: str = ""
    body: str | None = None
    state: PullRequestState
    is_draft: bool = False
    additions: int = Field(default=0, ge=0)
    deletions: int = Field(default=0, ge=0)
    changed_files: int = Field(default=0, ge=0)
    created_at: datetime
    updated_at: datetime
    closed_at: datetime | None = None
    merged_at: datetime | None = None
    author: ActorRef | None = None
    merged_by: ActorRef | None = None
    reviews: list[ReviewNode] = Field(default_factory=list)
    # reviews that failed validation, reported by the parser
    skipped_reviews: int = 0

    @field_validator("state", mode="before")
    @classmethod
    def _lower_state(cls, v: Any) -> Any:
        return v.lower() if isinstance(v, str) else v

    @field_validator("created_at", "updated_at", "closed_at", "merged_at")
    @classmethod
    def _normalize_ts(cls, v: datetime | None) -> datetime | None:
        return _utc(v)

    @model_validator(mode="after")
    def _derive_merged(self) -> PullRequestNode:
        # A closed PR that carries a merge time is merged.
        if self.state == "closed" and self.merged_at is not None:
            self.state = "merged"
        return self

    @classmethod
    def from_graphql(cls, node: dict[str, Any]) -> PullRequestNode:
        reviews, skipped = parse_reviews(
            ((node.get("reviews") or {}).get("nodes") or []), ReviewNode.from_graphql
        )
        return cls(
            number=node.get("number") or 0,
            title=node.get("title") or "",
            body=node.get("body") or None,
            state=node.get("state"),
            is_draft=bool(node.get("isDraft")),
            additions=node.get("additions") or 0,
            deletions=node.get("deletions") or 0,
            changed_files=node.get("changedFiles") or 0,
            created_at=node.get("createdAt"),
            updated_at=node.get("updatedAt"),
            closed_at=node.get("closedAt"),
            merged_at=node.get("mergedAt"),
            author=ActorRef.from_graphql_user(node.get("author")),
            merged_by=ActorRef.from_graphql_user(node.get("mergedBy")),
            reviews=reviews,
            skipped_reviews=skipped,
        )

    @classmethod
    def from_rest(
        cls,
        item: dict[str, Any],
        detail: dict[str, Any] | None = None,
        review_items: list[dict[str, Any]] | None = None,
    ) -> PullRequestNode:
        """*item* from the list endpoint, *detail* from ``pulls/{n}`` for size stats."""
        detail = detail or {}
        reviews, skipped = parse_reviews(review_items or [], ReviewNode.from_rest)
        return cls(
            number=item.get("number") or 0,
            title=item.get("title") or "",
            body=item.get("body") or None,
            state=item.get("state"),
            is_draft=bool(item.get("draft")),
            additions=detail.get("additions") or 0,
            deletions=detail.get("deletions") or 0,
            changed_files=detail.get("changed_files") or 0,
            created_at=item.get("created_at"),
            updated_at=item.get("updated_at"),
            closed_at=item.get("closed_at"),
            merged_at=item.get("merged_at"),
            author=ActorRef.from_rest_user(item.get("user")),
            merged_by=ActorRef.from_rest_user(detail.get("merged_by")),
            reviews=reviews,
            skipped_reviews=skipped,
        )

    def to_row(
        self, repository_id: int, author_id: int | None, merged_by_id: int | None
    ) -> dict[str, Any]:
        return {
            "repository_id": repository_id,
            "number": self.number,
            "title": self.title,
            "body": self.body,
            "state": self.state,
            "is_draft": self.is_draft,
            "author_id": author_id,
            "merged_by_id": merged_by_id,
            "additions": self.additions,
            "deletions": self.deletions,
            "changed_files": self.changed_files,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "closed_at": self.closed_at,
            "merged_at": self.merged_at,
        }


def parse_reviews(raw: list[dict[str, Any]], parse) -> tuple[list[ReviewNode], int]:
    """Parse review payloads; unsubmitted (pending) reviews are ignored, invalid ones counted."""
    reviews: list[ReviewNode] = []
    skipped = 0
    for item in raw:
        if not item or not (item.get("submittedAt") or item.get("submitted_at")):
            continue
        try:
            reviews.append(parse(item))
        except ValidationError:
            skipped += 1
    return reviews, skipped


# ── pages ───────────────────────────────────────────────────────────────


@dataclass
class PageInfo:
    has_next_page: bool = False
    end_cursor: str | None = None


@dataclass
class CommitPage:
    items: list[CommitNode] = field(default_factory=list)
    page_info: PageInfo = field(default_factory=PageInfo)
    skipped: int = 0  # items that failed validation


@dataclass
class PullRequestPage:
    items: list[PullRequestNode] = field(default_factory=list)
    page_info: PageInfo = field(default_factory=PageInfo)
    skipped: int = 0
    # the page reached items last updated before the watermark
    reached_watermark: bool = False


@dataclass
class CollectionResult:
    """Summary of one collector run."""

    repository_id: int
    commit_count: int = 0
    pull_request_count: int = 0
    review_count: int = 0
    skipped_items: int = 0
    strategy: str | None = None
    fell_back: bool = False
    errors: list[str] = field(default_factory=list)
