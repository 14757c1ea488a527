"""MetricsService — daily activity buckets and DORA-style delivery figures."""

from __future__ import annotations

import hashlib
import random
import time
from collections.abc import Callable, Hashable
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, time as dt_time, timedelta, timezone
from typing import Any, Literal

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from gitpulse.core.config import env_float, is_production
from gitpulse.dao.commit_dao import CommitDAO
from gitpulse.dao.pull_request_dao import PullRequestDAO
from gitpulse.dao.repository_dao import RepositoryDAO
from gitpulse.dao.review_dao import ReviewDAO
from gitpulse.dao.team_dao import TeamDAO
from gitpulse.dao.user_dao import UserDAO
from gitpulse.models.commit import Commit
from gitpulse.models.pull_request import PullRequest
from gitpulse.models.review import Review
from gitpulse.services import NotFoundError, ValidationError

log = structlog.get_logger("gitpulse.metrics")

EntityKind = Literal["repository", "user", "team"]
ENTITY_KINDS: tuple[str, ...] = ("repository", "user", "team")

DEFAULT_CACHE_TTL = 300.0
MAX_RANGE_DAYS = 3660


# ── payload types ────────────────────────────────────────────────────────


@dataclass
class DailyBucket:
    date: date
    commit_count: int = 0
    additions: int = 0
    deletions: int = 0
    pr_count: int = 0
    pr_merged_count: int = 0
    review_count: int = 0


@dataclass
class MetricsSummary:
    commit_count: int = 0
    pr_count: int = 0
    pr_merged_count: int = 0
    pr_closed_count: int = 0
    review_count: int = 0
    additions: int = 0
    deletions: int = 0
    contributor_count: int = 0
    active_commit_days: int = 0
    active_pr_days: int = 0


@dataclass
class DoraMetrics:
    deployment_frequency: float = 0.0  # merged PRs per day
    change_failure_rate: float = 0.0  # 0..1
    avg_time_to_first_review: float = 0.0  # minutes, unrounded
    avg_time_to_merge: float = 0.0  # minutes, unrounded
    avg_pr_cycle_time: float = 0.0  # milliseconds


@dataclass
class MemberContribution:
    user_id: int
    commit_count: int = 0
    pr_count: int = 0
    review_count: int = 0
    contribution_percentage: float = 0.0


@dataclass
class MetricsPayload:
    """Result of one ``metrics_for`` call.

    ``mode`` is ``"live"`` for figures computed from stored activity and
    ``"synthetic"`` when seeded placeholder data was substituted.
    """

    entity_kind: str
    entity_id: int
    start_date: date
    end_date: date
    summary: MetricsSummary
    dora: DoraMetrics
    daily: list[DailyBucket]
    mode: Literal["live", "synthetic"] = "live"
    entity_name: str | None = None
    members: list[MemberContribution] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready form; dates become ISO strings, buckets stay date-ordered."""
        data = asdict(self)
        data["start_date"] = self.start_date.isoformat()
        data["end_date"] = self.end_date.isoformat()
        data["daily"] = [
            {**bucket, "date": bucket["date"].isoformat()} for bucket in data["daily"]
        ]
        return data


# ── cache ────────────────────────────────────────────────────────────────


class MetricsCache:
    """In-memory TTL cache for computed payloads.

    Entries expire *ttl* seconds after they were stored, whether or not they
    were read in between.  No locking: two identical concurrent misses both
    recompute and the later write wins.
    """

    def __init__(
        self,
        ttl: float = DEFAULT_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[Hashable, tuple[float, MetricsPayload]] = {}

    @property
    def ttl(self) -> float:
        return self._ttl

    def get(self, key: Hashable) -> MetricsPayload | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, payload = entry
        if self._clock() - stored_at >= self._ttl:
            del self._entries[key]
            return None
        return payload

    def set(self, key: Hashable, payload: MetricsPayload) -> None:
        self._entries[key] = (self._clock(), payload)

    def purge_expired(self) -> int:
        """Drop expired entries; return how many were removed."""
        now = self._clock()
        expired = [k for k, (stored_at, _) in self._entries.items() if now - stored_at >= self._ttl]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def synthetic_allowed() -> bool:
    """Synthetic substitution is permitted everywhere except production."""
    return not is_production()


# ── aggregation helpers ──────────────────────────────────────────────────


def build_buckets(start_date: date, end_date: date) -> dict[date, DailyBucket]:
    """One zero-filled bucket per calendar day in ``[start_date, end_date]``."""
    buckets: dict[date, DailyBucket] = {}
    day = start_date
    while day <= end_date:
        buckets[day] = DailyBucket(date=day)
        day += timedelta(days=1)
    return buckets


def _day(ts: datetime) -> date:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).date()


def fold_activity(
    buckets: dict[date, DailyBucket],
    commits: list[Commit],
    pull_requests: list[PullRequest],
    reviews: list[Review],
) -> None:
    """Fold raw rows into their day bucket; rows outside the range are ignored."""
    for commit in commits:
        bucket = buckets.get(_day(commit.committed_at))
        if bucket is not None:
            bucket.commit_count += 1
            bucket.additions += commit.additions or 0
            bucket.deletions += commit.deletions or 0

    # PRs land on their creation day, merged or not.
    for pr in pull_requests:
        bucket = buckets.get(_day(pr.created_at))
        if bucket is not None:
            bucket.pr_count += 1
            if pr.merged_at is not None:
                bucket.pr_merged_count += 1

    for review in reviews:
        bucket = buckets.get(_day(review.submitted_at))
        if bucket is not None:
            bucket.review_count += 1


def summarize(daily: list[DailyBucket]) -> MetricsSummary:
    summary = MetricsSummary()
    for bucket in daily:
        summary.commit_count += bucket.commit_count
        summary.additions += bucket.additions
        summary.deletions += bucket.deletions
        summary.pr_count += bucket.pr_count
        summary.pr_merged_count += bucket.pr_merged_count
        summary.review_count += bucket.review_count
        if bucket.commit_count:
            summary.active_commit_days += 1
        if bucket.pr_count:
            summary.active_pr_days += 1
    return summary


def compute_dora(
    summary: MetricsSummary,
    day_count: int,
    pull_requests: list[PullRequest],
    first_reviews: dict[int, datetime],
) -> DoraMetrics:
    """Derive delivery figures.

    Counts come from the folded *summary*; latencies need per-PR timestamps.
    Closed PRs include merged ones, so the failure rate is the unmerged share
    of everything that reached a terminal state.
    """
    dora = DoraMetrics()
    if day_count > 0:
        dora.deployment_frequency = summary.pr_merged_count / day_count
    if summary.pr_closed_count > 0:
        unmerged = summary.pr_closed_count - summary.pr_merged_count
        dora.change_failure_rate = unmerged / summary.pr_closed_count

    # Non-positive latencies are dropped, usually clock skew.
    merge_ms = [
        ms
        for ms in (
            (pr.merged_at - pr.created_at).total_seconds() * 1000
            for pr in pull_requests
            if pr.merged_at is not None
        )
        if ms > 0
    ]
    if merge_ms:
        mean_ms = sum(merge_ms) / len(merge_ms)
        dora.avg_pr_cycle_time = mean_ms
        dora.avg_time_to_merge = mean_ms / 60000

    review_minutes = []
    for pr in pull_requests:
        first = first_reviews.get(pr.id)
        if first is None:
            continue
        minutes = (first - pr.created_at).total_seconds() / 60
        if minutes > 0:
            review_minutes.append(minutes)
    if review_minutes:
        dora.avg_time_to_first_review = sum(review_minutes) / len(review_minutes)

    return dora


def member_breakdown(
    member_ids: list[int],
    commits: list[Commit],
    pull_requests: list[PullRequest],
    reviews: list[Review],
) -> list[MemberContribution]:
    """Per-member counts; percentage is the member's share of team commits."""
    members = {uid: MemberContribution(user_id=uid) for uid in member_ids}
    for commit in commits:
        if commit.author_id in members:
            members[commit.author_id].commit_count += 1
    for pr in pull_requests:
        if pr.author_id in members:
            members[pr.author_id].pr_count += 1
    for review in reviews:
        if review.reviewer_id in members:
            members[review.reviewer_id].review_count += 1

    total = sum(m.commit_count for m in members.values())
    for member in members.values():
        if total:
            member.contribution_percentage = round(member.commit_count / total * 100, 2)
    return sorted(members.values(), key=lambda m: (-m.commit_count, m.user_id))


# ── synthetic data ───────────────────────────────────────────────────────


def _seed(entity_kind: str, entity_id: int, start_date: date, end_date: date) -> int:
    raw = f"{entity_kind}:{entity_id}:{start_date.isoformat()}:{end_date.isoformat()}"
    return int.from_bytes(hashlib.sha256(raw.encode()).digest()[:8], "big")


def synthetic_payload(
    entity_kind: str, entity_id: int, start_date: date, end_date: date
) -> MetricsPayload:
    """Deterministic placeholder metrics; same inputs always give the same payload."""
    rng = random.Random(_seed(entity_kind, entity_id, start_date, end_date))
    scale = 3.0 if entity_kind == "team" else 1.0

    daily = list(build_buckets(start_date, end_date).values())
    for bucket in daily:
        weekend = 0.3 if bucket.date.weekday() >= 5 else 1.0
        factor = weekend * scale
        bucket.commit_count = int((5 + rng.random() * 10) * factor)
        bucket.pr_count = int((1 + rng.random() * 3) * factor)
        bucket.pr_merged_count = min(bucket.pr_count, int((1 + rng.random() * 2) * factor))
        bucket.review_count = int((2 + rng.random() * 5) * factor)
        bucket.additions = int((50 + rng.random() * 200) * factor)
        bucket.deletions = int((20 + rng.random() * 100) * factor)

    summary = summarize(daily)
    summary.pr_closed_count = summary.pr_merged_count + int(summary.pr_merged_count * 0.1)
    summary.contributor_count = 1 if entity_kind == "user" else 3 + rng.randrange(8)

    merge_minutes = 12 * 60 + rng.randrange(12 * 60)
    dora = DoraMetrics(
        deployment_frequency=summary.pr_merged_count / len(daily) if daily else 0.0,
        change_failure_rate=0.05 + round(rng.random() * 0.15, 4),
        avg_time_to_first_review=3 * 60 + rng.randrange(5 * 60),
        avg_time_to_merge=merge_minutes,
        avg_pr_cycle_time=merge_minutes * 60000,
    )
    return MetricsPayload(
        entity_kind=entity_kind,
        entity_id=entity_id,
        start_date=start_date,
        end_date=end_date,
        summary=summary,
        dora=dora,
        daily=daily,
        mode="synthetic",
    )


# ── service ──────────────────────────────────────────────────────────────


@dataclass
class _Scope:
    name: str | None
    repository_ids: list[int] | None = None
    author_ids: list[int] | None = None


class MetricsService:
    """Computes :class:`MetricsPayload` for a repository, user or team.

    Owns a :class:`MetricsCache`; a hit returns the stored payload object
    without touching the database.
    """

    def __init__(
        self,
        repository_dao: RepositoryDAO,
        user_dao: UserDAO,
        team_dao: TeamDAO,
        commit_dao: CommitDAO,
        pull_request_dao: PullRequestDAO,
        review_dao: ReviewDAO,
        cache: MetricsCache | None = None,
        allow_synthetic: bool | None = None,
    ) -> None:
        self._repository_dao = repository_dao
        self._user_dao = user_dao
        self._team_dao = team_dao
        self._commit_dao = commit_dao
        self._pr_dao = pull_request_dao
        self._review_dao = review_dao
        if cache is None:
            cache = MetricsCache(ttl=env_float("GITPULSE_METRICS_CACHE_TTL", DEFAULT_CACHE_TTL))
        self.cache = cache
        self._allow_synthetic = synthetic_allowed() if allow_synthetic is None else allow_synthetic

    async def metrics_for(
        self,
        session: AsyncSession,
        entity_kind: str,
        entity_id: int,
        start_date: date,
        end_date: date,
        *,
        tenant_id: int | None = None,
        use_cache: bool = True,
    ) -> MetricsPayload:
        """Return metrics for one entity over ``[start_date, end_date]`` (inclusive).

        Raises :class:`ValidationError` for an unknown kind or an inverted
        range, and :class:`NotFoundError` for a missing entity unless
        synthetic substitution is allowed.
        """
        if entity_kind not in ENTITY_KINDS:
            raise ValidationError(f"unknown entity kind: {entity_kind!r}")
        if start_date > end_date:
            raise ValidationError("start_date must not be after end_date")
        if (end_date - start_date).days >= MAX_RANGE_DAYS:
            raise ValidationError(f"date range exceeds {MAX_RANGE_DAYS} days")

        key = (entity_kind, entity_id, start_date, end_date, tenant_id)
        if use_cache:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        try:
            payload = await self._compute(
                session, entity_kind, entity_id, start_date, end_date, tenant_id
            )
        except NotFoundError:
            if not self._allow_synthetic:
                raise
            log.info(
                "metrics.synthetic",
                reason="not_found",
                entity_kind=entity_kind,
                entity_id=entity_id,
            )
            payload = synthetic_payload(entity_kind, entity_id, start_date, end_date)
        except SQLAlchemyError as exc:
            if not self._allow_synthetic:
                raise
            log.warning(
                "metrics.synthetic",
                reason="store_error",
                entity_kind=entity_kind,
                entity_id=entity_id,
                error=str(exc),
            )
            payload = synthetic_payload(entity_kind, entity_id, start_date, end_date)

        if use_cache:
            self.cache.set(key, payload)
        return payload

    async def _resolve_scope(
        self,
        session: AsyncSession,
        entity_kind: str,
        entity_id: int,
        tenant_id: int | None,
    ) -> _Scope:
        if entity_kind == "repository":
            repository = await self._repository_dao.get_by_id(session, entity_id)
            if repository is None or (
                tenant_id is not None and repository.tenant_id != tenant_id
            ):
                raise NotFoundError(f"repository {entity_id} not found")
            return _Scope(name=repository.full_name, repository_ids=[repository.id])

        tenant_repos = None
        if tenant_id is not None:
            tenant_repos = await self._repository_dao.list_ids(session, tenant_id=tenant_id)

        if entity_kind == "user":
            user = await self._user_dao.get_by_id(session, entity_id)
            if user is None:
                raise NotFoundError(f"user {entity_id} not found")
            return _Scope(
                name=user.login or user.name,
                repository_ids=tenant_repos,
                author_ids=[user.id],
            )

        team = await self._team_dao.get_by_id(session, entity_id)
        if team is None or (tenant_id is not None and team.tenant_id not in (None, tenant_id)):
            raise NotFoundError(f"team {entity_id} not found")
        member_ids = await self._team_dao.member_ids(session, team.id)
        return _Scope(name=team.name, repository_ids=tenant_repos, author_ids=member_ids)

    async def _compute(
        self,
        session: AsyncSession,
        entity_kind: str,
        entity_id: int,
        start_date: date,
        end_date: date,
        tenant_id: int | None,
    ) -> MetricsPayload:
        scope = await self._resolve_scope(session, entity_kind, entity_id, tenant_id)

        start = datetime.combine(start_date, dt_time.min, tzinfo=timezone.utc)
        end = datetime.combine(end_date + timedelta(days=1), dt_time.min, tzinfo=timezone.utc)

        commits = await self._commit_dao.list_in_range(
            session,
            start,
            end,
            repository_ids=scope.repository_ids,
            author_ids=scope.author_ids,
        )
        pull_requests = await self._pr_dao.list_in_range(
            session,
            start,
            end,
            repository_ids=scope.repository_ids,
            author_ids=scope.author_ids,
        )
        reviews = await self._review_dao.list_in_range(
            session,
            start,
            end,
            repository_ids=scope.repository_ids,
            reviewer_ids=scope.author_ids,
        )
        first_reviews = await self._review_dao.first_review_times(
            session, [pr.id for pr in pull_requests]
        )

        buckets = build_buckets(start_date, end_date)
        fold_activity(buckets, commits, pull_requests, reviews)
        daily = list(buckets.values())

        summary = summarize(daily)
        summary.pr_closed_count = sum(1 for pr in pull_requests if pr.state in ("closed", "merged"))
        contributors = {c.author_id for c in commits if c.author_id is not None}
        contributors.update(pr.author_id for pr in pull_requests if pr.author_id is not None)
        summary.contributor_count = len(contributors)

        dora = compute_dora(summary, len(daily), pull_requests, first_reviews)

        members: list[MemberContribution] = []
        if entity_kind == "team":
            members = member_breakdown(scope.author_ids or [], commits, pull_requests, reviews)

        log.debug(
            "metrics.computed",
            entity_kind=entity_kind,
            entity_id=entity_id,
            days=len(daily),
            commits=summary.commit_count,
            pull_requests=summary.pr_count,
        )
        return MetricsPayload(
            entity_kind=entity_kind,
            entity_id=entity_id,
            start_date=start_date,
            end_date=end_date,
            summary=summary,
            dora=dora,
            daily=daily,
            mode="live",
            entity_name=scope.name,
            members=members,
        )
