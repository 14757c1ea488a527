"""Collector engine — fetch a repository's activity and upsert it."""

from gitpulse.engines.collector.collector import RepositoryCollector, open_collector
from gitpulse.engines.collector.errors import (
    GraphQLError,
    PermanentRemoteError,
    RateLimitError,
    RemoteError,
    StrategyUnavailableError,
    TransientRemoteError,
)
from gitpulse.engines.collector.github_client import GitHubClient
from gitpulse.engines.collector.models import (
    ActorRef,
    CollectionResult,
    CommitNode,
    CommitPage,
    PageInfo,
    PullRequestNode,
    PullRequestPage,
    ReviewNode,
)
from gitpulse.engines.collector.strategies import (
    CollectionStrategy,
    GraphQLStrategy,
    RestStrategy,
    select_strategies,
)

__all__ = [
    "ActorRef",
    "CollectionResult",
    "CollectionStrategy",
    "CommitNode",
    "CommitPage",
    "GitHubClient",
    "GraphQLError",
    "GraphQLStrategy",
    "PageInfo",
    "PermanentRemoteError",
    "PullRequestNode",
    "PullRequestPage",
    "RateLimitError",
    "RemoteError",
    "RepositoryCollector",
    "RestStrategy",
    "ReviewNode",
    "StrategyUnavailableError",
    "TransientRemoteError",
    "open_collector",
    "select_strategies",
]
