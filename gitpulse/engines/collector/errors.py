"""Remote error taxonomy for the collector."""

from __future__ import annotations


class RemoteError(Exception):
    """Base class for failures talking to the remote host."""


class TransientRemoteError(RemoteError):
    """Timeouts, 5xx responses — worth retrying later."""


class RateLimitError(TransientRemoteError):
    """Raised when the remote rate limit is exhausted and we need to wait."""

    def __init__(self, retry_after: int) -> None:
        self.retry_after = retry_after
        super().__init__(f"rate limit exceeded, retry after {retry_after}s")


class PermanentRemoteError(RemoteError):
    """Auth failure, missing repository — retrying will not help."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class GraphQLError(RemoteError):
    """The GraphQL endpoint answered with an ``errors`` payload."""

    def __init__(self, errors: list[dict]) -> None:
        self.errors = errors
        messages = "; ".join(str(e.get("message", e)) for e in errors) or "unknown error"
        super().__init__(f"graphql error: {messages}")


class StrategyUnavailableError(RemoteError):
    """The collection strategy cannot serve this host or token."""
