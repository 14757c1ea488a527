"""Async GitHub API client — GraphQL + REST, rate-limit signalling, retries."""

from __future__ import annotations

import asyncio
import os
import re
import time
from collections.abc import AsyncGenerator
from typing import Any

import httpx
import structlog

from gitpulse.core.github import graphql_url, rest_base_url
from gitpulse.engines.collector.errors import (
    GraphQLError,
    PermanentRemoteError,
    RateLimitError,
    TransientRemoteError,
)

log = structlog.get_logger("gitpulse.engine")

_NEXT_LINK_RE = re.compile(r'<([^>]+)>;\s*rel="next"')

_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 1.0  # seconds
_MAX_INLINE_WAIT = 60  # longest pause taken when a quota is about to run out


class GitHubClient:
    """Thin async wrapper around the GitHub REST and GraphQL APIs.

    *api_base* selects a self-hosted instance
    (``https://ghe.example.com/api/v3``); the GraphQL endpoint is derived
    from it.
    """

    def __init__(
        self,
        token: str | None = None,
        api_base: str | None = None,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        resolved_token = token or os.environ.get("GITHUB_TOKEN")
        headers: dict[str, str] = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if resolved_token:
            headers["Authorization"] = f"bearer {resolved_token}"
        self.has_token = bool(resolved_token)
        self.graphql_endpoint = graphql_url(api_base)
        self._client = httpx.AsyncClient(
            base_url=rest_base_url(api_base),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    # ── lifecycle ──────────────────────────────────────────────────────────

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> GitHubClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ── public ─────────────────────────────────────────────────────────────

    async def graphql(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """POST a GraphQL query and return its ``data`` member.

        Raises :class:`GraphQLError` when the response carries ``errors``.
        A ``RATE_LIMITED`` error is surfaced as :class:`RateLimitError`.
        """
        response = await self._request_with_retry(
            "POST",
            self.graphql_endpoint,
            json={"query": query, "variables": variables or {}},
        )
        await self._check_rate_limit(response)
        body = response.json()
        errors = body.get("errors")
        if errors:
            if any(e.get("type") == "RATE_LIMITED" for e in errors if isinstance(e, dict)):
                raise RateLimitError(self._get_rate_limit_wait(response))
            raise GraphQLError(errors)
        return body.get("data") or {}

    async def get_paginated(
        self,
        path: str,
        params: dict[str, Any] | None = None,
    ) -> AsyncGenerator[dict[str, Any], None]:
        """Yield JSON items from a paginated REST endpoint.

        Follows ``Link: <...>; rel="next"`` headers until the last page.
        """
        url: str | None = path
        params = dict(params or {})
        params.setdefault("per_page", 100)
        first = True

        while url:
            response = await self._request_with_retry(
                "GET", url, params=params if first else None
            )
            await self._check_rate_limit(response)

            data = response.json()
            if isinstance(data, list):
                for item in data:
                    yield item
            else:
                yield data

            url = self._parse_next_link(response.headers.get("Link", ""))
            first = False

    async def get_page(
        self,
        path: str,
        params: dict[str, Any] | None = None,
    ) -> tuple[list[dict[str, Any]], bool]:
        """Fetch one page of a list endpoint; returns ``(items, has_next)``."""
        response = await self._request_with_retry("GET", path, params=params)
        await self._check_rate_limit(response)
        data = response.json()
        items = data if isinstance(data, list) else [data]
        has_next = self._parse_next_link(response.headers.get("Link", "")) is not None
        return items, has_next

    async def get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Single-resource GET, returns parsed JSON."""
        response = await self._request_with_retry("GET", path, params=params)
        await self._check_rate_limit(response)
        return response.json()

    # ── internal ───────────────────────────────────────────────────────────

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """Send with exponential backoff on 5xx and timeouts.

        Rate limits raise :class:`RateLimitError` at once so the caller can
        schedule the retry; other 4xx responses raise
        :class:`PermanentRemoteError`.
        """
        last_error: str = ""
        for attempt in range(_MAX_RETRIES):
            try:
                resp = await self._client.request(method, url, params=params, json=json)
            except httpx.TimeoutException:
                log.warning(
                    "github.timeout",
                    url=url,
                    attempt=attempt + 1,
                    max_retries=_MAX_RETRIES,
                )
                last_error = f"timeout requesting {url}"
            except httpx.TransportError as exc:
                log.warning(
                    "github.transport_error",
                    url=url,
                    attempt=attempt + 1,
                    max_retries=_MAX_RETRIES,
                    error=str(exc),
                )
                last_error = f"transport error requesting {url}: {exc}"
            else:
                if resp.status_code in (403, 429) and self._is_rate_limited(resp):
                    wait = self._get_rate_limit_wait(resp)
                    log.warning("github.rate_limit", url=url, wait_seconds=wait)
                    raise RateLimitError(wait)

                if resp.status_code < 400:
                    return resp

                if resp.status_code < 500:
                    raise PermanentRemoteError(
                        self._describe_failure(resp, url), status_code=resp.status_code
                    )

                log.warning(
                    "github.server_error",
                    url=url,
                    status=resp.status_code,
                    attempt=attempt + 1,
                    max_retries=_MAX_RETRIES,
                )
                last_error = f"server error {resp.status_code} for {url}"

            if attempt < _MAX_RETRIES - 1:
                delay = _RETRY_BASE_DELAY * (2**attempt)
                await asyncio.sleep(delay)

        raise TransientRemoteError(last_error)

    @staticmethod
    def _describe_failure(resp: httpx.Response, url: str) -> str:
        if resp.status_code == 401:
            return "authentication failed (bad or missing token)"
        if resp.status_code == 404:
            return f"not found: {url}"
        try:
            message = resp.json().get("message")
        except ValueError:
            message = None
        return f"{resp.status_code} for {url}" + (f": {message}" if message else "")

    async def _check_rate_limit(self, response: httpx.Response) -> None:
        """Pause briefly when the quota is exhausted and resets soon."""
        remaining = self._parse_header_int(response.headers.get("X-RateLimit-Remaining"))
        if remaining is not None and remaining == 0:
            wait = self._get_rate_limit_wait(response)
            if wait <= _MAX_INLINE_WAIT:
                log.warning("github.rate_limit_wait", wait_seconds=wait)
                await asyncio.sleep(wait)

    @staticmethod
    def _is_rate_limited(response: httpx.Response) -> bool:
        """Check if a 403/429 response is due to rate limiting."""
        if response.status_code == 429:
            return True
        remaining = response.headers.get("X-RateLimit-Remaining")
        if remaining is not None:
            try:
                return int(remaining) == 0
            except (ValueError, TypeError):
                pass
        # GitHub also uses Retry-After header for secondary rate limits
        return "Retry-After" in response.headers

    @staticmethod
    def _get_rate_limit_wait(response: httpx.Response) -> int:
        """Calculate how long to wait based on rate-limit headers."""
        retry_after = response.headers.get("Retry-After")
        if retry_after is not None:
            try:
                return max(int(retry_after), 1)
            except (ValueError, TypeError):
                pass
        reset_ts = response.headers.get("X-RateLimit-Reset")
        if reset_ts is not None:
            try:
                return max(int(reset_ts) - int(time.time()), 1)
            except (ValueError, TypeError):
                pass
        return 60  # conservative fallback

    @staticmethod
    def _parse_header_int(value: str | None) -> int | None:
        """Safely parse an integer header value."""
        if value is None:
            return None
        try:
            return int(value)
        except (ValueError, TypeError):
            return None

    @staticmethod
    def _parse_next_link(link_header: str) -> str | None:
        """Extract the ``next`` URL from a ``Link`` header."""
        match = _NEXT_LINK_RE.search(link_header)
        return match.group(1) if match else None
