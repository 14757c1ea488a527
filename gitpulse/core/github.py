"""GitHub URL and identifier utilities."""

from __future__ import annotations

import base64
import binascii
import re

DEFAULT_API_BASE = "https://api.github.com"

_V3_SUFFIX_RE = re.compile(r"/v3/?$")
_LEGACY_NODE_ID_RE = re.compile(r":(\d+)$")
_NEXT_NODE_ID_RE = re.compile(r"User(\d+)$")


def split_full_name(full_name: str) -> tuple[str, str]:
    """Split ``owner/name`` into ``(owner, name)``.

    Raises ValueError if *full_name* is not in ``owner/name`` form.
    """
    parts = full_name.strip().strip("/").split("/")
    if len(parts) != 2 or not all(parts):
        raise ValueError(f"repository full name must be 'owner/name': {full_name!r}")
    return parts[0], parts[1]


def rest_base_url(api_base: str | None) -> str:
    """Return the REST base URL for *api_base*.

    ``None`` and ``https://api.github.com`` map to the public API; a
    self-hosted host without an explicit ``/api/v3`` path gets one appended.
    """
    if not api_base or api_base.rstrip("/") == DEFAULT_API_BASE:
        return DEFAULT_API_BASE
    base = api_base.rstrip("/")
    if base.endswith("/api/v3"):
        return base
    if base.endswith("/api"):
        return f"{base}/v3"
    return f"{base}/api/v3"


def graphql_url(api_base: str | None) -> str:
    """Return the GraphQL endpoint that belongs to *api_base*.

    ``https://api.github.com`` → ``https://api.github.com/graphql``;
    ``https://ghe.example.com/api/v3`` → ``https://ghe.example.com/api/graphql``.
    """
    if not api_base or api_base.rstrip("/") == DEFAULT_API_BASE:
        return f"{DEFAULT_API_BASE}/graphql"
    base = _V3_SUFFIX_RE.sub("", api_base.rstrip("/"))
    if base.endswith("/graphql"):
        return base
    if not base.endswith("/api"):
        base = f"{base}/api"
    return f"{base}/graphql"


def extract_remote_id(node_id: str | int | None) -> int | None:
    """Decode a GitHub user id into its stable numeric form.

    Accepts plain integers (REST), legacy base64 node ids
    (``MDQ6VXNlcjE=`` → ``04:User1``) and returns None for anything
    that does not carry a numeric id.
    """
    if node_id is None or node_id == "":
        return None
    if isinstance(node_id, int):
        return node_id
    if node_id.isdigit():
        return int(node_id)
    try:
        decoded = base64.b64decode(node_id + "=" * (-len(node_id) % 4)).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None
    match = _LEGACY_NODE_ID_RE.search(decoded) or _NEXT_NODE_ID_RE.search(decoded)
    if match:
        return int(match.group(1))
    return None
