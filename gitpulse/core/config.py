"""Environment-variable settings, read at the point of use."""

from __future__ import annotations

import os

import structlog

log = structlog.get_logger("gitpulse.config")


def env_float(key: str, default: float) -> float:
    raw = os.environ.get(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        log.warning("config.invalid_value", key=key, value=raw, default=default)
        return default


def env_int(key: str, default: int) -> int:
    raw = os.environ.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        log.warning("config.invalid_value", key=key, value=raw, default=default)
        return default


def is_production() -> bool:
    return os.environ.get("GITPULSE_ENV", "development").lower() == "production"
