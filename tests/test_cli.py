"""Tests for the gitpulse CLI against a throwaway SQLite database."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import structlog
from click.testing import CliRunner

from gitpulse.cli import main
from gitpulse.engines.sync import SyncResult
from gitpulse.services.metrics_service import MetricsCache


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    """Keep log lines out of the command output."""
    monkeypatch.setattr("gitpulse.cli.setup_logging", lambda **kwargs: None)
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(logging.ERROR))
    yield
    structlog.reset_defaults()


@pytest.fixture
def db_url(tmp_path):
    url = f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"
    result = CliRunner().invoke(main, ["--database-url", url, "init-db"])
    assert result.exit_code == 0, result.output
    return url


def invoke(db_url: str, *args: str):
    return CliRunner().invoke(main, ["--database-url", db_url, *args])


class TestAddRepo:
    def test_register(self, db_url):
        result = invoke(db_url, "add-repo", "acme/widgets")
        assert result.exit_code == 0, result.output
        assert "registered acme/widgets as repository 1" in result.output

    def test_duplicate(self, db_url):
        invoke(db_url, "add-repo", "acme/widgets")
        result = invoke(db_url, "add-repo", "acme/widgets")
        assert result.exit_code == 1

    def test_malformed_name(self, db_url):
        result = invoke(db_url, "add-repo", "widgets")
        assert result.exit_code == 1


class TestMetrics:
    def test_live_payload(self, db_url):
        invoke(db_url, "add-repo", "acme/widgets")
        result = invoke(
            db_url, "metrics", "repository", "1", "--from", "2024-03-01", "--to", "2024-03-03"
        )
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["mode"] == "live"
        assert data["entity_name"] == "acme/widgets"
        assert [d["date"] for d in data["daily"]] == ["2024-03-01", "2024-03-02", "2024-03-03"]

    def test_bad_date(self, db_url):
        result = invoke(
            db_url, "metrics", "repository", "1", "--from", "03/01/2024", "--to", "2024-03-03"
        )
        assert result.exit_code == 2

    def test_inverted_range(self, db_url):
        result = invoke(
            db_url, "metrics", "user", "1", "--from", "2024-03-05", "--to", "2024-03-01"
        )
        assert result.exit_code == 1

    def test_unknown_kind(self, db_url):
        result = invoke(
            db_url, "metrics", "planet", "1", "--from", "2024-03-01", "--to", "2024-03-02"
        )
        assert result.exit_code == 2


class TestSync:
    def test_nothing_registered(self, db_url):
        result = invoke(db_url, "sync")
        assert result.exit_code == 1

    def test_failed_repository_sets_exit_code(self, db_url):
        now = datetime(2024, 3, 1, tzinfo=timezone.utc)
        failed = SyncResult(
            repository_id=1,
            repository_name="acme/widgets",
            success=False,
            message="sync failed: gone",
            start_time=now,
            end_time=now,
            errors=["gone"],
        )
        orchestrator = MagicMock()
        orchestrator.sync_one = AsyncMock(return_value=failed)

        with patch("gitpulse.cli.SyncOrchestrator", return_value=orchestrator):
            result = invoke(db_url, "sync", "--repo", "1", "--force-full")

        assert result.exit_code == 2
        assert json.loads(result.output)[0]["message"] == "sync failed: gone"
        orchestrator.sync_one.assert_awaited_once_with(1, force_full=True)


class TestRun:
    def test_scheduler_gets_a_metrics_cache(self, db_url):
        with patch(
            "gitpulse.scheduler.create_scheduler", side_effect=KeyboardInterrupt
        ) as create:
            result = invoke(db_url, "run", "--tenant", "4")

        assert result.exit_code == 0, result.output
        assert "stopped" in result.output
        kwargs = create.call_args.kwargs
        assert isinstance(kwargs["metrics_cache"], MetricsCache)
        assert kwargs["tenant_id"] == 4
