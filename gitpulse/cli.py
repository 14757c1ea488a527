"""CLI entry point: gitpulse.

Subcommands:
    gitpulse init-db                              # Create tables
    gitpulse add-repo owner/name [--api-url URL]  # Register a repository
    gitpulse sync [--repo ID] [--force-full] [--concurrency N]
    gitpulse metrics repository 1 --from 2024-01-01 --to 2024-01-31
    gitpulse run                                  # Periodic sync loop
"""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import date, datetime

import click
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gitpulse.core.database import create_all, create_engine, create_session_factory
from gitpulse.core.logging import setup_logging
from gitpulse.dao import (
    CommitDAO,
    PullRequestDAO,
    RepositoryDAO,
    ReviewDAO,
    TeamDAO,
    UserDAO,
)
from gitpulse.engines.sync import SyncOrchestrator
from gitpulse.services import ServiceError
from gitpulse.services.metrics_service import ENTITY_KINDS, MetricsService
from gitpulse.services.repository_service import RepositoryService


def _parse_date(ctx: click.Context, param: click.Parameter, value: str | None) -> date | None:
    if value is None:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError as exc:
        raise click.BadParameter("expected YYYY-MM-DD") from exc


def _echo_json(data: object) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _metrics_service() -> MetricsService:
    return MetricsService(
        RepositoryDAO(), UserDAO(), TeamDAO(), CommitDAO(), PullRequestDAO(), ReviewDAO()
    )


@asynccontextmanager
async def _open_db(database_url: str | None) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    engine = create_engine(database_url)
    try:
        yield create_session_factory(engine)
    finally:
        await engine.dispose()


@click.group()
@click.option("--database-url", envvar="GITPULSE_DATABASE_URL", default=None, help="SQLAlchemy URL")
@click.option("--log-level", default=None, help="Overrides GITPULSE_LOG_LEVEL")
@click.pass_context
def main(ctx: click.Context, database_url: str | None, log_level: str | None) -> None:
    """gitpulse: repository activity sync and delivery metrics."""
    setup_logging(level=log_level)
    ctx.ensure_object(dict)
    ctx.obj["database_url"] = database_url


@main.command("init-db")
@click.pass_context
def init_db(ctx: click.Context) -> None:
    """Create all tables."""

    async def _run() -> None:
        engine = create_engine(ctx.obj["database_url"])
        try:
            await create_all(engine)
        finally:
            await engine.dispose()

    asyncio.run(_run())
    click.echo("database initialised")


@main.command("add-repo")
@click.argument("full_name")
@click.option("--api-url", default=None, help="API base for self-hosted instances")
@click.option("--token", default=None, help="Access token for this repository")
@click.option("--tenant", "tenant_id", type=int, default=None)
@click.pass_context
def add_repo(
    ctx: click.Context,
    full_name: str,
    api_url: str | None,
    token: str | None,
    tenant_id: int | None,
) -> None:
    """Register a repository given as owner/name."""

    async def _run() -> int:
        service = RepositoryService(RepositoryDAO())
        async with _open_db(ctx.obj["database_url"]) as factory:
            async with factory() as session:
                async with session.begin():
                    repository = await service.create(
                        session,
                        full_name=full_name,
                        api_url=api_url,
                        api_token=token,
                        tenant_id=tenant_id,
                    )
                    return repository.id

    try:
        repository_id = asyncio.run(_run())
    except ServiceError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    click.echo(f"registered {full_name} as repository {repository_id}")


@main.command()
@click.option("--repo", "repository_id", type=int, default=None, help="Sync only this repository")
@click.option("--force-full", is_flag=True, help="Reset the watermark and refetch everything")
@click.option("--concurrency", type=int, default=1, show_default=True)
@click.option("--tenant", "tenant_id", type=int, default=None)
@click.pass_context
def sync(
    ctx: click.Context,
    repository_id: int | None,
    force_full: bool,
    concurrency: int,
    tenant_id: int | None,
) -> None:
    """Sync one or all repositories and print the results."""

    async def _run():
        async with _open_db(ctx.obj["database_url"]) as factory:
            orchestrator = SyncOrchestrator(factory)
            if repository_id is not None:
                return [await orchestrator.sync_one(repository_id, force_full=force_full)]
            return await orchestrator.sync_all(
                force_full=force_full, concurrency=concurrency, tenant_id=tenant_id
            )

    try:
        results = asyncio.run(_run())
    except ServiceError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    _echo_json([r.to_dict() for r in results])
    if any(not r.success for r in results):
        sys.exit(2)


@main.command()
@click.argument("kind", type=click.Choice(ENTITY_KINDS))
@click.argument("entity_id", type=int)
@click.option("--from", "start", callback=_parse_date, required=True, help="YYYY-MM-DD")
@click.option("--to", "end", callback=_parse_date, required=True, help="YYYY-MM-DD")
@click.option("--tenant", "tenant_id", type=int, default=None)
@click.pass_context
def metrics(
    ctx: click.Context,
    kind: str,
    entity_id: int,
    start: date,
    end: date,
    tenant_id: int | None,
) -> None:
    """Print metrics for a repository, user or team."""

    async def _run():
        service = _metrics_service()
        async with _open_db(ctx.obj["database_url"]) as factory:
            async with factory() as session:
                return await service.metrics_for(
                    session, kind, entity_id, start, end, tenant_id=tenant_id
                )

    try:
        payload = asyncio.run(_run())
    except ServiceError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    _echo_json(payload.to_dict())


@main.command()
@click.option("--tenant", "tenant_id", type=int, default=None)
@click.pass_context
def run(ctx: click.Context, tenant_id: int | None) -> None:
    """Run the periodic sync loop, with metrics-cache upkeep, until interrupted."""
    from gitpulse.scheduler import create_scheduler

    async def _run() -> None:
        async with _open_db(ctx.obj["database_url"]) as factory:
            scheduler = create_scheduler(
                SyncOrchestrator(factory),
                metrics_cache=_metrics_service().cache,
                tenant_id=tenant_id,
            )
            await scheduler.start()
            try:
                await asyncio.Event().wait()
            finally:
                await scheduler.stop()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        click.echo("stopped")


if __name__ == "__main__":
    main()
