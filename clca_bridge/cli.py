"""
CLCA Bridge - Operator CLI

Inspect and drive the dead letter queue, probe CLCA, and bulk-resync from
JSON exports of the TTG stores.

Usage:
    clca-bridge dlq-stats
    clca-bridge dlq-items --limit 20
    clca-bridge failed-items
    clca-bridge process-dlq
    clca-bridge clear-dlq --yes
    clca-bridge health
    clca-bridge resync --events events.json --games games.json

Exit Codes:
    0 - Success
    1 - CLCA unhealthy / not configured
    2 - Resync finished with failures
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, AsyncContextManager, Awaitable, Callable, Optional, TypeVar

import click
from pydantic import TypeAdapter, ValidationError

from .bootstrap import Pipeline, open_pipeline
from .core.config import get_settings, load_environment
from .core.errors import IngestConfigurationError
from .core.logging import configure_structured_logging
from .db import check_db_ready, get_pool_health
from .models.domain import Event, Game
from .workers.dlq_store import PostgresDLQStore

EXIT_OK = 0
EXIT_UNHEALTHY = 1
EXIT_RESYNC_FAILURES = 2

T = TypeVar("T")
PipelineFactory = Callable[[], AsyncContextManager[Pipeline]]


def _default_factory() -> AsyncContextManager[Pipeline]:
    return open_pipeline(get_settings())


def _run(ctx: click.Context, action: Callable[[Pipeline], Awaitable[T]]) -> T:
    factory: PipelineFactory = ctx.obj["pipeline_factory"]

    async def _go() -> T:
        async with factory() as pipeline:
            return await action(pipeline)

    return asyncio.run(_go())


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _load_records(path: Optional[Path], model: type) -> list:
    if path is None:
        return []
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        return TypeAdapter(list[model]).validate_python(raw)
    except (json.JSONDecodeError, ValidationError) as e:
        raise click.BadParameter(f"{path}: {e}") from e


# =============================================================================
# Group
# =============================================================================


@click.group()
@click.option(
    "--env-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Load variables from this dotenv file (existing env wins)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, env_file: Optional[Path], verbose: bool) -> None:
    """Operational tools for the TTG -> CLCA ingestion pipeline."""
    ctx.ensure_object(dict)
    if "pipeline_factory" not in ctx.obj:
        load_environment(env_file)
        settings = get_settings()
        configure_structured_logging(
            level="DEBUG" if verbose else settings.LOG_LEVEL,
            json_output=settings.LOG_JSON,
            service_name="clca-bridge-cli",
        )
        ctx.obj["pipeline_factory"] = _default_factory


# =============================================================================
# Dead letter queue
# =============================================================================


@cli.command("dlq-stats")
@click.pass_context
def dlq_stats(ctx: click.Context) -> None:
    """Pending/ready/failed counts."""
    stats = _run(ctx, lambda p: p.dlq.get_dlq_stats())
    _echo_json(
        {
            "totalItems": stats.total_items,
            "readyForRetry": stats.ready_for_retry,
            "pendingRetry": stats.pending_retry,
            "averageAttempts": stats.average_attempts,
            "failedItems": stats.failed_items,
        }
    )


@cli.command("dlq-items")
@click.option("--limit", type=click.IntRange(min=1), default=50, show_default=True)
@click.pass_context
def dlq_items(ctx: click.Context, limit: int) -> None:
    """Newest pending entries."""
    items = _run(ctx, lambda p: p.dlq.get_dlq_items(limit))
    _echo_json([item.model_dump(by_alias=True, mode="json") for item in items])


@cli.command("failed-items")
@click.option("--limit", type=click.IntRange(min=1), default=50, show_default=True)
@click.pass_context
def failed_items(ctx: click.Context, limit: int) -> None:
    """Newest entries in the failed store."""
    items = _run(ctx, lambda p: p.dlq.get_failed_items(limit))
    _echo_json([item.model_dump(by_alias=True, mode="json") for item in items])


@cli.command("process-dlq")
@click.pass_context
def process_dlq(ctx: click.Context) -> None:
    """Retry one batch of due entries now."""
    result = _run(ctx, lambda p: p.dlq.process_dlq())
    _echo_json(result.to_dict())


@cli.command("clear-dlq")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def clear_dlq(ctx: click.Context, yes: bool) -> None:
    """Delete every pending entry (recovery only)."""
    if not yes:
        click.confirm("Delete ALL pending DLQ entries?", abort=True)
    cleared = _run(ctx, lambda p: p.dlq.clear_dlq())
    click.secho(f"Cleared {cleared} DLQ item(s)", fg="yellow")


# =============================================================================
# CLCA
# =============================================================================


@cli.command()
@click.pass_context
def health(ctx: click.Context) -> None:
    """Probe the CLCA health endpoint and the DLQ database."""

    async def _probe(pipeline: Pipeline) -> dict[str, Any]:
        status = await pipeline.client.health_check()
        report: dict[str, Any] = {
            "status": status.status,
            "latencyMs": status.latency_ms,
            "statusCode": status.status_code,
            "environment": pipeline.settings.ENVIRONMENT,
            "dlqStore": "memory",
        }
        if isinstance(pipeline.store, PostgresDLQStore):
            ready, detail = await check_db_ready()
            report["dlqStore"] = "postgres"
            pool = get_pool_health()
            report["database"] = {
                "ready": ready,
                "detail": detail,
                "initAttempts": pool.init_attempts,
                "initDurationMs": pool.init_duration_ms,
            }
        return report

    report = _run(ctx, _probe)
    _echo_json(report)
    if report["status"] != "healthy":
        ctx.exit(EXIT_UNHEALTHY)


@cli.command()
@click.option(
    "--events",
    "events_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="JSON array of TTG events",
)
@click.option(
    "--games",
    "games_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="JSON array of TTG games",
)
@click.pass_context
def resync(ctx: click.Context, events_file: Optional[Path], games_file: Optional[Path]) -> None:
    """Send every visible event and game to CLCA."""
    if events_file is None and games_file is None:
        raise click.UsageError("Provide --events and/or --games")

    events = _load_records(events_file, Event)
    games = _load_records(games_file, Game)

    try:
        summary = _run(ctx, lambda p: p.orchestrator.resync_all(events, games))
    except IngestConfigurationError as e:
        click.secho(f"CLCA not configured: {e}", fg="red", err=True)
        ctx.exit(EXIT_UNHEALTHY)

    _echo_json(summary.to_dict())
    if summary.failed:
        ctx.exit(EXIT_RESYNC_FAILURES)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
