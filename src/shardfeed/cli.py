"""CLI for shardfeed."""

import time
from datetime import datetime
from typing import Optional

import typer

from shardfeed.errors import FeedError
from shardfeed.jobs import TaskKind
from shardfeed.models import GenerationStatus, Site, utc_now
from shardfeed.observability import configure_logging, get_logger
from shardfeed.orchestration import LocalScheduler
from shardfeed.service import FeedService, get_service

app = typer.Typer(
    name="shardfeed",
    help="shardfeed - Sharded product feed cache",
    no_args_is_help=True,
)

logger = get_logger(__name__)


@app.callback()
def main():
    """Configure logging before any command runs."""
    configure_logging()


# =============================================================================
# Helpers
# =============================================================================


def format_time_ago(moment: datetime, now: datetime | None = None) -> str:
    """Human-readable age, e.g. ``"5 minutes ago"``."""
    diff = int(((now or utc_now()) - moment).total_seconds())
    if diff < 60:
        return f"{diff} seconds ago"
    if diff < 3600:
        count, unit = diff // 60, "minute"
    elif diff < 86400:
        count, unit = diff // 3600, "hour"
    else:
        count, unit = diff // 86400, "day"
    return f"{count} {unit}{'' if count == 1 else 's'} ago"


def format_bytes(size: float) -> str:
    """Human-readable size, e.g. ``"1.5 KB"``."""
    units = ["B", "KB", "MB", "GB"]
    index = 0
    while size >= 1024 and index < len(units) - 1:
        size /= 1024
        index += 1
    return f"{round(size, 2):g} {units[index]}"


def _sites(service: FeedService, site_id: Optional[int]) -> list[Site]:
    if site_id is None:
        return service.catalog.list_sites()
    site = service.catalog.get_site(site_id)
    if site is None:
        typer.echo(f"Site with ID {site_id} not found.", err=True)
        raise typer.Exit(1)
    return [site]


def _drain(service: FeedService) -> None:
    """Run queued work in-process when there is no external worker."""
    if isinstance(service.scheduler, LocalScheduler):
        ran = service.scheduler.run_pending()
        if ran:
            typer.echo(f"Ran {ran} queued task(s) locally.")


def _header(title: str) -> None:
    typer.echo(title)
    typer.echo("=" * len(title))
    typer.echo()


# =============================================================================
# Generation Commands
# =============================================================================


@app.command("generate")
def generate(
    site_id: Optional[int] = typer.Option(None, "--site-id", help="Only this site"),
    force: bool = typer.Option(False, "--force", help="Regenerate even if the cache is valid"),
    sync: bool = typer.Option(False, "--sync", help="Run the rebuild in this process"),
):
    """Queue (or run) a full feed rebuild for one or all sites."""
    service = get_service()
    _header("Feed Generator")

    queued = 0
    for site in _sites(service, site_id):
        typer.echo(f"Processing site: {site.name} (ID: {site.id})")

        if not force and service.cache.get_assembled(site.id) is not None:
            meta = service.cache.get_meta(site.id)
            age = format_time_ago(meta.completed_at) if meta.completed_at else "unknown"
            typer.echo(f"  - Cache is valid (generated {age}). Use --force to regenerate.")
            continue

        if service.cache.get_meta(site.id).status is GenerationStatus.GENERATING:
            typer.echo("  - Feed is currently being generated. Skipping.")
            continue

        if sync:
            result = service.pipeline.run(site.id)
            typer.echo(
                f"  - Generated: status={result.status.value} items={result.item_count} skipped={result.skipped}"
            )
            if result.status is GenerationStatus.ERROR:
                typer.echo(f"  - Error: {result.error}", err=True)
            continue

        service.policy.request_rebuild(site.id, force=force)
        queued += 1
        typer.echo("  - Job queued successfully.")

    typer.echo()
    if queued:
        typer.echo(f"Queued {queued} feed generation job(s).")
        _drain(service)
    elif not sync:
        typer.echo("No jobs queued. All feeds are up to date.")


@app.command("regenerate-shard")
def regenerate_shard(
    site_id: int = typer.Argument(..., help="Site ID"),
    shard_index: int = typer.Argument(..., help="Shard index"),
    sync: bool = typer.Option(False, "--sync", help="Run in this process"),
):
    """Rebuild a single shard."""
    service = get_service()
    if sync:
        try:
            result = service.regenerator.regenerate(site_id, shard_index)
        except FeedError as e:
            typer.echo(f"Error: {e.message}", err=True)
            raise typer.Exit(1)
        state = "discarded (superseded by a full rebuild)" if result.stale else f"{result.item_count} items"
        typer.echo(f"Shard {shard_index} regenerated: {state}")
        return

    task_id = service.scheduler.enqueue(
        TaskKind.REGENERATE_SHARD.value, {"site_id": site_id, "shard_index": shard_index}
    )
    typer.echo(f"Shard {shard_index} regeneration queued: {task_id}")
    _drain(service)


@app.command("invalidate")
def invalidate(
    site_id: Optional[int] = typer.Option(None, "--site-id", help="Only this site"),
):
    """Invalidate the feed cache for one or all sites."""
    service = get_service()
    _header("Invalidating Feed Cache")
    for site in _sites(service, site_id):
        service.cache.invalidate_all(site.id)
        typer.echo(f"Cache invalidated for site: {site.name}")


# =============================================================================
# Status Commands
# =============================================================================


@app.command("status")
def status():
    """Show generation status for every site."""
    service = get_service()
    _header("Feed Status")

    for site in service.catalog.list_sites():
        meta = service.cache.get_meta(site.id)
        assembled = service.cache.get_assembled(site.id)

        typer.echo(f"Site: {site.name} (ID: {site.id})")
        typer.echo(f"  Status: {meta.status.value}")
        typer.echo(f"  Items: {meta.item_count}")
        if meta.completed_at:
            typer.echo(f"  Last Generated: {format_time_ago(meta.completed_at)}")
        if assembled is not None:
            typer.echo(f"  Cache: Valid ({format_bytes(len(assembled))})")
        else:
            typer.echo("  Cache: Expired or missing")
        if meta.error:
            typer.echo(f"  Error: {meta.error}")
        typer.echo()


@app.command("cache-status")
def cache_status():
    """Show shard-level cache status for every site."""
    service = get_service()
    _header("Feed Cache Status")

    for site in service.catalog.list_sites():
        summary = service.cache.get_status_summary(site.id)

        typer.echo(f"Site: {site.name} (ID: {site.id})")
        typer.echo(f"  Shards: {summary.present_shards}/{summary.shard_count} cached")
        typer.echo(f"  Items: {summary.total_items}")
        typer.echo(f"  Shard Size: {format_bytes(summary.total_size)}")
        if summary.assembled_present:
            typer.echo(f"  Assembled Feed: Valid ({format_bytes(summary.assembled_size)})")
        else:
            typer.echo("  Assembled Feed: Not cached")
        typer.echo(f"  Status: {summary.status.value}")

        newest, oldest = summary.newest_shard_updated_at, summary.oldest_shard_updated_at
        if newest:
            typer.echo(f"  Last Shard Update: {format_time_ago(newest)}")
        if oldest and oldest != newest:
            typer.echo(f"  Oldest Shard: {format_time_ago(oldest)}")
        if 0 < summary.present_shards < summary.shard_count:
            coverage = round(summary.present_shards / summary.shard_count * 100)
            typer.echo(f"  Coverage: {coverage}%")
        typer.echo()


# =============================================================================
# Worker Commands
# =============================================================================


@app.command("watchdog")
def watchdog():
    """Demote generations stuck in 'generating' past the timeout."""
    service = get_service()
    result = service.dispatch(TaskKind.DEMOTE_STALE_GENERATIONS.value, {})
    if result["demoted"]:
        typer.echo(f"Demoted stale generations for sites: {', '.join(map(str, result['demoted']))}")
    else:
        typer.echo("No stale generations found.")


@app.command("worker-run")
def worker_run(
    once: bool = typer.Option(False, "--once", help="Run one cycle and exit"),
    interval: float = typer.Option(60.0, help="Seconds between cycles"),
):
    """Local worker: periodic rebuild check and watchdog, draining the local queue."""
    service = get_service()
    if not isinstance(service.scheduler, LocalScheduler):
        typer.echo("worker-run drives the local scheduler; start Celery workers and beat instead.", err=True)
        raise typer.Exit(1)

    logger.info("local_worker_started", interval=interval)
    while True:
        service.dispatch(TaskKind.DEMOTE_STALE_GENERATIONS.value, {})
        if service.settings.schedule_rebuild_enabled:
            service.dispatch(TaskKind.SCHEDULED_REBUILD.value, {})
        ran = service.scheduler.run_pending()
        typer.echo(f"Ran {ran} task(s).")
        if once:
            break
        time.sleep(interval)


if __name__ == "__main__":
    app()
