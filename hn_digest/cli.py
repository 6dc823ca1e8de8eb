"""
Command-line interface for the HackerNews digest pipeline.

Uses Typer for commands and Rich for output. ``tick`` runs one orchestrator
pass (suitable for cron), ``schedule`` runs the interval trigger in-process,
``status`` and ``items`` inspect the item store. Environment variables are
loaded from a ``.env`` file when present.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

from dotenv import load_dotenv
import typer
from rich.console import Console
from rich.table import Table

from .app import build_pipeline, open_store
from .config import AppConfig, load_config
from .core.errors import HnDigestError, SystemicError
from .core.types import Stage
from .utils.tracing import flush, setup_langfuse
from .pipeline.orchestrator import TickReport
from .scheduler import Scheduler
from .utils.logging import setup_logging

app = typer.Typer(add_completion=False, help="HackerNews digest pipeline.")
console = Console()

_DEFAULT_CONFIG = Path("config.yaml")


@app.callback()
def main(
    ctx: typer.Context,
    config: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        envvar="HN_DIGEST_CONFIG",
        help="YAML config file (defaults to ./config.yaml when present).",
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Logging level."),
):
    """Load .env and configuration shared by all commands."""
    load_dotenv()
    if config is None and _DEFAULT_CONFIG.is_file():
        config = _DEFAULT_CONFIG
    try:
        cfg = load_config(str(config) if config else None)
    except HnDigestError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        raise typer.Exit(code=1) from exc
    if log_level:
        cfg.logging.level = log_level
    ctx.obj = cfg


@app.command()
def tick(ctx: typer.Context):
    """Run one pipeline tick (discover, extract, summarize, digest, notify)."""
    cfg: AppConfig = ctx.obj
    setup_logging(cfg.logging)
    setup_langfuse(cfg.langfuse)
    try:
        report = asyncio.run(_run_tick(cfg))
    except SystemicError as exc:
        console.print(f"[red]Tick failed:[/red] {exc}")
        raise typer.Exit(code=1) from exc
    finally:
        flush()
    _print_report(report)


@app.command()
def schedule(
    ctx: typer.Context,
    interval: float | None = typer.Option(
        None, "--interval", help="Seconds between ticks (overrides config)."
    ),
    max_ticks: int | None = typer.Option(
        None, "--max-ticks", help="Stop after starting this many ticks."
    ),
):
    """Run ticks on a fixed interval until interrupted."""
    cfg: AppConfig = ctx.obj
    if interval is not None:
        cfg.scheduler.interval_seconds = interval
    setup_logging(cfg.logging)
    setup_langfuse(cfg.langfuse)
    try:
        asyncio.run(_run_schedule(cfg, max_ticks))
    except SystemicError as exc:
        console.print(f"[red]Scheduler failed to start:[/red] {exc}")
        raise typer.Exit(code=1) from exc
    except KeyboardInterrupt:
        console.print("Scheduler stopped.")
    finally:
        flush()


@app.command()
def status(ctx: typer.Context):
    """Show item counts per stage and recent digests."""
    cfg: AppConfig = ctx.obj
    try:
        store = open_store(cfg)
    except SystemicError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    with store:
        counts = store.count_by_stage()
        digests = store.list_digests(limit=10)
        waiting = store.count_unattached_summarized()

    stage_table = Table(title="Items by stage")
    stage_table.add_column("Stage")
    stage_table.add_column("Count", justify="right")
    for stage in sorted(Stage, key=lambda s: (s.order, s.is_failed)):
        stage_table.add_row(stage.value, str(counts[stage]))
    console.print(stage_table)
    console.print(f"Summarized items waiting for a digest: {waiting} (min {cfg.digest.min_stories})")

    digest_table = Table(title="Recent digests")
    digest_table.add_column("Digest")
    digest_table.add_column("Items", justify="right")
    digest_table.add_column("Status")
    digest_table.add_column("Channels")
    for digest in digests:
        channels = ", ".join(
            f"{name}={delivery.status.value}({delivery.attempts})"
            for name, delivery in digest.deliveries.items()
        )
        digest_table.add_row(digest.id, str(len(digest.item_ids)), digest.status.value, channels)
    console.print(digest_table)


@app.command()
def items(
    ctx: typer.Context,
    stage: Stage | None = typer.Option(None, "--stage", "-s", help="Filter by stage."),
    limit: int = typer.Option(20, "--limit", "-n", min=1),
):
    """List items, most recently updated first."""
    cfg: AppConfig = ctx.obj
    try:
        store = open_store(cfg)
    except SystemicError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    with store:
        rows = store.list_items(stage=stage, limit=limit)

    table = Table(title=f"Items ({stage.value if stage else 'all stages'})")
    table.add_column("ID")
    table.add_column("Stage")
    table.add_column("Title", overflow="fold")
    table.add_column("Attempts", justify="right")
    table.add_column("Last error", overflow="fold")
    for item in rows:
        attempts = "/".join(str(count) for count in item.attempts.values())
        table.add_row(item.id, item.stage.value, item.title, attempts, item.last_error or "")
    console.print(table)


async def _run_tick(cfg: AppConfig) -> TickReport:
    pipeline = build_pipeline(cfg)
    try:
        return await pipeline.orchestrator.run_tick()
    finally:
        await pipeline.aclose()


async def _run_schedule(cfg: AppConfig, max_ticks: int | None) -> None:
    pipeline = build_pipeline(cfg)
    scheduler = Scheduler(pipeline.orchestrator.run_tick, cfg.scheduler.interval_seconds)
    try:
        await scheduler.run_forever(max_ticks=max_ticks)
    finally:
        await pipeline.aclose()


def _print_report(report: TickReport) -> None:
    table = Table(title=f"Tick {report.started_at:%Y-%m-%d %H:%M:%S} UTC")
    table.add_column("Stage")
    for column in ("Selected", "Succeeded", "Failed", "Deferred", "Conflicts"):
        table.add_column(column, justify="right")
    for name, stage in report.stages.items():
        if stage.skipped:
            table.add_row(name, "skipped", "", "", "", "")
            continue
        table.add_row(
            name,
            str(stage.selected),
            str(stage.succeeded),
            str(stage.failed),
            str(stage.deferred),
            str(stage.conflicts),
        )
    console.print(table)
    if report.discovery_error:
        console.print(f"[yellow]Discovery failed:[/yellow] {report.discovery_error}")
    else:
        console.print(f"Discovered {report.discovered} stories ({report.new_items} new)")
    if report.digest_created:
        console.print(f"Digest assembled: {report.digest_created}")
    for digest_id in report.delivery.delivered:
        console.print(f"[green]Delivered[/green] {digest_id}")
    for digest_id in report.delivery.partially_delivered:
        console.print(f"[yellow]Partially delivered[/yellow] {digest_id}")
    for digest_id in report.delivery.failed:
        console.print(f"[red]Delivery failed[/red] {digest_id}")
    if report.budget_exhausted:
        console.print("[yellow]Tick budget exhausted; remaining stages deferred.[/yellow]")
    console.print(f"Duration: {report.duration_seconds:.1f}s")


if __name__ == "__main__":
    app()
