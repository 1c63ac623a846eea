"""CLI entry point for the mailbox watcher."""

import asyncio
import logging
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from rich import box
from rich.console import Console
from rich.table import Table

from mailwatch.agent.watcher import CycleReport, configure_logging, open_watcher
from mailwatch.config import ConfigError, Settings
from mailwatch.storage.dedup import DedupStore

logger = logging.getLogger(__name__)
console = Console()

_processed_file_option = click.option(
    "--file",
    "processed_file",
    type=click.Path(path_type=Path),
    envvar="PROCESSED_FILE",
    default="processedMails.json",
    show_default=True,
    help="Dedup store location.",
)


@click.group()
def cli() -> None:
    """Watch an Exchange mailbox and alert Slack on incident reports."""
    load_dotenv()


@cli.command()
def run() -> None:
    """Run the watcher until interrupted."""
    from mailwatch.agent.watcher import main

    main()


@cli.command()
def check() -> None:
    """Run a single sync cycle and print what happened."""
    try:
        settings = Settings.from_env()
    except ConfigError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        sys.exit(1)

    configure_logging(settings.log_dir, level=logging.WARNING)
    report = asyncio.run(_check_once(settings))
    _print_report(report)
    if report is None or report.error:
        sys.exit(1)


async def _check_once(settings: Settings) -> CycleReport | None:
    async with open_watcher(settings) as watcher:
        return await watcher.run_cycle()


def _print_report(report: CycleReport | None) -> None:
    if report is None:
        console.print("[yellow]Another cycle is already running.[/yellow]")
        return
    if report.error:
        console.print(f"[red]Cycle failed:[/red] {report.error}")
        return

    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    for column in ("Found", "Skipped", "Recorded", "Alerts", "Failed"):
        table.add_column(column, justify="right")
    table.add_row(
        str(report.found),
        str(report.skipped),
        str(report.recorded),
        str(report.alerts),
        str(report.failed),
    )
    console.print(table)


@cli.command()
@_processed_file_option
def processed(processed_file: Path) -> None:
    """List message ids already handled."""
    store = DedupStore.load(processed_file)
    if not len(store):
        console.print(f"[yellow]No processed messages recorded in {processed_file}.[/yellow]")
        return

    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("#", style="dim", width=4)
    table.add_column("Message ID")
    for i, message_id in enumerate(store, start=1):
        table.add_row(str(i), message_id)
    console.print(table)
    console.print(f"\n  [dim]{len(store)} id(s) in {processed_file}[/dim]")


@cli.command()
@click.argument("message_id")
@_processed_file_option
def forget(message_id: str, processed_file: Path) -> None:
    """Remove MESSAGE_ID from the dedup store so the next cycle handles it again."""
    store = DedupStore.load(processed_file)
    if store.discard(message_id):
        console.print(f"Forgot [bold]{message_id}[/bold].")
    else:
        console.print(f"[yellow]{message_id} was not in {processed_file}.[/yellow]")
        sys.exit(1)
