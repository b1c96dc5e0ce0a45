"""Typer CLI application for the SERP refresh engine.

Provides commands to refresh keyword positions, inspect and clear the
failed-scrape retry queue, run the cron worker, and report status.
"""

import asyncio
import logging
import time
from typing import Any, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from src.utils.errors import ScraperConfigError

console = Console()
app = typer.Typer(
    name="serp",
    help="SERP refresh engine -- scrape Google positions for tracked keywords.",
    add_completion=False,
    no_args_is_help=True,
)

CONFIG_OPTION = typer.Option("config/settings.yaml", "--config", help="Path to the YAML config.")
VERBOSE_OPTION = typer.Option(False, "--verbose", "-v", help="Enable debug logging.")


def _setup_logging(verbose: bool = False) -> None:
    """Configure logging level and format."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _run_async(coro):
    """Run an async coroutine from synchronous CLI context."""
    return asyncio.run(coro)


def _get_app(config: str):
    """Lazy-import, initialise and return the application."""
    from src.app import SerpRefreshApp
    serp_app = SerpRefreshApp(config_path=config)
    serp_app.initialize()
    return serp_app


def _split_csv(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


def _print_keywords(keywords: list[dict[str, Any]], title: str) -> None:
    """Pretty-print refreshed keywords using Rich."""
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("ID", justify="right")
    table.add_column("Keyword", style="cyan", min_width=20)
    table.add_column("Domain")
    table.add_column("Device")
    table.add_column("Position", justify="right")
    table.add_column("Map Pack")
    table.add_column("Status", max_width=50)

    for kw in keywords:
        error = kw.get("last_update_error")
        if isinstance(error, dict) and error:
            status_display = "[red]✘ " + str(error.get("error", ""))[:45] + "[/red]"
        else:
            status_display = "[green]✔ ok[/green]"
        position = kw.get("position") or 0
        table.add_row(
            str(kw.get("id", "")),
            str(kw.get("keyword", "")),
            str(kw.get("domain", "")),
            str(kw.get("device", "")),
            str(position) if position else "-",
            "✔" if kw.get("map_pack_top3") is True else "",
            status_display,
        )
    console.print(table)


def _refresh(coro_factory, description: str, title: str) -> None:
    with Progress(SpinnerColumn(), TextColumn("[progress.description]{task.description}"), console=console) as progress:
        progress.add_task(description=description, total=None)
        try:
            refreshed = _run_async(coro_factory())
        except ScraperConfigError as exc:
            console.print(f"[red]{exc}[/red]")
            raise typer.Exit(code=1)

    if not refreshed:
        console.print("[yellow]No keywords to refresh.[/yellow]")
        return
    _print_keywords(refreshed, title=title)


# ------------------------------------------------------------------
# refresh
# ------------------------------------------------------------------
@app.command()
def refresh(
    domain: str = typer.Option("", "--domain", "-d", help="Comma-separated domains to refresh."),
    ids: str = typer.Option("", "--id", "-i", help="Comma-separated keyword ids to refresh."),
    config: str = CONFIG_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Refresh keyword positions (all keywords unless --domain or --id is given)."""
    _setup_logging(verbose)
    if domain and ids:
        console.print("[yellow]Use either --domain or --id, not both.[/yellow]")
        raise typer.Exit(code=1)

    serp_app = _get_app(config)
    tracker = serp_app.tracker

    if ids:
        try:
            keyword_ids = [int(part) for part in _split_csv(ids)]
        except ValueError:
            console.print("[red]Keyword ids must be integers.[/red]")
            raise typer.Exit(code=1)
        console.print(Panel(f"[bold cyan]Refreshing keyword(s): {', '.join(map(str, keyword_ids))}[/bold cyan]"))
        _refresh(lambda: tracker.refresh_keywords(keyword_ids), "Scraping keywords...", "Refreshed Keywords")
    elif domain:
        domains = _split_csv(domain)
        console.print(Panel(f"[bold cyan]Refreshing domain(s): {', '.join(domains)}[/bold cyan]"))
        _refresh(lambda: tracker.refresh_domains(domains), "Scraping keywords...", "Refreshed Keywords")
    else:
        console.print(Panel("[bold cyan]Refreshing all keywords[/bold cyan]"))
        _refresh(tracker.refresh_all, "Scraping keywords...", "Refreshed Keywords")


# ------------------------------------------------------------------
# retry
# ------------------------------------------------------------------
@app.command()
def retry(
    config: str = CONFIG_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Retry every keyword in the failed-scrape queue."""
    _setup_logging(verbose)
    tracker = _get_app(config).tracker
    console.print(Panel("[bold cyan]Retrying failed scrapes[/bold cyan]"))
    _refresh(tracker.retry_failed, "Retrying keywords...", "Retried Keywords")


# ------------------------------------------------------------------
# queue
# ------------------------------------------------------------------
@app.command()
def queue(
    config: str = CONFIG_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Show the keyword ids waiting in the failed-scrape queue."""
    _setup_logging(verbose)
    retry_queue = _get_app(config).tracker.retry_queue
    queued = retry_queue.read()
    if not queued:
        console.print("[green]Failed-scrape queue is empty.[/green]")
        return
    console.print(f"[bold]{len(queued)}[/bold] keyword(s) queued in {retry_queue.path}:")
    console.print(", ".join(str(keyword_id) for keyword_id in queued))


@app.command(name="clear-queue")
def clear_queue(
    config: str = CONFIG_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Empty the failed-scrape queue."""
    _setup_logging(verbose)
    _get_app(config).tracker.retry_queue.clear()
    console.print("[green]✔[/green] Failed-scrape queue cleared.")


# ------------------------------------------------------------------
# schedule
# ------------------------------------------------------------------
@app.command()
def schedule(
    config: str = CONFIG_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Run the cron worker: scheduled refreshes and failed-scrape retries."""
    _setup_logging(verbose)
    serp_app = _get_app(config)
    try:
        scheduler = serp_app.start_scheduler()
    except ValueError as exc:
        console.print(f"[red]Invalid schedule: {exc}[/red]")
        raise typer.Exit(code=1)

    table = Table(title="Scheduled Jobs", show_header=True, header_style="bold magenta")
    table.add_column("Job", style="cyan")
    table.add_column("Trigger")
    table.add_column("Next Run")
    for job in scheduler.list_jobs():
        table.add_row(job["id"], job["trigger"], job["next_run_time"] or "-")
    console.print(table)
    console.print("Cron worker running. Press Ctrl+C to stop.")

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("\nStopping scheduler...")
    finally:
        scheduler.stop()


# ------------------------------------------------------------------
# status
# ------------------------------------------------------------------
@app.command()
def status(
    config: str = CONFIG_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Show health status of the database, scraper settings and retry queue."""
    _setup_logging(verbose)
    report = _get_app(config).get_status()

    table = Table(title="SERP Refresh Engine Status", show_header=True, header_style="bold magenta")
    table.add_column("Component", style="cyan")
    table.add_column("Status")
    table.add_column("Details")
    for component, info in report.items():
        state = info.get("status", "unknown")
        if state == "ok":
            state_display = "[green]✔ ok[/green]"
        elif state == "warning":
            state_display = "[yellow]○ warning[/yellow]"
        else:
            state_display = "[red]✘ " + state + "[/red]"
        table.add_row(component, state_display, str(info.get("details", "")))
    console.print(table)


def main(argv: Optional[list[str]] = None) -> None:
    """Console-script entry point."""
    app(args=argv)


if __name__ == "__main__":
    main()
