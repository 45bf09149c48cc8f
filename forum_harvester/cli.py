"""CLI interface for the forum harvester using Typer."""

import asyncio
import logging

import typer
from rich import box
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .config import CrawlerSettings
from .fetcher import Fetcher
from .grouper import SEARCH_THRESHOLD, search_groups
from .models import ParsedTitle, ShowGroup
from .scheduler import CrawlScheduler
from .store import CatalogStore, StoreError
from .title_parser import parse_title
from .trackers import TrackerList
from .utils import console
from .writer import CatalogWriter

app = typer.Typer(
    name="forum-harvester",
    help="Crawl forum release threads into a normalized show catalog",
    add_completion=False,
)

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Route log records through Rich on the shared console."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


def _open_store(redis_url: str) -> CatalogStore:
    return CatalogStore.from_url(redis_url)


def _settings(**overrides) -> CrawlerSettings:
    """Environment settings with explicitly passed CLI options applied on top."""
    values = {key: value for key, value in overrides.items() if value is not None}
    try:
        return CrawlerSettings(**values)
    except ValueError as e:
        console.print(f"[red]Invalid configuration: {escape(str(e))}[/red]")
        raise typer.Exit(2)


def display_banner(settings: CrawlerSettings) -> None:
    pages = "unbounded" if settings.initial_pages == 0 else str(settings.initial_pages)
    banner = (
        f"FORUM HARVESTER {__version__}\n"
        f"Forum: {settings.forum_url}\n"
        f"Pages: {pages}  Concurrency: {settings.max_concurrency}"
    )
    console.print(Panel(banner, style="bold blue", box=box.DOUBLE))


def display_parsed_title(raw: str, parsed: ParsedTitle) -> None:
    """Display every parsed field of a title."""
    table = Table(title=raw, box=box.ROUNDED, show_header=True, header_style="bold magenta")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="white")

    def joined(values) -> str:
        return ", ".join(sorted(values)) or "-"

    episodes = "-"
    if parsed.episode_start is not None:
        episodes = str(parsed.episode_start)
        if parsed.episode_end != parsed.episode_start:
            episodes = f"{parsed.episode_start}-{parsed.episode_end}"

    table.add_row("Base name", parsed.base_show_name)
    table.add_row("Year", str(parsed.year) if parsed.year else "-")
    table.add_row("Season", f"{parsed.season}" + ("" if parsed.season_detected else " (default)"))
    table.add_row("Episodes", episodes)
    table.add_row("Resolutions", joined(parsed.resolutions))
    table.add_row("Languages", joined(parsed.languages))
    table.add_row("Codecs", joined(parsed.codecs))
    table.add_row("Audio", joined(parsed.audio_codecs))
    table.add_row("Quality", joined(parsed.quality_tags))
    table.add_row("Sizes", ", ".join(parsed.sizes) or "-")
    table.add_row("Subtitles", "Yes" if parsed.has_subtitles else "No")
    table.add_row("Display title", parsed.canonical_display_title)
    table.add_row("Catalog title", parsed.catalog_title)

    console.print(table)


def display_groups_table(groups: list[ShowGroup]) -> None:
    table = Table(title="Catalog Groups", box=box.ROUNDED, show_header=True, header_style="bold magenta")

    table.add_column("#", style="dim", width=4)
    table.add_column("Title", style="cyan", min_width=30)
    table.add_column("Group ID", style="dim")
    table.add_column("Seasons", style="green", width=10)
    table.add_column("Languages", style="yellow", width=12)
    table.add_column("Updated", style="white", width=20)

    for i, group in enumerate(groups, 1):
        table.add_row(
            str(i),
            group.display_title,
            group.group_id,
            ", ".join(str(season) for season in sorted(group.seasons)) or "-",
            ", ".join(sorted(group.languages)) or "-",
            group.last_updated.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


async def _harvest(settings: CrawlerSettings, purge: bool, forever: bool) -> dict[str, int]:
    store = _open_store(settings.redis_url)
    try:
        if purge:
            removed = await store.purge()
            console.print(f"[yellow]Purged {removed} keys before crawling[/yellow]")

        trackers = TrackerList(settings.trackers_url, settings.tracker_update_interval_hours)
        async with Fetcher(
            retries=settings.max_retries,
            delay=settings.request_delay,
            timeout=settings.request_timeout,
            recorder=store.record_failure,
        ) as fetcher:
            writer = CatalogWriter(store, trackers, settings.group_title_threshold)
            scheduler = CrawlScheduler(settings, store, fetcher, trackers, writer)
            if forever:
                await scheduler.run_forever()
            else:
                await scheduler.run_startup()
        return await store.counts()
    finally:
        await store.close()


def _print_counts(counts: dict[str, int]) -> None:
    table = Table(title="Catalog", box=box.SIMPLE, show_header=True, header_style="bold")
    table.add_column("Records", style="cyan")
    table.add_column("Count", style="green", justify="right")
    for name, count in counts.items():
        table.add_row(name.capitalize(), str(count))
    console.print(table)


FORUM_URL_OPTION = typer.Option(None, "--forum-url", envvar="FORUM_URL", help="Forum listing URL")
REDIS_URL_OPTION = typer.Option(None, "--redis-url", envvar="REDIS_URL", help="Redis connection URL")
PAGES_OPTION = typer.Option(
    None, "--pages", "-p", envvar="INITIAL_PAGES", help="Listing pages to crawl (0 = unbounded)"
)
CONCURRENCY_OPTION = typer.Option(
    None, "--concurrency", "-c", envvar="MAX_CONCURRENCY", help="Threads processed at once"
)
PURGE_OPTION = typer.Option(
    False, "--purge", envvar="PURGE_ON_START", help="Delete harvested keys before the first crawl"
)
LOG_LEVEL_OPTION = typer.Option("INFO", "--log-level", "-l", envvar="LOG_LEVEL", help="Logging level")


@app.command()
def run(
    forum_url: str | None = FORUM_URL_OPTION,
    redis_url: str | None = REDIS_URL_OPTION,
    pages: int | None = PAGES_OPTION,
    concurrency: int | None = CONCURRENCY_OPTION,
    purge: bool = PURGE_OPTION,
    log_level: str = LOG_LEVEL_OPTION,
):
    """
    Run the harvester continuously.

    Performs the startup crawl (tracker refresh, new pages, revisits) and
    then keeps the discovery, revisit and tracker timers running until
    interrupted.
    """
    configure_logging(log_level)
    settings = _settings(
        forum_url=forum_url,
        redis_url=redis_url,
        initial_pages=pages,
        max_concurrency=concurrency,
        purge_on_start=purge or None,
        log_level=log_level,
    )
    display_banner(settings)

    try:
        asyncio.run(_harvest(settings, settings.purge_on_start, forever=True))
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped.[/yellow]")
    except StoreError as e:
        console.print(f"[red]Store error: {e}[/red]")
        raise typer.Exit(1)


@app.command()
def crawl(
    forum_url: str | None = FORUM_URL_OPTION,
    redis_url: str | None = REDIS_URL_OPTION,
    pages: int | None = PAGES_OPTION,
    concurrency: int | None = CONCURRENCY_OPTION,
    purge: bool = PURGE_OPTION,
    log_level: str = LOG_LEVEL_OPTION,
):
    """Run a single startup crawl and print catalog counts."""
    configure_logging(log_level)
    settings = _settings(
        forum_url=forum_url,
        redis_url=redis_url,
        initial_pages=pages,
        max_concurrency=concurrency,
        purge_on_start=purge or None,
        log_level=log_level,
    )
    display_banner(settings)

    try:
        counts = asyncio.run(_harvest(settings, settings.purge_on_start, forever=False))
    except StoreError as e:
        console.print(f"[red]Store error: {e}[/red]")
        raise typer.Exit(1)

    console.print("[bold green]Crawl complete![/bold green]")
    _print_counts(counts)


@app.command()
def parse(title: str = typer.Argument(..., help="Release or thread title to parse")):
    """Show how a title is parsed and normalized."""
    display_parsed_title(title, parse_title(title))


@app.command()
def search(
    query: str = typer.Argument(..., help="Show name to look for"),
    threshold: float = typer.Option(
        SEARCH_THRESHOLD, "--threshold", "-t", help="Minimum title similarity (0-1)"
    ),
    redis_url: str | None = REDIS_URL_OPTION,
):
    """Fuzzy-search the catalog by show title."""
    settings = _settings(redis_url=redis_url)

    async def _search() -> list[ShowGroup]:
        store = _open_store(settings.redis_url)
        try:
            return search_groups(await store.list_groups(), query, threshold)
        finally:
            await store.close()

    try:
        groups = asyncio.run(_search())
    except StoreError as e:
        console.print(f"[red]Store error: {e}[/red]")
        raise typer.Exit(1)

    if not groups:
        console.print(f"[red]No groups found for {query!r}.[/red]")
        raise typer.Exit(1)

    display_groups_table(groups)


@app.command()
def stats(
    redis_url: str | None = REDIS_URL_OPTION,
    limit: int = typer.Option(10, "--limit", "-n", help="Recent failure events to show"),
):
    """Show catalog counts and the most recent failure events."""
    settings = _settings(redis_url=redis_url)

    async def _stats():
        store = _open_store(settings.redis_url)
        try:
            return await store.counts(), await store.recent_failures(limit)
        finally:
            await store.close()

    try:
        counts, failures = asyncio.run(_stats())
    except StoreError as e:
        console.print(f"[red]Store error: {e}[/red]")
        raise typer.Exit(1)

    _print_counts(counts)

    if not failures:
        console.print("[green]No recorded failures.[/green]")
        return

    table = Table(title="Recent Failures", box=box.ROUNDED, show_header=True, header_style="bold red")
    table.add_column("Time", style="dim", width=26)
    table.add_column("Level", style="yellow", width=8)
    table.add_column("Message", style="white", min_width=30)
    table.add_column("URL", style="cyan")
    for event in failures:
        table.add_row(
            event.get("timestamp", "-"),
            event.get("level", "-"),
            event.get("message", ""),
            event.get("url", ""),
        )
    console.print(table)


@app.command()
def version():
    """Show the version number."""
    console.print(f"forum-harvester version {__version__}")


if __name__ == "__main__":
    app()
