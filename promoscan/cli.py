"""Command line entry point for Promoscan."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import click
from rich.console import Console
from rich.table import Table

from promoscan.dependencies import (
    close_dependencies,
    get_scan_service,
    get_settings,
    reset_cached_dependencies,
)
from promoscan.errors import QuotaExceededError, ScanError
from promoscan.logging_config import configure_application_logging
from promoscan.services.channel_scan_service import ChannelScanService

console = Console()

T = TypeVar("T")


def _run(operation: Callable[[ChannelScanService], Awaitable[T]]) -> T:
    configure_application_logging(get_settings())

    async def _invoke() -> T:
        try:
            return await operation(get_scan_service())
        finally:
            await close_dependencies()

    try:
        return asyncio.run(_invoke())
    except QuotaExceededError as exc:
        console.print(f"[red]{exc}[/red]")
        console.print(f"Quota resets at [cyan]{exc.status.resets_at}[/cyan]")
        raise SystemExit(2) from exc
    except ScanError as exc:
        console.print(f"[red]{exc}[/red]")
        raise SystemExit(1) from exc
    finally:
        reset_cached_dependencies()


@click.group()
@click.version_option(version="0.1.0")
def main():
    """Promoscan - sponsor link analysis for YouTube channels."""


@main.command()
def quota():
    """Show today's YouTube API quota usage."""
    status = _run(lambda service: service.quota_status())

    color = "red" if status.is_exhausted else "yellow" if status.is_low else "green"
    console.print(f"\n[bold]Quota for {status.date_utc} (UTC)[/bold]")
    console.print(
        f"  Used: [{color}]{status.used}[/{color}] / {status.limit} ({status.percent_used}%)"
    )
    console.print(f"  Usable remaining: {status.usable_remaining}")
    console.print(f"  Resets at: {status.resets_at}\n")


@main.command()
@click.argument("url")
@click.option("--filter", "domain_filter", default=None, help="Only links under this domain.")
@click.option("--months", type=int, default=None, help="Look back this many months (max 36).")
@click.option("--max-videos", type=int, default=None, help="Scan at most this many uploads.")
@click.option("--no-check", is_flag=True, help="List links without probing them.")
def links(
    url: str,
    domain_filter: str | None,
    months: int | None,
    max_videos: int | None,
    no_check: bool,
):
    """Find broken links in a channel's video descriptions."""
    payload = _run(
        lambda service: service.check_links(
            url,
            domain_filter=domain_filter,
            check=not no_check,
            max_videos=max_videos,
            months=months,
        )
    )

    channel = payload["channel"]
    summary = payload["summary"]
    console.print(f"\n[bold cyan]{channel['title']}[/bold cyan] ({channel['id']})")
    console.print(
        f"  Videos scanned: {payload['video_count']}  Links: {summary['total']}  "
        f"Broken: [red]{summary['broken']}[/red]  Unchecked: {summary['unchecked']}\n"
    )

    if payload["broken_links"]:
        console.print(_links_table("Broken links", payload["broken_links"], show_error=True))
    if payload["working_links"]:
        console.print(_links_table("Working links", payload["working_links"], show_error=False))


@main.command()
@click.argument("url")
@click.option("--limit", type=int, default=20, show_default=True, help="Promotions to show.")
def analyze(url: str, limit: int):
    """Show the most frequently promoted links for a channel."""
    payload = _run(lambda service: service.analyze_promotions(url))

    console.print(
        f"\n[bold cyan]{payload['channel_id']}[/bold cyan] "
        f"since {payload['since_iso']} ({payload['video_count']} videos)\n"
    )
    if not payload["promotions"]:
        console.print("[yellow]No promotions found[/yellow]")
        return

    table = Table(title="Top promotions")
    table.add_column("Count", justify="right")
    table.add_column("Domain", style="cyan")
    table.add_column("Product")
    table.add_column("URL", overflow="fold")
    for promotion in payload["promotions"][:limit]:
        table.add_row(
            str(promotion["occurrences"]),
            promotion["domain"],
            promotion["product_name"] or "-",
            promotion["url"],
        )
    console.print(table)


@main.command()
@click.argument("domain")
def domain(domain: str):
    """Find popular videos whose descriptions mention a domain."""
    payload = _run(lambda service: service.search_domain(domain))

    console.print(
        f"\n[bold cyan]{payload['domain']}[/bold cyan]: "
        f"{payload['total_found']} matching videos\n"
    )
    table = Table()
    table.add_column("Views", justify="right")
    table.add_column("Channel", style="cyan")
    table.add_column("Title")
    for video in payload["videos"]:
        table.add_row(f"{video['view_count']:,}", video["channel_title"], video["title"])
    console.print(table)


def _links_table(title: str, rows: list[dict[str, Any]], *, show_error: bool) -> Table:
    table = Table(title=title)
    table.add_column("Seen", justify="right")
    table.add_column("Status", justify="right")
    table.add_column("URL", overflow="fold")
    if show_error:
        table.add_column("Error", style="red")
    for row in rows:
        status = "unchecked" if row.get("unchecked") else str(row.get("status") or "-")
        cells = [str(row["occurrences"]), status, row["url"]]
        if show_error:
            cells.append(row.get("error") or "-")
        table.add_row(*cells)
    return table


if __name__ == "__main__":
    main()
