"""Command line entry point for running catalog syncs without the HTTP API."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from backend.catalog_sync.dependencies import (
    get_content_repository,
    get_new_to_streaming_service,
    get_quota_tracker,
    get_settings,
    get_sync_service,
)
from backend.catalog_sync.logging_config import configure_application_logging
from backend.catalog_sync.models.catalog_records import SyncResult
from backend.catalog_sync.services.catalog_sync_service import SyncOptions

console = Console()

_ACTION_STYLES = {
    "added": "green",
    "skipped_existing": "dim",
    "filtered_out": "yellow",
    "error": "red",
}


@click.group()
@click.version_option(version="0.1.0")
def main() -> None:
    """Catalog sync - keep the local streaming catalog in step with the provider."""
    configure_application_logging(get_settings())


@main.command()
@click.option("--count", "-n", type=int, default=None, help="New titles to examine this run.")
@click.option("--platform", "-p", "platforms", multiple=True, help="Platform name (repeatable).")
@click.option("--min-rating", type=float, default=0.0, show_default=True)
def sync(count: int | None, platforms: tuple[str, ...], min_rating: float) -> None:
    """Search, enrich and store new titles."""
    settings = get_settings()
    unknown = [name for name in platforms if name not in settings.sync_platform_source_ids]
    if unknown:
        raise click.BadParameter(f"unknown platforms: {', '.join(unknown)}", param_hint="--platform")

    options = SyncOptions(
        titles_to_sync_count=count if count is not None else settings.sync_default_titles_count,
        selected_platforms=platforms or tuple(settings.sync_default_platforms),
        min_rating=min_rating,
    )
    _print_result(get_sync_service().run(options))


@main.command()
@click.option("--max-titles", type=int, default=None, help="Stored titles to re-check.")
def validate(max_titles: int | None) -> None:
    """Re-check stored titles and drop ones the provider no longer knows."""
    limit = max_titles if max_titles is not None else get_settings().sync_validate_batch_size
    _print_result(get_sync_service().validate_existing(max_titles=limit))


@main.command(name="new-to-streaming")
def new_to_streaming() -> None:
    """Store titles that recently arrived on the configured platforms."""
    summary = get_new_to_streaming_service().run()
    console.print(
        f"[green]{summary.new_titles_added} added[/green], "
        f"{summary.duplicates_skipped} duplicates skipped, "
        f"{summary.total_processed} processed, "
        f"{summary.api_calls_used} API calls"
    )


@main.command()
def quota() -> None:
    """Show this month's provider request usage."""
    snapshot = get_quota_tracker().usage()
    style = "red" if snapshot.remaining == 0 else "green"
    console.print(
        f"{snapshot.month}: {snapshot.requests_used}/{snapshot.monthly_limit} used, "
        f"[{style}]{snapshot.remaining} remaining[/{style}]"
    )


@main.command(name="list")
@click.option("--decade", default=None, help="Decade label such as 1980s.")
@click.option("--limit", type=int, default=20, show_default=True)
@click.option("--include-hidden", is_flag=True, help="Also list titles kept out of listings.")
def list_content(decade: str | None, limit: int, include_hidden: bool) -> None:
    """List stored titles, best rated first."""
    rows = get_content_repository().list_content(
        decade=decade,
        limit=limit,
        include_hidden=include_hidden,
    )
    if not rows:
        console.print("(none)")
        return

    table = Table("Title", "Year", "Type", "Rating")
    for row in rows:
        content = row.content
        rating = "-" if content.average_rating is None else f"{content.average_rating:.1f}"
        table.add_row(content.title, str(content.year), content.content_type, rating)
    console.print(table)


def _print_result(result: SyncResult) -> None:
    header_style = "green" if result.state == "done" else "red"
    console.print(f"[bold {header_style}]{result.state.upper()}[/bold {header_style}] {result.summary}")
    for outcome in result.titles_processed:
        style = _ACTION_STYLES[outcome.action]
        reason = f" ({outcome.reason})" if outcome.reason else ""
        console.print(f"  [{style}]{outcome.action}[/{style}] {outcome.title} {outcome.year or ''}{reason}")
    for error in result.errors:
        console.print(f"[red]error:[/red] {error}")


if __name__ == "__main__":
    main()
