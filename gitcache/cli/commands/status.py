"""``gitcache status`` — tier availability and local cache usage."""

from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from gitcache.cli.context import get_settings
from gitcache.config import effective_max_cache_size
from gitcache.core.sizes import format_bytes
from gitcache.tiers.hierarchy import CacheHierarchy, store_from_settings

console = Console()


def _yes_no(value: bool | None) -> str:
    if value is None:
        return "[dim]-[/dim]"
    return "[green]Yes[/green]" if value else "[red]No[/red]"


def status_cmd(ctx: typer.Context) -> None:
    """Show each cache tier and the local cache size."""
    settings = get_settings(ctx)
    store = store_from_settings(settings)
    hierarchy = CacheHierarchy.from_settings(settings, store=store)
    try:
        statuses = hierarchy.status()
    finally:
        hierarchy.close()

    table = Table(title="Cache Tiers")
    table.add_column("Tier", style="cyan")
    table.add_column("Available", justify="center")
    table.add_column("Authenticated", justify="center")
    table.add_column("Detail", style="dim")
    for status in statuses:
        table.add_row(status.tier, _yes_no(status.available), _yes_no(status.authenticated), status.detail)
    console.print(table)

    total = store.evictor.total_size()
    console.print(
        f"Local cache: [cyan]{format_bytes(total)}[/cyan] of "
        f"{effective_max_cache_size(settings)} at {settings.tarballs_dir}"
    )
