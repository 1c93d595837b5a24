"""``gitcache prune`` — bound the local cache by evicting least-recently-used entries."""

from __future__ import annotations

import typer
from rich.console import Console

from gitcache.cli.context import get_settings
from gitcache.config import effective_max_cache_size, set_default_max_cache_size
from gitcache.core.evictor import Evictor
from gitcache.core.sizes import format_bytes, parse_size_to_bytes

console = Console()


def prune_cmd(
    ctx: typer.Context,
    max_size: str = typer.Option(
        None, "--max-size", "-s", help="Size ceiling such as 5GB or 500MB. Defaults to the configured value."
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be deleted."),
    set_default: bool = typer.Option(
        False, "--set-default", help="Persist --max-size as the default ceiling."
    ),
) -> None:
    """Delete the oldest cache entries until the cache fits the ceiling."""
    settings = get_settings(ctx)
    limit = effective_max_cache_size(settings, max_size)

    try:
        limit_bytes = parse_size_to_bytes(limit)
    except ValueError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc

    if set_default:
        if not max_size:
            console.print("[bold red]Error:[/bold red] --set-default requires --max-size")
            raise typer.Exit(code=1)
        set_default_max_cache_size(settings.config_path, max_size)
        console.print(f"Default cache size limit set to [cyan]{max_size}[/cyan]")

    result = Evictor(settings.tarballs_dir).prune(limit_bytes, dry_run=dry_run)

    console.print(
        f"Cache size: [cyan]{format_bytes(result.total_size)}[/cyan] "
        f"({result.entries_scanned} entries), limit {format_bytes(result.max_size_bytes)}"
    )
    if result.was_within_limit:
        console.print("[green]Cache is within the limit; nothing to prune.[/green]")
        return

    verb = "Would delete" if result.dry_run else "Deleted"
    console.print(
        f"{verb} [bold]{result.entries_deleted}[/bold] entries, "
        f"freeing [bold]{format_bytes(result.space_freed)}[/bold]"
    )
    for path in result.deleted_paths:
        console.print(f"  [dim]{path.name}[/dim]")
    if result.failed_paths:
        console.print(f"[yellow]{len(result.failed_paths)} entries could not be deleted.[/yellow]")
