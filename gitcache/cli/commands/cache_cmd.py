"""``gitcache cache list|clear`` — inspect or empty the local artifact cache."""

from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from gitcache.cli.context import get_settings
from gitcache.core.local_store import LocalArtifactStore
from gitcache.core.sizes import format_bytes
from gitcache.errors import StoreError

console = Console()

cache_app = typer.Typer(help="Inspect or clear the local artifact cache.", no_args_is_help=True)


@cache_app.command(name="list", help="List cached artifacts, least recently used first.")
def cache_list_cmd(ctx: typer.Context) -> None:
    settings = get_settings(ctx)
    entries = LocalArtifactStore(settings.tarballs_dir).list_entries()
    if not entries:
        console.print("[dim]Local cache is empty.[/dim]")
        return

    table = Table(title=f"Local Cache ({settings.tarballs_dir})")
    table.add_column("Commit", style="cyan")
    table.add_column("Platform")
    table.add_column("Size", justify="right")
    table.add_column("Last access")
    for entry in entries:
        table.add_row(
            entry.commit_sha[:12],
            entry.platform,
            format_bytes(entry.size_bytes),
            entry.last_access_time.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)
    console.print(
        f"{len(entries)} entries, {format_bytes(sum(e.size_bytes for e in entries))} total"
    )


@cache_app.command(name="clear", help="Delete every locally cached artifact.")
def cache_clear_cmd(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    settings = get_settings(ctx)
    if not yes:
        typer.confirm(f"Delete all cached artifacts in {settings.tarballs_dir}?", abort=True)
    try:
        LocalArtifactStore(settings.tarballs_dir).clear()
    except StoreError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc
    console.print("[green]Local cache cleared.[/green]")
