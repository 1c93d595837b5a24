"""``gitcache mirror REPO`` — keep a bare mirror of a repository in the cache home."""

from __future__ import annotations

import typer
from rich.console import Console

from gitcache.cli.context import get_settings
from gitcache.core.mirror import mirror_repository
from gitcache.core.refs import ActivityLog, resolve_ref
from gitcache.errors import GitCacheError, ToolError

console = Console()


def mirror_cmd(
    ctx: typer.Context,
    repo: str = typer.Argument(..., help="Repository URL to mirror."),
    force: bool = typer.Option(
        False, "--force", "-f", help="Re-clone, prune and repack an existing mirror."
    ),
    ref: str = typer.Option(None, "--ref", help="Also resolve this branch or tag."),
) -> None:
    """Mirror a repository into the local cache home."""
    settings = get_settings(ctx)

    try:
        target = mirror_repository(
            repo, settings.mirrors_dir, force=force, timeout=settings.git_timeout
        )
    except ToolError as exc:
        console.print(f"[bold red]Mirror failed:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc

    if ref:
        try:
            sha = resolve_ref(
                repo,
                ref,
                timeout=settings.git_timeout,
                activity_log=ActivityLog(settings.activity_log_path),
            )
        except GitCacheError as exc:
            console.print(f"[yellow]Warning:[/yellow] could not resolve {ref!r}: {exc}")
        else:
            console.print(f"Resolved {ref} -> {sha}")

    console.print(f"[green]Mirrored[/green] {repo} -> {target}")
