"""``gitcache scan`` — list the git dependencies recorded in a lockfile."""

from __future__ import annotations

import json
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from gitcache.cli.context import get_settings
from gitcache.core.refs import ActivityLog, resolve_git_references
from gitcache.errors import LockfileError
from gitcache.lockfile.scan import scan_lockfile

console = Console()


def scan_cmd(
    ctx: typer.Context,
    lockfile: Path = typer.Option(
        Path("package-lock.json"), "--lockfile", "-l", help="Path to package-lock.json."
    ),
    resolve: bool = typer.Option(
        True, "--resolve/--no-resolve", help="Resolve each reference to a commit SHA."
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON."),
) -> None:
    """Show the git dependencies in a lockfile and the commits they point at."""
    settings = get_settings(ctx)

    try:
        scan = scan_lockfile(lockfile)
    except LockfileError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc

    dependencies = scan.dependencies
    if resolve and dependencies:
        dependencies = resolve_git_references(
            dependencies,
            timeout=settings.git_timeout,
            activity_log=ActivityLog(settings.activity_log_path),
        )

    if as_json:
        payload = {
            "lockfile": str(lockfile),
            "lockfileVersion": scan.lockfile_version,
            "gitDependencies": [dep.model_dump() for dep in dependencies],
            "summary": {
                "total": len(dependencies),
                "resolved": sum(1 for dep in dependencies if dep.resolved_sha),
            },
        }
        typer.echo(json.dumps(payload, indent=2))
        return

    if not dependencies:
        console.print("[dim]No git dependencies found.[/dim]")
        return

    table = Table(title=f"Git Dependencies (lockfile v{scan.lockfile_version})")
    table.add_column("Package", style="cyan")
    table.add_column("Reference")
    table.add_column("Commit")
    table.add_column("URL")

    for dep in dependencies:
        commit = dep.resolved_sha[:8] if dep.resolved_sha else "[yellow]unresolved[/yellow]"
        table.add_row(dep.name, dep.reference, commit, dep.preferred_url)

    console.print(table)
    resolved = sum(1 for dep in dependencies if dep.resolved_sha)
    console.print(f"Total: {len(dependencies)}  Resolved: {resolved}")
