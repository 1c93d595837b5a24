"""``gitcache prepare`` — pre-build every git dependency in a lockfile.

Scans ``package-lock.json``, resolves each dependency's ref to a commit SHA,
then resolves all of them concurrently through the cache hierarchy, building
whatever is not cached yet.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from gitcache.cli.context import get_settings
from gitcache.core.refs import ActivityLog, resolve_git_references
from gitcache.core.resolver import ArtifactResolver
from gitcache.errors import LockfileError
from gitcache.lockfile.scan import scan_lockfile
from gitcache.models.artifacts import BuildOptions, BuildRequest

console = Console()


def prepare_cmd(
    ctx: typer.Context,
    lockfile: Path = typer.Option(
        Path("package-lock.json"), "--lockfile", "-l", help="Path to package-lock.json."
    ),
    force: bool = typer.Option(False, "--force", "-f", help="Rebuild even if cached."),
    skip_scripts: bool = typer.Option(
        False, "--skip-scripts", help="Pass --ignore-scripts to npm and skip prepare."
    ),
    raw_source: bool = typer.Option(
        False, "--allow-raw-source", help="Fall back to raw git snapshots for failed builds."
    ),
) -> None:
    """Build (or fetch) artifacts for all git dependencies in a lockfile."""
    settings = get_settings(ctx)

    try:
        scan = scan_lockfile(lockfile)
    except LockfileError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc

    if not scan.has_git_dependencies:
        console.print("[dim]No git dependencies found.[/dim]")
        return

    console.print(
        f"Found [cyan]{len(scan.dependencies)}[/cyan] git dependencies "
        f"(lockfile v{scan.lockfile_version})"
    )
    dependencies = resolve_git_references(
        scan.dependencies,
        timeout=settings.git_timeout,
        activity_log=ActivityLog(settings.activity_log_path),
    )

    unresolved = [dep for dep in dependencies if dep.resolved_sha is None]
    requests = [
        BuildRequest(repo_url=dep.transport_url, commit_sha=dep.resolved_sha, name=dep.name)
        for dep in dependencies
        if dep.resolved_sha is not None
    ]

    resolver = ArtifactResolver.from_settings(settings)
    try:
        outcomes = resolver.resolve_batch(
            requests,
            options=BuildOptions(force=force, skip_install_scripts=skip_scripts),
            allow_raw_source=raw_source,
        )
    finally:
        resolver.close()

    table = Table(title="Git Dependencies")
    table.add_column("Package", style="cyan")
    table.add_column("Commit")
    table.add_column("Source")
    table.add_column("Status", justify="center")

    for outcome in outcomes:
        commit = outcome.request.commit_sha[:8]
        if outcome.ok and outcome.resolved is not None:
            table.add_row(outcome.request.label, commit, outcome.resolved.source, "[green]OK[/green]")
        else:
            phase = outcome.phase.value if outcome.phase else "error"
            table.add_row(outcome.request.label, commit, "-", f"[red]FAILED ({phase})[/red]")
    for dep in unresolved:
        table.add_row(dep.name, dep.reference, "-", "[yellow]UNRESOLVED[/yellow]")

    console.print(table)

    failed = sum(1 for outcome in outcomes if not outcome.ok) + len(unresolved)
    if failed:
        console.print(f"[bold red]{failed} of {len(dependencies)} dependencies failed.[/bold red]")
        raise typer.Exit(code=1)
    console.print(f"[bold green]All {len(outcomes)} dependencies ready.[/bold green]")
