"""``gitcache build REPO REF`` — resolve one git dependency to a cached artifact."""

from __future__ import annotations

import typer
from rich.console import Console
from rich.panel import Panel

from gitcache.cli.context import get_settings
from gitcache.core.refs import ActivityLog, resolve_ref
from gitcache.core.resolver import ArtifactResolver
from gitcache.errors import BuildError, GitCacheError
from gitcache.models.artifacts import BuildOptions

console = Console()


def build_cmd(
    ctx: typer.Context,
    repo: str = typer.Argument(..., help="Repository URL (https, ssh, or github:owner/repo)."),
    ref: str = typer.Argument("HEAD", help="Commit SHA, branch or tag."),
    platform: str = typer.Option(
        None, "--platform", "-p", help="Target platform, e.g. linux-x64. Defaults to this host."
    ),
    force: bool = typer.Option(False, "--force", "-f", help="Rebuild even if cached."),
    skip_scripts: bool = typer.Option(
        False, "--skip-scripts", help="Pass --ignore-scripts to npm and skip prepare."
    ),
    raw_source: bool = typer.Option(
        False, "--allow-raw-source", help="Fall back to a raw git snapshot if the build fails."
    ),
) -> None:
    """Fetch or build the packed artifact for one commit."""
    settings = get_settings(ctx)

    try:
        sha = resolve_ref(
            repo,
            ref,
            timeout=settings.git_timeout,
            activity_log=ActivityLog(settings.activity_log_path),
        )
    except GitCacheError as exc:
        console.print(f"[bold red]Could not resolve {ref}:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc

    resolver = ArtifactResolver.from_settings(settings)
    try:
        resolved = resolver.resolve(
            repo,
            sha,
            platform,
            options=BuildOptions(force=force, skip_install_scripts=skip_scripts),
            allow_raw_source=raw_source,
        )
    except BuildError as exc:
        console.print(f"[bold red]Build failed ({exc.phase.value}):[/bold red] {exc}")
        raise typer.Exit(code=1) from exc
    except GitCacheError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc
    finally:
        resolver.close()

    console.print(
        Panel(
            f"[bold]Package:[/bold] {resolved.package_id}\n"
            f"[bold]Platform:[/bold] {resolved.platform}\n"
            f"[bold]Source:[/bold] {resolved.source}\n"
            f"[bold]Integrity:[/bold] {resolved.integrity}\n"
            f"[bold]Path:[/bold] {resolved.artifact_path}",
            title="[green]Artifact ready[/green]",
            border_style="green",
        )
    )
