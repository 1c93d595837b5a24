"""Main Typer application — imports and registers all CLI commands.

Entry point: ``gitcache`` (configured via pyproject.toml ``[project.scripts]``).

Commands: prepare, build, scan, mirror, prune, status, cache list|clear,
config get|set.
"""

from __future__ import annotations

import typer

from gitcache import __version__
from gitcache.cli.commands.build import build_cmd
from gitcache.cli.commands.cache_cmd import cache_app
from gitcache.cli.commands.config_cmd import config_app
from gitcache.cli.commands.mirror import mirror_cmd
from gitcache.cli.commands.prepare import prepare_cmd
from gitcache.cli.commands.prune import prune_cmd
from gitcache.cli.commands.scan import scan_cmd
from gitcache.cli.commands.status import status_cmd
from gitcache.config import GitCacheSettings
from gitcache.logging_setup import configure_logging

app = typer.Typer(
    name="gitcache",
    help="gitcache: build git dependencies once, reuse the packed artifact everywhere.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="prepare", help="Pre-build all git dependencies in a lockfile.")(prepare_cmd)
app.command(name="build", help="Fetch or build the artifact for one commit.")(build_cmd)
app.command(name="scan", help="List the git dependencies in a lockfile.")(scan_cmd)
app.command(name="mirror", help="Mirror a repository into the cache home.")(mirror_cmd)
app.command(name="prune", help="Evict least-recently-used artifacts.")(prune_cmd)
app.command(name="status", help="Show cache tiers and local usage.")(status_cmd)
app.add_typer(cache_app, name="cache")
app.add_typer(config_app, name="config")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"gitcache {__version__}")
        raise typer.Exit()


@app.callback()
def _initialize_cli(
    ctx: typer.Context,
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Trace every cache tier decision."
    ),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    """Load settings once and configure logging for the invocation."""
    settings = GitCacheSettings()
    if verbose:
        settings = settings.model_copy(update={"verbose": True})
    configure_logging(verbose=settings.verbose, level_name=settings.log_level)
    ctx.obj = settings


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
