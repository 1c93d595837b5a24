"""``gitcache config get|set KEY`` — read or change persisted preferences."""

from __future__ import annotations

import typer
from rich.console import Console

from gitcache.cli.context import get_settings
from gitcache.config import load_user_config, set_default_max_cache_size
from gitcache.core.sizes import parse_size_to_bytes

console = Console()

config_app = typer.Typer(help="Read or change persisted configuration.", no_args_is_help=True)

SUPPORTED_KEYS = ("max-cache-size",)


def _check_key(key: str) -> None:
    if key not in SUPPORTED_KEYS:
        console.print(
            f"[bold red]Unknown config key:[/bold red] {key} "
            f"(supported: {', '.join(SUPPORTED_KEYS)})"
        )
        raise typer.Exit(code=1)


@config_app.command(name="get", help="Print a configuration value.")
def config_get_cmd(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Configuration key."),
) -> None:
    _check_key(key)
    config = load_user_config(get_settings(ctx).config_path)
    console.print(config.max_cache_size)


@config_app.command(name="set", help="Persist a configuration value.")
def config_set_cmd(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Configuration key."),
    value: str = typer.Argument(..., help="New value, e.g. 10GB."),
) -> None:
    _check_key(key)
    try:
        parse_size_to_bytes(value)
    except ValueError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc
    set_default_max_cache_size(get_settings(ctx).config_path, value)
    console.print(f"{key} set to [cyan]{value}[/cyan]")
