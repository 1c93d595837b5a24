"""Access to the per-invocation settings stored on the Typer context."""

from __future__ import annotations

import typer

from gitcache.config import GitCacheSettings


def get_settings(ctx: typer.Context) -> GitCacheSettings:
    settings = ctx.obj if ctx is not None else None
    if isinstance(settings, GitCacheSettings):
        return settings
    return GitCacheSettings()
