"""Logging configuration for the gitcache command line.

Library modules only create module loggers; handlers are installed here,
once, by the CLI.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

__all__ = ["configure_logging", "err_console"]

PACKAGE_LOGGER = "gitcache"

err_console = Console(stderr=True)


class _ManagedRichHandler(RichHandler):
    """Marker subclass so repeated configuration replaces rather than stacks."""


def _resolve_level(level_name: str) -> int:
    level = logging.getLevelName(level_name.upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(*, verbose: bool = False, level_name: str = "INFO") -> None:
    """Attach a Rich handler to the ``gitcache`` logger.

    ``verbose`` forces DEBUG, which traces every tier decision.
    """
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(package_logger.handlers):
        if isinstance(handler, _ManagedRichHandler):
            package_logger.removeHandler(handler)

    handler = _ManagedRichHandler(
        console=err_console,
        rich_tracebacks=verbose,
        show_path=False,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    package_logger.addHandler(handler)
    package_logger.setLevel(logging.DEBUG if verbose else _resolve_level(level_name))
