"""Bare mirror clones of dependency repositories.

Each repository is mirrored under ``<home>/mirrors/<sha256 of url>`` with
``git clone --mirror``.  A forced refresh updates the mirror, prunes
deleted refs and repacks it into a single pack.
"""

from __future__ import annotations

import hashlib
import logging
import shutil
from pathlib import Path

from gitcache.core.process import ToolRunner, run_tool

logger = logging.getLogger(__name__)


def mirror_path(root: Path, repo_url: str) -> Path:
    """Directory holding the mirror of *repo_url* below *root*."""
    return root / hashlib.sha256(repo_url.encode("utf-8")).hexdigest()


def clone_mirror(
    repo_url: str, target: Path, *, timeout: float, runner: ToolRunner = run_tool
) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    runner(["git", "clone", "--mirror", repo_url, str(target)], timeout=timeout)


def update_and_prune_mirror(
    target: Path, *, timeout: float, runner: ToolRunner = run_tool
) -> None:
    runner(["git", "-C", str(target), "remote", "update", "--prune"], timeout=timeout)


def repack_repository(target: Path, *, timeout: float, runner: ToolRunner = run_tool) -> None:
    runner(["git", "-C", str(target), "repack", "-ad"], timeout=timeout)


def mirror_repository(
    repo_url: str,
    root: Path,
    *,
    force: bool = False,
    timeout: float = 120.0,
    runner: ToolRunner = run_tool,
) -> Path:
    """Ensure a mirror of *repo_url* exists under *root* and return its path.

    An existing mirror is reused as is.  With *force* the mirror is
    re-cloned from scratch, then updated and repacked.

    Raises
    ------
    ToolError
        If any git step fails.
    """
    target = mirror_path(root, repo_url)
    if force and target.exists():
        logger.debug("Removing existing mirror %s", target)
        shutil.rmtree(target)

    if target.exists():
        logger.debug("Mirror of %s already present at %s", repo_url, target)
    else:
        logger.info("Mirroring %s into %s", repo_url, target)
        clone_mirror(repo_url, target, timeout=timeout, runner=runner)

    if force:
        update_and_prune_mirror(target, timeout=timeout, runner=runner)
        repack_repository(target, timeout=timeout, runner=runner)
    return target
