"""npm lockfile scanning for git-sourced dependencies."""

from gitcache.lockfile.scan import scan_lockfile

__all__ = ["scan_lockfile"]
