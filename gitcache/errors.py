"""Error taxonomy shared by every gitcache component.

Propagation rules
-----------------
* ``KeyNormalizationError`` — malformed key input.  Callers degrade to a
  cache miss rather than blocking an install.
* ``BuildError`` — fatal to one key's resolution, never to its siblings.
* ``NotFoundError`` — a single-tier miss.  Drives fallback inside the
  hierarchy and is never surfaced to the caller.
* ``NotFoundAnywhereError`` — terminal miss across the whole hierarchy.
* ``StoreError`` — fatal for the local tier, logged and swallowed for others.
* ``PruneIOError`` — per-entry delete failure, logged and skipped.
"""

from __future__ import annotations

from enum import Enum


class GitCacheError(RuntimeError):
    """Base class for all gitcache errors."""


class KeyNormalizationError(GitCacheError, ValueError):
    """Raised when a repository URL / commit pair cannot form an ArtifactKey."""


class BuildPhase(str, Enum):
    """Phases of the source build pipeline, in execution order."""

    CHECKOUT = "checkout"
    INSTALL = "install"
    PACK = "pack"
    DIGEST = "digest"


class ToolError(GitCacheError):
    """Raised when an external tool exits non-zero, cannot start, or times out."""

    def __init__(
        self,
        command: list[str],
        *,
        exit_code: int | None = None,
        stderr: str = "",
        timed_out: bool = False,
    ) -> None:
        self.command = list(command)
        self.exit_code = exit_code
        self.stderr = stderr
        self.timed_out = timed_out
        if timed_out:
            detail = "timed out"
        elif exit_code is None:
            detail = "could not be started"
        else:
            detail = f"exited with code {exit_code}"
        message = f"Command {' '.join(self.command)!r} {detail}"
        if stderr:
            message += f": {stderr.strip()}"
        super().__init__(message)


class BuildError(GitCacheError):
    """Raised when a pipeline phase fails.

    Carries the failed ``phase`` plus the underlying tool's exit code and
    stderr so callers can report precisely what went wrong.
    """

    def __init__(
        self,
        phase: BuildPhase,
        message: str,
        *,
        exit_code: int | None = None,
        stderr: str = "",
    ) -> None:
        self.phase = BuildPhase(phase)
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(f"[{self.phase.value}] {message}")

    @classmethod
    def from_tool_error(
        cls, phase: BuildPhase, message: str, error: ToolError
    ) -> BuildError:
        return cls(
            phase,
            f"{message}: {error}",
            exit_code=error.exit_code,
            stderr=error.stderr,
        )


class NotFoundError(GitCacheError, LookupError):
    """Raised when a single tier does not hold a key (or holds it inconsistently)."""


class NotFoundAnywhereError(GitCacheError, LookupError):
    """Raised when no tier in the hierarchy can produce a key."""


class StoreError(GitCacheError):
    """Raised when writing an artifact into a tier fails."""


class PruneIOError(GitCacheError):
    """A single cache entry could not be deleted during pruning."""


class RegistryError(GitCacheError):
    """Raised when the remote registry cannot be reached or misbehaves."""


class LockfileError(GitCacheError):
    """Raised when a lockfile is missing or cannot be parsed."""


class RefResolutionError(GitCacheError):
    """Raised when a git ref cannot be resolved to a commit SHA."""
