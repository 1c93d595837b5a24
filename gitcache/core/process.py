"""Bounded-timeout runner for external tools (git, npm).

All subprocess calls in gitcache go through ``run_tool`` so that every
invocation has a timeout and every failure surfaces as a ``ToolError``
carrying the exit code and stderr.  Text output is decoded as UTF-8 with
replacement characters, so invalid bytes from a tool never escape as a
``UnicodeDecodeError``.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Protocol

from gitcache.errors import ToolError

logger = logging.getLogger(__name__)


class ToolRunner(Protocol):
    """Callable signature shared by ``run_tool`` and test doubles."""

    def __call__(
        self,
        args: list[str],
        *,
        cwd: Path | None = None,
        timeout: float,
        binary: bool = False,
    ) -> subprocess.CompletedProcess:
        ...


def _decode(stream: bytes | str | None) -> str:
    if stream is None:
        return ""
    if isinstance(stream, bytes):
        return stream.decode("utf-8", errors="replace")
    return stream


def run_tool(
    args: list[str],
    *,
    cwd: Path | None = None,
    timeout: float,
    binary: bool = False,
) -> subprocess.CompletedProcess:
    """Run *args* and return the completed process.

    Parameters
    ----------
    args:
        Command and arguments; never passed through a shell.
    cwd:
        Working directory.
    timeout:
        Seconds before the process is killed and ``ToolError(timed_out=True)``
        is raised.
    binary:
        Return stdout as ``bytes`` (e.g. ``git archive``) instead of text.

    Raises
    ------
    ToolError
        On a non-zero exit, a missing executable, or a timeout.
    """
    logger.debug("Running %s (cwd=%s, timeout=%ss)", " ".join(args), cwd, timeout)
    try:
        result = subprocess.run(
            args,
            cwd=str(cwd) if cwd is not None else None,
            capture_output=True,
            timeout=timeout,
            check=False,
            stdin=subprocess.DEVNULL,
        )
    except subprocess.TimeoutExpired as exc:
        raise ToolError(args, stderr=_decode(exc.stderr), timed_out=True) from exc
    except OSError as exc:
        raise ToolError(args, stderr=str(exc)) from exc

    stderr = _decode(result.stderr)
    if result.returncode != 0:
        raise ToolError(args, exit_code=result.returncode, stderr=stderr)
    stdout = result.stdout if binary else _decode(result.stdout)
    return subprocess.CompletedProcess(args, result.returncode, stdout=stdout, stderr=stderr)
