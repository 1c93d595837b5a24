"""Scanner for git-sourced dependencies in ``package-lock.json``.

Supports lockfile v1 (nested ``dependencies``) and v2+ (flat ``packages``
keyed by ``node_modules/...`` paths).  URLs declared in the sibling
``package.json`` take precedence over the lockfile's ``resolved`` field
because npm v7+ rewrites https GitHub URLs to ssh in the lockfile.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any

from gitcache.errors import LockfileError
from gitcache.models.lockfile import GitDependency, LockfileScanResult

logger = logging.getLogger(__name__)

DEPENDENCY_SECTIONS = (
    "dependencies",
    "devDependencies",
    "peerDependencies",
    "optionalDependencies",
)

_NODE_MODULES_NAME_RE = re.compile(r"node_modules/(@[^/]+/[^/]+|[^/]+)(?:/|$)")

_HTTPS_REWRITES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"^ssh://git@github\.com/([^/]+/[^/]+?)(?:\.git)?$"), r"https://github.com/\1.git"),
    (re.compile(r"^git@github\.com:([^/]+/[^/]+?)(?:\.git)?$"), r"https://github.com/\1.git"),
    (re.compile(r"^github:([^/]+/[^/]+?)(?:\.git)?$"), r"https://github.com/\1.git"),
    (re.compile(r"^gitlab:([^/]+/[^/]+?)(?:\.git)?$"), r"https://gitlab.com/\1.git"),
    (re.compile(r"^bitbucket:([^/]+/[^/]+?)(?:\.git)?$"), r"https://bitbucket.org/\1.git"),
]


def is_git_url(url: str) -> bool:
    return (
        url.startswith(("git+", "git://", "git@"))
        or any(marker in url for marker in ("github:", "gitlab:", "bitbucket:"))
        or (".git" in url and url.startswith(("https://", "http://")))
    )


def extract_name_from_path(package_path: str) -> str | None:
    """``node_modules/@scope/pkg`` → ``@scope/pkg``; nested paths yield the first segment."""
    match = _NODE_MODULES_NAME_RE.search(package_path)
    return match.group(1) if match else None


def extract_reference(url: str) -> str:
    """The ``#ref`` suffix of a git URL, or ``HEAD`` when absent."""
    _, sep, ref = url.partition("#")
    return ref if sep and ref else "HEAD"


def prefer_https_url(url: str) -> str:
    """Rewrite GitHub ssh forms and host shorthands to ``git+https://…``.

    The ``#ref`` fragment is dropped; the reference travels separately.
    """
    had_git_prefix = url.startswith("git+")
    normalized = url.split("#", 1)[0].removeprefix("git+")
    for pattern, replacement in _HTTPS_REWRITES:
        normalized, count = pattern.subn(replacement, normalized)
        if count:
            break
    if (had_git_prefix or normalized.startswith("https://")) and not normalized.startswith("git+"):
        normalized = f"git+{normalized}"
    return normalized


def _package_json_git_urls(package_json: Path) -> dict[str, str]:
    if not package_json.exists():
        return {}
    try:
        data = json.loads(package_json.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Failed to parse %s: %s", package_json, exc)
        return {}
    if not isinstance(data, dict):
        return {}

    urls: dict[str, str] = {}
    for section in DEPENDENCY_SECTIONS:
        deps = data.get(section)
        if not isinstance(deps, dict):
            continue
        for name, spec in deps.items():
            if isinstance(spec, str) and is_git_url(spec):
                urls[name] = spec
    return urls


def _dependency(
    name: str, entry: dict[str, Any], declared: dict[str, str]
) -> GitDependency | None:
    resolved = entry.get("resolved")
    if not isinstance(resolved, str) or not is_git_url(resolved):
        return None
    package_json_url = declared.get(name)
    return GitDependency(
        name=name,
        git_url=resolved,
        reference=extract_reference(resolved),
        integrity=entry.get("integrity"),
        package_json_url=package_json_url,
        lockfile_url=resolved,
        preferred_url=prefer_https_url(package_json_url or resolved),
    )


def _scan_v1(deps: dict[str, Any], declared: dict[str, str]) -> list[GitDependency]:
    found: list[GitDependency] = []
    for name, entry in deps.items():
        if not isinstance(entry, dict):
            continue
        dep = _dependency(name, entry, declared)
        if dep is not None:
            found.append(dep)
        nested = entry.get("dependencies")
        if isinstance(nested, dict):
            found.extend(_scan_v1(nested, declared))
    return found


def _scan_v2(packages: dict[str, Any], declared: dict[str, str]) -> list[GitDependency]:
    found: list[GitDependency] = []
    for package_path, entry in packages.items():
        if not isinstance(entry, dict):
            continue
        name = entry.get("name") or extract_name_from_path(package_path)
        if not name:
            continue
        dep = _dependency(name, entry, declared)
        if dep is not None:
            found.append(dep)
    return found


def scan_lockfile(lockfile: Path) -> LockfileScanResult:
    """Find every git dependency recorded in *lockfile*.

    Raises
    ------
    LockfileError
        If the file does not exist or is not valid JSON.
    """
    lockfile = Path(lockfile)
    if not lockfile.exists():
        raise LockfileError(f"Lockfile not found: {lockfile}")
    try:
        data = json.loads(lockfile.read_text(encoding="utf-8"))
    except ValueError as exc:
        raise LockfileError(f"Failed to parse lockfile {lockfile}: {exc}") from exc
    except OSError as exc:
        raise LockfileError(f"Failed to read lockfile {lockfile}: {exc}") from exc
    if not isinstance(data, dict):
        raise LockfileError(f"Lockfile {lockfile} is not a JSON object")

    version = data.get("lockfileVersion", 1)
    if not isinstance(version, int):
        raise LockfileError(f"Unsupported lockfileVersion {version!r} in {lockfile}")

    declared = _package_json_git_urls(lockfile.parent / "package.json")
    if version <= 1:
        dependencies = _scan_v1(data.get("dependencies") or {}, declared)
    else:
        dependencies = _scan_v2(data.get("packages") or {}, declared)

    logger.debug("Found %d git dependencies in %s (v%d)", len(dependencies), lockfile, version)
    return LockfileScanResult(dependencies=dependencies, lockfile_version=version)
