"""Human size strings ("5GB", "1.5 TB", "1000B") to bytes and back."""

from __future__ import annotations

import math
import re

_SIZE_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*(TB|GB|MB|KB|B)?$", re.IGNORECASE)

_MULTIPLIERS: dict[str, int] = {
    "b": 1,
    "kb": 1024,
    "mb": 1024**2,
    "gb": 1024**3,
    "tb": 1024**4,
}

_UNITS = ["B", "KB", "MB", "GB", "TB"]


def parse_size_to_bytes(size: str) -> int:
    """Parse a size string; a bare number is bytes.  Raises ``ValueError``."""
    match = _SIZE_RE.match(size.strip())
    if not match:
        raise ValueError(
            f"Invalid size format: {size!r}. Use a format like '5GB', '1TB', '100MB'"
        )
    value = float(match.group(1))
    unit = (match.group(2) or "B").lower()
    return math.floor(value * _MULTIPLIERS[unit])


def coerce_size(size: int | str) -> int:
    return size if isinstance(size, int) else parse_size_to_bytes(size)


def format_bytes(num_bytes: int) -> str:
    if num_bytes == 0:
        return "0 B"
    size = float(num_bytes)
    unit_index = 0
    while size >= 1024 and unit_index < len(_UNITS) - 1:
        size /= 1024
        unit_index += 1
    if unit_index > 0 and size < 10 and size % 1 != 0:
        return f"{size:.1f} {_UNITS[unit_index]}"
    return f"{size:.0f} {_UNITS[unit_index]}"
