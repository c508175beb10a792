from __future__ import annotations

_SIZE_UNITS = ("KB", "MB", "GB", "TB")


def format_size(num_bytes: int, precision: int = 1) -> str:
    """Format a byte count for humans: 1536 -> "1.5 KB"."""
    if abs(num_bytes) < 1024:
        return f"{num_bytes} B"
    size = float(num_bytes)
    unit = _SIZE_UNITS[0]
    for unit in _SIZE_UNITS:
        size /= 1024
        if abs(size) < 1024:
            break
    return f"{size:.{precision}f} {unit}"
