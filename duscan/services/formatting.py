from __future__ import annotations

_UNITS = ("B", "KB", "MB", "GB", "TB", "PB")


def format_bytes(size: int) -> str:
    if size < 1024:
        return f"{max(size, 0)} B"
    value = float(size)
    for unit in _UNITS[1:]:
        value /= 1024.0
        if value < 1024.0 or unit == _UNITS[-1]:
            return f"{value:.1f} {unit}"
    return f"{value:.1f} {_UNITS[-1]}"


def relative_path(path: str, root_prefix: str) -> str:
    if root_prefix and path.startswith(root_prefix):
        return path[len(root_prefix) :] or path
    return path
