"""Dot-path access into plain key/value trees.

Paths look like ``applicant.address.state``; an optional ``$.`` prefix
(JSONPath style, as stored on mapping rows) is stripped before traversal.
Reads never raise: a missing segment yields ``None``. Writes create any
missing intermediate objects.
"""

from typing import Any, Dict, List, Optional

_MISSING = object()


def split_path(path: str) -> List[str]:
    """Split a dot-path into segments, dropping a leading ``$.``."""
    if path.startswith("$."):
        path = path[2:]
    elif path == "$":
        return []
    return [p for p in path.split(".") if p != ""]


def _step(current: Any, key: str) -> Any:
    if isinstance(current, dict):
        return current.get(key, _MISSING)
    if isinstance(current, (list, tuple)):
        try:
            return current[int(key)]
        except (ValueError, IndexError):
            return _MISSING
    return _MISSING


def has_path(obj: Any, path: str) -> bool:
    """Return True if every segment of ``path`` exists in ``obj``."""
    current = obj
    for key in split_path(path):
        current = _step(current, key)
        if current is _MISSING:
            return False
    return True


def get_path(obj: Any, path: Optional[str], default: Any = None) -> Any:
    """Read the value at ``path``, or ``default`` if any segment is missing.

    Args:
        obj: Root of the tree (usually a dict).
        path: Dot-path; ``None`` or empty returns ``default``.
        default: Value returned on a missing segment.

    Returns:
        The value found, or ``default``.
    """
    if obj is None or not path:
        return default
    current = obj
    for key in split_path(path):
        current = _step(current, key)
        if current is _MISSING:
            return default
    return current


def set_path(obj: Dict[str, Any], path: str, value: Any) -> None:
    """Write ``value`` at ``path``, creating intermediate dicts as needed.

    A non-dict value sitting on an intermediate segment is replaced by a
    fresh dict.
    """
    keys = split_path(path)
    if not keys:
        raise ValueError("Cannot set value at an empty path")
    current = obj
    for key in keys[:-1]:
        nxt = current.get(key)
        if not isinstance(nxt, dict):
            nxt = {}
            current[key] = nxt
        current = nxt
    current[keys[-1]] = value
