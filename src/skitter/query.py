"""Path queries over decoded JSON documents.

Paths are dot separated: ``data.items.0.name``. A backslash escapes a
literal dot (``a\\.b`` is the single key ``a.b``), integer segments index
lists (negative indexes count from the end) and ``#`` yields the length of
a list.

Example:
    >>> resolve({"items": [{"id": 7}]}, "items.0.id")
    (True, 7)
    >>> resolve({"items": [1, 2, 3]}, "items.#")
    (True, 3)
    >>> resolve({"items": []}, "items.0")
    (False, None)
"""

from typing import Any


def split_path(path: str) -> list[str]:
    """Split a query path into segments, honouring ``\\.`` escapes."""
    if not path:
        return []

    segments: list[str] = []
    current: list[str] = []
    escaped = False
    for char in path:
        if escaped:
            current.append(char)
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == ".":
            segments.append("".join(current))
            current = []
        else:
            current.append(char)
    if escaped:
        current.append("\\")
    segments.append("".join(current))
    return segments


def _step(value: Any, segment: str) -> tuple[bool, Any]:
    if isinstance(value, dict):
        if segment in value:
            return True, value[segment]
        return False, None

    if isinstance(value, list):
        if segment == "#":
            return True, len(value)
        try:
            index = int(segment)
        except ValueError:
            return False, None
        if -len(value) <= index < len(value):
            return True, value[index]

    return False, None


def resolve(data: Any, path: str) -> tuple[bool, Any]:
    """Resolve ``path`` against ``data``.

    Args:
        data: Decoded JSON document
        path: Query path (empty string resolves to the document itself)

    Returns:
        ``(found, value)``; ``value`` is None when not found
    """
    value = data
    for segment in split_path(path):
        found, value = _step(value, segment)
        if not found:
            return False, None
    return True, value
