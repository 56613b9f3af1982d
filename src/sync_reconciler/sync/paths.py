"""Dotted-path accessors for JSON-like payloads.

Payloads flowing through the engine are plain ``dict``/``list`` trees.
These helpers address values inside them with dotted paths such as
``"address.lines.0"``:

* dict segments are looked up by key;
* numeric segments index lists;
* ``set_path`` creates intermediate dicts as needed.

Keys that themselves contain a dot are protected with
``encode_keys(data, ".", DOT_ESCAPE)`` before path handling and restored
with ``encode_keys(data, DOT_ESCAPE, ".")`` afterwards.
"""

from __future__ import annotations

from typing import Any

DOT_ESCAPE = "&#46;"

_MISSING = object()


def split_path(path: str) -> list[str]:
    """Split a dotted path into segments, ignoring empty segments."""
    return [segment for segment in str(path).split(".") if segment != ""]


def _step(container: Any, segment: str) -> Any:
    if isinstance(container, dict):
        return container.get(segment, _MISSING)
    if isinstance(container, list) and segment.isdigit():
        index = int(segment)
        if index < len(container):
            return container[index]
    return _MISSING


def get_path(data: Any, path: str, default: Any = None) -> Any:
    """Return the value at *path*, or *default* when any segment is missing."""
    current = data
    for segment in split_path(path):
        current = _step(current, segment)
        if current is _MISSING:
            return default
    return current


def has_path(data: Any, path: str) -> bool:
    """Return ``True`` if *path* resolves inside *data* (``None`` counts)."""
    segments = split_path(path)
    if not segments:
        return False
    current = data
    for segment in segments:
        current = _step(current, segment)
        if current is _MISSING:
            return False
    return True


def set_path(data: dict, path: str, value: Any) -> None:
    """Assign *value* at *path*, creating intermediate dicts.

    Raises:
        ValueError: If *path* is empty or crosses a scalar value.
    """
    segments = split_path(path)
    if not segments:
        raise ValueError("Cannot assign to an empty path")

    current: Any = data
    for segment in segments[:-1]:
        nxt = _step(current, segment)
        if nxt is _MISSING or not isinstance(nxt, (dict, list)):
            if not isinstance(current, dict):
                raise ValueError(
                    f"Cannot create '{segment}' inside a non-object at '{path}'"
                )
            nxt = {}
            current[segment] = nxt
        current = nxt

    last = segments[-1]
    if isinstance(current, list) and last.isdigit():
        index = int(last)
        if index < len(current):
            current[index] = value
            return
        if index == len(current):
            current.append(value)
            return
        raise ValueError(f"List index {index} out of range at '{path}'")
    if not isinstance(current, dict):
        raise ValueError(f"Cannot assign '{last}' on a non-object at '{path}'")
    current[last] = value


def delete_path(data: Any, path: str) -> bool:
    """Remove the value at *path*.  Returns ``False`` if it was absent."""
    segments = split_path(path)
    if not segments:
        return False
    parent = data
    for segment in segments[:-1]:
        parent = _step(parent, segment)
        if parent is _MISSING:
            return False

    last = segments[-1]
    if isinstance(parent, dict) and last in parent:
        del parent[last]
        return True
    if isinstance(parent, list) and last.isdigit():
        index = int(last)
        if index < len(parent):
            del parent[index]
            return True
    return False


def encode_keys(data: Any, find: str, replace: str) -> Any:
    """Return a copy of *data* with *find* replaced by *replace* in every key."""
    if isinstance(data, dict):
        return {
            str(key).replace(find, replace): encode_keys(value, find, replace)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [encode_keys(item, find, replace) for item in data]
    return data
