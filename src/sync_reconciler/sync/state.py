"""Durable state files and content hashing.

Every file-backed store (contracts, synchronization cursors, logs) keeps
its data in a JSON document under the configured ``state_dir``.

Key design choices:

* **Atomic writes** -- ``StateFile.save()`` writes to a temp file then
  calls ``os.replace()`` so readers never see partial data.
* **Content hashing** -- ``content_hash()`` serialises a payload with
  sorted keys and compact separators before SHA-256, so two payloads that
  differ only in key order hash identically.
"""

from __future__ import annotations

import hashlib
import json
import os
import tempfile
from pathlib import Path
from typing import Any


class StateFile:
    """A single JSON document persisted atomically.

    Args:
        path: Location of the JSON file.  Its parent directory is created
            on first save.
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.exists()

    def load(self, default: Any = None) -> Any:
        """Return the decoded document, or *default* if the file is missing."""
        if not self._path.exists():
            return default
        with open(self._path, encoding="utf-8") as fh:
            return json.load(fh)

    def save(self, data: Any) -> None:
        """Persist *data* atomically (temp file + ``os.replace``)."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self._path.parent), suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2, default=str)
            os.replace(tmp_path, self._path)
        except BaseException:
            # Clean up temp file on any failure.
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def delete(self) -> None:
        """Remove the file.  No-op if it does not exist."""
        try:
            self._path.unlink()
        except FileNotFoundError:
            pass


def safe_filename(identifier: str) -> str:
    """Make *identifier* usable as a file name component."""
    return "".join(
        ch if ch.isalnum() or ch in "-_" else "_" for ch in str(identifier)
    )


# ------------------------------------------------------------------
# Content hashing
# ------------------------------------------------------------------


def sort_nested(value: Any) -> Any:
    """Return a copy of *value* with every dict's keys sorted recursively."""
    if isinstance(value, dict):
        return {
            key: sort_nested(value[key])
            for key in sorted(value, key=str)
        }
    if isinstance(value, list):
        return [sort_nested(item) for item in value]
    return value


def stable_dumps(value: Any) -> str:
    """Serialise *value* deterministically (sorted keys, no whitespace)."""
    return json.dumps(
        sort_nested(value),
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )


def content_hash(value: Any) -> str:
    """Compute the SHA-256 hex digest of the stable serialisation of *value*."""
    return hashlib.sha256(stable_dumps(value).encode("utf-8")).hexdigest()
