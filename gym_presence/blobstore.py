"""Key/value blob stores backing the record collections.

The engine treats storage as opaque bytes per key. Two adapters are provided:
an in-memory one for tests/ephemeral runs and a directory-backed one that writes
one file per key.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class PersistentRecordStore(Protocol):
    """Blob storage contract.

    ``write_blob`` raises ``OSError`` when the bytes could not be stored.
    """

    def read_blob(self, key: str) -> bytes | None: ...

    def write_blob(self, key: str, data: bytes) -> None: ...


class InMemoryBlobStore:
    """Dict-backed blob store."""

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}

    def read_blob(self, key: str) -> bytes | None:
        return self._data.get(key)

    def write_blob(self, key: str, data: bytes) -> None:
        self._data[key] = bytes(data)

    def keys(self) -> list[str]:
        return sorted(self._data)


_KEY_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class FileBlobStore:
    """One file per key under a root directory (``<root>/<key>.json``)."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def _path(self, key: str) -> Path:
        if not _KEY_RE.match(key):
            raise ValueError(f"Invalid blob key: {key!r}")
        return self._root / f"{key}.json"

    def read_blob(self, key: str) -> bytes | None:
        p = self._path(key)
        if not p.exists():
            return None
        return p.read_bytes()

    def write_blob(self, key: str, data: bytes) -> None:
        """Persist atomically: write a temp file, then replace."""

        p = self._path(key)
        p.parent.mkdir(parents=True, exist_ok=True)
        tmp = p.with_suffix(p.suffix + ".tmp")
        tmp.write_bytes(data)
        tmp.replace(p)
        logger.debug("Wrote %d bytes to %s", len(data), p)
