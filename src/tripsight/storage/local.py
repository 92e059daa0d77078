"""On-device key/value stores.

FileKeyValueStore keeps one file per key under a directory and writes
atomically (temp file in the same directory, then rename), so a crash
mid-write never leaves a truncated value behind.

Example:
    >>> store = FileKeyValueStore(Path("~/.tripsight/local").expanduser())
    >>> store.set("user-1:analysis", record_json)
    >>> store.get("user-1:analysis") == record_json
    True
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from pathlib import Path

from tripsight.errors import StorageError
from tripsight.storage.base import safe_key

logger = logging.getLogger(__name__)


class MemoryKeyValueStore:
    """Dict-backed store, used for tests and ephemeral sessions."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._data)


class FileKeyValueStore:
    """Directory-backed store with atomic writes.

    Attributes:
        base_dir: Directory holding one ``<key>.json`` file per key.
    """

    SUFFIX = ".json"

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = Path(base_dir)
        self._lock = threading.Lock()
        self._logger = logging.getLogger(f"{__name__}.FileKeyValueStore")

    def _path(self, key: str) -> Path:
        return self.base_dir / f"{safe_key(key)}{self.SUFFIX}"

    def get(self, key: str) -> str | None:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Cannot read local key '{key}'", "read", e) from e

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        with self._lock:
            try:
                self.base_dir.mkdir(parents=True, exist_ok=True)
                fd, temp_path = tempfile.mkstemp(dir=self.base_dir, suffix=".tmp", prefix=".kv_")
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as f:
                        f.write(value)
                    Path(temp_path).replace(path)
                except OSError:
                    Path(temp_path).unlink(missing_ok=True)
                    raise
            except OSError as e:
                raise StorageError(f"Cannot write local key '{key}'", "write", e) from e
        self._logger.debug(f"Stored local key {key} ({len(value)} bytes)")

    def remove(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot remove local key '{key}'", "remove", e) from e

    def keys(self) -> list[str]:
        if not self.base_dir.exists():
            return []
        return sorted(p.stem for p in self.base_dir.glob(f"*{self.SUFFIX}"))
