"""Persistence interfaces consumed by the analysis core.

Two kinds of store back the caches:

- KeyValueStore: on-device string key/value storage (cache tier 2, the
  settings and progress mirrors, and the scheduler's debounce timestamp).
- RemoteStore: the per-user system of record. Analysis records live in an
  append-only collection; settings and progress are single documents.

Implementations raise StorageError on backend failures and return None
for missing keys.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

# Remote collection / document names
ANALYSIS_COLLECTION = "advanced_travel_analysis"
SETTINGS_DOCUMENT = "analysis_settings"
PROGRESS_DOCUMENT = "analysis_progress"

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_.@-]")


@runtime_checkable
class KeyValueStore(Protocol):
    """Simple string key/value store."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


@runtime_checkable
class RemoteStore(Protocol):
    """Per-user remote persistence."""

    def append_record(self, user_id: str, collection: str, document: dict[str, Any]) -> str:
        """Insert a record and return its identifier."""
        ...

    def latest_record(
        self, user_id: str, collection: str, order_by: str = "createdAt"
    ) -> dict[str, Any] | None:
        """Most recent record by ``order_by``, with ``recordId`` filled in."""
        ...

    def get_document(self, user_id: str, name: str) -> dict[str, Any] | None: ...

    def set_document(
        self, user_id: str, name: str, document: dict[str, Any], merge: bool = False
    ) -> None: ...


def safe_key(value: str) -> str:
    """Make a user id or key usable as a file name."""
    return _UNSAFE_KEY_CHARS.sub("_", value) or "_"


def order_value(value: Any) -> float:
    """Sortable number for an ``order_by`` field (ISO string or number)."""
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, datetime):
        return value.timestamp()
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
        except ValueError:
            return float("-inf")
    return float("-inf")
