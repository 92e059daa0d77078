"""Remote (system of record) stores.

InMemoryRemoteStore is the reference implementation used by tests and
by sessions that don't persist. FileRemoteStore lays the same model out
on disk so the CLI can run against a local "remote":

    <base_dir>/<user>/<collection>.jsonl   append-only record history
    <base_dir>/<user>/documents/<name>.json single documents
"""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
import threading
import uuid
from pathlib import Path
from typing import Any

from tripsight.errors import StorageError
from tripsight.storage.base import order_value, safe_key

logger = logging.getLogger(__name__)


def _latest(entries: list[tuple[str, dict[str, Any]]], order_by: str) -> dict[str, Any] | None:
    if not entries:
        return None
    # Ties resolve to the later insertion
    _, (record_id, document) = max(
        enumerate(entries),
        key=lambda item: (order_value(item[1][1].get(order_by)), item[0]),
    )
    result = copy.deepcopy(document)
    result["recordId"] = record_id
    return result


class InMemoryRemoteStore:
    """Thread-safe in-memory remote store."""

    def __init__(self) -> None:
        self._collections: dict[tuple[str, str], list[tuple[str, dict[str, Any]]]] = {}
        self._documents: dict[tuple[str, str], dict[str, Any]] = {}
        self._lock = threading.Lock()

    def append_record(self, user_id: str, collection: str, document: dict[str, Any]) -> str:
        record_id = uuid.uuid4().hex
        with self._lock:
            self._collections.setdefault((user_id, collection), []).append(
                (record_id, copy.deepcopy(document))
            )
        return record_id

    def latest_record(
        self, user_id: str, collection: str, order_by: str = "createdAt"
    ) -> dict[str, Any] | None:
        with self._lock:
            entries = list(self._collections.get((user_id, collection), []))
        return _latest(entries, order_by)

    def count_records(self, user_id: str, collection: str) -> int:
        with self._lock:
            return len(self._collections.get((user_id, collection), []))

    def get_document(self, user_id: str, name: str) -> dict[str, Any] | None:
        with self._lock:
            document = self._documents.get((user_id, name))
            return copy.deepcopy(document) if document is not None else None

    def set_document(
        self, user_id: str, name: str, document: dict[str, Any], merge: bool = False
    ) -> None:
        with self._lock:
            current = self._documents.get((user_id, name)) if merge else None
            updated = dict(current or {})
            updated.update(copy.deepcopy(document))
            self._documents[(user_id, name)] = updated


class FileRemoteStore:
    """File-backed remote store.

    Attributes:
        base_dir: Root directory; one sub-directory per user.
    """

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = Path(base_dir)
        self._lock = threading.Lock()
        self._logger = logging.getLogger(f"{__name__}.FileRemoteStore")

    def _user_dir(self, user_id: str) -> Path:
        return self.base_dir / safe_key(user_id)

    def _collection_path(self, user_id: str, collection: str) -> Path:
        return self._user_dir(user_id) / f"{safe_key(collection)}.jsonl"

    def _document_path(self, user_id: str, name: str) -> Path:
        return self._user_dir(user_id) / "documents" / f"{safe_key(name)}.json"

    def append_record(self, user_id: str, collection: str, document: dict[str, Any]) -> str:
        record_id = uuid.uuid4().hex
        path = self._collection_path(user_id, collection)
        line = json.dumps({"id": record_id, "document": document}, default=str)
        with self._lock:
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                with open(path, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
                    f.flush()
                    os.fsync(f.fileno())
            except OSError as e:
                raise StorageError(f"Cannot append to {collection}", "append", e) from e
        self._logger.debug(f"Appended record {record_id} to {collection} for {user_id}")
        return record_id

    def latest_record(
        self, user_id: str, collection: str, order_by: str = "createdAt"
    ) -> dict[str, Any] | None:
        path = self._collection_path(user_id, collection)
        entries: list[tuple[str, dict[str, Any]]] = []
        try:
            with open(path, encoding="utf-8") as f:
                for line_number, line in enumerate(f, start=1):
                    if not line.strip():
                        continue
                    try:
                        row = json.loads(line)
                    except json.JSONDecodeError:
                        # A torn final line from an interrupted append
                        self._logger.warning(f"Skipping corrupt line {line_number} in {path.name}")
                        continue
                    if not (
                        isinstance(row, dict)
                        and isinstance(row.get("id"), str)
                        and isinstance(row.get("document"), dict)
                    ):
                        self._logger.warning(f"Skipping malformed record on line {line_number} in {path.name}")
                        continue
                    entries.append((row["id"], row["document"]))
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Cannot read {collection}", "read", e) from e
        return _latest(entries, order_by)

    def get_document(self, user_id: str, name: str) -> dict[str, Any] | None:
        path = self._document_path(user_id, name)
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Cannot read document {name}", "read", e) from e

    def set_document(
        self, user_id: str, name: str, document: dict[str, Any], merge: bool = False
    ) -> None:
        path = self._document_path(user_id, name)
        with self._lock:
            updated: dict[str, Any] = {}
            if merge:
                existing = self.get_document(user_id, name)
                if existing:
                    updated.update(existing)
            updated.update(document)
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                fd, temp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp", prefix=".doc_")
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as f:
                        json.dump(updated, f, indent=2, default=str)
                    Path(temp_path).replace(path)
                except OSError:
                    Path(temp_path).unlink(missing_ok=True)
                    raise
            except OSError as e:
                raise StorageError(f"Cannot write document {name}", "write", e) from e
