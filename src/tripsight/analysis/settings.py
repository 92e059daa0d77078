"""Per-user settings record with layered reads and write-through updates.

Reads go memory -> local mirror -> remote document -> defaults (written
back on first access). Updates go to the remote document first, then the
local mirror, then memory.

Example:
    >>> store = SettingsStore("user-1", remote, local, default_refresh_interval=timedelta(hours=24))
    >>> store.get().refresh_interval
    datetime.timedelta(days=1)
    >>> store.update(last_updated_at=1718000000000)
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import timedelta
from typing import Any

from pydantic import ValidationError

from tripsight.core.models import SettingsRecord
from tripsight.errors import StorageError
from tripsight.storage.base import SETTINGS_DOCUMENT, KeyValueStore, RemoteStore

logger = logging.getLogger(__name__)


class SettingsStore:
    """Settings for one user.

    Attributes:
        user_id: Owning user.
    """

    def __init__(
        self,
        user_id: str,
        remote: RemoteStore,
        local: KeyValueStore,
        default_refresh_interval: timedelta = timedelta(hours=24),
    ) -> None:
        self.user_id = user_id
        self._remote = remote
        self._local = local
        self._default_refresh_interval = default_refresh_interval
        self._cached: SettingsRecord | None = None
        self._lock = threading.Lock()
        self._logger = logging.getLogger(f"{__name__}.SettingsStore")

    @property
    def local_key(self) -> str:
        return f"{self.user_id}:settings"

    def get(self) -> SettingsRecord:
        """Return the settings record, creating defaults on first access.

        Raises:
            StorageError: If the remote document cannot be read and nothing
                is cached in memory or on the device.
        """
        with self._lock:
            if self._cached is not None:
                return self._cached

        record = self._read_local()
        if record is None:
            record = self._read_remote()

        if record is None:
            record = SettingsRecord(refresh_interval=self._default_refresh_interval)
            self._logger.info(f"Creating default settings for {self.user_id}")
            self._write(record)
        else:
            self._write_local(record)

        with self._lock:
            self._cached = record
        return record

    def update(self, **changes: Any) -> SettingsRecord:
        """Merge ``changes`` into the record and persist it.

        Raises:
            StorageError: If the remote write fails. Nothing is changed
                locally in that case.
        """
        updated = self.get().model_copy(update=changes)
        # Re-validate so nested values (e.g. request_limits dicts) are typed
        updated = SettingsRecord.model_validate(updated.model_dump())
        self._write(updated)
        with self._lock:
            self._cached = updated
        return updated

    def clear_cached(self) -> None:
        """Drop the in-memory and on-device copies (remote is untouched)."""
        with self._lock:
            self._cached = None
        try:
            self._local.remove(self.local_key)
        except StorageError as e:
            self._logger.warning(f"Could not clear local settings mirror: {e}")

    # -------------------------------------------------------------------------

    def _read_local(self) -> SettingsRecord | None:
        try:
            raw = self._local.get(self.local_key)
        except StorageError as e:
            self._logger.warning(f"Local settings mirror unreadable: {e}")
            return None
        if raw is None:
            return None
        try:
            return SettingsRecord.from_document(json.loads(raw))
        except (json.JSONDecodeError, ValidationError):
            self._logger.warning(f"Discarding corrupt local settings for {self.user_id}")
            return None

    def _read_remote(self) -> SettingsRecord | None:
        document = self._remote.get_document(self.user_id, SETTINGS_DOCUMENT)
        if document is None:
            return None
        try:
            return SettingsRecord.from_document(document)
        except ValidationError as e:
            raise StorageError(
                f"Remote settings for {self.user_id} are invalid", "read", e
            ) from e

    def _write(self, record: SettingsRecord) -> None:
        self._remote.set_document(self.user_id, SETTINGS_DOCUMENT, record.to_document())
        self._write_local(record)

    def _write_local(self, record: SettingsRecord) -> None:
        try:
            self._local.set(self.local_key, json.dumps(record.to_document()))
        except StorageError as e:
            self._logger.warning(f"Local settings mirror not updated: {e}")
