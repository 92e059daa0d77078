"""Tests for tripsight.analysis.settings."""

from __future__ import annotations

import json
from datetime import timedelta

import pytest
from conftest import USER_ID

from tripsight.analysis.settings import SettingsStore
from tripsight.core.models import RequestLimits, SettingsRecord
from tripsight.errors import StorageError
from tripsight.storage.base import SETTINGS_DOCUMENT
from tripsight.storage.local import MemoryKeyValueStore


@pytest.fixture
def store(remote_store, local_store):
    return SettingsStore(USER_ID, remote_store, local_store)


class TestSettingsRead:
    """Layered reads."""

    def test_defaults_created_on_first_access(self, store, remote_store, local_store):
        """First access writes defaults to both the remote and local copies."""
        record = store.get()

        assert record.last_updated_at == 0
        assert record.refresh_interval == timedelta(hours=24)
        assert record.request_limits is None
        assert remote_store.get_document(USER_ID, SETTINGS_DOCUMENT) is not None
        assert local_store.get(f"{USER_ID}:settings") is not None

    def test_custom_default_interval(self, remote_store, local_store):
        """The default refresh interval comes from configuration."""
        store = SettingsStore(
            USER_ID, remote_store, local_store, default_refresh_interval=timedelta(hours=6)
        )

        assert store.get().refresh_interval == timedelta(hours=6)

    def test_reads_remote_when_local_empty(self, remote_store):
        """Another device picks up the remote document and mirrors it."""
        remote_store.set_document(
            USER_ID, SETTINGS_DOCUMENT, SettingsRecord(last_updated_at=1234).to_document()
        )
        local = MemoryKeyValueStore()
        store = SettingsStore(USER_ID, remote_store, local)

        assert store.get().last_updated_at == 1234
        assert json.loads(local.get(f"{USER_ID}:settings"))["lastUpdatedAt"] == 1234

    def test_local_mirror_wins_over_remote(self, remote_store, local_store):
        """The on-device mirror is consulted before the remote document."""
        local_store.set(f"{USER_ID}:settings", json.dumps(SettingsRecord(last_updated_at=7).to_document()))
        remote_store.set_document(
            USER_ID, SETTINGS_DOCUMENT, SettingsRecord(last_updated_at=9).to_document()
        )

        assert SettingsStore(USER_ID, remote_store, local_store).get().last_updated_at == 7

    def test_corrupt_local_mirror_ignored(self, remote_store, local_store):
        """Garbage in the local mirror falls through to the remote."""
        local_store.set(f"{USER_ID}:settings", "{not json")
        remote_store.set_document(
            USER_ID, SETTINGS_DOCUMENT, SettingsRecord(last_updated_at=42).to_document()
        )

        assert SettingsStore(USER_ID, remote_store, local_store).get().last_updated_at == 42

    def test_remote_failure_without_copies_raises(self, remote_store, local_store, monkeypatch):
        """With nothing cached, an unreachable remote raises StorageError."""

        def offline(*_args, **_kwargs):
            raise StorageError("offline", "read")

        monkeypatch.setattr(remote_store, "get_document", offline)

        with pytest.raises(StorageError):
            SettingsStore(USER_ID, remote_store, local_store).get()


class TestSettingsUpdate:
    """Write-through updates."""

    def test_update_merges_fields(self, store):
        """Unchanged fields survive an update."""
        store.update(refresh_interval=timedelta(hours=12))
        store.update(last_updated_at=99)

        record = store.get()
        assert record.refresh_interval == timedelta(hours=12)
        assert record.last_updated_at == 99

    def test_update_validates_nested(self, store, clock):
        """Nested request limits are typed after an update."""
        store.update(request_limits={"request_count": 2, "last_request_date": clock.now})

        limits = store.get().request_limits
        assert isinstance(limits, RequestLimits)
        assert limits.request_count == 2

    def test_update_writes_remote(self, store, remote_store):
        """Updates reach the remote document with camelCase keys."""
        store.update(last_updated_at=555)

        assert remote_store.get_document(USER_ID, SETTINGS_DOCUMENT)["lastUpdatedAt"] == 555

    def test_remote_write_failure_changes_nothing(self, store, remote_store, monkeypatch):
        """A failed remote write leaves memory untouched and raises."""
        store.get()

        def offline(*_args, **_kwargs):
            raise StorageError("offline", "write")

        monkeypatch.setattr(remote_store, "set_document", offline)

        with pytest.raises(StorageError):
            store.update(last_updated_at=1)
        assert store.get().last_updated_at == 0

    def test_clear_cached(self, store, remote_store, local_store):
        """clear_cached() drops local copies but keeps the remote."""
        store.update(last_updated_at=77)

        store.clear_cached()

        assert local_store.get(f"{USER_ID}:settings") is None
        assert store.get().last_updated_at == 77

    def test_invalid_remote_document_raises(self, remote_store, local_store):
        """A remote document that fails validation surfaces as StorageError."""
        remote_store.set_document(USER_ID, SETTINGS_DOCUMENT, {"lastUpdatedAt": "soon"})

        with pytest.raises(StorageError):
            SettingsStore(USER_ID, remote_store, local_store).get()
