"""Tests for tripsight.storage."""

from __future__ import annotations

import pytest

from tripsight.errors import StorageError
from tripsight.storage.base import KeyValueStore, RemoteStore, order_value, safe_key
from tripsight.storage.local import FileKeyValueStore, MemoryKeyValueStore
from tripsight.storage.remote import FileRemoteStore, InMemoryRemoteStore


@pytest.fixture(params=["memory", "file"])
def kv_store(request, tmp_path):
    if request.param == "memory":
        return MemoryKeyValueStore()
    return FileKeyValueStore(tmp_path / "kv")


@pytest.fixture(params=["memory", "file"])
def remote(request, tmp_path):
    if request.param == "memory":
        return InMemoryRemoteStore()
    return FileRemoteStore(tmp_path / "remote")


class TestHelpers:
    def test_safe_key(self):
        assert safe_key("user-1:analysis") == "user-1_analysis"
        assert safe_key("../etc/passwd") == ".._etc_passwd"
        assert safe_key("") == "_"

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (5, 5.0),
            ("1970-01-01T00:00:10Z", 10.0),
            ("1970-01-01T00:00:10+00:00", 10.0),
            ("not a date", float("-inf")),
            (None, float("-inf")),
        ],
    )
    def test_order_value(self, value, expected):
        assert order_value(value) == expected


class TestKeyValueStores:
    """Behaviour shared by every KeyValueStore."""

    def test_protocol(self, kv_store):
        assert isinstance(kv_store, KeyValueStore)

    def test_set_get_remove(self, kv_store):
        assert kv_store.get("a:b") is None

        kv_store.set("a:b", '{"x": 1}')
        assert kv_store.get("a:b") == '{"x": 1}'

        kv_store.set("a:b", "replaced")
        assert kv_store.get("a:b") == "replaced"

        kv_store.remove("a:b")
        assert kv_store.get("a:b") is None

    def test_remove_missing_is_noop(self, kv_store):
        kv_store.remove("never-set")

    def test_keys(self, kv_store):
        kv_store.set("b", "2")
        kv_store.set("a", "1")
        assert kv_store.keys() == ["a", "b"]


class TestFileKeyValueStore:
    """On-disk specifics."""

    def test_no_temp_files_left(self, tmp_path):
        """Atomic writes leave only the final file."""
        store = FileKeyValueStore(tmp_path)
        store.set("user-1:analysis", "x" * 10_000)

        assert sorted(p.name for p in tmp_path.iterdir()) == ["user-1_analysis.json"]

    def test_write_failure_raises_storage_error(self, tmp_path):
        """An unwritable location raises StorageError."""
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory")
        store = FileKeyValueStore(blocker / "kv")

        with pytest.raises(StorageError) as exc_info:
            store.set("key", "value")
        assert exc_info.value.operation == "write"


class TestRemoteStores:
    """Behaviour shared by every RemoteStore."""

    def test_protocol(self, remote):
        assert isinstance(remote, RemoteStore)

    def test_latest_by_order_field(self, remote):
        """The latest record is chosen by createdAt, not insertion order."""
        newest = remote.append_record("u", "history", {"createdAt": "2024-06-10T12:00:00+02:00", "n": 2})
        remote.append_record("u", "history", {"createdAt": "2024-06-01T12:00:00+02:00", "n": 1})

        latest = remote.latest_record("u", "history")

        assert latest["n"] == 2
        assert latest["recordId"] == newest

    def test_ties_resolve_to_later_insert(self, remote):
        remote.append_record("u", "history", {"createdAt": "2024-06-10T12:00:00Z", "n": 1})
        second = remote.append_record("u", "history", {"createdAt": "2024-06-10T12:00:00Z", "n": 2})

        assert remote.latest_record("u", "history")["recordId"] == second

    def test_users_isolated(self, remote):
        remote.append_record("alice", "history", {"createdAt": 1})

        assert remote.latest_record("bob", "history") is None

    def test_empty_collection(self, remote):
        assert remote.latest_record("u", "history") is None

    def test_documents_replace_and_merge(self, remote):
        remote.set_document("u", "settings", {"a": 1, "b": 2})
        remote.set_document("u", "settings", {"b": 3}, merge=True)
        assert remote.get_document("u", "settings") == {"a": 1, "b": 3}

        remote.set_document("u", "settings", {"c": 4})
        assert remote.get_document("u", "settings") == {"c": 4}

    def test_missing_document(self, remote):
        assert remote.get_document("u", "nothing") is None

    def test_returned_documents_are_copies(self, remote):
        remote.append_record("u", "history", {"createdAt": 1, "tags": ["a"]})

        remote.latest_record("u", "history")["tags"].append("mutated")

        assert remote.latest_record("u", "history")["tags"] == ["a"]


class TestFileRemoteStore:
    """On-disk specifics."""

    def test_torn_line_skipped(self, tmp_path):
        """A partially written final line does not hide earlier records."""
        store = FileRemoteStore(tmp_path)
        record_id = store.append_record("u", "history", {"createdAt": 1})
        path = tmp_path / "u" / "history.jsonl"
        with open(path, "a", encoding="utf-8") as f:
            f.write('{"id": "torn", "docu')

        assert store.latest_record("u", "history")["recordId"] == record_id

    def test_corrupt_document_raises(self, tmp_path):
        store = FileRemoteStore(tmp_path)
        path = tmp_path / "u" / "documents" / "settings.json"
        path.parent.mkdir(parents=True)
        path.write_text("{broken")

        with pytest.raises(StorageError):
            store.get_document("u", "settings")

    def test_reopen_sees_history(self, tmp_path):
        FileRemoteStore(tmp_path).append_record("u", "history", {"createdAt": 5, "n": 9})

        assert FileRemoteStore(tmp_path).latest_record("u", "history")["n"] == 9

    def test_row_missing_keys_skipped(self, tmp_path, caplog):
        """A parseable line without id/document is skipped, not raised."""
        store = FileRemoteStore(tmp_path)
        record_id = store.append_record("u", "history", {"createdAt": 1})
        path = tmp_path / "u" / "history.jsonl"
        with open(path, "a", encoding="utf-8") as f:
            f.write('{"id": "no-document"}\n')
            f.write('["not", "a", "row"]\n')

        assert store.latest_record("u", "history")["recordId"] == record_id
        assert "Skipping malformed record on line 2" in caplog.text
