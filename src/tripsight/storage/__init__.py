"""Key/value and remote persistence backends."""

from tripsight.storage.base import (
    ANALYSIS_COLLECTION,
    PROGRESS_DOCUMENT,
    SETTINGS_DOCUMENT,
    KeyValueStore,
    RemoteStore,
)
from tripsight.storage.local import FileKeyValueStore, MemoryKeyValueStore
from tripsight.storage.remote import FileRemoteStore, InMemoryRemoteStore

__all__ = [
    "KeyValueStore",
    "RemoteStore",
    "ANALYSIS_COLLECTION",
    "SETTINGS_DOCUMENT",
    "PROGRESS_DOCUMENT",
    "MemoryKeyValueStore",
    "FileKeyValueStore",
    "InMemoryRemoteStore",
    "FileRemoteStore",
]
