"""Three-tier read-through cache for the current AnalysisRecord.

Tiers, fastest first:

1. MemoryTier: in-process, valid for a short TTL after it was populated.
2. LocalTier: on-device key/value store, valid until invalidated.
3. RemoteTier: the append-only system of record; ``get`` returns the most
   recent record by creation time. Never invalidated locally.

Local tiers are walked as a chain: a hit in a slower tier is promoted into
every faster one. The remote tier is only consulted while the settings say
the last commit is still within its refresh interval.

Example:
    >>> cache = TieredCache.build("user-1", remote, local, settings, progress)
    >>> record = cache.get()
    >>> if record is None:
    ...     record = orchestrator.generate(visits)  # commits through cache
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timedelta
from typing import Protocol, Sequence

from pydantic import ValidationError

from tripsight.analysis.progress import ProgressTracker
from tripsight.analysis.settings import SettingsStore
from tripsight.core.models import AnalysisRecord
from tripsight.errors import StorageError
from tripsight.storage.base import ANALYSIS_COLLECTION, KeyValueStore, RemoteStore
from tripsight.utils.timeutil import Clock, epoch_millis, local_now

logger = logging.getLogger(__name__)

DEFAULT_MEMORY_TTL = timedelta(minutes=5)


# =============================================================================
# Tiers
# =============================================================================


class CacheTier(Protocol):
    """One cache layer."""

    name: str

    def get(self) -> AnalysisRecord | None: ...

    def set(self, record: AnalysisRecord) -> None: ...

    def invalidate(self) -> None: ...


class MemoryTier:
    """In-process tier with a TTL measured from population time."""

    name = "memory"

    def __init__(self, ttl: timedelta = DEFAULT_MEMORY_TTL, clock: Clock = local_now) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entry: tuple[AnalysisRecord, datetime] | None = None
        self._lock = threading.Lock()

    def get(self) -> AnalysisRecord | None:
        with self._lock:
            entry = self._entry
        if entry is None:
            return None
        record, stored_at = entry
        if self._clock() - stored_at >= self.ttl:
            return None
        return record

    def set(self, record: AnalysisRecord) -> None:
        with self._lock:
            self._entry = (record, self._clock())

    def invalidate(self) -> None:
        with self._lock:
            self._entry = None


class LocalTier:
    """On-device tier storing the record as JSON under one key."""

    name = "local"

    def __init__(self, store: KeyValueStore, key: str) -> None:
        self._store = store
        self.key = key
        self._logger = logging.getLogger(f"{__name__}.LocalTier")

    def get(self) -> AnalysisRecord | None:
        raw = self._store.get(self.key)
        if raw is None:
            return None
        try:
            return AnalysisRecord.from_document(json.loads(raw))
        except (json.JSONDecodeError, ValidationError):
            self._logger.warning(f"Discarding corrupt cached analysis at {self.key}")
            self._store.remove(self.key)
            return None

    def set(self, record: AnalysisRecord) -> None:
        self._store.set(self.key, json.dumps(record.to_document()))

    def invalidate(self) -> None:
        self._store.remove(self.key)


class RemoteTier:
    """System-of-record tier over a RemoteStore collection."""

    name = "remote"

    def __init__(
        self, store: RemoteStore, user_id: str, collection: str = ANALYSIS_COLLECTION
    ) -> None:
        self._store = store
        self.user_id = user_id
        self.collection = collection

    def get(self) -> AnalysisRecord | None:
        document = self._store.latest_record(self.user_id, self.collection, order_by="createdAt")
        if document is None:
            return None
        try:
            return AnalysisRecord.from_document(document)
        except ValidationError as e:
            raise StorageError(
                f"Latest remote analysis for {self.user_id} is invalid", "read", e
            ) from e

    def append(self, record: AnalysisRecord) -> AnalysisRecord:
        """Append and return the record with its assigned id."""
        record_id = self._store.append_record(
            self.user_id, self.collection, record.to_document()
        )
        return record.model_copy(update={"record_id": record_id})

    def set(self, record: AnalysisRecord) -> None:
        self.append(record)

    def invalidate(self) -> None:
        # System of record: never invalidated from a client
        return None


# =============================================================================
# Tiered Cache
# =============================================================================


class TieredCache:
    """Read-through cache over local tiers plus the remote system of record.

    Attributes:
        user_id: Owning user.
        local_tiers: Fastest-first chain of invalidatable tiers.
        remote: The remote tier.
    """

    def __init__(
        self,
        user_id: str,
        local_tiers: Sequence[CacheTier],
        remote: RemoteTier,
        settings: SettingsStore,
        progress: ProgressTracker,
        clock: Clock = local_now,
    ) -> None:
        self.user_id = user_id
        self.local_tiers = list(local_tiers)
        self.remote = remote
        self._settings = settings
        self._progress = progress
        self._clock = clock
        self._logger = logging.getLogger(f"{__name__}.TieredCache")

    @classmethod
    def build(
        cls,
        user_id: str,
        remote_store: RemoteStore,
        local_store: KeyValueStore,
        settings: SettingsStore,
        progress: ProgressTracker,
        memory_ttl: timedelta = DEFAULT_MEMORY_TTL,
        clock: Clock = local_now,
    ) -> "TieredCache":
        """Standard memory -> local -> remote chain for one user."""
        return cls(
            user_id=user_id,
            local_tiers=[
                MemoryTier(ttl=memory_ttl, clock=clock),
                LocalTier(local_store, key=f"{user_id}:analysis"),
            ],
            remote=RemoteTier(remote_store, user_id),
            settings=settings,
            progress=progress,
            clock=clock,
        )

    # -------------------------------------------------------------------------
    # Read path
    # -------------------------------------------------------------------------

    def get(self, force_refresh: bool = False) -> AnalysisRecord | None:
        """Return the freshest available record, or None.

        While a generation is in flight a placeholder record with
        ``is_generating=True`` is returned instead of any cached data.
        ``force_refresh`` clears the local tiers and returns None so the
        caller regenerates.
        """
        now = self._clock()
        if self._progress.is_generating():
            return AnalysisRecord.placeholder(self.user_id, now)

        if force_refresh:
            self._logger.info(f"Forced refresh for {self.user_id}; clearing local tiers")
            self.invalidate_local()
            return None

        for index, tier in enumerate(self.local_tiers):
            try:
                record = tier.get()
            except StorageError as e:
                self._logger.warning(f"Cache tier '{tier.name}' unavailable: {e}")
                continue
            if record is not None:
                self._logger.debug(f"Analysis cache hit in '{tier.name}' tier")
                self._populate(self.local_tiers[:index], record)
                return record

        return self._get_remote(now)

    def _get_remote(self, now: datetime) -> AnalysisRecord | None:
        try:
            settings = self._settings.get()
        except StorageError as e:
            self._logger.warning(f"Settings unavailable, skipping remote read: {e}")
            return None

        age = timedelta(milliseconds=epoch_millis(now) - settings.last_updated_at)
        if settings.last_updated_at <= 0 or age >= settings.refresh_interval:
            self._logger.debug(f"Remote analysis for {self.user_id} is due for refresh")
            return None

        try:
            record = self.remote.get()
        except StorageError as e:
            self._logger.warning(f"Remote analysis read failed: {e}")
            return None

        if record is not None:
            self._logger.debug("Analysis cache hit in 'remote' tier")
            self._populate(self.local_tiers, record)
        return record

    def _populate(self, tiers: Sequence[CacheTier], record: AnalysisRecord) -> None:
        for tier in tiers:
            try:
                tier.set(record)
            except StorageError as e:
                self._logger.warning(f"Could not populate '{tier.name}' tier: {e}")

    # -------------------------------------------------------------------------
    # Write path
    # -------------------------------------------------------------------------

    def commit(self, record: AnalysisRecord) -> AnalysisRecord:
        """Persist a freshly generated record.

        The remote append happens first; if it fails nothing is written
        locally and StorageError propagates.

        Returns:
            The record with its remote ``record_id`` set.
        """
        committed = self.remote.append(record)

        try:
            self._settings.update(last_updated_at=epoch_millis(self._clock()))
        except StorageError as e:
            self._logger.error(f"Committed analysis but could not update settings: {e}")

        self._populate(self.local_tiers, committed)
        self._logger.info(f"Committed analysis {committed.record_id} for {self.user_id}")
        return committed

    def invalidate_local(self) -> None:
        """Clear every local tier."""
        for tier in self.local_tiers:
            try:
                tier.invalidate()
            except StorageError as e:
                self._logger.warning(f"Could not invalidate '{tier.name}' tier: {e}")
