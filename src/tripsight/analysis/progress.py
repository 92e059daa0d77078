"""Observable progress of an analysis generation.

A small state machine:

    Idle ──start──> Generating ──advance──> Generating
                        │
                        ├──complete──> Terminal(success)  progress=100
                        └──fail──────> Terminal(failure)  progress=0

Terminal states return to Generating on the next ``start()``; there is no
explicit reset. Progress never decreases while generating.

Every transition is written immediately to the in-process slot and to the
durable mirrors (remote document and local key), so another process or
device polling the same user sees each step. Durable write failures are
logged; they never abort the job being tracked.

Only the orchestrating thread calls the mutating methods. Observers call
``current()`` and receive a frozen snapshot.

Example:
    >>> tracker = ProgressTracker("user-1", remote, local)
    >>> tracker.start("Preparing visit data for analysis", 5)
    >>> tracker.advance(30, "Analyzing spatial relationships")
    >>> tracker.current().to_status_line()
    '[ 30%] Analyzing spatial relationships (~40s remaining)'
    >>> tracker.complete()
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timedelta

from pydantic import ValidationError

from tripsight.core.models import ProgressState
from tripsight.errors import StorageError
from tripsight.storage.base import PROGRESS_DOCUMENT, KeyValueStore, RemoteStore
from tripsight.utils.timeutil import Clock, local_now

logger = logging.getLogger(__name__)

COMPLETE_STAGE = "Advanced analysis complete"
FAILED_STAGE = "Analysis failed"


class ProgressTracker:
    """Progress slot for one user.

    Attributes:
        user_id: Owning user.
        stale_after: A durable "generating" state not updated for this long
            is reported as idle (the job's process died).
    """

    def __init__(
        self,
        user_id: str,
        remote: RemoteStore,
        local: KeyValueStore,
        clock: Clock = local_now,
        stale_after: timedelta = timedelta(minutes=15),
    ) -> None:
        self.user_id = user_id
        self._remote = remote
        self._local = local
        self._clock = clock
        self.stale_after = stale_after
        self._state: ProgressState | None = None
        self._lock = threading.Lock()
        self._logger = logging.getLogger(f"{__name__}.ProgressTracker")

    @property
    def local_key(self) -> str:
        return f"{self.user_id}:analysis_progress"

    # =========================================================================
    # Transitions
    # =========================================================================

    def start(self, stage: str, progress: int = 5) -> ProgressState:
        """Idle/Terminal -> Generating."""
        now = self._clock()
        state = ProgressState(
            is_generating=True,
            progress=_clamp(progress),
            stage=stage,
            started_at=now,
            updated_at=now,
        )
        return self._publish(state)

    def advance(self, progress: int, stage: str) -> ProgressState:
        """Generating -> Generating, never moving backwards."""
        with self._lock:
            previous = self._state

        if previous is None or not previous.is_generating:
            self._logger.debug("advance() without an active job; starting one")
            return self.start(stage, progress)

        now = self._clock()
        value = max(previous.progress, _clamp(progress))
        state = previous.model_copy(
            update={
                "progress": value,
                "stage": stage,
                "updated_at": now,
                "estimated_time_remaining": _estimate_remaining(previous.started_at, now, value),
            }
        )
        return self._publish(state)

    def complete(self, stage: str = COMPLETE_STAGE) -> ProgressState:
        """Generating -> Terminal(success)."""
        return self._finish(progress=100, stage=stage)

    def fail(self, stage: str = FAILED_STAGE) -> ProgressState:
        """Generating -> Terminal(failure)."""
        return self._finish(progress=0, stage=stage)

    def _finish(self, progress: int, stage: str) -> ProgressState:
        with self._lock:
            previous = self._state
        state = ProgressState(
            is_generating=False,
            progress=progress,
            stage=stage,
            started_at=previous.started_at if previous else None,
            updated_at=self._clock(),
        )
        return self._publish(state)

    def _publish(self, state: ProgressState) -> ProgressState:
        with self._lock:
            self._state = state
            document = state.to_document()
            try:
                self._remote.set_document(self.user_id, PROGRESS_DOCUMENT, document)
            except StorageError as e:
                self._logger.warning(f"Remote progress mirror not updated: {e}")
            try:
                self._local.set(self.local_key, json.dumps(document))
            except StorageError as e:
                self._logger.warning(f"Local progress mirror not updated: {e}")

        self._logger.debug(f"Progress {self.user_id}: {state.to_status_line()}")
        return state

    # =========================================================================
    # Observation
    # =========================================================================

    def current(self) -> ProgressState:
        """Latest state, read from the most authoritative available slot.

        A job this tracker is running is answered from memory. Otherwise the
        durable mirrors are read, since another process may have started a
        job after this one last finished.
        """
        with self._lock:
            own = self._state
        if own is not None and own.is_generating:
            return own

        state = self._read_remote() or self._read_local()
        if state is None:
            return own or ProgressState.idle()
        if state.is_generating and self._is_abandoned(state):
            self._logger.warning(
                f"Ignoring stale in-flight progress for {self.user_id} "
                f"(last update {state.updated_at})"
            )
            return ProgressState.idle()
        return state

    def is_generating(self) -> bool:
        return self.current().is_generating

    def _is_abandoned(self, state: ProgressState) -> bool:
        last_seen = state.updated_at or state.started_at
        if last_seen is None:
            return True
        return self._clock() - last_seen > self.stale_after

    def _read_remote(self) -> ProgressState | None:
        try:
            document = self._remote.get_document(self.user_id, PROGRESS_DOCUMENT)
        except StorageError as e:
            self._logger.warning(f"Remote progress unreadable: {e}")
            return None
        return _parse(document, self._logger)

    def _read_local(self) -> ProgressState | None:
        try:
            raw = self._local.get(self.local_key)
        except StorageError as e:
            self._logger.warning(f"Local progress unreadable: {e}")
            return None
        if raw is None:
            return None
        try:
            return _parse(json.loads(raw), self._logger)
        except json.JSONDecodeError:
            return None


def _parse(document: dict | None, log: logging.Logger) -> ProgressState | None:
    if document is None:
        return None
    try:
        return ProgressState.from_document(document)
    except ValidationError:
        log.warning("Discarding malformed progress document")
        return None


def _clamp(progress: int) -> int:
    return max(0, min(100, int(progress)))


def _estimate_remaining(started_at: datetime | None, now: datetime, progress: int) -> float | None:
    if started_at is None or progress <= 5 or progress >= 100:
        return None
    elapsed = (now - started_at).total_seconds()
    return round(elapsed * (100 - progress) / progress, 1)
