"""Opportunistic background refresh of the cached analysis.

The scheduler owns no timer. Callers invoke ``maybe_refresh()`` whenever
convenient (e.g. while loading an unrelated screen); a persisted "last
check" timestamp debounces the check itself to once per check interval.

When a check is due and the cached analysis is missing or older than the
refresh interval, a regeneration is started on the scheduler's single
background worker. Errors from an automatic refresh are logged and never
reach the caller.

Example:
    >>> scheduler = RefreshScheduler("user-1", orchestrator, cache, quota, settings, local)
    >>> scheduler.maybe_refresh(visits)
    <RefreshOutcome.TRIGGERED: 'triggered'>
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Sequence

from tripsight.analysis.cache import TieredCache
from tripsight.analysis.orchestrator import GenerationOrchestrator
from tripsight.analysis.quota import QuotaLimiter
from tripsight.analysis.settings import SettingsStore
from tripsight.core.models import AnalysisRecord, VisitRecord
from tripsight.errors import StorageError, TripSightError
from tripsight.storage.base import KeyValueStore
from tripsight.utils.timeutil import Clock, epoch_millis, local_now

VisitHistoryProvider = Callable[[], Sequence[VisitRecord]]

logger = logging.getLogger(__name__)

DEFAULT_CHECK_INTERVAL = timedelta(hours=1)


class RefreshOutcome(str, Enum):
    """What a ``maybe_refresh()`` call decided."""

    SKIPPED_NO_USER = "skipped_no_user"
    SKIPPED_DEBOUNCED = "skipped_debounced"
    SKIPPED_NO_VISITS = "skipped_no_visits"
    SKIPPED_IN_PROGRESS = "skipped_in_progress"
    SKIPPED_FRESH = "skipped_fresh"
    SKIPPED_QUOTA = "skipped_quota"
    TRIGGERED = "triggered"
    FAILED = "failed"


class RefreshScheduler:
    """Debounced staleness check that triggers regeneration for one user.

    Attributes:
        user_id: Owning user.
        check_interval: Minimum time between two checks.
    """

    def __init__(
        self,
        user_id: str,
        orchestrator: GenerationOrchestrator,
        cache: TieredCache,
        quota: QuotaLimiter,
        settings: SettingsStore,
        local: KeyValueStore,
        check_interval: timedelta = DEFAULT_CHECK_INTERVAL,
        clock: Clock = local_now,
    ) -> None:
        self.user_id = user_id
        self._orchestrator = orchestrator
        self._cache = cache
        self._quota = quota
        self._settings = settings
        self._local = local
        self.check_interval = check_interval
        self._clock = clock
        self._executor: ThreadPoolExecutor | None = None
        self._pending: Future | None = None
        self._lock = threading.Lock()
        self._logger = logging.getLogger(f"{__name__}.RefreshScheduler")

    @property
    def debounce_key(self) -> str:
        return f"{self.user_id}:last_refresh_check"

    def maybe_refresh(
        self, visits: Sequence[VisitRecord] | VisitHistoryProvider, wait: bool = False
    ) -> RefreshOutcome:
        """Run the refresh check. Never raises.

        Args:
            visits: Current visit history to regenerate from, or a callable
                returning it. The callable is only invoked once the check
                passes the debounce, and its failures count as FAILED.
            wait: Run a triggered generation inline instead of on the
                background worker.
        """
        try:
            return self._check(visits, wait)
        except Exception as e:
            self._logger.error(f"Refresh check for {self.user_id} failed: {e}", exc_info=True)
            return RefreshOutcome.FAILED

    def _check(self, visits: Sequence[VisitRecord] | VisitHistoryProvider, wait: bool) -> RefreshOutcome:
        now = self._clock()
        if not self._claim_check_slot(now):
            return RefreshOutcome.SKIPPED_DEBOUNCED

        if callable(visits):
            visits = visits()

        if not visits:
            self._logger.info(f"No visits for {self.user_id}; skipping automatic refresh")
            return RefreshOutcome.SKIPPED_NO_VISITS

        if self._refresh_running():
            return RefreshOutcome.SKIPPED_IN_PROGRESS

        record = self._cache.get(force_refresh=False)
        if record is not None:
            if record.is_generating:
                self._logger.debug(f"Generation already in flight for {self.user_id}")
                return RefreshOutcome.SKIPPED_IN_PROGRESS
            if not self._is_stale(record, now):
                return RefreshOutcome.SKIPPED_FRESH

        limit = self._quota.check_limit()
        if not limit.can_request:
            self._logger.info(
                f"Analysis for {self.user_id} is stale but the daily quota is spent "
                f"(next slot {limit.next_available_time})"
            )
            return RefreshOutcome.SKIPPED_QUOTA

        reason = "missing" if record is None else "stale"
        self._logger.info(f"Analysis for {self.user_id} is {reason}; starting automatic refresh")

        if wait:
            return RefreshOutcome.TRIGGERED if self._run(visits) else RefreshOutcome.FAILED

        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=1, thread_name_prefix=f"refresh-{self.user_id}"
                )
            self._pending = self._executor.submit(self._run, list(visits))
        return RefreshOutcome.TRIGGERED

    def _claim_check_slot(self, now: datetime) -> bool:
        """Debounce: persist ``now`` as the last check unless one happened recently."""
        try:
            raw = self._local.get(self.debounce_key)
        except StorageError as e:
            self._logger.warning(f"Could not read last refresh check: {e}")
            raw = None

        if raw is not None:
            try:
                elapsed = epoch_millis(now) - int(raw)
            except ValueError:
                elapsed = None
            if elapsed is not None and 0 <= elapsed < self.check_interval.total_seconds() * 1000:
                return False

        try:
            self._local.set(self.debounce_key, str(epoch_millis(now)))
        except StorageError as e:
            self._logger.warning(f"Could not persist last refresh check: {e}")
        return True

    def _is_stale(self, record: AnalysisRecord, now: datetime) -> bool:
        try:
            interval = self._settings.get().refresh_interval
        except StorageError as e:
            self._logger.warning(f"Settings unavailable; treating analysis as fresh: {e}")
            return False
        return now - record.updated_at > interval

    def _refresh_running(self) -> bool:
        with self._lock:
            return self._pending is not None and not self._pending.done()

    def _run(self, visits: Sequence[VisitRecord]) -> bool:
        try:
            record = self._orchestrator.generate(visits)
        except TripSightError as e:
            self._logger.warning(f"Automatic refresh for {self.user_id} failed: {e}")
            return False
        except Exception as e:
            self._logger.error(
                f"Automatic refresh for {self.user_id} crashed: {e}", exc_info=True
            )
            return False
        self._logger.info(f"Automatic refresh committed analysis {record.record_id}")
        return True

    def wait_for_pending(self, timeout: float | None = None) -> bool | None:
        """Block until a background refresh finishes.

        Returns:
            Its success flag, or None if nothing was pending.
        """
        with self._lock:
            pending = self._pending
        if pending is None:
            return None
        return pending.result(timeout=timeout)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)
