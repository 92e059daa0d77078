"""Daily regeneration quota.

The budget resets at local midnight. The reset is lazy: nothing rolls the
counter over when the day changes. Every check compares the stored
``last_request_date`` with "now" and treats a different calendar day as a
fresh budget; the counter itself is only rewritten by the next
``record_request()``.

Limiter failures are permissive. If the settings store cannot be read the
check reports ``can_request=True``: over-permitting a regeneration is
preferred to silently disabling the feature during a storage outage.

Example:
    >>> limiter = QuotaLimiter(settings_store, daily_budget=5)
    >>> info = limiter.check_limit()
    >>> info.requests_remaining
    5
    >>> limiter.record_request()
    >>> limiter.check_limit().requests_remaining
    4
"""

from __future__ import annotations

import logging
from datetime import datetime

from tripsight.analysis.settings import SettingsStore
from tripsight.core.models import LimitInfo, RequestLimits
from tripsight.errors import StorageError
from tripsight.utils.timeutil import Clock, local_now, next_local_midnight, same_local_day

logger = logging.getLogger(__name__)

DEFAULT_DAILY_BUDGET = 5


def is_new_day(limits: RequestLimits | None, now: datetime) -> bool:
    """Whether ``now`` starts a fresh budget relative to the stored limits."""
    if limits is None:
        return True
    return not same_local_day(limits.last_request_date, now)


class QuotaLimiter:
    """Per-user daily budget on successful regenerations.

    Attributes:
        daily_budget: Regenerations allowed per local calendar day.
    """

    def __init__(
        self,
        settings: SettingsStore,
        daily_budget: int = DEFAULT_DAILY_BUDGET,
        clock: Clock = local_now,
    ) -> None:
        self._settings = settings
        self.daily_budget = daily_budget
        self._clock = clock
        self._logger = logging.getLogger(f"{__name__}.QuotaLimiter")

    def check_limit(self) -> LimitInfo:
        """Report whether a regeneration may start now. Never raises."""
        now = self._clock()
        try:
            limits = self._settings.get().request_limits
        except StorageError as e:
            self._logger.warning(f"Quota check failed, allowing request: {e}")
            return LimitInfo(can_request=True, requests_remaining=self.daily_budget)

        if is_new_day(limits, now):
            return LimitInfo(can_request=True, requests_remaining=self.daily_budget)

        remaining = max(0, self.daily_budget - limits.request_count)
        return LimitInfo(
            can_request=remaining > 0,
            requests_remaining=remaining,
            next_available_time=limits.next_available_time,
        )

    def record_request(self) -> RequestLimits | None:
        """Count one successful regeneration against today's budget.

        Returns:
            The persisted limits, or None if they could not be written.
        """
        now = self._clock()
        try:
            limits = self._settings.get().request_limits
            count = 1 if is_new_day(limits, now) else limits.request_count + 1

            next_available = next_local_midnight(now) if count >= self.daily_budget else None
            updated = RequestLimits(
                request_count=count,
                last_request_date=now,
                next_available_time=next_available,
            )
            self._settings.update(request_limits=updated)
        except StorageError as e:
            self._logger.error(f"Failed to record regeneration against quota: {e}")
            return None

        self._logger.info(
            f"Quota for {self._settings.user_id}: {count}/{self.daily_budget} used today"
        )
        return updated
