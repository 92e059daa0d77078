"""Clock and timestamp helpers.

All components take an injectable ``clock`` so tests can pin "now".
Clocks return timezone-aware datetimes in the local zone; the quota day
boundary is evaluated in that zone.
"""

from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from typing import Callable

Clock = Callable[[], datetime]


def local_now() -> datetime:
    """Current time as an aware datetime in the local timezone."""
    return datetime.now().astimezone()


def epoch_millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def from_epoch_millis(millis: int, tz: timezone | None = None) -> datetime:
    return datetime.fromtimestamp(millis / 1000, tz=tz or timezone.utc)


def same_local_day(stored: datetime, now: datetime) -> bool:
    """Whether two instants fall on the same calendar day in now's zone.

    Naive datetimes are assumed to already be in now's zone.
    """
    if stored.tzinfo is not None and now.tzinfo is not None:
        stored = stored.astimezone(now.tzinfo)
    return stored.date() == now.date()


def next_local_midnight(now: datetime) -> datetime:
    """Start of the calendar day after ``now``, in now's zone."""
    tomorrow = now.date() + timedelta(days=1)
    return datetime.combine(tomorrow, time.min, tzinfo=now.tzinfo)
