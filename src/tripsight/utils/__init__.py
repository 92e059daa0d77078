"""Utility helpers (logging setup, clocks)."""

from tripsight.utils.logging import LogContext, setup_logging
from tripsight.utils.timeutil import Clock, epoch_millis, from_epoch_millis, local_now

__all__ = [
    "setup_logging",
    "LogContext",
    "Clock",
    "local_now",
    "epoch_millis",
    "from_epoch_millis",
]
