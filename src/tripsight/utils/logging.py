"""Logging configuration for TripSight.

Console output goes through Rich; ``--log-file`` adds a plain-text file
log. Every record is stamped with the user the current thread is
generating for, so interleaved refreshes of several users can be told
apart in the file log.

Example:
    >>> from tripsight.utils.logging import setup_logging, LogContext
    >>> setup_logging(level="DEBUG", log_file=Path("~/.tripsight/logs/tripsight.log").expanduser())
    >>> with LogContext("Generating travel analysis", user_id="user-1"):
    ...     orchestrator_work()
    # file: ... | INFO     | user-1 | tripsight.analysis... | Generating travel analysis started
"""

from __future__ import annotations

import logging
import time
from contextvars import ContextVar, Token
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.logging import RichHandler

PACKAGE_NAME = "tripsight"

# Chatty SDK and transport loggers, capped at WARNING
NOISY_LOGGERS = [
    "google",
    "google.genai",
    "google_genai",
    "urllib3",
    "httpx",
    "httpcore",
    "keyring",
]

FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(user_id)s | %(name)s | %(threadName)s | %(message)s"
FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

NO_USER = "-"

_current_user: ContextVar[str] = ContextVar("tripsight_log_user", default=NO_USER)

_console = Console(stderr=True)


class UserContextFilter(logging.Filter):
    """Adds ``record.user_id`` from the active LogContext."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.user_id = _current_user.get()
        return True


def setup_logging(
    level: str = "INFO",
    log_file: Path | None = None,
    quiet_third_party: bool = True,
) -> None:
    """Configure the ``tripsight`` package logger.

    Replaces any handlers from an earlier call. The package logger stops
    propagating to the root logger so host applications keep their own
    formatting.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ...).
        log_file: Optional file receiving the same records.
        quiet_third_party: Cap SDK and HTTP loggers at WARNING.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    package_logger = logging.getLogger(PACKAGE_NAME)
    package_logger.setLevel(numeric_level)
    package_logger.handlers = []

    user_filter = UserContextFilter()
    console_handler = RichHandler(
        console=_console,
        show_time=False,
        show_path=False,
        rich_tracebacks=True,
        tracebacks_show_locals=numeric_level == logging.DEBUG,
        markup=False,
    )
    console_handler.setLevel(numeric_level)
    console_handler.addFilter(user_filter)
    package_logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=FILE_DATE_FORMAT))
        file_handler.addFilter(user_filter)
        package_logger.addHandler(file_handler)

    if quiet_third_party:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    package_logger.propagate = False
    package_logger.debug(f"Logging configured: level={level}, file={log_file}")


class LogContext:
    """Time a block, logging when it starts and how it ended.

    While the block runs, records logged from this thread carry
    ``user_id``. Exceptions are logged and re-raised, never suppressed.

    Attributes:
        operation: Description used in the log lines.
        elapsed: Seconds spent in the block (set on exit).
    """

    def __init__(
        self,
        operation: str,
        logger: logging.Logger | None = None,
        level: int = logging.INFO,
        user_id: str | None = None,
    ) -> None:
        self.operation = operation
        self.logger = logger or logging.getLogger(PACKAGE_NAME)
        self.level = level
        self.user_id = user_id
        self.elapsed: float = 0.0
        self._started: float = 0.0
        self._user_token: Token[str] | None = None

    def __enter__(self) -> "LogContext":
        if self.user_id:
            self._user_token = _current_user.set(self.user_id)
        self._started = time.perf_counter()
        self.logger.log(self.level, f"{self.operation} started")
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        self.elapsed = time.perf_counter() - self._started
        try:
            if exc_type is None:
                self.logger.log(self.level, f"{self.operation} finished in {self.elapsed:.2f}s")
            else:
                self.logger.warning(
                    f"{self.operation} aborted after {self.elapsed:.2f}s "
                    f"({exc_type.__name__}: {exc_val})"
                )
        finally:
            if self._user_token is not None:
                _current_user.reset(self._user_token)
                self._user_token = None
