"""Exception hierarchy for analysis generation and caching.

All errors raised by the orchestrator, cache and stores inherit from
TripSightError so presentation code can catch a single type and show
one descriptive message with a retry affordance.

Taxonomy:
    - QuotaExceededError: daily regeneration budget is spent
    - InvalidInputError: rejected before any side effect (e.g. no visits)
    - ProviderError: any sub-task failure, including malformed output,
      timeouts and cancellation
    - StorageError: a cache tier or settings store could not be reached

Example:
    >>> try:
    ...     service.generate(visits)
    ... except QuotaExceededError as e:
    ...     print(f"Try again after {e.next_available_time}")
    ... except TripSightError as e:
    ...     print(f"Analysis failed: {e}")
"""

from __future__ import annotations

from datetime import datetime
from typing import Any


class TripSightError(Exception):
    """Base exception for all analysis errors.

    Attributes:
        message: Human-readable error description (safe to log).
        details: Additional error context.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class QuotaExceededError(TripSightError):
    """The daily regeneration budget has been used up.

    Never retried automatically. Callers should surface
    ``next_available_time`` to the user.

    Attributes:
        next_available_time: When a new request will be accepted.
        requests_remaining: Always 0 when raised by the orchestrator.
    """

    def __init__(
        self,
        next_available_time: datetime | None,
        requests_remaining: int = 0,
        message: str | None = None,
    ) -> None:
        if message is None:
            if next_available_time is not None:
                message = (
                    "Daily analysis limit reached. "
                    f"Next analysis available at {next_available_time.isoformat()}"
                )
            else:
                message = "Daily analysis limit reached."
        super().__init__(
            message,
            details={
                "next_available_time": next_available_time,
                "requests_remaining": requests_remaining,
            },
        )
        self.next_available_time = next_available_time
        self.requests_remaining = requests_remaining


class InvalidInputError(TripSightError):
    """Input rejected before any side effect took place."""

    pass


class GenerationInProgressError(TripSightError):
    """A generation for this user is already running in this process."""

    pass


class ProviderError(TripSightError):
    """A generation sub-task failed.

    Aborts the whole generation: nothing is committed and no quota is
    consumed.

    Attributes:
        section: Which analysis section failed, if known.
        original_error: Underlying exception, if any.
    """

    def __init__(
        self,
        message: str,
        section: str | None = None,
        original_error: Exception | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.section = section
        self.original_error = original_error


class MalformedOutputError(ProviderError):
    """The provider returned something that is not a JSON object."""

    pass


class SectionValidationError(ProviderError):
    """Provider output did not match the section's schema."""

    pass


class SubtaskTimeoutError(ProviderError):
    """A sub-task did not finish within its time budget.

    Attributes:
        timeout_seconds: The budget that was exceeded.
    """

    def __init__(
        self,
        section: str | None,
        timeout_seconds: float,
        message: str | None = None,
    ) -> None:
        msg = message or f"Analysis sub-task '{section}' timed out after {timeout_seconds}s"
        super().__init__(msg, section=section)
        self.timeout_seconds = timeout_seconds


class GenerationCancelledError(ProviderError):
    """The caller cancelled an in-flight generation."""

    def __init__(self, message: str = "Analysis generation was cancelled") -> None:
        super().__init__(message)


class StorageError(TripSightError):
    """A persistence backend failed.

    Attributes:
        operation: What was being attempted (e.g. "append", "read").
        original_error: Underlying exception, if any.
    """

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, details={"operation": operation})
        self.operation = operation
        self.original_error = original_error
