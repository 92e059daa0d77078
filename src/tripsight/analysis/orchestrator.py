"""Generation orchestrator: visits in, one committed AnalysisRecord out.

Flow of ``generate()``:

1. Reject (no side effects) if the quota is spent or there are no visits.
2. Progress: Idle -> Generating ("Preparing visit data", 5%).
3. Project each visit into a compact shape; the temporal sub-task gets
   them sorted chronologically.
4. Fan out the six sub-tasks to the content provider. Each result is
   validated into its section model as soon as it arrives. Any failure,
   timeout or cancellation fails the whole generation.
5. Compute derived scores and assemble the record.
6. Commit through the tiered cache (remote append first).
7. Count the generation against the daily quota.
8. Progress: Generating -> Terminal(success).

On failure the progress goes to Terminal(failure), nothing is committed,
the quota is untouched and the error propagates to the caller.

Sub-tasks run on a thread pool by default. ``GenerationConfig.concurrent =
False`` runs them one at a time with a progress step before each, for
providers that enforce their own concurrency limits. Either way only the
orchestrating thread writes progress.

Example:
    >>> orchestrator = GenerationOrchestrator("user-1", provider, cache, quota, progress)
    >>> record = orchestrator.generate(visits)
    >>> record.analysis_quality, record.confidence_score
    (52, 52)
"""

from __future__ import annotations

import logging
import math
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Iterable, Mapping, Sequence

from pydantic import TypeAdapter, ValidationError

from tripsight.ai.prompts import PROMPTS, PromptTemplate
from tripsight.ai.provider import ContentProvider
from tripsight.analysis.cache import TieredCache
from tripsight.analysis.progress import ProgressTracker
from tripsight.analysis.quota import QuotaLimiter
from tripsight.config import AppConfig
from tripsight.core.models import (
    SECTION_FIELDS,
    AnalysisRecord,
    AnalysisSection,
    SectionKind,
    VisitRecord,
)
from tripsight.errors import (
    GenerationCancelledError,
    GenerationInProgressError,
    InvalidInputError,
    ProviderError,
    QuotaExceededError,
    SectionValidationError,
    SubtaskTimeoutError,
)
from tripsight.utils.logging import LogContext
from tripsight.utils.timeutil import Clock, local_now

logger = logging.getLogger(__name__)

PREPARING_STAGE = "Preparing visit data for analysis"
COMPILING_STAGE = "Compiling comprehensive analysis"

# Sub-task order and the progress step shown before each in sequential mode
SUBTASK_STAGES: list[tuple[SectionKind, int, str]] = [
    (SectionKind.TEMPORAL, 15, "Analyzing temporal travel patterns"),
    (SectionKind.SPATIAL, 30, "Analyzing spatial relationships"),
    (SectionKind.BEHAVIORAL, 45, "Analyzing behavioral patterns"),
    (SectionKind.PREDICTIVE, 60, "Generating predictive analysis"),
    (SectionKind.INSIGHTS, 75, "Deriving analytical insights"),
    (SectionKind.COMPARATIVE, 90, "Creating comparative analysis"),
]

FANOUT_START = 15
FANOUT_END = 90

# Confidence never drops below this, whatever the input quality
CONFIDENCE_FLOOR = 50

_SECTION_ADAPTER: TypeAdapter[Any] = TypeAdapter(AnalysisSection)


# =============================================================================
# Configuration & Cancellation
# =============================================================================


@dataclass
class OrchestratorConfig:
    """Fan-out settings.

    Attributes:
        concurrent: Run sub-tasks on a thread pool (False = one at a time).
        max_workers: Pool size when concurrent.
        subtask_timeout_seconds: Wait bound per sub-task. With fewer workers
            than sub-tasks the bound is multiplied by the number of waves.
        refresh_interval: Added to "now" for ``next_refresh_due``.
    """

    concurrent: bool = True
    max_workers: int = 6
    subtask_timeout_seconds: float = 90.0
    refresh_interval: timedelta = timedelta(hours=24)

    @classmethod
    def from_app_config(cls, config: AppConfig) -> "OrchestratorConfig":
        return cls(
            concurrent=config.generation.concurrent,
            max_workers=config.generation.max_workers,
            subtask_timeout_seconds=config.generation.subtask_timeout_seconds,
            refresh_interval=config.refresh.refresh_interval,
        )


class CancellationToken:
    """Cooperative cancellation for an in-flight generation.

    Checked between stages and before each sub-task starts; sub-tasks
    already talking to the provider finish but their results are dropped.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise GenerationCancelledError()


# =============================================================================
# Scoring
# =============================================================================


def compute_quality(visits: Sequence[VisitRecord]) -> int:
    """Heuristic 0-100 score rewarding volume, time span and diversity.

    Each factor is capped so no single dimension dominates:
    ``20 + min(40, 2*visits) + min(20, 5*years) + min(20, 2*categories)``.
    """
    years = {visit.visited_at.year for visit in visits}
    categories: set[str] = set()
    for visit in visits:
        categories |= visit.category_set()

    score = (
        20
        + min(40, 2 * len(visits))
        + min(20, 5 * len(years))
        + min(20, 2 * len(categories))
    )
    return max(0, min(100, score))


def compute_confidence(quality: int) -> int:
    return max(CONFIDENCE_FLOOR, min(100, quality))


def normalize_visits(
    visits: Iterable[VisitRecord],
) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    """Project visits for the provider.

    Returns:
        (shapes in input order, shapes sorted by visit time)
    """
    ordered = list(visits)
    shapes = [visit.to_prompt_shape() for visit in ordered]
    chronological = [
        shape
        for _, shape in sorted(zip(ordered, shapes), key=lambda pair: pair[0].visited_at.timestamp())
    ]
    return shapes, chronological


def validate_section(kind: SectionKind, data: Mapping[str, Any]) -> Any:
    """Validate provider output into the section model for ``kind``.

    Raises:
        SectionValidationError: On a missing or wrongly-typed field.
    """
    try:
        return _SECTION_ADAPTER.validate_python({**data, "kind": kind.value})
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise SectionValidationError(
            f"Invalid {kind.value} analysis from provider: "
            f"{e.error_count()} problem(s), first at '{location}': {first.get('msg')}",
            section=kind.value,
            original_error=e,
        ) from e


# =============================================================================
# Orchestrator
# =============================================================================


class GenerationOrchestrator:
    """Turns a visit history into one committed AnalysisRecord for one user.

    Attributes:
        user_id: Owning user.
        config: Fan-out settings.
    """

    POLL_INTERVAL: float = 0.1

    def __init__(
        self,
        user_id: str,
        provider: ContentProvider,
        cache: TieredCache,
        quota: QuotaLimiter,
        progress: ProgressTracker,
        config: OrchestratorConfig | None = None,
        clock: Clock = local_now,
        prompts: Mapping[SectionKind, PromptTemplate] | None = None,
    ) -> None:
        self.user_id = user_id
        self._provider = provider
        self._cache = cache
        self._quota = quota
        self._progress = progress
        self.config = config or OrchestratorConfig()
        self._clock = clock
        self._prompts = dict(prompts or PROMPTS)
        self._run_lock = threading.Lock()
        self._logger = logging.getLogger(f"{__name__}.GenerationOrchestrator")

    def generate(
        self,
        visits: Sequence[VisitRecord | Mapping[str, Any]],
        cancel_token: CancellationToken | None = None,
    ) -> AnalysisRecord:
        """Generate, commit and return a new analysis.

        Raises:
            QuotaExceededError: Daily budget spent (no side effects).
            InvalidInputError: Empty or malformed visit list (no side effects).
            GenerationInProgressError: Another generation for this user is
                running in this process.
            ProviderError: A sub-task failed, timed out or was cancelled.
            StorageError: The remote commit failed.
        """
        limit = self._quota.check_limit()
        if not limit.can_request:
            raise QuotaExceededError(limit.next_available_time, requests_remaining=0)

        records = self._coerce_visits(visits)
        if not records:
            raise InvalidInputError("No visits to analyze")

        if not self._run_lock.acquire(blocking=False):
            raise GenerationInProgressError(
                f"An analysis is already being generated for {self.user_id}"
            )

        token = cancel_token or CancellationToken()
        try:
            self._progress.start(PREPARING_STAGE, 5)
            try:
                with LogContext(
                    f"Generating travel analysis for {self.user_id} ({len(records)} visits)",
                    logger=self._logger,
                    user_id=self.user_id,
                ):
                    token.raise_if_cancelled()
                    shapes, chronological = normalize_visits(records)
                    sections = self._run_subtasks(shapes, chronological, token)

                    token.raise_if_cancelled()
                    self._progress.advance(95, COMPILING_STAGE)
                    committed = self._cache.commit(self._assemble(records, sections))
            except Exception:
                self._progress.fail()
                raise

            self._quota.record_request()
            self._progress.complete()
            return committed
        finally:
            self._run_lock.release()

    # -------------------------------------------------------------------------

    @staticmethod
    def _coerce_visits(visits: Sequence[VisitRecord | Mapping[str, Any]]) -> list[VisitRecord]:
        records: list[VisitRecord] = []
        for index, visit in enumerate(visits or []):
            if isinstance(visit, VisitRecord):
                records.append(visit)
                continue
            try:
                records.append(VisitRecord.model_validate(visit))
            except ValidationError as e:
                raise InvalidInputError(
                    f"Visit #{index} is malformed: {e.error_count()} problem(s)",
                    details={"index": index},
                ) from e
        return records

    def _run_subtasks(
        self,
        shapes: list[dict[str, Any]],
        chronological: list[dict[str, Any]],
        token: CancellationToken,
    ) -> dict[SectionKind, Any]:
        inputs = {
            kind: chronological if kind is SectionKind.TEMPORAL else shapes
            for kind, _, _ in SUBTASK_STAGES
        }
        workers = self.config.max_workers if self.config.concurrent else 1

        executor = ThreadPoolExecutor(
            max_workers=min(workers, len(SUBTASK_STAGES)),
            thread_name_prefix="analysis-subtask",
        )
        try:
            if workers > 1:
                return self._run_concurrent(executor, inputs, token, workers)
            return self._run_sequential(executor, inputs, token)
        finally:
            # Running provider calls cannot be interrupted; queued ones are dropped
            executor.shutdown(wait=False, cancel_futures=True)

    def _run_concurrent(
        self,
        executor: ThreadPoolExecutor,
        inputs: dict[SectionKind, list[dict[str, Any]]],
        token: CancellationToken,
        workers: int,
    ) -> dict[SectionKind, Any]:
        total = len(SUBTASK_STAGES)
        self._logger.info(f"Running {total} analysis sub-tasks in parallel (max_workers={workers})")

        futures = {
            executor.submit(self._run_subtask, kind, inputs[kind], token): kind
            for kind, _, _ in SUBTASK_STAGES
        }
        self._progress.advance(FANOUT_START, f"Analyzing travel history (0/{total} sections)")

        waves = math.ceil(total / min(workers, total))
        results: dict[SectionKind, Any] = {}

        def on_done(kind: SectionKind, section: Any) -> None:
            results[kind] = section
            done = len(results)
            value = FANOUT_START + (FANOUT_END - FANOUT_START) * done // total
            self._progress.advance(value, f"Completed {kind.label} ({done}/{total} sections)")

        self._await(futures, self.config.subtask_timeout_seconds * waves, token, on_done)
        return results

    def _run_sequential(
        self,
        executor: ThreadPoolExecutor,
        inputs: dict[SectionKind, list[dict[str, Any]]],
        token: CancellationToken,
    ) -> dict[SectionKind, Any]:
        self._logger.info(f"Running {len(SUBTASK_STAGES)} analysis sub-tasks sequentially")
        results: dict[SectionKind, Any] = {}

        for kind, value, stage in SUBTASK_STAGES:
            token.raise_if_cancelled()
            self._progress.advance(value, stage)
            future = executor.submit(self._run_subtask, kind, inputs[kind], token)
            self._await(
                {future: kind},
                self.config.subtask_timeout_seconds,
                token,
                lambda k, section: results.__setitem__(k, section),
            )
        return results

    def _await(
        self,
        futures: dict[Future, SectionKind],
        budget_seconds: float,
        token: CancellationToken,
        on_done: Any,
    ) -> None:
        """Join ``futures``, failing fast on the first error.

        ``on_done(kind, section)`` runs on this thread for every success.
        """
        pending = set(futures)
        deadline = time.monotonic() + budget_seconds

        while pending:
            if token.cancelled:
                token.raise_if_cancelled()
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                late = sorted(futures[f].value for f in pending)
                raise SubtaskTimeoutError(
                    late[0],
                    self.config.subtask_timeout_seconds,
                    message=(
                        f"Analysis sub-task(s) {', '.join(late)} did not finish "
                        f"within {budget_seconds:.0f}s"
                    ),
                )

            done, pending = wait(
                pending,
                timeout=min(remaining, self.POLL_INTERVAL),
                return_when=FIRST_COMPLETED,
            )
            for future in done:
                kind = futures[future]
                # Re-raises the sub-task's ProviderError
                on_done(kind, future.result())

    def _run_subtask(
        self,
        kind: SectionKind,
        visit_shapes: list[dict[str, Any]],
        token: CancellationToken,
    ) -> Any:
        """Call the provider for one section and validate the result.

        Runs on a worker thread; must not touch progress.
        """
        token.raise_if_cancelled()
        template = self._prompts[kind]
        started = time.perf_counter()
        try:
            data = self._provider.generate(template, visit_shapes)
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(
                f"{kind.value} analysis failed: {type(e).__name__}: {e}",
                section=kind.value,
                original_error=e,
            ) from e

        if not isinstance(data, Mapping):
            raise SectionValidationError(
                f"Provider returned {type(data).__name__} for {kind.value} analysis",
                section=kind.value,
            )
        section = validate_section(kind, data)
        self._logger.debug(f"{kind.value} analysis ready in {time.perf_counter() - started:.2f}s")
        return section

    def _assemble(
        self, visits: Sequence[VisitRecord], sections: dict[SectionKind, Any]
    ) -> AnalysisRecord:
        missing = [kind.value for kind, _, _ in SUBTASK_STAGES if kind not in sections]
        if missing:
            raise ProviderError(f"Analysis incomplete; missing sections: {', '.join(missing)}")

        now = self._clock()
        quality = compute_quality(visits)
        payload = {SECTION_FIELDS[kind]: section for kind, section in sections.items()}
        return AnalysisRecord(
            user_id=self.user_id,
            created_at=now,
            updated_at=now,
            last_refreshed=now,
            next_refresh_due=now + self.config.refresh_interval,
            is_generating=False,
            based_on_places=len(visits),
            analysis_quality=quality,
            confidence_score=compute_confidence(quality),
            **payload,
        )
