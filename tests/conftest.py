"""Central Pytest Fixtures for TripSight.

This module provides reusable test data, fake collaborators and wired-up
components across all test modules.

Fixtures included:
- Time: clock (a FakeClock pinned to a fixed local zone)
- Stores: remote_store, local_store
- Provider: provider (a scripted FakeProvider)
- Visits: sample_visits (7 visits, 2 years, 4 categories)
- Components: harness (settings, quota, progress, cache, orchestrator, scheduler)
- Config: mock_config (MagicMock AppConfig for the Gemini client)
"""

from __future__ import annotations

import copy
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable
from unittest.mock import MagicMock

import pytest

from tripsight.ai.prompts import PROMPTS, PromptTemplate
from tripsight.analysis.cache import TieredCache
from tripsight.analysis.orchestrator import (
    GenerationOrchestrator,
    OrchestratorConfig,
    validate_section,
)
from tripsight.analysis.progress import ProgressTracker
from tripsight.analysis.quota import QuotaLimiter
from tripsight.analysis.scheduler import RefreshScheduler
from tripsight.analysis.settings import SettingsStore
from tripsight.core.models import SECTION_FIELDS, AnalysisRecord, SectionKind, VisitRecord
from tripsight.storage.base import ANALYSIS_COLLECTION
from tripsight.storage.local import MemoryKeyValueStore
from tripsight.storage.remote import InMemoryRemoteStore

# Fixed "local" zone so day boundaries are deterministic
LOCAL_TZ = timezone(timedelta(hours=2))

USER_ID = "user-1"


# =============================================================================
# Helper Classes & Functions
# =============================================================================


class FakeClock:
    """Injectable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 6, 10, 12, 0, tzinfo=LOCAL_TZ)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now

    def set(self, moment: datetime) -> None:
        self.now = moment


def section_payload(kind: SectionKind) -> dict[str, Any]:
    """A valid camelCase provider reply for ``kind``."""
    payload = copy.deepcopy(PROMPTS[kind].output_schema)
    if kind is SectionKind.COMPARATIVE:
        payload["archetypeAnalysis"]["primaryArchetype"] = "Culture Seeker"
    if kind is SectionKind.PREDICTIVE:
        payload["recommendedDestinations"][0]["name"] = "Lisbon"
    return payload


class FakeProvider:
    """ContentProvider returning scripted replies per section.

    A scripted reply may be a dict (returned), an Exception (raised) or a
    callable taking the visit shapes.
    """

    def __init__(
        self,
        responses: dict[SectionKind, Any] | None = None,
        delay: float = 0.0,
    ) -> None:
        self.responses = dict(responses or {})
        self.delay = delay
        self.calls: list[tuple[SectionKind, list[dict[str, Any]]]] = []
        self._lock = threading.Lock()

    def generate(
        self, template: PromptTemplate, visit_shapes: list[dict[str, Any]]
    ) -> dict[str, Any]:
        kind = template.section
        with self._lock:
            self.calls.append((kind, visit_shapes))
        if self.delay:
            time.sleep(self.delay)

        response = self.responses.get(kind)
        if response is None:
            return section_payload(kind)
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(visit_shapes)
        return copy.deepcopy(response)

    def called_sections(self) -> set[SectionKind]:
        with self._lock:
            return {kind for kind, _ in self.calls}


def make_visit(
    name: str,
    visited_at: datetime,
    place_type: str = "museum",
    rating: float | None = 4.5,
    **extra: Any,
) -> VisitRecord:
    return VisitRecord(
        name=name,
        location=f"{name} Street 1",
        place_type=place_type,
        categories=[place_type],
        visited_at=visited_at,
        rating=rating,
        **extra,
    )


def make_record(created_at: datetime, based_on_places: int = 7, **overrides: Any) -> AnalysisRecord:
    """A complete, valid AnalysisRecord created at ``created_at``."""
    sections = {
        SECTION_FIELDS[kind]: validate_section(kind, section_payload(kind)) for kind in SectionKind
    }
    fields: dict[str, Any] = {
        "user_id": USER_ID,
        "created_at": created_at,
        "updated_at": created_at,
        "last_refreshed": created_at,
        "next_refresh_due": created_at + timedelta(hours=24),
        "based_on_places": based_on_places,
        "analysis_quality": 52,
        "confidence_score": 52,
        **sections,
    }
    fields.update(overrides)
    return AnalysisRecord(**fields)


@dataclass
class Harness:
    """One user's components wired over in-memory stores."""

    clock: FakeClock
    remote: InMemoryRemoteStore
    local: MemoryKeyValueStore
    provider: FakeProvider
    settings: SettingsStore
    quota: QuotaLimiter
    progress: ProgressTracker
    cache: TieredCache
    orchestrator: GenerationOrchestrator
    scheduler: RefreshScheduler

    def committed_count(self) -> int:
        return self.remote.count_records(USER_ID, ANALYSIS_COLLECTION)


def build_harness(
    clock: FakeClock,
    provider: FakeProvider,
    remote: InMemoryRemoteStore | None = None,
    local: MemoryKeyValueStore | None = None,
    config: OrchestratorConfig | None = None,
    daily_budget: int = 5,
) -> Harness:
    remote = remote or InMemoryRemoteStore()
    local = local or MemoryKeyValueStore()
    settings = SettingsStore(USER_ID, remote, local)
    quota = QuotaLimiter(settings, daily_budget=daily_budget, clock=clock)
    progress = ProgressTracker(USER_ID, remote, local, clock=clock)
    cache = TieredCache.build(USER_ID, remote, local, settings, progress, clock=clock)
    orchestrator = GenerationOrchestrator(
        USER_ID,
        provider,
        cache,
        quota,
        progress,
        config=config or OrchestratorConfig(subtask_timeout_seconds=5.0),
        clock=clock,
    )
    scheduler = RefreshScheduler(
        USER_ID, orchestrator, cache, quota, settings, local, clock=clock
    )
    return Harness(
        clock, remote, local, provider, settings, quota, progress, cache, orchestrator, scheduler
    )


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo setup_logging() side effects so caplog sees package records."""
    yield
    package_logger = logging.getLogger("tripsight")
    for handler in package_logger.handlers:
        handler.close()
    package_logger.handlers = []
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def remote_store() -> InMemoryRemoteStore:
    return InMemoryRemoteStore()


@pytest.fixture
def local_store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def sample_visits() -> list[VisitRecord]:
    """7 visits across 2023 and 2024 in 4 categories, deliberately out of order."""
    return [
        make_visit("Prado", datetime(2024, 3, 2, 10, tzinfo=LOCAL_TZ), "museum"),
        make_visit("Retiro", datetime(2023, 5, 14, 9, tzinfo=LOCAL_TZ), "park"),
        make_visit("Botin", datetime(2023, 5, 14, 20, tzinfo=LOCAL_TZ), "restaurant"),
        make_visit("Cafe Gijon", datetime(2024, 3, 3, 8, tzinfo=LOCAL_TZ), "cafe"),
        make_visit("Reina Sofia", datetime(2023, 11, 1, 15, tzinfo=LOCAL_TZ), "museum"),
        make_visit("Casa Lucio", datetime(2024, 7, 8, 21, tzinfo=LOCAL_TZ), "restaurant", rating=None),
        make_visit("El Capricho", datetime(2023, 9, 9, 11, tzinfo=LOCAL_TZ), "park"),
    ]


@pytest.fixture
def harness(clock: FakeClock, provider: FakeProvider) -> Harness:
    h = build_harness(clock, provider)
    yield h
    h.scheduler.shutdown(wait=True)


@pytest.fixture
def harness_factory(clock: FakeClock) -> Callable[..., Harness]:
    """Build harnesses with custom providers or configs."""
    created: list[Harness] = []

    def factory(provider: FakeProvider | None = None, **kwargs: Any) -> Harness:
        h = build_harness(clock, provider or FakeProvider(), **kwargs)
        created.append(h)
        return h

    yield factory
    for h in created:
        h.scheduler.shutdown(wait=True)


@pytest.fixture
def mock_config():
    """Create a mock AppConfig."""
    config = MagicMock()
    config.ai.mode.value = "enabled"
    config.ai.is_enabled.return_value = True
    config.ai.model_name = "gemini-2.0-flash"
    config.ai.temperature = 0.4
    config.ai.max_output_tokens = 8192
    config.ai.timeout_seconds = 60
    config.ai.max_retries = 3
    config.ai.retry_base_delay = 0.01  # Fast for tests
    return config


@pytest.fixture
def mock_disabled_config():
    """Create a mock AppConfig with AI disabled."""
    config = MagicMock()
    config.ai.mode.value = "disabled"
    config.ai.is_enabled.return_value = False
    return config
