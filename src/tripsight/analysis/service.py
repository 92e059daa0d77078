"""Per-process facade over the analysis components.

AnalysisService wires one UserSession (settings, quota, progress, cache,
orchestrator, scheduler) per user id on first use and routes every call to
the session of the current user. Presentation code talks only to this
class.

"No current user" is never an error: every call becomes a no-op that
returns None (or ``RefreshOutcome.SKIPPED_NO_USER``).

Example:
    >>> identity = MutableIdentity()
    >>> service = AnalysisService.from_config(identity)
    >>> service.get_analysis() is None  # signed out
    True
    >>> identity.sign_in("user-1")
    >>> service.check_limit().requests_remaining
    5
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Protocol, Sequence

from pydantic import ValidationError

from tripsight.ai.client import AIClient
from tripsight.ai.provider import ContentProvider, GeminiContentProvider
from tripsight.analysis.cache import TieredCache
from tripsight.analysis.orchestrator import (
    CancellationToken,
    GenerationOrchestrator,
    OrchestratorConfig,
)
from tripsight.analysis.progress import ProgressTracker
from tripsight.analysis.quota import QuotaLimiter
from tripsight.analysis.scheduler import RefreshOutcome, RefreshScheduler, VisitHistoryProvider
from tripsight.analysis.settings import SettingsStore
from tripsight.config import AppConfig, get_config
from tripsight.core.models import AnalysisRecord, LimitInfo, ProgressState, VisitRecord
from tripsight.errors import InvalidInputError
from tripsight.storage.base import KeyValueStore, RemoteStore
from tripsight.storage.local import FileKeyValueStore
from tripsight.storage.remote import FileRemoteStore
from tripsight.utils.timeutil import Clock, local_now

logger = logging.getLogger(__name__)


# =============================================================================
# Identity
# =============================================================================


class IdentityProvider(Protocol):
    def current_user_id(self) -> str | None: ...


class StaticIdentity:
    """A fixed user (or nobody)."""

    def __init__(self, user_id: str | None) -> None:
        self._user_id = user_id or None

    def current_user_id(self) -> str | None:
        return self._user_id


class MutableIdentity:
    """Identity that follows sign-in / sign-out."""

    def __init__(self, user_id: str | None = None) -> None:
        self._user_id = user_id or None
        self._lock = threading.Lock()

    def sign_in(self, user_id: str) -> None:
        with self._lock:
            self._user_id = user_id

    def sign_out(self) -> None:
        with self._lock:
            self._user_id = None

    def current_user_id(self) -> str | None:
        with self._lock:
            return self._user_id


# =============================================================================
# Visit Input
# =============================================================================


def load_visits(path: Path) -> list[VisitRecord]:
    """Read a visit history export.

    Accepts a JSON array of visits or an object with a ``visits`` array.
    Keys may be camelCase or snake_case.

    Raises:
        InvalidInputError: If the file is unreadable or a visit is malformed.
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as e:
        raise InvalidInputError(f"Cannot read visit history {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise InvalidInputError(f"Visit history {path} is not valid JSON: {e}") from e

    if isinstance(data, dict):
        data = data.get("visits", [])
    if not isinstance(data, list):
        raise InvalidInputError(f"Visit history {path} must contain a list of visits")

    visits: list[VisitRecord] = []
    for index, item in enumerate(data):
        try:
            visits.append(VisitRecord.model_validate(item))
        except ValidationError as e:
            raise InvalidInputError(
                f"Visit #{index} in {path} is malformed: {e.error_count()} problem(s)",
                details={"index": index},
            ) from e
    logger.info(f"Loaded {len(visits)} visits from {path}")
    return visits


# =============================================================================
# Service
# =============================================================================


@dataclass
class UserSession:
    """All analysis components for one user."""

    user_id: str
    settings: SettingsStore
    quota: QuotaLimiter
    progress: ProgressTracker
    cache: TieredCache
    orchestrator: GenerationOrchestrator
    scheduler: RefreshScheduler


class AnalysisService:
    """Entry point for presentation code.

    Attributes:
        config: Application configuration the sessions are built from.
    """

    def __init__(
        self,
        identity: IdentityProvider,
        remote_store: RemoteStore,
        local_store: KeyValueStore,
        provider: ContentProvider,
        config: AppConfig | None = None,
        clock: Clock = local_now,
    ) -> None:
        self._identity = identity
        self._remote = remote_store
        self._local = local_store
        self._provider = provider
        self.config = config or get_config()
        self._clock = clock
        self._sessions: dict[str, UserSession] = {}
        self._lock = threading.Lock()
        self._logger = logging.getLogger(f"{__name__}.AnalysisService")

    @classmethod
    def from_config(
        cls,
        identity: IdentityProvider,
        config: AppConfig | None = None,
        provider: ContentProvider | None = None,
    ) -> "AnalysisService":
        """Build a service over the file-backed stores under ``paths.data_dir``.

        The Gemini client is created without checking for an API key; a
        missing key surfaces as a ProviderError on the first generation.
        """
        config = config or get_config()
        if provider is None:
            provider = GeminiContentProvider(AIClient(config=config))
        return cls(
            identity=identity,
            remote_store=FileRemoteStore(config.paths.remote_store_dir),
            local_store=FileKeyValueStore(config.paths.local_store_dir),
            provider=provider,
            config=config,
        )

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    def session(self, user_id: str | None = None) -> UserSession | None:
        """Session for ``user_id`` (default: the current user), built on first use."""
        user_id = user_id or self._identity.current_user_id()
        if not user_id:
            return None
        with self._lock:
            session = self._sessions.get(user_id)
            if session is None:
                session = self._build_session(user_id)
                self._sessions[user_id] = session
            return session

    def _build_session(self, user_id: str) -> UserSession:
        cfg = self.config
        settings = SettingsStore(
            user_id,
            self._remote,
            self._local,
            default_refresh_interval=cfg.refresh.refresh_interval,
        )
        quota = QuotaLimiter(settings, daily_budget=cfg.quota.daily_budget, clock=self._clock)
        progress = ProgressTracker(
            user_id,
            self._remote,
            self._local,
            clock=self._clock,
            stale_after=timedelta(seconds=cfg.generation.stale_after_seconds),
        )
        cache = TieredCache.build(
            user_id,
            self._remote,
            self._local,
            settings,
            progress,
            memory_ttl=cfg.cache.memory_ttl,
            clock=self._clock,
        )
        orchestrator = GenerationOrchestrator(
            user_id,
            self._provider,
            cache,
            quota,
            progress,
            config=OrchestratorConfig.from_app_config(cfg),
            clock=self._clock,
        )
        scheduler = RefreshScheduler(
            user_id,
            orchestrator,
            cache,
            quota,
            settings,
            self._local,
            check_interval=cfg.refresh.check_interval,
            clock=self._clock,
        )
        self._logger.debug(f"Created analysis session for {user_id}")
        return UserSession(user_id, settings, quota, progress, cache, orchestrator, scheduler)

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def get_analysis(self, force_refresh: bool = False) -> AnalysisRecord | None:
        session = self.session()
        if session is None:
            return None
        return session.cache.get(force_refresh=force_refresh)

    def generate(
        self,
        visits: Sequence[VisitRecord | dict[str, Any]],
        cancel_token: CancellationToken | None = None,
    ) -> AnalysisRecord | None:
        """Regenerate the current user's analysis.

        Raises:
            QuotaExceededError, InvalidInputError, ProviderError, StorageError
        """
        session = self.session()
        if session is None:
            return None
        return session.orchestrator.generate(visits, cancel_token=cancel_token)

    def check_limit(self) -> LimitInfo | None:
        session = self.session()
        if session is None:
            return None
        return session.quota.check_limit()

    def get_progress(self) -> ProgressState | None:
        session = self.session()
        if session is None:
            return None
        return session.progress.current()

    def maybe_refresh(
        self, visits: Sequence[VisitRecord] | VisitHistoryProvider, wait: bool = False
    ) -> RefreshOutcome:
        session = self.session()
        if session is None:
            return RefreshOutcome.SKIPPED_NO_USER
        return session.scheduler.maybe_refresh(visits, wait=wait)

    def clear_local_caches(self) -> None:
        """Drop the current user's on-device copies; the remote history is kept."""
        session = self.session()
        if session is None:
            return
        session.cache.invalidate_local()
        session.settings.clear_cached()
        self._logger.info(f"Cleared local analysis caches for {session.user_id}")

    def shutdown(self, wait: bool = True) -> None:
        """Stop background refresh workers for every session."""
        with self._lock:
            sessions = list(self._sessions.values())
        for session in sessions:
            session.scheduler.shutdown(wait=wait)
