"""Analysis caching, quota, progress and generation."""

from tripsight.analysis.cache import CacheTier, LocalTier, MemoryTier, RemoteTier, TieredCache
from tripsight.analysis.orchestrator import (
    CancellationToken,
    GenerationOrchestrator,
    OrchestratorConfig,
    compute_confidence,
    compute_quality,
)
from tripsight.analysis.progress import ProgressTracker
from tripsight.analysis.quota import QuotaLimiter
from tripsight.analysis.scheduler import RefreshOutcome, RefreshScheduler
from tripsight.analysis.service import (
    AnalysisService,
    IdentityProvider,
    MutableIdentity,
    StaticIdentity,
    UserSession,
    load_visits,
)
from tripsight.analysis.settings import SettingsStore

__all__ = [
    "AnalysisService",
    "UserSession",
    "IdentityProvider",
    "StaticIdentity",
    "MutableIdentity",
    "load_visits",
    "SettingsStore",
    "QuotaLimiter",
    "ProgressTracker",
    "CacheTier",
    "MemoryTier",
    "LocalTier",
    "RemoteTier",
    "TieredCache",
    "GenerationOrchestrator",
    "OrchestratorConfig",
    "CancellationToken",
    "compute_quality",
    "compute_confidence",
    "RefreshScheduler",
    "RefreshOutcome",
]
