"""TripSight - Analysis Caching & Generation Orchestrator.

Keeps a user's "advanced travel analysis" fresh: a tiered cache decides
whether the last analysis is still valid, a daily quota bounds expensive
regenerations, and the orchestrator fans a regeneration out into six
Gemini-backed sub-tasks whose results are committed as one record.

Example:
    >>> from tripsight import AnalysisService, StaticIdentity
    >>> service = AnalysisService.from_config(identity=StaticIdentity("user-1"))
    >>> record = service.get_analysis()
    >>> if record is None:
    ...     record = service.generate(visits)
"""

__version__ = "0.4.0"

from tripsight.analysis.service import (
    AnalysisService,
    MutableIdentity,
    StaticIdentity,
)
from tripsight.core.models import AnalysisRecord, ProgressState, VisitRecord
from tripsight.errors import (
    InvalidInputError,
    ProviderError,
    QuotaExceededError,
    StorageError,
    TripSightError,
)

__all__ = [
    "__version__",
    "AnalysisService",
    "StaticIdentity",
    "MutableIdentity",
    "AnalysisRecord",
    "ProgressState",
    "VisitRecord",
    "TripSightError",
    "QuotaExceededError",
    "InvalidInputError",
    "ProviderError",
    "StorageError",
]
