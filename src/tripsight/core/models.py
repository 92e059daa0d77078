"""Data models for travel analysis.

Three record types are persisted per user:

- AnalysisRecord: one generated analysis (six sections plus derived scores).
  Immutable once committed; the remote history is append-only.
- SettingsRecord: refresh interval, last commit time and quota state.
- ProgressState: live state of an in-flight generation.

Each of the six analysis sections is its own pydantic model tagged with a
``kind`` literal, so provider output is validated into a concrete type the
moment it arrives. Persisted and provider-facing JSON uses camelCase keys
(``yearlyProgression``); Python code uses snake_case attributes. Both
spellings are accepted on input.

Example:
    >>> section = TemporalAnalysis.model_validate(provider_json)
    >>> section.seasonal_patterns.summer.visit_percentage
    41.0
    >>> record.model_dump(mode="json", by_alias=True)["basedOnPlaces"]
    7
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for models persisted with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FrozenCamelModel(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# =============================================================================
# Input Records
# =============================================================================


class Coordinates(CamelModel):
    lat: float
    lng: float


class VisitRecord(CamelModel):
    """A single place visit from the user's history.

    Attributes:
        name: Place name.
        location: Human-readable vicinity / address.
        place_type: Primary category (first entry of the place's types).
        categories: All categories the place belongs to.
        visited_at: When the visit happened.
        coordinates: Optional geographic position.
        rating: Optional place rating.
        tags: Free-form user tags.
    """

    name: str
    location: str = ""
    place_type: str = ""
    categories: list[str] = Field(default_factory=list)
    visited_at: datetime
    coordinates: Coordinates | None = None
    rating: float | None = None
    tags: list[str] = Field(default_factory=list)

    def category_set(self) -> set[str]:
        """Categories used for diversity scoring."""
        if self.categories:
            return {c for c in self.categories if c}
        return {self.place_type} if self.place_type else set()

    def to_prompt_shape(self) -> dict[str, Any]:
        """Compact projection sent to the content provider."""
        coords = self.coordinates or Coordinates(lat=0.0, lng=0.0)
        return {
            "name": self.name,
            "location": self.location,
            "placeType": self.place_type or (self.categories[0] if self.categories else "unknown"),
            "categories": list(self.categories),
            "visitDate": self.visited_at.date().isoformat(),
            "visitedAt": self.visited_at.isoformat(),
            "coordinates": {"lat": coords.lat, "lng": coords.lng},
            "rating": self.rating if self.rating is not None else 0,
            "tags": list(self.tags),
        }


# =============================================================================
# Analysis Sections
# =============================================================================


class SectionKind(str, Enum):
    """The six independent analysis sub-tasks."""

    TEMPORAL = "temporal"
    SPATIAL = "spatial"
    BEHAVIORAL = "behavioral"
    PREDICTIVE = "predictive"
    INSIGHTS = "insights"
    COMPARATIVE = "comparative"

    @property
    def label(self) -> str:
        return SECTION_LABELS[self]


SECTION_LABELS: dict[SectionKind, str] = {
    SectionKind.TEMPORAL: "temporal travel patterns",
    SectionKind.SPATIAL: "spatial relationships",
    SectionKind.BEHAVIORAL: "behavioral patterns",
    SectionKind.PREDICTIVE: "predictive analysis",
    SectionKind.INSIGHTS: "analytical insights",
    SectionKind.COMPARATIVE: "comparative analysis",
}


# --- Temporal -----------------------------------------------------------------


class YearlyProgression(CamelModel):
    total_visits: int = 0
    unique_locations: int = 0
    dominant_category: str = ""
    exploration_radius: float = 0.0
    top_destination: str = ""


class SeasonPattern(CamelModel):
    visit_percentage: float = 0.0
    preferred_categories: list[str] = Field(default_factory=list)
    average_duration: str = ""


class SeasonalPatterns(CamelModel):
    winter: SeasonPattern = Field(default_factory=SeasonPattern)
    spring: SeasonPattern = Field(default_factory=SeasonPattern)
    summer: SeasonPattern = Field(default_factory=SeasonPattern)
    fall: SeasonPattern = Field(default_factory=SeasonPattern)


class TemporalAnalysis(CamelModel):
    kind: Literal["temporal"] = "temporal"
    yearly_progression: dict[str, YearlyProgression]
    seasonal_patterns: SeasonalPatterns
    monthly_distribution: dict[str, float]

    @classmethod
    def empty(cls) -> "TemporalAnalysis":
        return cls(yearly_progression={}, seasonal_patterns=SeasonalPatterns(), monthly_distribution={})


# --- Spatial ------------------------------------------------------------------


class ExplorationRadius(CamelModel):
    average: float = 0.0
    maximum: float = 0.0
    minimum: float = 0.0
    growth_rate: float = 0.0


class LocationCluster(CamelModel):
    cluster_name: str
    center_point: Coordinates | None = None
    number_of_visits: int = 0
    top_categories: list[str] = Field(default_factory=list)


class DirectionTendencies(CamelModel):
    primary_direction: str = ""
    secondary_direction: str = ""
    direction_percentages: dict[str, float] = Field(default_factory=dict)
    insight: str = ""


class RegionDiversity(CamelModel):
    unique_regions: int = 0
    most_explored_region: str = ""
    least_explored_region: str = ""
    region_spread: float = 0.0
    diversity_insight: str = ""


class SpatialAnalysis(CamelModel):
    kind: Literal["spatial"] = "spatial"
    exploration_radius: ExplorationRadius
    location_clusters: list[LocationCluster]
    direction_tendencies: DirectionTendencies
    region_diversity: RegionDiversity

    @classmethod
    def empty(cls) -> "SpatialAnalysis":
        return cls(
            exploration_radius=ExplorationRadius(),
            location_clusters=[],
            direction_tendencies=DirectionTendencies(),
            region_diversity=RegionDiversity(),
        )


# --- Behavioral ---------------------------------------------------------------


class ExplorationStyle(CamelModel):
    spontaneity_score: float = 0.0
    planning_level: float = 0.0
    variety_seeking: float = 0.0
    return_visit_rate: float = 0.0
    novelty_preference: float = 0.0


class TravelPersonality(CamelModel):
    openness: float = 0.0
    culture_engagement: float = 0.0
    social_orientation: float = 0.0
    activity_level: float = 0.0
    adventurousness: float = 0.0


class MotivationalFactor(CamelModel):
    factor: str
    strength: float = 0.0
    insight: str = ""


class DecisionPatterns(CamelModel):
    decision_speed: float = 0.0
    consistency_score: float = 0.0
    influence_factors: list[str] = Field(default_factory=list)
    insight: str = ""


class BehavioralAnalysis(CamelModel):
    kind: Literal["behavioral"] = "behavioral"
    exploration_style: ExplorationStyle
    travel_personality: TravelPersonality
    motivational_factors: list[MotivationalFactor]
    decision_patterns: DecisionPatterns

    @classmethod
    def empty(cls) -> "BehavioralAnalysis":
        return cls(
            exploration_style=ExplorationStyle(),
            travel_personality=TravelPersonality(),
            motivational_factors=[],
            decision_patterns=DecisionPatterns(),
        )


# --- Predictive ---------------------------------------------------------------


class RecommendedDestination(CamelModel):
    name: str
    confidence_score: float = 0.0
    reasoning_factors: list[str] = Field(default_factory=list)
    best_time_to_visit: str = ""
    expected_interest_level: float = 0.0


class PredictedTrend(CamelModel):
    trend: str
    likelihood: float = 0.0
    timeframe: str = ""
    explanation: str = ""


class InterestEvolution(CamelModel):
    emerging_interests: list[str] = Field(default_factory=list)
    declining_interests: list[str] = Field(default_factory=list)
    steady_interests: list[str] = Field(default_factory=list)
    new_suggestions: list[str] = Field(default_factory=list)


class TravelTrajectory(CamelModel):
    exploration_rate: float = 0.0
    radius_change: float = 0.0
    next_phase: str = ""
    insight_summary: str = ""


class PredictiveAnalysis(CamelModel):
    kind: Literal["predictive"] = "predictive"
    recommended_destinations: list[RecommendedDestination]
    predicted_trends: list[PredictedTrend]
    interest_evolution: InterestEvolution
    travel_trajectory: TravelTrajectory

    @classmethod
    def empty(cls) -> "PredictiveAnalysis":
        return cls(
            recommended_destinations=[],
            predicted_trends=[],
            interest_evolution=InterestEvolution(),
            travel_trajectory=TravelTrajectory(),
        )


# --- Insights -----------------------------------------------------------------


class KeyInsight(CamelModel):
    title: str
    description: str = ""
    confidence_score: float = 0.0
    category: str = ""
    tags: list[str] = Field(default_factory=list)


class PatternInsight(CamelModel):
    pattern: str
    strength: float = 0.0
    examples: list[str] = Field(default_factory=list)
    implications: str = ""


class Anomaly(CamelModel):
    description: str
    significance: float = 0.0
    explanation: str = ""


class Correlation(CamelModel):
    factor1: str
    factor2: str
    correlation_strength: float = 0.0
    insight: str = ""


class AnalyticalInsights(CamelModel):
    kind: Literal["insights"] = "insights"
    key_insights: list[KeyInsight]
    pattern_insights: list[PatternInsight]
    anomalies: list[Anomaly]
    correlations: list[Correlation]

    @classmethod
    def empty(cls) -> "AnalyticalInsights":
        return cls(key_insights=[], pattern_insights=[], anomalies=[], correlations=[])


# --- Comparative --------------------------------------------------------------


class PersonaComparison(CamelModel):
    most_similar_persona: str = ""
    similarity_score: float = 0.0
    key_differences: list[str] = Field(default_factory=list)
    distinctive_traits: list[str] = Field(default_factory=list)


class ArchetypeAnalysis(CamelModel):
    primary_archetype: str = ""
    archetype_score: float = 0.0
    secondary_archetype: str = ""
    secondary_score: float = 0.0
    atypical_traits: list[str] = Field(default_factory=list)


class Benchmark(CamelModel):
    category: str
    user_score: float = 0.0
    average_score: float = 0.0
    percentile: float = 0.0
    insight: str = ""


class UniquenessFactor(CamelModel):
    factor: str
    uniqueness_score: float = 0.0
    explanation: str = ""


class ComparativeAnalysis(CamelModel):
    kind: Literal["comparative"] = "comparative"
    persona_comparison: PersonaComparison
    archetype_analysis: ArchetypeAnalysis
    benchmarks: list[Benchmark]
    uniqueness_factors: list[UniquenessFactor]

    @classmethod
    def empty(cls) -> "ComparativeAnalysis":
        return cls(
            persona_comparison=PersonaComparison(),
            archetype_analysis=ArchetypeAnalysis(),
            benchmarks=[],
            uniqueness_factors=[],
        )


AnalysisSection = Annotated[
    Union[
        TemporalAnalysis,
        SpatialAnalysis,
        BehavioralAnalysis,
        PredictiveAnalysis,
        AnalyticalInsights,
        ComparativeAnalysis,
    ],
    Field(discriminator="kind"),
]

SECTION_MODELS: dict[SectionKind, type[CamelModel]] = {
    SectionKind.TEMPORAL: TemporalAnalysis,
    SectionKind.SPATIAL: SpatialAnalysis,
    SectionKind.BEHAVIORAL: BehavioralAnalysis,
    SectionKind.PREDICTIVE: PredictiveAnalysis,
    SectionKind.INSIGHTS: AnalyticalInsights,
    SectionKind.COMPARATIVE: ComparativeAnalysis,
}

# AnalysisRecord attribute holding each section
SECTION_FIELDS: dict[SectionKind, str] = {
    SectionKind.TEMPORAL: "temporal_analysis",
    SectionKind.SPATIAL: "spatial_analysis",
    SectionKind.BEHAVIORAL: "behavioral_analysis",
    SectionKind.PREDICTIVE: "predictive_analysis",
    SectionKind.INSIGHTS: "analytical_insights",
    SectionKind.COMPARATIVE: "comparative_analysis",
}


# =============================================================================
# Analysis Record
# =============================================================================


class AnalysisRecord(FrozenCamelModel):
    """One generated travel analysis.

    Created by the orchestrator after all six sections validated; never
    mutated afterwards. A regeneration produces a new record.

    Attributes:
        record_id: Identifier assigned by the remote store on append.
        user_id: Owning user.
        created_at: When generation finished.
        updated_at: Last write time (equal to created_at for committed records).
        last_refreshed: When the data was last regenerated.
        next_refresh_due: When the record should be regenerated.
        is_generating: True only on the in-flight placeholder.
        based_on_places: Number of visits used as input.
        analysis_quality: 0-100 heuristic from input volume and diversity.
        confidence_score: 0-100, floored at 50.
    """

    record_id: str | None = None
    user_id: str
    created_at: datetime
    updated_at: datetime
    last_refreshed: datetime
    next_refresh_due: datetime
    is_generating: bool = False
    based_on_places: int = Field(default=0, ge=0)

    temporal_analysis: TemporalAnalysis
    spatial_analysis: SpatialAnalysis
    behavioral_analysis: BehavioralAnalysis
    predictive_analysis: PredictiveAnalysis
    analytical_insights: AnalyticalInsights
    comparative_analysis: ComparativeAnalysis

    analysis_quality: int = Field(default=0, ge=0, le=100)
    confidence_score: int = Field(default=0, ge=0, le=100)

    @classmethod
    def placeholder(cls, user_id: str, now: datetime) -> "AnalysisRecord":
        """Transient record shown while a generation is in flight."""
        return cls(
            user_id=user_id,
            created_at=now,
            updated_at=now,
            last_refreshed=now,
            next_refresh_due=now,
            is_generating=True,
            temporal_analysis=TemporalAnalysis.empty(),
            spatial_analysis=SpatialAnalysis.empty(),
            behavioral_analysis=BehavioralAnalysis.empty(),
            predictive_analysis=PredictiveAnalysis.empty(),
            analytical_insights=AnalyticalInsights.empty(),
            comparative_analysis=ComparativeAnalysis.empty(),
        )

    def section(self, kind: SectionKind) -> CamelModel:
        return getattr(self, SECTION_FIELDS[kind])

    def to_document(self) -> dict[str, Any]:
        """JSON-ready camelCase document for the stores."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "AnalysisRecord":
        return cls.model_validate(document)


# =============================================================================
# Settings
# =============================================================================


class RequestLimits(FrozenCamelModel):
    """Quota sub-state.

    Attributes:
        request_count: Successful regenerations on ``last_request_date``'s day.
        last_request_date: Time of the last counted regeneration.
        next_available_time: Set once the budget is exhausted.
    """

    request_count: int = Field(default=0, ge=0)
    last_request_date: datetime
    next_available_time: datetime | None = None


class SettingsRecord(FrozenCamelModel):
    """Per-user settings row.

    Attributes:
        last_updated_at: Epoch millis of the last successful commit (0 = never).
        refresh_interval: How long a committed record stays fresh.
        request_limits: Quota state, absent until the first regeneration.
    """

    last_updated_at: int = 0
    refresh_interval: timedelta = timedelta(hours=24)
    request_limits: RequestLimits | None = None

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "SettingsRecord":
        return cls.model_validate(document)


# =============================================================================
# Progress
# =============================================================================


class ProgressState(FrozenCamelModel):
    """Snapshot of a generation job.

    Frozen: observers receive read-only copies; the tracker replaces the
    snapshot on every transition.
    """

    is_generating: bool = False
    progress: int = Field(default=0, ge=0, le=100)
    stage: str = ""
    estimated_time_remaining: float | None = None
    started_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def idle(cls) -> "ProgressState":
        return cls()

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "ProgressState":
        return cls.model_validate(document)

    def to_status_line(self) -> str:
        if not self.is_generating:
            return self.stage or "Idle"
        line = f"[{self.progress:3d}%] {self.stage}"
        if self.estimated_time_remaining is not None:
            line += f" (~{self.estimated_time_remaining:.0f}s remaining)"
        return line


class LimitInfo(BaseModel):
    """Result of a quota check."""

    can_request: bool
    requests_remaining: int
    next_available_time: datetime | None = None
