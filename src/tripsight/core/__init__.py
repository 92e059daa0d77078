"""Core data models."""

from tripsight.core.models import (
    SECTION_FIELDS,
    SECTION_MODELS,
    AnalysisRecord,
    AnalysisSection,
    AnalyticalInsights,
    BehavioralAnalysis,
    ComparativeAnalysis,
    Coordinates,
    LimitInfo,
    PredictiveAnalysis,
    ProgressState,
    RequestLimits,
    SectionKind,
    SettingsRecord,
    SpatialAnalysis,
    TemporalAnalysis,
    VisitRecord,
)

__all__ = [
    "AnalysisRecord",
    "AnalysisSection",
    "SectionKind",
    "SECTION_MODELS",
    "SECTION_FIELDS",
    "TemporalAnalysis",
    "SpatialAnalysis",
    "BehavioralAnalysis",
    "PredictiveAnalysis",
    "AnalyticalInsights",
    "ComparativeAnalysis",
    "SettingsRecord",
    "RequestLimits",
    "ProgressState",
    "LimitInfo",
    "VisitRecord",
    "Coordinates",
]
