"""Prompt templates for the six travel-analysis sub-tasks.

Each template pairs a system instruction with a user prompt and a JSON
example of the output shape the matching section model expects. Templates
are versioned so a wording change can be traced in stored records.

User prompts use ``string.Template`` placeholders:

- ``$visits``: JSON array of compact visit shapes
- ``$visit_count``: number of visits
- ``$date_range``: first and last visit date
- ``$output_schema``: filled in from ``output_schema``

Example:
    >>> template = get_prompt(SectionKind.TEMPORAL)
    >>> system, user = template.render(**build_prompt_variables(shapes))
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from string import Template
from typing import Any

from tripsight.core.models import SectionKind


@dataclass(frozen=True)
class PromptTemplate:
    """Metadata and content for one sub-task prompt.

    Attributes:
        id: Unique identifier (e.g. "temporal_analysis_v1").
        section: Which analysis section the output fills.
        version: Semantic version string.
        system_instruction: Role and behavior instructions.
        user_prompt_template: User prompt with $placeholders.
        output_schema: Example JSON shape of the expected output.
        required_variables: Variables that must be supplied to render().
        estimated_output_tokens: Planning estimate for the response size.
    """

    id: str
    section: SectionKind
    version: str
    system_instruction: str
    user_prompt_template: str
    output_schema: dict[str, Any] = field(default_factory=dict)
    required_variables: frozenset[str] = frozenset({"visits", "visit_count"})
    estimated_output_tokens: int = 2000

    def render(self, **variables: Any) -> tuple[str, str]:
        """Render the template.

        Returns:
            Tuple of (system_instruction, rendered_user_prompt).

        Raises:
            ValueError: If required variables are missing.
        """
        missing = sorted(self.required_variables - set(variables))
        if missing:
            raise ValueError(f"Missing required variables for prompt '{self.id}': {missing}")

        values = dict(variables)
        values.setdefault("output_schema", self.schema_hint())
        values.setdefault("date_range", "unknown")
        return self.system_instruction, Template(self.user_prompt_template).safe_substitute(values)

    def schema_hint(self) -> str:
        return json.dumps(self.output_schema, indent=2)


ANALYST_SYSTEM = (
    "You are an expert travel behavior analyst. You study a person's history of "
    "visited places and describe the patterns in it. Base every statement on the "
    "visits provided; do not invent visits. Scores are numbers from 0 to 100 unless "
    "stated otherwise."
)


TEMPORAL_PROMPT = PromptTemplate(
    id="temporal_analysis_v1",
    section=SectionKind.TEMPORAL,
    version="1.0.0",
    system_instruction=ANALYST_SYSTEM,
    user_prompt_template="""Analyze how this traveler's behavior changes over time.

The $visit_count visits below are sorted chronologically ($date_range).

Visits:
$visits

Describe:
1. Year-by-year progression: visits, unique locations, dominant category,
   exploration radius in km and top destination per year.
2. Seasonal patterns (winter, spring, summer, fall): share of visits in
   percent, preferred categories and typical visit duration.
3. Monthly distribution: share of visits per month name.

$output_schema""",
    output_schema={
        "yearlyProgression": {
            "2023": {
                "totalVisits": 0,
                "uniqueLocations": 0,
                "dominantCategory": "",
                "explorationRadius": 0.0,
                "topDestination": "",
            }
        },
        "seasonalPatterns": {
            season: {"visitPercentage": 0.0, "preferredCategories": [""], "averageDuration": ""}
            for season in ("winter", "spring", "summer", "fall")
        },
        "monthlyDistribution": {"January": 0.0},
    },
)

SPATIAL_PROMPT = PromptTemplate(
    id="spatial_analysis_v1",
    section=SectionKind.SPATIAL,
    version="1.0.0",
    system_instruction=ANALYST_SYSTEM,
    user_prompt_template="""Analyze the geography of this traveler's $visit_count visits.

Visits:
$visits

Describe the exploration radius (average, maximum and minimum distance in km
between visits and its growth rate in percent), clusters of nearby visits,
the dominant compass directions of travel and how many distinct regions
were explored.

$output_schema""",
    output_schema={
        "explorationRadius": {"average": 0.0, "maximum": 0.0, "minimum": 0.0, "growthRate": 0.0},
        "locationClusters": [
            {
                "clusterName": "",
                "centerPoint": {"lat": 0.0, "lng": 0.0},
                "numberOfVisits": 0,
                "topCategories": [""],
            }
        ],
        "directionTendencies": {
            "primaryDirection": "",
            "secondaryDirection": "",
            "directionPercentages": {"north": 0.0},
            "insight": "",
        },
        "regionDiversity": {
            "uniqueRegions": 0,
            "mostExploredRegion": "",
            "leastExploredRegion": "",
            "regionSpread": 0.0,
            "diversityInsight": "",
        },
    },
)

BEHAVIORAL_PROMPT = PromptTemplate(
    id="behavioral_analysis_v1",
    section=SectionKind.BEHAVIORAL,
    version="1.0.0",
    system_instruction=ANALYST_SYSTEM,
    user_prompt_template="""Infer this traveler's behavioral profile from $visit_count visits.

Visits:
$visits

Score exploration style (spontaneity, planning level, variety seeking,
return-visit rate, novelty preference) and travel personality (openness,
culture engagement, social orientation, activity level, adventurousness).
List the strongest motivational factors and describe decision patterns.

$output_schema""",
    output_schema={
        "explorationStyle": {
            "spontaneityScore": 0,
            "planningLevel": 0,
            "varietySeeking": 0,
            "returnVisitRate": 0,
            "noveltyPreference": 0,
        },
        "travelPersonality": {
            "openness": 0,
            "cultureEngagement": 0,
            "socialOrientation": 0,
            "activityLevel": 0,
            "adventurousness": 0,
        },
        "motivationalFactors": [{"factor": "", "strength": 0, "insight": ""}],
        "decisionPatterns": {
            "decisionSpeed": 0,
            "consistencyScore": 0,
            "influenceFactors": [""],
            "insight": "",
        },
    },
)

PREDICTIVE_PROMPT = PromptTemplate(
    id="predictive_analysis_v1",
    section=SectionKind.PREDICTIVE,
    version="1.0.0",
    system_instruction=ANALYST_SYSTEM,
    user_prompt_template="""Predict where this traveler is heading next, based on $visit_count visits.

Visits:
$visits

Recommend destinations (with confidence, reasons, best time to visit and
expected interest), list likely trends with a timeframe, describe how
interests are evolving and summarize the overall travel trajectory.

$output_schema""",
    output_schema={
        "recommendedDestinations": [
            {
                "name": "",
                "confidenceScore": 0,
                "reasoningFactors": [""],
                "bestTimeToVisit": "",
                "expectedInterestLevel": 0,
            }
        ],
        "predictedTrends": [{"trend": "", "likelihood": 0, "timeframe": "", "explanation": ""}],
        "interestEvolution": {
            "emergingInterests": [""],
            "decliningInterests": [""],
            "steadyInterests": [""],
            "newSuggestions": [""],
        },
        "travelTrajectory": {
            "explorationRate": 0.0,
            "radiusChange": 0.0,
            "nextPhase": "",
            "insightSummary": "",
        },
    },
    estimated_output_tokens=2500,
)

INSIGHTS_PROMPT = PromptTemplate(
    id="analytical_insights_v1",
    section=SectionKind.INSIGHTS,
    version="1.0.0",
    system_instruction=ANALYST_SYSTEM,
    user_prompt_template="""Derive the most interesting insights from these $visit_count visits.

Visits:
$visits

Give key insights, recurring patterns with examples, anomalies that break
the usual pattern and correlations between two factors (for example
weekday and category).

$output_schema""",
    output_schema={
        "keyInsights": [
            {"title": "", "description": "", "confidenceScore": 0, "category": "", "tags": [""]}
        ],
        "patternInsights": [{"pattern": "", "strength": 0, "examples": [""], "implications": ""}],
        "anomalies": [{"description": "", "significance": 0, "explanation": ""}],
        "correlations": [
            {"factor1": "", "factor2": "", "correlationStrength": 0.0, "insight": ""}
        ],
    },
)

COMPARATIVE_PROMPT = PromptTemplate(
    id="comparative_analysis_v1",
    section=SectionKind.COMPARATIVE,
    version="1.0.0",
    system_instruction=ANALYST_SYSTEM,
    user_prompt_template="""Compare this traveler with common traveler archetypes using $visit_count visits.

Visits:
$visits

Name the most similar persona and how the traveler differs from it, the
primary and secondary archetypes with scores, benchmarks against an
average traveler per category (with percentile) and what makes this
traveler unique.

$output_schema""",
    output_schema={
        "personaComparison": {
            "mostSimilarPersona": "",
            "similarityScore": 0,
            "keyDifferences": [""],
            "distinctiveTraits": [""],
        },
        "archetypeAnalysis": {
            "primaryArchetype": "",
            "archetypeScore": 0,
            "secondaryArchetype": "",
            "secondaryScore": 0,
            "atypicalTraits": [""],
        },
        "benchmarks": [
            {"category": "", "userScore": 0, "averageScore": 0, "percentile": 0, "insight": ""}
        ],
        "uniquenessFactors": [{"factor": "", "uniquenessScore": 0, "explanation": ""}],
    },
)


PROMPTS: dict[SectionKind, PromptTemplate] = {
    template.section: template
    for template in (
        TEMPORAL_PROMPT,
        SPATIAL_PROMPT,
        BEHAVIORAL_PROMPT,
        PREDICTIVE_PROMPT,
        INSIGHTS_PROMPT,
        COMPARATIVE_PROMPT,
    )
}


def get_prompt(section: SectionKind) -> PromptTemplate:
    """Template for a section.

    Raises:
        KeyError: If no template is registered for the section.
    """
    return PROMPTS[section]


def build_prompt_variables(visit_shapes: list[dict[str, Any]]) -> dict[str, Any]:
    """Variables shared by every sub-task prompt."""
    dates = sorted(v["visitDate"] for v in visit_shapes if v.get("visitDate"))
    date_range = f"{dates[0]} to {dates[-1]}" if dates else "unknown"
    return {
        "visits": json.dumps(visit_shapes, indent=1, ensure_ascii=False),
        "visit_count": len(visit_shapes),
        "date_range": date_range,
    }
