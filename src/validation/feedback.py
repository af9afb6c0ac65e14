"""Feedback shapes produced by the outline, slide and deck validators."""

from __future__ import annotations

import math
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def clamp_score(value: Any) -> int:
    """Coerce ``value`` to an int within [0, 100]."""

    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if math.isnan(number):
        return 0
    return max(0, min(100, int(math.floor(number + 0.5))))


def mean_score(*scores: int) -> int:
    """Half-up rounded mean with every input floored at zero."""

    if not scores:
        return 0
    floored = [max(0, s) for s in scores]
    return int(math.floor(sum(floored) / len(floored) + 0.5))


class _Feedback(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class CognitiveLoad(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ValidationStrategy(str, Enum):
    LLM = "llm"
    HEURISTIC = "heuristic"
    DEFAULT = "default"


class DimensionScore(_Feedback):
    score: int = 0
    feedback: str = ""

    @field_validator("score", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> int:
        return clamp_score(value)


# ---------------------------------------------------------------------------
# Slide level
# ---------------------------------------------------------------------------


class ReadabilityScore(DimensionScore):
    cognitive_load: CognitiveLoad = CognitiveLoad.MEDIUM


class AlignmentScore(DimensionScore):
    meets_objective: bool = True


class SlideValidationFeedback(_Feedback):
    slide_id: str
    overall_score: int
    content_quality: DimensionScore
    readability: ReadabilityScore
    visual_hierarchy: DimensionScore
    alignment_with_purpose: AlignmentScore
    must_fix: List[str] = Field(default_factory=list)
    improvements: List[str] = Field(default_factory=list)
    passes: bool = False
    strategy: ValidationStrategy = ValidationStrategy.LLM

    def dimension_scores(self) -> List[int]:
        return [
            self.content_quality.score,
            self.readability.score,
            self.visual_hierarchy.score,
            self.alignment_with_purpose.score,
        ]


# ---------------------------------------------------------------------------
# Outline level
# ---------------------------------------------------------------------------


class OutlineValidationFeedback(_Feedback):
    overall_score: int
    framework_alignment: DimensionScore
    logical_flow: DimensionScore
    audience_suitability: DimensionScore
    completeness: DimensionScore
    issues: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)
    strategy: ValidationStrategy = ValidationStrategy.LLM

    def dimension_scores(self) -> List[int]:
        return [
            self.framework_alignment.score,
            self.logical_flow.score,
            self.audience_suitability.score,
            self.completeness.score,
        ]


# ---------------------------------------------------------------------------
# Deck level
# ---------------------------------------------------------------------------


class NarrativeFlowScore(DimensionScore):
    flow_issues: List[str] = Field(default_factory=list)
    transition_quality: str = "good"


class CohesivenessScore(DimensionScore):
    theme_consistency: bool = True
    gaps: List[str] = Field(default_factory=list)
    redundancies: List[str] = Field(default_factory=list)


class IntentScore(DimensionScore):
    missing_elements: List[str] = Field(default_factory=list)


class DeckImprovements(_Feedback):
    critical: List[str] = Field(default_factory=list)
    recommended: List[str] = Field(default_factory=list)
    optional: List[str] = Field(default_factory=list)


class SlideSpecificFeedback(_Feedback):
    slide_id: str
    issue: str
    suggestion: str = ""


class DeckValidationFeedback(_Feedback):
    overall_score: int
    narrative_flow: NarrativeFlowScore
    cohesiveness: CohesivenessScore
    user_intent_fulfillment: IntentScore
    audience_alignment: DimensionScore
    framework_adherence: DimensionScore
    improvements: DeckImprovements = Field(default_factory=DeckImprovements)
    slide_specific_feedback: List[SlideSpecificFeedback] = Field(default_factory=list)
    strategy: ValidationStrategy = ValidationStrategy.LLM

    def dimension_scores(self) -> List[int]:
        return [
            self.narrative_flow.score,
            self.cohesiveness.score,
            self.user_intent_fulfillment.score,
            self.audience_alignment.score,
            self.framework_adherence.score,
        ]


# ---------------------------------------------------------------------------
# Refinement targets
# ---------------------------------------------------------------------------


class RefinementType(str, Enum):
    CONTENT = "content"
    CLARITY = "clarity"
    TRANSITION = "transition"
    ALIGNMENT = "alignment"


class TargetPriority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


PRIORITY_RANK = {
    TargetPriority.CRITICAL: 0,
    TargetPriority.HIGH: 1,
    TargetPriority.MEDIUM: 2,
    TargetPriority.LOW: 3,
}


class RefinementTarget(_Feedback):
    model_config = ConfigDict(frozen=True)

    slide_id: str
    slide_number: int
    issue: str
    refinement_type: RefinementType = RefinementType.CONTENT
    priority: TargetPriority = TargetPriority.MEDIUM
    suggested_changes: Optional[str] = None


__all__ = [
    "AlignmentScore",
    "CognitiveLoad",
    "CohesivenessScore",
    "DeckImprovements",
    "DeckValidationFeedback",
    "DimensionScore",
    "IntentScore",
    "NarrativeFlowScore",
    "OutlineValidationFeedback",
    "PRIORITY_RANK",
    "ReadabilityScore",
    "RefinementTarget",
    "RefinementType",
    "SlideSpecificFeedback",
    "SlideValidationFeedback",
    "TargetPriority",
    "ValidationStrategy",
    "clamp_score",
    "mean_score",
]
