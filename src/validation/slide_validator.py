"""Score a single generated slide."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple, Union

from src.db.generation_log import GenerationLog
from src.llm_gateway import LLMGateway, ModelConfigs
from src.slide_generation.config import PipelineConfig
from src.slide_generation.json_extract import extract_json
from src.slide_generation.models import Slide, SlideOutline, SlideType

from .feedback import (
    AlignmentScore,
    CognitiveLoad,
    DimensionScore,
    ReadabilityScore,
    SlideValidationFeedback,
    ValidationStrategy,
    mean_score,
)
from .policy import StrategyPair, StrategyPolicy
from .prompts import VALIDATOR_SYSTEM_PROMPT, build_slide_validation_prompt

logger = logging.getLogger(__name__)

COMPONENT = "slide_validator"

# Weighted item counts for the 7+/-2 rule.
LOAD_WEIGHTS: Dict[str, int] = {"bullets": 1, "sections": 2, "metrics": 1, "chart": 3, "table": 4}
LOW_LOAD_MAX = 5
MEDIUM_LOAD_MAX = 9

# Any one field of a group satisfies it.
REQUIRED_FIELDS: Dict[SlideType, Tuple[Tuple[str, ...], ...]] = {
    SlideType.PROBLEM: (("sections", "bullet_points"),),
    SlideType.SOLUTION: (("sections",),),
    SlideType.BENEFITS: (("key_metrics", "bullet_points"),),
    SlideType.IMPLEMENTATION: (("timeline", "sections"),),
    SlideType.CONCLUSION: (("bullet_points",),),
}


def weighted_item_count(slide: Slide) -> int:
    content = slide.content
    return (
        LOAD_WEIGHTS["bullets"] * len(content.bullet_points or [])
        + LOAD_WEIGHTS["sections"] * len(content.sections or [])
        + LOAD_WEIGHTS["metrics"] * len(content.key_metrics or [])
        + (LOAD_WEIGHTS["chart"] if content.chart is not None else 0)
        + (LOAD_WEIGHTS["table"] if content.table is not None else 0)
    )


def assess_cognitive_load(slide: Union[Slide, int]) -> CognitiveLoad:
    count = slide if isinstance(slide, int) else weighted_item_count(slide)
    if count <= LOW_LOAD_MAX:
        return CognitiveLoad.LOW
    if count <= MEDIUM_LOAD_MAX:
        return CognitiveLoad.MEDIUM
    return CognitiveLoad.HIGH


def missing_required_fields(slide: Slide) -> List[str]:
    missing: List[str] = []
    for group in REQUIRED_FIELDS.get(slide.type, ()):
        if not any(getattr(slide.content, name, None) for name in group):
            missing.append(" or ".join(group))
    return missing


def quick_validate(
    slide: Slide,
    entry: SlideOutline,
    config: Optional[PipelineConfig] = None,
) -> SlideValidationFeedback:
    """Deterministic checks used when the LLM scorer is unavailable."""

    config = config or PipelineConfig()
    penalties = config.penalties
    content_quality = 100
    readability = 100
    visual_hierarchy = 100
    alignment = 100
    meets_objective = True
    must_fix: List[str] = []
    improvements: List[str] = []

    if slide.content.is_empty():
        content_quality -= penalties.empty_content
        must_fix.append("Slide content is empty")

    if len(slide.title.strip()) < 3:
        content_quality -= penalties.short_title
        must_fix.append("Missing or inadequate title")

    load = assess_cognitive_load(slide)
    if load is CognitiveLoad.HIGH:
        readability -= penalties.high_cognitive_load
        improvements.append("Consider breaking down complex content")

    if slide.type != entry.type:
        alignment -= penalties.type_mismatch
        meets_objective = False
        must_fix.append(f"Slide type mismatch: expected {entry.type.value}, got {slide.type.value}")

    missing = missing_required_fields(slide)
    if missing:
        content_quality -= penalties.missing_field * len(missing)
        improvements.extend(f"Add {name} for a {slide.type.value} slide" for name in missing)

    content_quality = max(0, content_quality)
    readability = max(0, readability)
    alignment = max(0, alignment)
    overall = mean_score(content_quality, readability, visual_hierarchy, alignment)
    return SlideValidationFeedback(
        slide_id=slide.id,
        overall_score=overall,
        content_quality=DimensionScore(
            score=content_quality,
            feedback="Content appears complete" if content_quality == 100 else "Content is incomplete",
        ),
        readability=ReadabilityScore(score=readability, feedback=f"{load.value} cognitive load", cognitive_load=load),
        visual_hierarchy=DimensionScore(score=visual_hierarchy, feedback="Standard layout"),
        alignment_with_purpose=AlignmentScore(
            score=alignment,
            feedback="Matches slide type" if meets_objective else "Does not match the planned slide type",
            meets_objective=meets_objective,
        ),
        must_fix=must_fix,
        improvements=improvements,
        passes=overall >= config.min_slide_score and not must_fix,
        strategy=ValidationStrategy.HEURISTIC,
    )


def parse_slide_feedback(text: str, slide: Slide, config: PipelineConfig) -> SlideValidationFeedback:
    data = extract_json(text).data
    if not isinstance(data, dict):
        raise ValueError("slide validation response is not a JSON object")
    data = dict(data)
    data["slideId"] = slide.id
    data.setdefault("overallScore", 0)
    for key in ("contentQuality", "readability", "visualHierarchy", "alignmentWithPurpose"):
        if not isinstance(data.get(key), dict):
            raise ValueError(f"slide validation response missing '{key}'")
    feedback = SlideValidationFeedback.model_validate(data)

    # The weighted count is authoritative for the load bucket.
    load = assess_cognitive_load(slide)
    readability = feedback.readability.model_copy(update={"cognitive_load": load})
    overall = mean_score(
        feedback.content_quality.score,
        readability.score,
        feedback.visual_hierarchy.score,
        feedback.alignment_with_purpose.score,
    )
    return feedback.model_copy(
        update={
            "readability": readability,
            "overall_score": overall,
            "passes": overall >= config.min_slide_score and not feedback.must_fix,
            "strategy": ValidationStrategy.LLM,
        }
    )


class SlideValidator:
    def __init__(
        self,
        gateway: Optional[LLMGateway],
        config: Optional[PipelineConfig] = None,
        *,
        policy: Optional[StrategyPolicy] = None,
        log: Optional[GenerationLog] = None,
    ) -> None:
        self.gateway = gateway
        self.config = config or PipelineConfig()
        self.policy = policy or StrategyPolicy()
        self.log = log

    def quick_validate(self, slide: Slide, entry: SlideOutline) -> SlideValidationFeedback:
        return quick_validate(slide, entry, self.config)

    async def validate_slide(
        self,
        slide: Slide,
        entry: SlideOutline,
        presentation_title: str,
    ) -> SlideValidationFeedback:
        async def primary() -> SlideValidationFeedback:
            assert self.gateway is not None
            response = await self.gateway.complete(
                build_slide_validation_prompt(slide, entry, presentation_title),
                config=ModelConfigs.validation(),
                purpose="slide_validation",
                system=VALIDATOR_SYSTEM_PROMPT,
            )
            return parse_slide_feedback(response.text, slide, self.config)

        feedback = await self.policy.run(
            StrategyPair(
                component=COMPONENT,
                primary=primary,
                fallback=lambda: quick_validate(slide, entry, self.config),
                fallback_method="quick_validate",
            ),
            self.gateway,
            self.log,
        )
        logger.debug(
            "Slide %s scored %d (%s, load=%s)",
            slide.id,
            feedback.overall_score,
            feedback.strategy.value,
            feedback.readability.cognitive_load.value,
        )
        return feedback


__all__ = [
    "LOAD_WEIGHTS",
    "REQUIRED_FIELDS",
    "SlideValidator",
    "assess_cognitive_load",
    "missing_required_fields",
    "parse_slide_feedback",
    "quick_validate",
    "weighted_item_count",
]
