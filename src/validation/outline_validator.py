"""Score an outline before any slide content is generated."""

from __future__ import annotations

import logging
from typing import List, Optional

from src.db.generation_log import FallbackImpact, GenerationLog
from src.llm_gateway import LLMGateway, ModelConfigs
from src.slide_generation.config import PipelineConfig
from src.slide_generation.frameworks import Framework
from src.slide_generation.json_extract import JSONExtractionError, extract_json
from src.slide_generation.models import GenerationRequest, Outline, SlideType

from .feedback import DimensionScore, OutlineValidationFeedback, ValidationStrategy, mean_score
from .policy import StrategyPair, StrategyPolicy
from .prompts import VALIDATOR_SYSTEM_PROMPT, build_outline_validation_prompt

logger = logging.getLogger(__name__)

COMPONENT = "outline_validator"

SLIDE_COUNT_PENALTY = 20
MISSING_BOOKEND_PENALTY = 10
INCOMPLETE_ENTRY_PENALTY = 5
DEFAULT_SCORE = 50

_DIMENSIONS = ("frameworkAlignment", "logicalFlow", "audienceSuitability", "completeness")


def quick_validate(outline: Outline, request: GenerationRequest, framework: Framework) -> OutlineValidationFeedback:
    """Heuristic outline score; no model call."""

    issues: List[str] = []
    suggestions: List[str] = []

    completeness = 100
    if len(outline.slides) != request.slide_count:
        completeness -= SLIDE_COUNT_PENALTY
        issues.append(f"Expected {request.slide_count} slides, outline has {len(outline.slides)}")
    types = [s.type for s in outline.slides]
    if SlideType.TITLE not in types:
        completeness -= MISSING_BOOKEND_PENALTY
        suggestions.append("Add a title slide")
    if SlideType.CONCLUSION not in types:
        completeness -= MISSING_BOOKEND_PENALTY
        suggestions.append("Add a conclusion slide")

    logical_flow = 100
    for entry in outline.slides:
        if not entry.title.strip() or not entry.purpose.strip():
            logical_flow -= INCOMPLETE_ENTRY_PENALTY
            suggestions.append(f"Give slide {entry.slide_number} a title and a purpose")

    template = framework.template_for(len(outline.slides))
    matches = sum(1 for planned, expected in zip(types, template) if planned == expected)
    alignment = round(100 * matches / len(template)) if template else 0
    if alignment < 100:
        suggestions.append(f"Follow the {framework.name} sequence: {', '.join(t.value for t in template)}")

    completeness = max(0, completeness)
    logical_flow = max(0, logical_flow)
    return OutlineValidationFeedback(
        overall_score=mean_score(alignment, logical_flow, 100, completeness),
        framework_alignment=DimensionScore(score=alignment, feedback=f"{matches}/{len(template)} slides follow the framework"),
        logical_flow=DimensionScore(score=logical_flow, feedback="Every slide has a title and purpose" if logical_flow == 100 else "Some slides lack a title or purpose"),
        audience_suitability=DimensionScore(score=100, feedback="Not assessed without a model"),
        completeness=DimensionScore(score=completeness, feedback="Structure is complete" if completeness == 100 else "Structure has gaps"),
        issues=issues,
        suggestions=suggestions,
        strategy=ValidationStrategy.HEURISTIC,
    )


def default_feedback() -> OutlineValidationFeedback:
    neutral = "Unable to fully validate"
    return OutlineValidationFeedback(
        overall_score=DEFAULT_SCORE,
        framework_alignment=DimensionScore(score=DEFAULT_SCORE, feedback=neutral),
        logical_flow=DimensionScore(score=DEFAULT_SCORE, feedback=neutral),
        audience_suitability=DimensionScore(score=DEFAULT_SCORE, feedback=neutral),
        completeness=DimensionScore(score=DEFAULT_SCORE, feedback=neutral),
        strategy=ValidationStrategy.DEFAULT,
    )


def parse_outline_feedback(text: str) -> OutlineValidationFeedback:
    data = extract_json(text).data
    if not isinstance(data, dict) or not all(isinstance(data.get(k), dict) for k in _DIMENSIONS):
        raise ValueError("outline validation response missing dimension scores")
    feedback = OutlineValidationFeedback.model_validate({**data, "overallScore": 0})
    return feedback.model_copy(
        update={"overall_score": mean_score(*feedback.dimension_scores()), "strategy": ValidationStrategy.LLM}
    )


class OutlineValidator:
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

    def quick_validate(self, outline: Outline, request: GenerationRequest, framework: Framework) -> OutlineValidationFeedback:
        return quick_validate(outline, request, framework)

    async def validate_outline(
        self,
        outline: Outline,
        request: GenerationRequest,
        framework: Framework,
    ) -> OutlineValidationFeedback:
        async def primary() -> OutlineValidationFeedback:
            assert self.gateway is not None
            response = await self.gateway.complete(
                build_outline_validation_prompt(outline, request, framework),
                config=ModelConfigs.analysis(),
                purpose="outline_validation",
                system=VALIDATOR_SYSTEM_PROMPT,
            )
            try:
                return parse_outline_feedback(response.text)
            except (JSONExtractionError, ValueError) as exc:
                if self.log is not None:
                    self.log.record_fallback(COMPONENT, f"unparseable outline feedback: {exc}", "default_scores", FallbackImpact.MINOR)
                return default_feedback()

        feedback = await self.policy.run(
            StrategyPair(
                component=COMPONENT,
                primary=primary,
                fallback=lambda: quick_validate(outline, request, framework),
                fallback_method="quick_validate",
            ),
            self.gateway,
            self.log,
        )
        logger.info("Outline '%s' scored %d (%s)", outline.title, feedback.overall_score, feedback.strategy.value)
        return feedback


__all__ = ["OutlineValidator", "default_feedback", "parse_outline_feedback", "quick_validate"]
