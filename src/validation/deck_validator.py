"""Score the assembled deck and turn the feedback into refinement targets."""

from __future__ import annotations

import json
import logging
import re
from typing import Dict, List, Optional

from src.db.generation_log import FallbackImpact, GenerationLog
from src.llm_gateway import LLMGateway, ModelConfigs
from src.slide_generation.config import PipelineConfig
from src.slide_generation.frameworks import Framework, get_framework
from src.slide_generation.json_extract import JSONExtractionError, extract_json
from src.slide_generation.models import GenerationRequest, PresentationData, SlideType

from .feedback import (
    PRIORITY_RANK,
    CohesivenessScore,
    DeckImprovements,
    DeckValidationFeedback,
    DimensionScore,
    IntentScore,
    NarrativeFlowScore,
    RefinementTarget,
    RefinementType,
    TargetPriority,
    ValidationStrategy,
    mean_score,
)
from .policy import StrategyPair, StrategyPolicy
from .prompts import VALIDATOR_SYSTEM_PROMPT, build_deck_validation_prompt

logger = logging.getLogger(__name__)

COMPONENT = "deck_validator"

SLIDE_COUNT_PENALTY = 10
THEME_PENALTY = 20
DEFAULT_SCORE = 70
FLOW_TARGET_THRESHOLD = 70

_STOP_WORDS = frozenset({"the", "and", "for", "with", "our", "your", "this", "that", "from", "into"})
_DEFAULT_PROGRESSION = (
    SlideType.TITLE,
    SlideType.PROBLEM,
    SlideType.SOLUTION,
    SlideType.BENEFITS,
    SlideType.CONCLUSION,
)
_WORD_RE = re.compile(r"[a-z0-9][a-z0-9'-]*")
_SLIDE_REF_RE = re.compile(r"\bslide\s*#?\s*(\d+)\b")


def common_title_words(titles: List[str]) -> List[str]:
    """Words longer than three letters that appear in more than one title."""

    freq: Dict[str, int] = {}
    for title in titles:
        for word in set(_WORD_RE.findall(title.lower())):
            if len(word) > 3 and word not in _STOP_WORDS:
                freq[word] = freq.get(word, 0) + 1
    return [word for word, count in freq.items() if count > 1]


def intent_coverage(prompt: str, presentation: PresentationData) -> tuple[int, List[str]]:
    """Share of significant prompt words (longer than four letters) found in the deck."""

    words = sorted({w for w in _WORD_RE.findall(prompt.lower()) if len(w) > 4})
    if not words:
        return 100, []
    text = presentation.to_json().lower()
    missing = [w for w in words if w not in text]
    matched = len(words) - len(missing)
    return round(100 * matched / len(words)), missing


def quick_validate(
    presentation: PresentationData,
    request: GenerationRequest,
    framework: Optional[Framework] = None,
) -> DeckValidationFeedback:
    slides = presentation.slides
    types = [s.type for s in slides]
    gaps: List[str] = []
    flow_issues: List[str] = []

    cohesiveness = 100
    if len(slides) != request.slide_count:
        cohesiveness -= SLIDE_COUNT_PENALTY
        gaps.append(f"Expected {request.slide_count} slides, got {len(slides)}")
    if SlideType.TITLE not in types:
        gaps.append("Missing title slide")
    if SlideType.CONCLUSION not in types:
        gaps.append("Missing conclusion slide")

    expected = list(dict.fromkeys(framework.slide_sequence if framework else _DEFAULT_PROGRESSION))
    present = sum(1 for t in expected if t in types)
    narrative = round(100 * present / len(expected))

    theme_consistency = True
    if len(common_title_words([s.title for s in slides])) < 2:
        cohesiveness -= THEME_PENALTY
        theme_consistency = False
        flow_issues.append("Limited thematic consistency across slides")

    intent, missing_words = intent_coverage(request.prompt, presentation)

    adherence = 100
    if framework is not None and slides:
        template = framework.template_for(len(slides))
        adherence = round(100 * sum(1 for a, b in zip(types, template) if a == b) / len(template))

    cohesiveness = max(0, cohesiveness)
    return DeckValidationFeedback(
        overall_score=mean_score(narrative, cohesiveness, intent, 100, adherence),
        narrative_flow=NarrativeFlowScore(
            score=narrative,
            feedback=f"{present}/{len(expected)} expected stages present",
            flow_issues=flow_issues,
            transition_quality="good" if narrative >= 80 else "fair",
        ),
        cohesiveness=CohesivenessScore(
            score=cohesiveness,
            feedback="Presentation appears cohesive" if cohesiveness == 100 else "Cohesion gaps found",
            theme_consistency=theme_consistency,
            gaps=gaps,
        ),
        user_intent_fulfillment=IntentScore(
            score=intent,
            feedback="Addresses the prompt" if not missing_words else "Some prompt terms are not covered",
            missing_elements=missing_words,
        ),
        audience_alignment=DimensionScore(score=100, feedback="Not assessed without a model"),
        framework_adherence=DimensionScore(
            score=adherence,
            feedback="Follows structure" if adherence == 100 else "Deviates from the framework sequence",
        ),
        improvements=DeckImprovements(recommended=gaps),
        strategy=ValidationStrategy.HEURISTIC,
    )


def default_feedback() -> DeckValidationFeedback:
    neutral = "Unable to fully validate"
    return DeckValidationFeedback(
        overall_score=DEFAULT_SCORE,
        narrative_flow=NarrativeFlowScore(score=DEFAULT_SCORE, feedback=neutral, transition_quality="fair"),
        cohesiveness=CohesivenessScore(score=DEFAULT_SCORE, feedback=neutral),
        user_intent_fulfillment=IntentScore(score=DEFAULT_SCORE, feedback=neutral),
        audience_alignment=DimensionScore(score=DEFAULT_SCORE, feedback=neutral),
        framework_adherence=DimensionScore(score=DEFAULT_SCORE, feedback=neutral),
        strategy=ValidationStrategy.DEFAULT,
    )


def parse_deck_feedback(text: str) -> DeckValidationFeedback:
    data = extract_json(text).data
    required = ("narrativeFlow", "cohesiveness", "userIntentFulfillment", "audienceAlignment", "frameworkAdherence")
    if not isinstance(data, dict) or not all(isinstance(data.get(k), dict) for k in required):
        raise ValueError("deck validation response missing dimension scores")
    payload = dict(data)
    payload["overallScore"] = 0
    if not isinstance(payload.get("improvements"), dict):
        payload["improvements"] = {}
    payload["slideSpecificFeedback"] = [
        item for item in payload.get("slideSpecificFeedback") or [] if isinstance(item, dict) and item.get("slideId")
    ]
    feedback = DeckValidationFeedback.model_validate(payload)
    return feedback.model_copy(
        update={"overall_score": mean_score(*feedback.dimension_scores()), "strategy": ValidationStrategy.LLM}
    )


def _slide_from_issue(issue: str, presentation: PresentationData) -> int:
    lowered = issue.lower()
    match = _SLIDE_REF_RE.search(lowered)
    if match:
        idx = int(match.group(1)) - 1
        if 0 <= idx < len(presentation.slides):
            return idx
    for idx, slide in enumerate(presentation.slides):
        if re.search(rf"\b{re.escape(slide.type.value)}\b", lowered):
            return idx
    return -1


def refinement_type_for(issue: str) -> RefinementType:
    lowered = issue.lower()
    if "transition" in lowered or "flow" in lowered:
        return RefinementType.TRANSITION
    if "unclear" in lowered or "confus" in lowered:
        return RefinementType.CLARITY
    if "align" in lowered or "match" in lowered:
        return RefinementType.ALIGNMENT
    return RefinementType.CONTENT


def identify_refinement_targets(
    feedback: DeckValidationFeedback,
    presentation: PresentationData,
) -> List[RefinementTarget]:
    """Map deck feedback onto slides, most urgent first, one target per slide."""

    targets: List[RefinementTarget] = []
    slides = presentation.slides

    for issue in feedback.improvements.critical:
        idx = _slide_from_issue(issue, presentation)
        if idx >= 0:
            targets.append(
                RefinementTarget(
                    slide_id=slides[idx].id,
                    slide_number=idx + 1,
                    issue=issue,
                    refinement_type=RefinementType.CONTENT,
                    priority=TargetPriority.CRITICAL,
                    suggested_changes=issue,
                )
            )

    for item in feedback.slide_specific_feedback:
        idx = presentation.slide_index(item.slide_id)
        if idx < 0:
            idx = _slide_from_issue(item.slide_id.replace("-", " "), presentation)
        if idx >= 0:
            targets.append(
                RefinementTarget(
                    slide_id=slides[idx].id,
                    slide_number=idx + 1,
                    issue=item.issue,
                    refinement_type=refinement_type_for(item.issue),
                    priority=TargetPriority.HIGH,
                    suggested_changes=item.suggestion or None,
                )
            )

    if feedback.narrative_flow.flow_issues and feedback.narrative_flow.score < FLOW_TARGET_THRESHOLD:
        for idx in range(len(slides) - 1):
            targets.append(
                RefinementTarget(
                    slide_id=slides[idx].id,
                    slide_number=idx + 1,
                    issue="Poor transition to next slide",
                    refinement_type=RefinementType.TRANSITION,
                    priority=TargetPriority.MEDIUM,
                    suggested_changes="Improve transition and connection to next slide",
                )
            )

    targets.sort(key=lambda t: PRIORITY_RANK[t.priority])
    unique: List[RefinementTarget] = []
    seen = set()
    for target in targets:
        if target.slide_id not in seen:
            seen.add(target.slide_id)
            unique.append(target)
    return unique


class DeckValidator:
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

    def quick_validate(
        self,
        presentation: PresentationData,
        request: GenerationRequest,
        framework: Optional[Framework] = None,
    ) -> DeckValidationFeedback:
        return quick_validate(presentation, request, framework)

    async def validate_deck(
        self,
        presentation: PresentationData,
        request: GenerationRequest,
        framework: Optional[Framework] = None,
    ) -> DeckValidationFeedback:
        framework = framework or get_framework(presentation.metadata.framework)

        async def primary() -> DeckValidationFeedback:
            assert self.gateway is not None
            response = await self.gateway.complete(
                build_deck_validation_prompt(presentation, request, framework),
                config=ModelConfigs.analysis(),
                purpose="deck_validation",
                system=VALIDATOR_SYSTEM_PROMPT,
            )
            try:
                return parse_deck_feedback(response.text)
            except (JSONExtractionError, ValueError) as exc:
                if self.log is not None:
                    self.log.record_fallback(COMPONENT, f"unparseable deck feedback: {exc}", "default_scores", FallbackImpact.MINOR)
                return default_feedback()

        feedback = await self.policy.run(
            StrategyPair(
                component=COMPONENT,
                primary=primary,
                fallback=lambda: quick_validate(presentation, request, framework),
                fallback_method="quick_validate",
            ),
            self.gateway,
            self.log,
        )
        logger.info(
            "Deck '%s' scored %d (%s)",
            presentation.title,
            feedback.overall_score,
            json.dumps(dict(zip(("flow", "cohesion", "intent", "audience", "framework"), feedback.dimension_scores()))),
        )
        return feedback


__all__ = [
    "DeckValidator",
    "common_title_words",
    "default_feedback",
    "identify_refinement_targets",
    "intent_coverage",
    "parse_deck_feedback",
    "quick_validate",
    "refinement_type_for",
]
