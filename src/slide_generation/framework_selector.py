"""Pick the narrative framework for a generation request."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from src.db.generation_log import FallbackImpact, GenerationLog
from src.llm_gateway import LLMError, LLMGateway, ModelConfigs

from .config import PipelineConfig
from .frameworks import DEFAULT_FRAMEWORK_ID, Framework, all_frameworks, get_framework, require_framework
from .json_extract import JSONExtractionError, extract_json
from .models import GenerationRequest
from .prompts import SYSTEM_PROMPT, build_framework_prompt

logger = logging.getLogger(__name__)

COMPONENT = "framework_selector"


class SelectionStrategy(str, Enum):
    LLM = "llm"
    RULES = "rules"


@dataclass(frozen=True)
class FrameworkSelection:
    framework: Framework
    confidence: int
    rationale: str
    alternatives: List[str] = field(default_factory=list)
    strategy: str = SelectionStrategy.RULES.value

    def to_payload(self) -> Dict[str, object]:
        return {
            "framework": self.framework.id,
            "frameworkName": self.framework.name,
            "confidence": self.confidence,
            "rationale": self.rationale,
            "alternatives": list(self.alternatives),
            "strategy": self.strategy,
        }


# (field, patterns, framework id, confidence, rationale)
_RULES: Tuple[Tuple[str, Tuple[str, ...], str, int, str], ...] = (
    (
        "content",
        ("case study", "project result", "success story"),
        "star",
        85,
        "Case studies and results read best as Situation-Task-Action-Result.",
    ),
    (
        "content",
        ("compare", "comparison", "vendor", "option", "options", "selection"),
        "comparison",
        90,
        "The request weighs alternatives against each other.",
    ),
    (
        "audience",
        ("executive", "executives", "c-level", "board"),
        "pyramid",
        80,
        "Senior audiences expect the answer first.",
    ),
    (
        "content",
        ("recommend", "recommendation", "propose", "proposal", "argument"),
        "prep",
        75,
        "The request argues for a position.",
    ),
    (
        "content",
        ("problem", "challenge", "issue", "pain point"),
        "problem-solution",
        75,
        "The request centres on a problem and its fix.",
    ),
)


def _contains_any(haystack: str, needles: Tuple[str, ...]) -> bool:
    return any(re.search(rf"\b{re.escape(n)}\b", haystack) for n in needles)


def _alternatives(chosen: Framework) -> List[str]:
    return [fw.id for fw in all_frameworks() if fw.id != chosen.id]


def select_by_rules(request: GenerationRequest) -> FrameworkSelection:
    """Deterministic keyword table. No external calls."""

    content = f"{request.prompt} {request.presentation_type.value}".lower()
    audience = request.audience.lower()
    for field_name, patterns, framework_id, confidence, rationale in _RULES:
        haystack = audience if field_name == "audience" else content
        if _contains_any(haystack, patterns):
            fw = require_framework(framework_id)
            return FrameworkSelection(fw, confidence, rationale, _alternatives(fw), SelectionStrategy.RULES.value)
    fw = require_framework(DEFAULT_FRAMEWORK_ID)
    return FrameworkSelection(
        fw,
        70,
        "No strong signal in the request; SCQA suits most business narratives.",
        _alternatives(fw),
        SelectionStrategy.RULES.value,
    )


def match_framework_keyword(text: str) -> Optional[Framework]:
    """Return the first framework (registry order) whose id or keyword appears in ``text``."""

    lowered = (text or "").lower()
    for fw in all_frameworks():
        for keyword in (fw.id, *fw.keywords):
            if re.search(rf"(?<![\w-]){re.escape(keyword)}(?![\w-])", lowered):
                return fw
    return None


def parse_framework_response(text: str) -> FrameworkSelection:
    recommendation = ""
    rationale = ""
    confidence = 70
    try:
        data = extract_json(text).data
    except JSONExtractionError:
        data = None
    if isinstance(data, dict):
        recommendation = str(data.get("recommendation") or "")
        rationale = str(data.get("rationale") or "")
        try:
            confidence = max(0, min(100, int(round(float(data.get("confidence", confidence))))))
        except (TypeError, ValueError):
            confidence = 70

    fw = get_framework(recommendation) or match_framework_keyword(recommendation)
    if fw is None:
        fw = match_framework_keyword(text) or require_framework(DEFAULT_FRAMEWORK_ID)
    return FrameworkSelection(
        fw,
        confidence,
        rationale or f"Model recommended {fw.name}.",
        _alternatives(fw),
        SelectionStrategy.LLM.value,
    )


class FrameworkSelector:
    def __init__(
        self,
        gateway: Optional[LLMGateway],
        config: Optional[PipelineConfig] = None,
        *,
        log: Optional[GenerationLog] = None,
    ) -> None:
        self.gateway = gateway
        self.config = config or PipelineConfig()
        self.log = log

    async def select(
        self,
        request: GenerationRequest,
        strategy: SelectionStrategy = SelectionStrategy.LLM,
    ) -> FrameworkSelection:
        if request.framework:
            fw = get_framework(request.framework)
            if fw is not None:
                return FrameworkSelection(
                    fw, 100, "Framework set explicitly on the request.", _alternatives(fw), "override"
                )
            logger.warning("Ignoring unknown framework override '%s'", request.framework)

        if SelectionStrategy(strategy) is SelectionStrategy.RULES or self.gateway is None:
            return select_by_rules(request)

        try:
            response = await self.gateway.complete(
                build_framework_prompt(request, all_frameworks()),
                config=ModelConfigs.validation(),
                purpose="framework_selection",
                system=SYSTEM_PROMPT,
            )
        except LLMError as exc:
            self._record_fallback(f"LLM framework analysis failed: {exc}")
            return select_by_rules(request)

        selection = parse_framework_response(response.text)
        if selection.confidence < self.config.min_confidence_threshold:
            self._record_fallback(
                f"LLM confidence {selection.confidence} below threshold {self.config.min_confidence_threshold}"
            )
            return select_by_rules(request)
        logger.info("Selected framework %s (confidence %d)", selection.framework.id, selection.confidence)
        return selection

    def _record_fallback(self, reason: str) -> None:
        logger.info("Framework selection falling back to rules: %s", reason)
        if self.log is not None:
            self.log.record_fallback(COMPONENT, reason, "keyword_rules", FallbackImpact.MINOR)


__all__ = [
    "FrameworkSelection",
    "FrameworkSelector",
    "SelectionStrategy",
    "match_framework_keyword",
    "parse_framework_response",
    "select_by_rules",
]
