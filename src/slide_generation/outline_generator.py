"""Turn a request and framework into a structured :class:`Outline`."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from src.db.generation_log import FallbackImpact, GenerationLog
from src.llm_gateway import LLMGateway, ModelConfigs

from .config import PipelineConfig
from .errors import OutlineParseError
from .frameworks import Framework
from .json_extract import JSONExtractionError, extract_json
from .models import GenerationRequest, Outline, SlideOutline, SlideType
from .prompts import SYSTEM_PROMPT, build_outline_prompt

logger = logging.getLogger(__name__)

COMPONENT = "outline_generator"

TOKEN_ESTIMATES: Dict[SlideType, int] = {
    SlideType.TITLE: 300,
    SlideType.PROBLEM: 600,
    SlideType.SOLUTION: 700,
    SlideType.BENEFITS: 500,
    SlideType.IMPLEMENTATION: 600,
    SlideType.FRAMEWORK: 800,
    SlideType.TIMELINE: 500,
    SlideType.CONCLUSION: 400,
    SlideType.CHART: 600,
    SlideType.TABLE: 700,
}
DEFAULT_TOKEN_ESTIMATE = 500


def estimate_slide_tokens(slide_type: SlideType) -> int:
    return TOKEN_ESTIMATES.get(slide_type, DEFAULT_TOKEN_ESTIMATE)


def build_outline(
    data: Any,
    request: GenerationRequest,
    framework: Framework,
) -> Outline:
    """Normalize parsed model output into an :class:`Outline`.

    Slides are renumbered in order, trimmed to the requested count, and
    unknown slide types take the framework's type for that position.
    """

    if not isinstance(data, dict):
        raise OutlineParseError("outline response is not a JSON object")
    raw_slides = data.get("slides")
    if not isinstance(raw_slides, list) or not raw_slides:
        raise OutlineParseError("invalid outline structure: missing slides array")
    title = str(data.get("title") or "").strip()
    if not title:
        raise OutlineParseError("invalid outline structure: missing title")

    template = framework.template_for(request.slide_count)
    slides: List[SlideOutline] = []
    for idx, raw in enumerate(raw_slides[: request.slide_count]):
        if not isinstance(raw, dict):
            raise OutlineParseError(f"slide {idx + 1} in outline is not an object")
        entry = dict(raw)
        entry["slideNumber"] = idx + 1
        entry.pop("slide_number", None)
        try:
            slide = SlideOutline.model_validate(entry)
        except ValidationError as exc:
            raise OutlineParseError(f"slide {idx + 1} in outline is invalid: {exc}") from exc
        if slide.type is SlideType.CUSTOM and idx < len(template):
            slide = slide.model_copy(update={"type": template[idx]})
        slides.append(slide.model_copy(update={"estimated_tokens": estimate_slide_tokens(slide.type)}))

    return Outline(
        id=f"outline-{int(time.time() * 1000)}",
        title=title,
        subtitle=data.get("subtitle") or None,
        description=data.get("description") or None,
        framework=framework.id,
        slides=slides,
        estimated_total_tokens=sum(s.estimated_tokens for s in slides),
        flow_description=data.get("flowDescription") or data.get("flow_description") or None,
    )


class OutlineGenerator:
    def __init__(
        self,
        gateway: LLMGateway,
        config: Optional[PipelineConfig] = None,
        *,
        log: Optional[GenerationLog] = None,
    ) -> None:
        self.gateway = gateway
        self.config = config or PipelineConfig()
        self.log = log

    async def generate_outline(
        self,
        request: GenerationRequest,
        framework: Framework,
        feedback: Optional[Sequence[str]] = None,
    ) -> Outline:
        """One LLM call; gateway errors and :class:`OutlineParseError` propagate."""

        prompt = build_outline_prompt(request, framework, framework.template_for(request.slide_count), feedback)
        response = await self.gateway.complete(
            prompt,
            config=ModelConfigs.outline(),
            purpose="outline_generation" if not feedback else "outline_regeneration",
            system=SYSTEM_PROMPT,
        )
        try:
            extracted = extract_json(response.text)
        except JSONExtractionError as exc:
            raise OutlineParseError(f"Failed to parse outline response: {exc}") from exc
        if extracted.used_fallback and self.log is not None:
            self.log.record_fallback(
                COMPONENT,
                f"outline JSON recovered with '{extracted.rule}' extraction",
                extracted.rule,
                FallbackImpact.MINOR,
            )

        outline = build_outline(extracted.data, request, framework)
        logger.info(
            "Generated outline '%s' with %d slides (~%d tokens)",
            outline.title,
            len(outline.slides),
            outline.estimated_total_tokens,
        )
        return outline


__all__ = ["OutlineGenerator", "TOKEN_ESTIMATES", "build_outline", "estimate_slide_tokens"]
