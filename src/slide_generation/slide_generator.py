"""Expand one outline entry into a full :class:`Slide`."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from src.db.generation_log import FallbackEvent, FallbackImpact, GenerationLog
from src.llm_gateway import (
    LLMAuthenticationError,
    LLMError,
    LLMGateway,
    LLMMalformedResponseError,
    ModelConfigs,
)

from .config import PipelineConfig
from .json_extract import extract_json
from .models import (
    CONTENT_KIND_BY_LAYOUT,
    BulletsContent,
    GenerationRequest,
    Outline,
    Slide,
    SlideLayout,
    SlideOutline,
    default_layout_for,
)
from .prompts import SYSTEM_PROMPT, build_refinement_prompt, build_slide_prompt

logger = logging.getLogger(__name__)

COMPONENT = "slide_generator"
PLACEHOLDER_BULLET = "Content to be added"
MANUAL_CONTENT_CALLOUT = "This slide requires manual content creation"

_CONTENT_KEYS = (
    "mainText",
    "bulletPoints",
    "sections",
    "keyMetrics",
    "timeline",
    "diagram",
    "chart",
    "table",
    "quote",
    "callout",
)


@dataclass(frozen=True)
class PresentationContext:
    request: GenerationRequest
    outline: Outline
    previous_titles: Tuple[str, ...] = ()


@dataclass
class SlideGenerationResult:
    slide: Slide
    attempts: int
    used_template: bool = False
    fallbacks: List[FallbackEvent] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


def _infer_kind(content: Dict[str, Any]) -> str:
    if content.get("table"):
        return "table"
    if content.get("diagram"):
        return "diagram"
    if content.get("keyMetrics") or content.get("chart"):
        return "metrics"
    if content.get("sections") or content.get("timeline"):
        return "sections"
    return "bullets"


_LAYOUT_FOR_KIND = {
    "bullets": SlideLayout.TITLE_CONTENT,
    "sections": SlideLayout.TWO_COLUMN,
    "metrics": SlideLayout.METRICS,
    "diagram": SlideLayout.DIAGRAM,
    "table": SlideLayout.TABLE,
}


def _normalize_content(raw: Dict[str, Any]) -> Dict[str, Any]:
    content = raw.get("content")
    if not isinstance(content, dict):
        content = {key: raw[key] for key in _CONTENT_KEYS if key in raw}
    content = dict(content)
    content.pop("kind", None)
    return content


def build_slide(
    data: Any,
    entry: SlideOutline,
    *,
    slide_id: Optional[str] = None,
    layout: Optional[SlideLayout] = None,
) -> Slide:
    """Validate parsed model output into a :class:`Slide` for ``entry``.

    The layout comes from ``layout`` when pinned, then from the model's answer,
    then from the slide type. If the content does not fit that layout the
    layout is switched to one matching the content that was produced.
    Raises ``ValueError`` (including pydantic ``ValidationError``) when the
    payload cannot form a slide.
    """

    if not isinstance(data, dict):
        raise ValueError("slide response is not a JSON object")
    content = _normalize_content(data)
    if layout is None:
        try:
            layout = SlideLayout(str(data.get("layout") or ""))
        except ValueError:
            layout = default_layout_for(entry.type)
        produced = _infer_kind(content)
        if CONTENT_KIND_BY_LAYOUT[layout] != produced and produced != "bullets":
            layout = _LAYOUT_FOR_KIND[produced]
        elif CONTENT_KIND_BY_LAYOUT[layout] != produced:
            layout = SlideLayout.TITLE_CONTENT
    content["kind"] = CONTENT_KIND_BY_LAYOUT[layout]
    return Slide.model_validate(
        {
            "id": slide_id or f"slide-{entry.slide_number}",
            "type": entry.type,
            "title": str(data.get("title") or entry.title),
            "layout": layout,
            "content": content,
            "speakerNotes": data.get("speakerNotes") or data.get("speaker_notes"),
        }
    )


def template_slide(entry: SlideOutline) -> Tuple[Slide, bool]:
    """Context-free slide built from the outline alone.

    Returns the slide and whether placeholder text had to be invented.
    """

    bullets = [p for p in entry.key_points if p.strip()]
    placeholder = not bullets
    if placeholder:
        bullets = [PLACEHOLDER_BULLET]
    layout = default_layout_for(entry.type)
    if CONTENT_KIND_BY_LAYOUT[layout] != "bullets":
        layout = SlideLayout.TITLE_CONTENT
    slide = Slide(
        id=f"slide-{entry.slide_number}",
        type=entry.type,
        title=entry.title or f"Slide {entry.slide_number}",
        layout=layout,
        content=BulletsContent(
            main_text=entry.purpose or "Content generation failed",
            bullet_points=bullets,
            callout=MANUAL_CONTENT_CALLOUT,
        ),
        speaker_notes="This slide was created as a fallback due to generation failure",
    )
    return slide, placeholder


class SlideGenerator:
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

    def _fallback(self, reason: str, method: str, impact: FallbackImpact, message: Optional[str] = None) -> FallbackEvent:
        if self.log is not None:
            return self.log.record_fallback(COMPONENT, reason, method, impact, message)
        return FallbackEvent(COMPONENT, reason, method, impact, message)

    async def generate_slide(
        self,
        entry: SlideOutline,
        context: PresentationContext,
        feedback: Optional[Sequence[str]] = None,
    ) -> SlideGenerationResult:
        """Generate one slide, retrying unparseable answers.

        Authentication errors propagate. Any other failure that survives
        ``max_slide_retries`` produces a template slide and a fallback event.
        """

        layout = default_layout_for(entry.type)
        prompt = build_slide_prompt(
            entry,
            context.outline,
            context.request,
            layout,
            previous_titles=context.previous_titles,
            feedback=feedback,
        )
        max_attempts = self.config.max_slide_retries + 1
        fallbacks: List[FallbackEvent] = []
        errors: List[str] = []
        attempt = 0
        while attempt < max_attempts:
            attempt += 1
            try:
                response = await self.gateway.complete(
                    prompt,
                    config=ModelConfigs.quick_fix(),
                    purpose="slide_generation",
                    system=SYSTEM_PROMPT,
                )
                extracted = extract_json(response.text)
                slide = build_slide(extracted.data, entry)
            except LLMAuthenticationError:
                raise
            except LLMMalformedResponseError as exc:
                errors.append(str(exc))
            except LLMError as exc:
                # The gateway already spent its retry budget on transient errors.
                errors.append(str(exc))
                break
            except ValueError as exc:
                errors.append(f"unparseable slide response: {exc}")
                logger.warning(
                    "Slide %d attempt %d/%d failed to parse: %s", entry.slide_number, attempt, max_attempts, exc
                )
            else:
                if extracted.used_fallback:
                    fallbacks.append(
                        self._fallback(
                            f"slide {entry.slide_number} JSON recovered with '{extracted.rule}' extraction",
                            extracted.rule,
                            FallbackImpact.MINOR,
                        )
                    )
                return SlideGenerationResult(slide=slide, attempts=attempt, fallbacks=fallbacks, errors=errors)

        slide, placeholder = template_slide(entry)
        impact = FallbackImpact.SIGNIFICANT if placeholder else FallbackImpact.MODERATE
        reason = errors[-1] if errors else "slide generation failed"
        fallbacks.append(
            self._fallback(
                f"slide {entry.slide_number} failed after {attempt} attempt(s): {reason}",
                "template_slide",
                impact,
                f"Slide {entry.slide_number} ('{slide.title}') needs manual content.",
            )
        )
        return SlideGenerationResult(
            slide=slide, attempts=attempt, used_template=True, fallbacks=fallbacks, errors=errors
        )

    async def refine_slide(
        self,
        slide: Slide,
        refinement_type: str,
        issue: str,
        context: PresentationContext,
        *,
        suggested_changes: Optional[str] = None,
        neighbours: Sequence[str] = (),
    ) -> Optional[Slide]:
        """Rewrite ``slide`` for one refinement target.

        The id, type and layout of the original slide are preserved. Returns
        ``None`` when the model's answer is unusable.
        """

        prompt = build_refinement_prompt(
            slide, refinement_type, issue, suggested_changes, context.request, neighbours
        )
        try:
            response = await self.gateway.complete(
                prompt,
                config=ModelConfigs.refinement(),
                purpose="slide_refinement",
                system=SYSTEM_PROMPT,
            )
            extracted = extract_json(response.text)
            entry = SlideOutline(slide_number=1, type=slide.type, title=slide.title)
            return build_slide(extracted.data, entry, slide_id=slide.id, layout=slide.layout)
        except LLMAuthenticationError:
            raise
        except (LLMError, ValueError) as exc:
            logger.warning("Refinement of %s (%s) discarded: %s", slide.id, refinement_type, exc)
            return None


__all__ = [
    "MANUAL_CONTENT_CALLOUT",
    "PresentationContext",
    "SlideGenerationResult",
    "SlideGenerator",
    "build_slide",
    "template_slide",
]
