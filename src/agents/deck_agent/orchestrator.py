"""Top-level coordinator for one presentation generation request."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from src.db.generation_log import FallbackEvent, FallbackImpact, GenerationLog
from src.llm_gateway import (
    LLMAuthenticationError,
    LLMConnectionError,
    LLMError,
    LLMGateway,
    LLMMalformedResponseError,
    LLMRateLimitError,
)
from src.slide_generation.cancellation import CancellationToken
from src.slide_generation.config import PipelineConfig
from src.slide_generation.errors import GenerationCancelled, OutlineParseError
from src.slide_generation.framework_selector import FrameworkSelection, FrameworkSelector, SelectionStrategy
from src.slide_generation.frameworks import Framework
from src.slide_generation.models import (
    GenerationRequest,
    Outline,
    PresentationData,
    PresentationMetadata,
    SlideOutline,
)
from src.slide_generation.outline_generator import OutlineGenerator
from src.slide_generation.slide_generator import (
    PresentationContext,
    SlideGenerationResult,
    SlideGenerator,
    template_slide,
)
from src.validation.deck_validator import DeckValidator
from src.validation.feedback import OutlineValidationFeedback, SlideValidationFeedback
from src.validation.outline_validator import OutlineValidator
from src.validation.policy import StrategyPolicy
from src.validation.refinement import RefinementEngine, RefinementProgress, RefinementResult, StopReason, combined_score
from src.validation.slide_validator import SlideValidator

logger = logging.getLogger(__name__)

CONTEXT_WINDOW = 2


class GenerationStage(str, Enum):
    INITIALIZING = "initializing"
    FRAMEWORK = "framework"
    OUTLINE = "outline"
    OUTLINE_VALIDATION = "outline_validation"
    SLIDES = "slides"
    DECK_VALIDATION = "deck_validation"
    REFINEMENT = "refinement"
    COMPLETE = "complete"


_STAGE_PROGRESS = {
    GenerationStage.INITIALIZING: 5,
    GenerationStage.FRAMEWORK: 15,
    GenerationStage.OUTLINE: 25,
    GenerationStage.OUTLINE_VALIDATION: 30,
    GenerationStage.DECK_VALIDATION: 85,
    GenerationStage.REFINEMENT: 90,
    GenerationStage.COMPLETE: 100,
}
SLIDES_START = 30
SLIDES_END = 80


@dataclass(frozen=True)
class ProgressEvent:
    stage: GenerationStage
    progress: int
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "type": "progress",
            "stage": self.stage.value,
            "progress": self.progress,
            "message": self.message,
            **self.details,
        }


ProgressObserver = Callable[[ProgressEvent], None]


@dataclass
class GenerationOptions:
    on_progress: Optional[ProgressObserver] = None
    cancellation: Optional[CancellationToken] = None
    parallel_slides: bool = False
    enable_refinement: bool = True
    framework_strategy: SelectionStrategy = SelectionStrategy.LLM


@dataclass
class GenerationResult:
    success: bool
    generation_id: str
    presentation: Optional[PresentationData] = None
    outline: Optional[Outline] = None
    framework: Optional[FrameworkSelection] = None
    validation_scores: Dict[str, Any] = field(default_factory=dict)
    tokens_used: int = 0
    generation_time_ms: int = 0
    errors: List[str] = field(default_factory=list)
    error_type: Optional[str] = None
    fallbacks: List[FallbackEvent] = field(default_factory=list)
    refinement: Optional[RefinementResult] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": self.success,
            "generationId": self.generation_id,
            "tokensUsed": self.tokens_used,
            "generationTime": self.generation_time_ms,
            "errors": list(self.errors),
            "fallbacks": [f.to_dict() for f in self.fallbacks],
        }
        if self.presentation is not None:
            payload["presentation"] = self.presentation.to_payload()
        if self.validation_scores:
            payload["validationScores"] = self.validation_scores
        if self.framework is not None:
            payload["framework"] = self.framework.to_payload()
        if self.refinement is not None:
            payload["refinement"] = self.refinement.to_payload(include_presentation=False)
        if self.error_type:
            payload["errorType"] = self.error_type
        return payload


def classify_error(exc: BaseException) -> str:
    if isinstance(exc, GenerationCancelled):
        return "cancelled"
    if isinstance(exc, LLMAuthenticationError):
        return "authentication"
    if isinstance(exc, LLMRateLimitError):
        return "rate_limit"
    if isinstance(exc, LLMConnectionError):
        return "connection"
    if isinstance(exc, (LLMMalformedResponseError, OutlineParseError)):
        return "malformed_response"
    if isinstance(exc, LLMError):
        return "llm"
    return "internal"


class IterativeOrchestrator:
    """Framework -> outline -> slides -> deck validation -> refinement.

    One instance serves one request: it owns the request's
    :class:`GenerationLog` and wires it into every component.
    """

    def __init__(
        self,
        gateway: LLMGateway,
        config: Optional[PipelineConfig] = None,
        *,
        log: Optional[GenerationLog] = None,
        policy: Optional[StrategyPolicy] = None,
    ) -> None:
        self.gateway = gateway
        self.config = config or PipelineConfig()
        self.log = log or GenerationLog()
        self.policy = policy or StrategyPolicy()
        self.framework_selector = FrameworkSelector(gateway, self.config, log=self.log)
        self.outline_generator = OutlineGenerator(gateway, self.config, log=self.log)
        self.outline_validator = OutlineValidator(gateway, self.config, policy=self.policy, log=self.log)
        self.slide_generator = SlideGenerator(gateway, self.config, log=self.log)
        self.slide_validator = SlideValidator(gateway, self.config, policy=self.policy, log=self.log)
        self.deck_validator = DeckValidator(gateway, self.config, policy=self.policy, log=self.log)
        self.refinement_engine = RefinementEngine(
            gateway,
            self.config,
            slide_generator=self.slide_generator,
            slide_validator=self.slide_validator,
            deck_validator=self.deck_validator,
            policy=self.policy,
            log=self.log,
        )
        self._observer: Optional[ProgressObserver] = None

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------
    def _emit(self, stage: GenerationStage, message: str, progress: Optional[int] = None, **details: Any) -> None:
        event = ProgressEvent(
            stage=stage,
            progress=_STAGE_PROGRESS.get(stage, 0) if progress is None else progress,
            message=message,
            details=details,
        )
        self.log.step(stage.value, message)
        self.log.record_progress(event.to_payload())
        if self._observer is not None:
            self._observer(event)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------
    async def generate_presentation(
        self,
        request: GenerationRequest,
        options: Optional[GenerationOptions] = None,
    ) -> GenerationResult:
        options = options or GenerationOptions()
        token = options.cancellation or CancellationToken()
        self._observer = options.on_progress
        self.log.request = request.to_payload()
        self.gateway.subscribe(self.log.record_llm_call)
        started = time.monotonic()
        result = GenerationResult(success=False, generation_id=self.log.generation_id)
        try:
            await self._run(request, options, token, result)
            result.success = True
        except (GenerationCancelled, OutlineParseError, LLMError) as exc:
            result.presentation = None
            result.error_type = classify_error(exc)
            result.errors.append(str(exc))
            self.log.record_error(self.log.steps[-1]["stage"] if self.log.steps else "initializing", str(exc))
        finally:
            self.gateway.unsubscribe(self.log.record_llm_call)
            self._observer = None
            result.tokens_used = self.log.total_tokens
            result.generation_time_ms = int((time.monotonic() - started) * 1000)
            result.fallbacks = list(self.log.fallbacks)
            self.log.finalize(
                "completed" if result.success else (result.error_type or "failed"),
                tokensUsed=result.tokens_used,
                validationScores=result.validation_scores,
                slideCount=len(result.presentation.slides) if result.presentation else 0,
            )
        return result

    async def _run(
        self,
        request: GenerationRequest,
        options: GenerationOptions,
        token: CancellationToken,
        result: GenerationResult,
    ) -> None:
        self._emit(GenerationStage.INITIALIZING, "Preparing generation")

        token.raise_if_cancelled("framework selection")
        selection = await token.guard(
            self.framework_selector.select(request, options.framework_strategy), "framework selection"
        )
        result.framework = selection
        framework = selection.framework
        self._emit(
            GenerationStage.FRAMEWORK,
            f"Using {framework.name} framework ({selection.confidence}% confidence)",
            framework=framework.id,
        )

        outline = await token.guard(self.outline_generator.generate_outline(request, framework), "outline generation")
        self._emit(GenerationStage.OUTLINE, f"Outline '{outline.title}' with {len(outline.slides)} slides")

        outline, outline_fb = await self._validated_outline(outline, request, framework, token)
        result.outline = outline
        result.validation_scores["outline"] = outline_fb.overall_score
        self._emit(
            GenerationStage.OUTLINE_VALIDATION,
            f"Outline scored {outline_fb.overall_score}",
            score=outline_fb.overall_score,
        )

        token.raise_if_cancelled("slide generation")
        generated = await self._generate_slides(outline, request, options, token)
        slide_feedback = {r.slide.id: fb for r, fb in generated}
        result.validation_scores["slides"] = {sid: fb.overall_score for sid, fb in slide_feedback.items()}
        presentation = PresentationData(
            id=f"pres-{uuid.uuid4().hex[:12]}",
            title=outline.title,
            subtitle=outline.subtitle,
            metadata=PresentationMetadata(
                audience=request.audience,
                tone=request.tone,
                slide_count=len(generated),
                presentation_type=request.presentation_type,
                framework=framework.id,
            ),
            slides=[r.slide for r, _ in generated],
        )
        for r, _ in generated:
            if r.used_template:
                result.errors.append(f"Slide {r.slide.id} uses template content: {'; '.join(r.errors) or 'generation failed'}")

        token.raise_if_cancelled("deck validation")
        self._emit(GenerationStage.DECK_VALIDATION, "Validating the complete deck")
        deck_fb = await token.guard(
            self.deck_validator.validate_deck(presentation, request, framework), "deck validation"
        )
        result.validation_scores["deck"] = deck_fb.overall_score
        quality = combined_score(deck_fb, slide_feedback)
        result.validation_scores["quality"] = quality

        if options.enable_refinement and quality < self.config.target_quality_score:
            token.raise_if_cancelled("refinement")
            self._emit(GenerationStage.REFINEMENT, f"Refining deck (quality {quality})", score=quality)
            refinement = await self.refinement_engine.refine_presentation(
                presentation,
                request,
                self._refinement_observer,
                outline=outline,
                framework=framework,
                cancellation=token,
            )
            result.refinement = refinement
            presentation = refinement.presentation
            result.validation_scores["quality"] = refinement.final_score
            result.validation_scores["refinementRounds"] = refinement.total_rounds
            if refinement.deck_feedback is not None:
                result.validation_scores["deck"] = refinement.deck_feedback.overall_score
            if refinement.stop_reason is StopReason.CANCELLED:
                result.errors.append("Refinement cancelled; returning the best deck so far")

        result.presentation = presentation
        self._emit(
            GenerationStage.COMPLETE,
            f"Generated {len(presentation.slides)} slides",
            score=result.validation_scores.get("quality"),
        )

    def _refinement_observer(self, event: RefinementProgress) -> None:
        span = _STAGE_PROGRESS[GenerationStage.COMPLETE] - _STAGE_PROGRESS[GenerationStage.REFINEMENT]
        progress = _STAGE_PROGRESS[GenerationStage.REFINEMENT] + int(span * event.percentage / 100)
        self._emit(
            GenerationStage.REFINEMENT,
            event.message,
            progress=min(progress, 99),
            round=event.current_round,
            score=event.current_score,
        )

    # ------------------------------------------------------------------
    # Outline
    # ------------------------------------------------------------------
    async def _validated_outline(
        self,
        outline: Outline,
        request: GenerationRequest,
        framework: Framework,
        token: CancellationToken,
    ) -> Tuple[Outline, OutlineValidationFeedback]:
        """Score the outline; below threshold, regenerate exactly once and keep the better one."""

        feedback = await token.guard(
            self.outline_validator.validate_outline(outline, request, framework), "outline validation"
        )
        if feedback.overall_score >= self.config.min_outline_score:
            return outline, feedback

        self.log.step(
            GenerationStage.OUTLINE_VALIDATION.value,
            f"Outline scored {feedback.overall_score}; regenerating once",
        )
        hints = feedback.issues + feedback.suggestions or [f"The outline scored {feedback.overall_score}/100"]
        try:
            candidate = await token.guard(
                self.outline_generator.generate_outline(request, framework, feedback=hints),
                "outline regeneration",
            )
        except LLMAuthenticationError:
            raise
        except (OutlineParseError, LLMError) as exc:
            self.log.record_fallback(
                "orchestrator",
                f"outline regeneration failed: {exc}",
                "keep_original_outline",
                FallbackImpact.MINOR,
            )
            return outline, feedback

        candidate_fb = self.outline_validator.quick_validate(candidate, request, framework)
        if candidate_fb.overall_score > feedback.overall_score:
            logger.info("Regenerated outline kept (%d > %d)", candidate_fb.overall_score, feedback.overall_score)
            return candidate, candidate_fb
        logger.info("Original outline kept (%d >= %d)", feedback.overall_score, candidate_fb.overall_score)
        return outline, feedback

    # ------------------------------------------------------------------
    # Slides
    # ------------------------------------------------------------------
    async def _generate_slides(
        self,
        outline: Outline,
        request: GenerationRequest,
        options: GenerationOptions,
        token: CancellationToken,
    ) -> List[Tuple[SlideGenerationResult, SlideValidationFeedback]]:
        total = len(outline.slides)
        done = 0

        def _tick(entry: SlideOutline, result: SlideGenerationResult, fb: SlideValidationFeedback) -> None:
            nonlocal done
            done += 1
            progress = SLIDES_START + int((SLIDES_END - SLIDES_START) * done / max(total, 1))
            self._emit(
                GenerationStage.SLIDES,
                f"Slide {entry.slide_number}/{total}: {result.slide.title}",
                progress=progress,
                slide=entry.slide_number,
                score=fb.overall_score,
            )

        if options.parallel_slides:
            titles = [e.title for e in outline.slides]
            contexts = [
                PresentationContext(request, outline, tuple(titles[max(0, i - CONTEXT_WINDOW) : i]))
                for i in range(total)
            ]
            raw = await asyncio.gather(
                *(self._one_slide(entry, ctx, outline, token) for entry, ctx in zip(outline.slides, contexts)),
                return_exceptions=True,
            )
            results: List[Tuple[SlideGenerationResult, SlideValidationFeedback]] = []
            for entry, item in zip(outline.slides, raw):
                if isinstance(item, (LLMAuthenticationError, GenerationCancelled)):
                    raise item
                if isinstance(item, BaseException):
                    item = self._isolated_failure(entry, outline, item)
                results.append(item)
                _tick(entry, *item)
            return results

        results = []
        previous: List[str] = []
        for entry in outline.slides:
            token.raise_if_cancelled(f"slide {entry.slide_number}")
            ctx = PresentationContext(request, outline, tuple(previous[-CONTEXT_WINDOW:]))
            try:
                item = await self._one_slide(entry, ctx, outline, token)
            except (LLMAuthenticationError, GenerationCancelled):
                raise
            except Exception as exc:
                item = self._isolated_failure(entry, outline, exc)
            previous.append(item[0].slide.title)
            results.append(item)
            _tick(entry, *item)
        return results

    def _isolated_failure(
        self,
        entry: SlideOutline,
        outline: Outline,
        exc: BaseException,
    ) -> Tuple[SlideGenerationResult, SlideValidationFeedback]:
        logger.exception("Slide %d failed; substituting template", entry.slide_number, exc_info=exc)
        slide, placeholder = template_slide(entry)
        event = self.log.record_fallback(
            "orchestrator",
            f"slide {entry.slide_number} failed: {exc}",
            "template_slide",
            FallbackImpact.SIGNIFICANT if placeholder else FallbackImpact.MODERATE,
            f"Slide {entry.slide_number} needs manual content.",
        )
        result = SlideGenerationResult(slide=slide, attempts=0, used_template=True, fallbacks=[event], errors=[str(exc)])
        return result, self.slide_validator.quick_validate(slide, entry)

    async def _one_slide(
        self,
        entry: SlideOutline,
        context: PresentationContext,
        outline: Outline,
        token: CancellationToken,
    ) -> Tuple[SlideGenerationResult, SlideValidationFeedback]:
        stage = f"slide {entry.slide_number}"
        result = await token.guard(self.slide_generator.generate_slide(entry, context), stage)
        feedback = await token.guard(
            self.slide_validator.validate_slide(result.slide, entry, outline.title), stage
        )
        if feedback.passes or result.used_template or self.config.max_slide_retries == 0:
            return result, feedback

        hints: Sequence[str] = feedback.must_fix + feedback.improvements or [
            f"The slide scored {feedback.overall_score}/100; make it more specific"
        ]
        retry = await token.guard(self.slide_generator.generate_slide(entry, context, feedback=hints), stage)
        if retry.used_template:
            return result, feedback
        retry_fb = await token.guard(
            self.slide_validator.validate_slide(retry.slide, entry, outline.title), stage
        )
        if retry_fb.overall_score > feedback.overall_score:
            return retry, retry_fb
        return result, feedback


__all__ = [
    "GenerationOptions",
    "GenerationResult",
    "GenerationStage",
    "IterativeOrchestrator",
    "ProgressEvent",
    "classify_error",
]
