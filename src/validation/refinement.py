"""Round-based refinement of a generated deck.

The engine is a small ``langgraph`` state machine::

    analyze --> refine --(loop while no stop reason)--> finalize

Each ``refine`` pass is one round: pick targets, regenerate only those
slides, re-validate, and keep the candidate only if the combined score
strictly beats the best seen so far. The accepted score therefore never
decreases, and at most ``max_refinement_rounds`` rounds are completed.
"""

from __future__ import annotations

import logging
import math
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, TypedDict

from langgraph.graph import END, StateGraph

from src.db.generation_log import GenerationLog
from src.llm_gateway import LLMGateway
from src.slide_generation.cancellation import CancellationToken
from src.slide_generation.config import PipelineConfig
from src.slide_generation.errors import GenerationCancelled
from src.slide_generation.frameworks import Framework, get_framework
from src.slide_generation.models import GenerationRequest, Outline, PresentationData, SlideOutline
from src.slide_generation.slide_generator import PresentationContext, SlideGenerator

from .deck_validator import DeckValidator, identify_refinement_targets
from .feedback import (
    DeckValidationFeedback,
    RefinementTarget,
    RefinementType,
    SlideValidationFeedback,
    TargetPriority,
)
from .policy import StrategyPolicy
from .slide_validator import SlideValidator

logger = logging.getLogger(__name__)


class RefinementStage(str, Enum):
    INITIALIZING = "initializing"
    ANALYZING = "analyzing"
    GENERATING = "generating"
    VALIDATING = "validating"
    APPLYING = "applying"
    COMPLETING = "completing"
    COMPLETED = "completed"
    FAILED = "failed"


class StopReason(str, Enum):
    TARGET_ACHIEVED = "target_achieved"
    EXHAUSTED = "exhausted"
    CONVERGED = "converged"
    CANCELLED = "cancelled"
    NO_TARGETS = "no_targets"


@dataclass(frozen=True)
class RefinementProgress:
    session_id: str
    stage: RefinementStage
    current_round: int
    total_rounds: int
    current_score: Optional[int]
    target_score: int
    percentage: int
    message: str

    def to_payload(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "stage": self.stage.value,
            "currentRound": self.current_round,
            "totalRounds": self.total_rounds,
            "currentScore": self.current_score,
            "targetScore": self.target_score,
            "percentage": self.percentage,
            "message": self.message,
        }


ProgressCallback = Callable[[RefinementProgress], None]


@dataclass
class RoundLog:
    round: int
    score_before: int
    candidate_score: Optional[int]
    score_after: int
    accepted: bool
    targets: List[RefinementTarget] = field(default_factory=list)
    duration_ms: int = 0

    def to_payload(self) -> Dict[str, Any]:
        return {
            "round": self.round,
            "scoreBefore": self.score_before,
            "candidateScore": self.candidate_score,
            "scoreAfter": self.score_after,
            "accepted": self.accepted,
            "targets": [t.to_payload() for t in self.targets],
            "durationMs": self.duration_ms,
        }


@dataclass
class RefinementResult:
    session_id: str
    initial_score: int
    final_score: int
    total_rounds: int
    target_achieved: bool
    stop_reason: StopReason
    presentation: PresentationData
    deck_feedback: Optional[DeckValidationFeedback] = None
    rounds: List[RoundLog] = field(default_factory=list)
    progress_log: List[RefinementProgress] = field(default_factory=list)

    @property
    def total_improvement(self) -> int:
        return self.final_score - self.initial_score

    def to_payload(self, include_presentation: bool = True) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "sessionId": self.session_id,
            "initialScore": self.initial_score,
            "finalScore": self.final_score,
            "totalImprovement": self.total_improvement,
            "totalRounds": self.total_rounds,
            "targetAchieved": self.target_achieved,
            "stopReason": self.stop_reason.value,
            "rounds": [r.to_payload() for r in self.rounds],
            "progressLog": [p.to_payload() for p in self.progress_log],
        }
        if self.deck_feedback is not None:
            payload["deckFeedback"] = self.deck_feedback.to_payload()
        if include_presentation:
            payload["presentation"] = self.presentation.to_payload()
        return payload


class RefinementState(TypedDict, total=False):
    presentation: PresentationData
    deck_feedback: DeckValidationFeedback
    slide_feedback: Dict[str, SlideValidationFeedback]
    initial_score: int
    best_score: int
    round: int
    rounds: List[RoundLog]
    stop_reason: Optional[StopReason]


def new_session_id() -> str:
    return f"ref_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def combined_score(deck: DeckValidationFeedback, slides: Dict[str, SlideValidationFeedback]) -> int:
    """Half-up mean of the deck score and the average slide score."""

    if not slides:
        return deck.overall_score
    slide_mean = sum(f.overall_score for f in slides.values()) / len(slides)
    return int(math.floor((deck.overall_score + slide_mean) / 2 + 0.5))


def outline_from_presentation(presentation: PresentationData) -> Outline:
    return Outline(
        id=f"outline-{presentation.id}",
        title=presentation.title,
        subtitle=presentation.subtitle,
        framework=presentation.metadata.framework or "scqa",
        slides=[SlideOutline.from_slide(s, idx + 1) for idx, s in enumerate(presentation.slides)],
    )


class RefinementEngine:
    def __init__(
        self,
        gateway: Optional[LLMGateway],
        config: Optional[PipelineConfig] = None,
        *,
        slide_generator: Optional[SlideGenerator] = None,
        slide_validator: Optional[SlideValidator] = None,
        deck_validator: Optional[DeckValidator] = None,
        policy: Optional[StrategyPolicy] = None,
        log: Optional[GenerationLog] = None,
    ) -> None:
        self.config = config or PipelineConfig()
        self.log = log
        policy = policy or StrategyPolicy()
        if slide_generator is None:
            if gateway is None:
                raise ValueError("refinement needs an LLM gateway or a slide generator")
            slide_generator = SlideGenerator(gateway, self.config, log=log)
        self.slide_generator = slide_generator
        self.slide_validator = slide_validator or SlideValidator(gateway, self.config, policy=policy, log=log)
        self.deck_validator = deck_validator or DeckValidator(gateway, self.config, policy=policy, log=log)

    async def refine_presentation(
        self,
        presentation: PresentationData,
        request: GenerationRequest,
        on_progress: Optional[ProgressCallback] = None,
        *,
        outline: Optional[Outline] = None,
        framework: Optional[Framework] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> RefinementResult:
        session = _Session(
            engine=self,
            session_id=new_session_id(),
            request=request,
            outline=outline or outline_from_presentation(presentation),
            framework=framework or get_framework(presentation.metadata.framework),
            cancellation=cancellation or CancellationToken(),
            on_progress=on_progress,
        )
        return await session.run(presentation)


class _Session:
    """State and graph nodes for one ``refine_presentation`` call."""

    def __init__(
        self,
        *,
        engine: RefinementEngine,
        session_id: str,
        request: GenerationRequest,
        outline: Outline,
        framework: Optional[Framework],
        cancellation: CancellationToken,
        on_progress: Optional[ProgressCallback],
    ) -> None:
        self.engine = engine
        self.config = engine.config
        self.session_id = session_id
        self.request = request
        self.outline = outline
        self.framework = framework
        self.cancellation = cancellation
        self.on_progress = on_progress
        self.progress_log: List[RefinementProgress] = []
        self._last_score: Optional[int] = None

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------
    def _emit(self, stage: RefinementStage, round_no: int, message: str, score: Optional[int] = None) -> None:
        if score is not None:
            self._last_score = score
        total = self.config.max_refinement_rounds
        if stage is RefinementStage.COMPLETED:
            pct = 100
        elif stage in (RefinementStage.INITIALIZING, RefinementStage.ANALYZING):
            pct = 5 if stage is RefinementStage.INITIALIZING else 10
        elif stage is RefinementStage.COMPLETING:
            pct = 95
        else:
            within = {RefinementStage.GENERATING: 0.1, RefinementStage.VALIDATING: 0.5, RefinementStage.APPLYING: 0.8}
            pct = int(10 + 80 * ((max(round_no, 1) - 1) + within.get(stage, 0.0)) / total)
        event = RefinementProgress(
            session_id=self.session_id,
            stage=stage,
            current_round=round_no,
            total_rounds=total,
            current_score=self._last_score,
            target_score=self.config.target_quality_score,
            percentage=pct,
            message=message,
        )
        self.progress_log.append(event)
        if self.engine.log is not None:
            self.engine.log.record_progress(event.to_payload())
        if self.on_progress is not None:
            self.on_progress(event)

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------
    def _entry_for(self, idx: int, presentation: PresentationData) -> SlideOutline:
        if idx < len(self.outline.slides):
            return self.outline.slides[idx]
        return SlideOutline.from_slide(presentation.slides[idx], idx + 1)

    async def _validate_slides(
        self,
        presentation: PresentationData,
        only: Optional[set] = None,
        previous: Optional[Dict[str, SlideValidationFeedback]] = None,
    ) -> Dict[str, SlideValidationFeedback]:
        results: Dict[str, SlideValidationFeedback] = dict(previous or {})
        for idx, slide in enumerate(presentation.slides):
            if only is not None and slide.id not in only:
                continue
            results[slide.id] = await self.cancellation.guard(
                self.engine.slide_validator.validate_slide(slide, self._entry_for(idx, presentation), presentation.title),
                "slide validation",
            )
        return results

    def _select_targets(
        self,
        presentation: PresentationData,
        deck: DeckValidationFeedback,
        slides: Dict[str, SlideValidationFeedback],
    ) -> List[RefinementTarget]:
        limit = self.config.max_refinement_targets
        targets = identify_refinement_targets(deck, presentation)
        chosen = {t.slide_id for t in targets}
        ranked = sorted(
            (
                (slides[s.id].overall_score, idx, s)
                for idx, s in enumerate(presentation.slides)
                if s.id in slides and s.id not in chosen
            ),
            key=lambda item: (item[0], item[1]),
        )
        weak = [item for item in ranked if item[0] < self.config.min_slide_score or not slides[item[2].id].passes]
        if not targets and not weak:
            weak = ranked
        for score, idx, slide in weak:
            fb = slides[slide.id]
            issues = fb.must_fix + fb.improvements
            clarity = fb.readability.score < min(fb.content_quality.score, fb.alignment_with_purpose.score)
            targets.append(
                RefinementTarget(
                    slide_id=slide.id,
                    slide_number=idx + 1,
                    issue="; ".join(issues) or f"Slide scored {score}",
                    refinement_type=RefinementType.CLARITY if clarity else RefinementType.CONTENT,
                    priority=TargetPriority.HIGH if score < self.config.min_slide_score else TargetPriority.LOW,
                    suggested_changes="; ".join(fb.improvements) or None,
                )
            )
        return targets[:limit]

    # ------------------------------------------------------------------
    # Graph nodes
    # ------------------------------------------------------------------
    async def analyze(self, state: RefinementState) -> Dict[str, Any]:
        self._emit(RefinementStage.INITIALIZING, 0, "Starting refinement session")
        presentation = state["presentation"]
        self._emit(RefinementStage.ANALYZING, 0, "Scoring the current deck")
        deck = await self.cancellation.guard(
            self.engine.deck_validator.validate_deck(presentation, self.request, self.framework),
            "deck validation",
        )
        slides = await self._validate_slides(presentation)
        score = combined_score(deck, slides)
        self._emit(RefinementStage.ANALYZING, 0, f"Initial quality score {score}", score)
        update: Dict[str, Any] = {
            "deck_feedback": deck,
            "slide_feedback": slides,
            "initial_score": score,
            "best_score": score,
            "round": 0,
            "rounds": [],
            "stop_reason": None,
        }
        if score >= self.config.target_quality_score:
            update["stop_reason"] = StopReason.TARGET_ACHIEVED
        elif not presentation.slides:
            update["stop_reason"] = StopReason.NO_TARGETS
        return update

    async def refine(self, state: RefinementState) -> Dict[str, Any]:
        round_no = state["round"] + 1
        presentation = state["presentation"]
        best = state["best_score"]
        if self.cancellation.cancelled:
            return {"stop_reason": StopReason.CANCELLED}

        started = time.monotonic()
        targets = self._select_targets(presentation, state["deck_feedback"], state["slide_feedback"])
        if not targets:
            return {"stop_reason": StopReason.NO_TARGETS}

        try:
            self._emit(
                RefinementStage.GENERATING,
                round_no,
                f"Round {round_no}: revising {len(targets)} slide(s)",
            )
            candidate = presentation
            changed: set = set()
            context = PresentationContext(request=self.request, outline=self.outline)
            for target in targets:
                idx = candidate.slide_index(target.slide_id)
                if idx < 0:
                    continue
                neighbours = [candidate.slides[i].title for i in (idx - 1, idx + 1) if 0 <= i < len(candidate.slides)]
                revised = await self.cancellation.guard(
                    self.engine.slide_generator.refine_slide(
                        candidate.slides[idx],
                        target.refinement_type.value,
                        target.issue,
                        context,
                        suggested_changes=target.suggested_changes,
                        neighbours=neighbours,
                    ),
                    "slide refinement",
                )
                if revised is not None:
                    candidate = candidate.with_slide(idx, revised)
                    changed.add(revised.id)

            candidate_score: Optional[int] = None
            deck = state["deck_feedback"]
            slides = state["slide_feedback"]
            if changed:
                self._emit(RefinementStage.VALIDATING, round_no, f"Round {round_no}: re-validating")
                cand_deck = await self.cancellation.guard(
                    self.engine.deck_validator.validate_deck(candidate, self.request, self.framework),
                    "deck validation",
                )
                cand_slides = await self._validate_slides(candidate, only=changed, previous=slides)
                candidate_score = combined_score(cand_deck, cand_slides)
        except GenerationCancelled:
            # Work from an unfinished round is discarded.
            return {"stop_reason": StopReason.CANCELLED}

        accepted = candidate_score is not None and candidate_score > best
        update: Dict[str, Any] = {"round": round_no}
        if accepted:
            update.update(
                presentation=candidate,
                deck_feedback=cand_deck,
                slide_feedback=cand_slides,
                best_score=candidate_score,
            )
            new_best = candidate_score
            message = f"Round {round_no}: accepted, score {best} -> {candidate_score}"
        else:
            new_best = best
            message = (
                f"Round {round_no}: rolled back, candidate {candidate_score} did not beat {best}"
                if candidate_score is not None
                else f"Round {round_no}: no usable revisions"
            )
        self._emit(RefinementStage.APPLYING, round_no, message, new_best)
        logger.info("[%s] %s", self.session_id, message)

        rounds = list(state["rounds"])
        rounds.append(
            RoundLog(
                round=round_no,
                score_before=best,
                candidate_score=candidate_score,
                score_after=new_best,
                accepted=accepted,
                targets=targets,
                duration_ms=int((time.monotonic() - started) * 1000),
            )
        )
        update["rounds"] = rounds

        if new_best >= self.config.target_quality_score:
            update["stop_reason"] = StopReason.TARGET_ACHIEVED
        elif self.cancellation.cancelled:
            update["stop_reason"] = StopReason.CANCELLED
        elif round_no >= self.config.max_refinement_rounds:
            update["stop_reason"] = StopReason.EXHAUSTED
        elif new_best - best < self.config.minimum_improvement:
            update["stop_reason"] = StopReason.CONVERGED
        return update

    async def finalize(self, state: RefinementState) -> Dict[str, Any]:
        reason = state.get("stop_reason") or StopReason.EXHAUSTED
        self._emit(RefinementStage.COMPLETING, state.get("round", 0), f"Finishing ({reason.value})")
        self._emit(
            RefinementStage.COMPLETED,
            state.get("round", 0),
            f"Refinement complete: {state['initial_score']} -> {state['best_score']}",
            state["best_score"],
        )
        return {"stop_reason": reason}

    @staticmethod
    def _route(state: RefinementState) -> str:
        return "finalize" if state.get("stop_reason") else "refine"

    def build_graph(self):
        g = StateGraph(RefinementState)
        g.add_node("analyze", self.analyze)
        g.add_node("refine", self.refine)
        g.add_node("finalize", self.finalize)
        g.set_entry_point("analyze")
        g.add_conditional_edges("analyze", self._route, {"refine": "refine", "finalize": "finalize"})
        g.add_conditional_edges("refine", self._route, {"refine": "refine", "finalize": "finalize"})
        g.add_edge("finalize", END)
        return g.compile()

    async def run(self, presentation: PresentationData) -> RefinementResult:
        app = self.build_graph()
        try:
            final: RefinementState = await app.ainvoke({"presentation": presentation})
        except GenerationCancelled:
            self._emit(RefinementStage.FAILED, 0, "Cancelled before the deck was scored")
            raise
        except Exception as exc:
            self._emit(RefinementStage.FAILED, 0, f"Refinement failed: {exc}")
            raise

        reason = final["stop_reason"] or StopReason.EXHAUSTED
        result = RefinementResult(
            session_id=self.session_id,
            initial_score=final["initial_score"],
            final_score=final["best_score"],
            total_rounds=final["round"],
            target_achieved=final["best_score"] >= self.config.target_quality_score,
            stop_reason=reason,
            presentation=final["presentation"],
            deck_feedback=final.get("deck_feedback"),
            rounds=final.get("rounds", []),
            progress_log=list(self.progress_log),
        )
        logger.info(
            "[%s] refinement finished: %d -> %d in %d round(s), reason=%s",
            self.session_id,
            result.initial_score,
            result.final_score,
            result.total_rounds,
            reason.value,
        )
        return result


__all__ = [
    "ProgressCallback",
    "RefinementEngine",
    "RefinementProgress",
    "RefinementResult",
    "RefinementStage",
    "RoundLog",
    "StopReason",
    "combined_score",
    "new_session_id",
    "outline_from_presentation",
]
